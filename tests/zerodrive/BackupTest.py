#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# ZeroDrive - Client-side encrypted cloud storage
# Copyright (C) 2025-2026 ZeroDrive contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import json
import unittest
from unittest.mock import MagicMock

from zerodrive.Kernel import ZDEvent
from zerodrive.Backup import KeyBackupManager, BACKUP_FILE_NAME
from zerodrive.Directory import MemoryDirectoryService, PublicKeyDirectory
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.Errors import (
    AuthenticationFailed, MalformedBackup, MalformedInput, NetworkFailure, NoPrimaryKey, SenderKeysMissing
)
from zerodrive.Identity import hashIdentity
from zerodrive.Keys import PrimaryKeyManager
from zerodrive.ObjectStore import MemoryObjectStore
from zerodrive.Sharing import SharingKeyManager
from zerodrive.Storage import MemoryKeyValueStore
from zerodrive.crypto import CryptoInterface, RSA_OAEP, RSA_OAEP_256

ALICE = 'alice@example.com'
PHRASE = ' '.join(['abandon'] * 11 + ['about'])


class KeyBackupManagerTest(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.crypto = CryptoInterface()
        cls.pair = SharingKeyManager(MemoryKeyValueStore(), cls.crypto).generateKeyPair()

    def createDevice(self):
        """A fresh device sharing the remote directory and object store."""
        keyValueStore = MemoryKeyValueStore()
        primaryKeys = PrimaryKeyManager(keyValueStore, self.crypto)
        sharingKeys = SharingKeyManager(keyValueStore, self.crypto)
        manager = KeyBackupManager(
            primaryKeys, sharingKeys, directory=self.directory, objectStore=self.objectStore, crypto=self.crypto
        )
        return primaryKeys, sharingKeys, manager

    def setUp(self):
        ZDEvent.registerAll()

        self.directory = PublicKeyDirectory(MemoryDirectoryService(), self.crypto)
        self.objectStore = MemoryObjectStore()

        self.primaryKeys, self.sharingKeys, self.manager = self.createDevice()
        self.primaryKey = self.primaryKeys.deriveKeyFromPhrase(PHRASE)

    def testBackupPath(self):
        self.assertEqual(
            KeyBackupManager.backupPath('Alice@Example.com'), f'key-backups/{hashIdentity(ALICE)}/{BACKUP_FILE_NAME}'
        )

    def testBackupRestore(self):
        self.primaryKeys.store(self.primaryKey)
        self.sharingKeys.store(ALICE, self.pair)

        blob = self.manager.backup(ALICE)
        restored = self.manager.restore(blob, self.primaryKey)

        self.assertEqual(restored.privateKeyJwk['n'], self.pair.privateKeyJwk['n'])
        self.assertEqual(restored.privateKeyJwk['d'], self.pair.privateKeyJwk['d'])
        self.assertEqual(restored.publicKeyJwk['n'], self.pair.publicKeyJwk['n'])
        self.assertEqual(restored.alg, RSA_OAEP_256)

    def testWrongPrimaryKey(self):
        self.primaryKeys.store(self.primaryKey)
        self.sharingKeys.store(ALICE, self.pair)
        blob = self.manager.backup(ALICE)

        with self.assertRaises(AuthenticationFailed):
            self.manager.restore(blob, self.primaryKeys.generateKey())

    def testBackupNeedsKeys(self):
        with self.assertRaises(NoPrimaryKey):
            self.manager.backup(ALICE)

        self.primaryKeys.store(self.primaryKey)
        with self.assertRaises(SenderKeysMissing):
            self.manager.backup(ALICE)

    def testMalformedBackup(self):
        cipher = EnvelopeCipher(self.crypto)
        contents = [
            b'not json at all',
            json.dumps(['a', 'list']).encode('utf-8'),
            json.dumps({'kty': 'oct', 'k': 'AAAA'}).encode('utf-8'),
            json.dumps({'kty': 'RSA', 'n': self.pair.privateKeyJwk['n'], 'e': 'AQAB'}).encode('utf-8'),
        ]

        for content in contents:
            with self.subTest(content=content[:20]):
                with self.assertRaises(MalformedBackup):
                    self.manager.restore(cipher.seal(content, self.primaryKey), self.primaryKey)

        with self.assertRaises(MalformedInput):
            self.manager.restore(b'short', self.primaryKey)

    def testRestoreMinimalJWK(self):
        """Backups holding only n, e, d (and a legacy alg) still restore a usable pair."""
        minimal = {key: self.pair.privateKeyJwk[key] for key in ('kty', 'n', 'e', 'd')}
        minimal['alg'] = RSA_OAEP

        blob = EnvelopeCipher(self.crypto).seal(json.dumps(minimal).encode('utf-8'), self.primaryKey)
        restored = self.manager.restore(blob, self.primaryKey)

        self.assertEqual(restored.alg, RSA_OAEP)
        self.assertIn('qi', restored.privateKeyJwk)
        self.assertEqual(restored.publicKeyJwk['alg'], RSA_OAEP)

    def testRecoverOnNewDevice(self):
        """Phrase recovery on a second device brings the sharing identity back."""
        self.primaryKeys.store(self.primaryKey)
        self.sharingKeys.store(ALICE, self.pair)
        self.assertEqual(self.manager.uploadBackup(ALICE), KeyBackupManager.backupPath(ALICE))

        restored = []

        def observer(**kwargs):
            restored.append(kwargs['identityHandle'])

        ZDEvent.sharingKeyPairRestore.subscribe(observer)
        self.addCleanup(ZDEvent.sharingKeyPairRestore.unsubscribe, observer)

        primaryKeys, sharingKeys, manager = self.createDevice()
        primaryKeys.store(primaryKeys.deriveKeyFromPhrase(PHRASE), source='recovery')

        pair = manager.recover(ALICE)

        self.assertEqual(pair.privateKeyJwk['d'], self.pair.privateKeyJwk['d'])
        self.assertEqual(sharingKeys.load(ALICE).privateKeyJwk['d'], self.pair.privateKeyJwk['d'])
        self.assertEqual(self.directory.lookup(hashIdentity(ALICE))['n'], self.pair.publicKeyJwk['n'])
        self.assertEqual(restored, [hashIdentity(ALICE)])

    def testRecoverWithoutBackup(self):
        self.primaryKeys.store(self.primaryKey)
        self.assertIsNone(self.manager.recover(ALICE))

    def testUploadBestEffort(self):
        self.sharingKeys.store(ALICE, self.pair)

        # No primary key: skipped, not raised
        self.assertIsNone(self.manager.uploadBackup(ALICE))

        self.primaryKeys.store(self.primaryKey)
        failingStore = MagicMock()
        failingStore.put.side_effect = NetworkFailure('offline')
        self.manager.objectStore = failingStore

        self.assertIsNone(self.manager.uploadBackup(ALICE))

    def testDownloadFailure(self):
        failingStore = MagicMock()
        failingStore.get.side_effect = NetworkFailure('offline')
        self.manager.objectStore = failingStore

        self.assertIsNone(self.manager.downloadBackup(ALICE))

    def testEnsureCreatesIdentity(self):
        self.primaryKeys.store(self.primaryKey)

        pair = self.manager.ensureSharingIdentity(ALICE)

        self.assertEqual(self.sharingKeys.load(ALICE).privateKeyJwk, pair.privateKeyJwk)
        self.assertEqual(self.directory.lookup(hashIdentity(ALICE)), pair.publicKeyJwk)
        self.assertIsNotNone(self.objectStore.get(KeyBackupManager.backupPath(ALICE)))

        # Second call reuses the local pair
        self.assertEqual(self.manager.ensureSharingIdentity(ALICE).privateKeyJwk, pair.privateKeyJwk)

    def testEnsureRepublishesLocalPair(self):
        self.sharingKeys.store(ALICE, self.pair)

        self.manager.ensureSharingIdentity(ALICE)
        self.assertEqual(self.directory.lookup(hashIdentity(ALICE)), self.pair.publicKeyJwk)

    def testEnsurePrefersRemoteBackup(self):
        self.primaryKeys.store(self.primaryKey)
        self.sharingKeys.store(ALICE, self.pair)
        self.manager.uploadBackup(ALICE)

        primaryKeys, sharingKeys, manager = self.createDevice()
        primaryKeys.store(self.primaryKey)

        pair = manager.ensureSharingIdentity(ALICE)
        self.assertEqual(pair.privateKeyJwk['d'], self.pair.privateKeyJwk['d'])


if __name__ == '__main__':
    unittest.main()
