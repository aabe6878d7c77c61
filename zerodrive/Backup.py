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
"""
Sharing key backup and recovery.

The private JWK of the sharing key pair is sealed under the primary key and kept
in the user's object store, so a device that recovers the primary key from the
recovery phrase can also recover the sharing identity.
"""

import json

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Errors import (
    MalformedBackup, MalformedInput, NetworkFailure, NoPrimaryKey, SenderKeysMissing
)
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.Identity import hashIdentity
from zerodrive.ObjectStore import KEY_BACKUPS_PREFIX
from zerodrive.Sharing import SharingKeyPair
from zerodrive.crypto import CryptoInterface, RSA_OAEP_256

logger = getLogger(__name__)

BACKUP_FILE_NAME = 'zerodrive_rsa_key_backup.json'

REQUIRED_JWK_MEMBERS = ('n', 'e', 'd')


class KeyBackupManager:

    def __init__(self, primaryKeyManager, sharingKeyManager, directory=None, objectStore=None, cipher=None, crypto=None):
        self.primaryKeyManager = primaryKeyManager
        self.sharingKeyManager = sharingKeyManager
        self.directory = directory
        self.objectStore = objectStore
        self.crypto = crypto or CryptoInterface()
        self.cipher = cipher or EnvelopeCipher(self.crypto)

    @staticmethod
    def backupPath(identity):
        return f'{KEY_BACKUPS_PREFIX}/{hashIdentity(identity)}/{BACKUP_FILE_NAME}'

    def _requirePrimaryKey(self):
        primaryKey = self.primaryKeyManager.load()
        if primaryKey is None:
            raise NoPrimaryKey('No primary key on this device. Generate one or recover it from the recovery phrase.')
        return primaryKey

    def backup(self, identity: str) -> bytes:
        """
        Seal the identity's private JWK under the primary key.

        Raises:
            NoPrimaryKey: no primary key loaded
            SenderKeysMissing: no local sharing key pair for identity
        """
        primaryKey = self._requirePrimaryKey()

        pair = self.sharingKeyManager.load(identity)
        if pair is None:
            raise SenderKeysMissing(f'No sharing key pair for {identity} to back up.')

        blob = self.cipher.seal(json.dumps(pair.privateKeyJwk).encode('utf-8'), primaryKey)
        logger.debug(f'[BACKUP] Sealed private key of {identity} under {primaryKey.fingerprint}')
        return blob

    def restore(self, blob: bytes, primaryKey) -> SharingKeyPair:
        """
        Open a backup blob and rebuild the key pair.

        Raises:
            MalformedInput: blob too short
            AuthenticationFailed: wrong primary key or tampered blob
            MalformedBackup: decrypted content is not an RSA private JWK
        """
        plaintext = self.cipher.open(blob, primaryKey)

        try:
            privateJwk = json.loads(plaintext.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedBackup(f'Key backup is not valid JSON: {e}') from e

        if not isinstance(privateJwk, dict) or privateJwk.get('kty') != 'RSA':
            raise MalformedBackup('Key backup does not hold an RSA JWK')

        missing = [member for member in REQUIRED_JWK_MEMBERS if not privateJwk.get(member)]
        if missing:
            raise MalformedBackup(f"Key backup lacks JWK members: {', '.join(missing)}")

        try:
            privateKey = self.crypto.importRSAPrivateJWK(privateJwk)
        except MalformedInput as e:
            raise MalformedBackup(f'Key backup holds an unusable RSA key: {e}') from e

        # Re-export so absent CRT members are filled in and the public half matches n / e
        completeJwk = self.crypto.exportRSAPrivateJWK(privateKey)
        completeJwk['alg'] = privateJwk.get('alg') or RSA_OAEP_256

        publicJwk = self.crypto.exportRSAPublicJWK(privateKey.public_key())
        publicJwk['alg'] = completeJwk['alg']

        return SharingKeyPair(publicKeyJwk=publicJwk, privateKeyJwk=completeJwk)

    def _requireObjectStore(self):
        if self.objectStore is None:
            raise RuntimeError('KeyBackupManager needs an object store for remote backups')
        return self.objectStore

    def uploadBackup(self, identity: str):
        """
        Best effort: returns the remote path, or None when there is no primary key
        or the upload failed. Failures are logged, never raised.
        """
        try:
            blob = self.backup(identity)
        except NoPrimaryKey as e:
            logger.warning(f'[BACKUP] Skipping key backup for {identity}: {e}')
            return None

        path = self.backupPath(identity)
        try:
            ref = self._requireObjectStore().put(path, blob)
        except NetworkFailure as e:
            logger.warning(f'[BACKUP] Uploading key backup for {identity} failed: {e}')
            return None

        logger.info(f'[BACKUP] Uploaded key backup for {identity}')
        ZDEvent.keyBackupCreate.trigger(identityHandle=hashIdentity(identity), path=path)
        return ref

    def downloadBackup(self, identity: str):
        """Backup blob for identity, or None when absent or unreachable."""
        path = self.backupPath(identity)
        try:
            blob = self._requireObjectStore().get(path)
        except NetworkFailure as e:
            logger.warning(f'[BACKUP] Downloading key backup for {identity} failed: {e}')
            return None

        if blob is None:
            logger.info(f'[BACKUP] No key backup found for {identity}')
        return blob

    def recover(self, identity: str, primaryKey=None):
        """
        Download, restore, store locally and re-publish the public key.

        Returns:
            SharingKeyPair, or None when no backup exists

        Raises:
            NoPrimaryKey: no primary key given or loaded
            AuthenticationFailed / MalformedBackup: backup cannot be opened
        """
        if primaryKey is None:
            primaryKey = self._requirePrimaryKey()

        blob = self.downloadBackup(identity)
        if blob is None:
            return None

        pair = self.restore(blob, primaryKey)
        self.sharingKeyManager.store(identity, pair)

        if self.directory is not None:
            self.directory.publish(hashIdentity(identity), pair.publicKeyJwk)

        logger.info(f'[BACKUP] Recovered sharing key pair for {identity}')
        ZDEvent.sharingKeyPairRestore.trigger(identityHandle=hashIdentity(identity))
        return pair

    def ensureSharingIdentity(self, identity: str) -> SharingKeyPair:
        """
        Make sure identity can send and receive shares: local pair, else remote
        recovery, else a new pair that is published and backed up.
        """
        pair = self.sharingKeyManager.load(identity)
        if pair is not None:
            if self.directory is not None and not self.directory.lookup(hashIdentity(identity)):
                self.directory.publish(hashIdentity(identity), pair.publicKeyJwk)
            return pair

        if self.objectStore is not None and self.primaryKeyManager.hasKey():
            pair = self.recover(identity)
            if pair is not None:
                return pair

        pair = self.sharingKeyManager.generateKeyPair()
        self.sharingKeyManager.store(identity, pair)

        if self.directory is not None:
            self.directory.publish(hashIdentity(identity), pair.publicKeyJwk)

        if self.objectStore is not None:
            self.uploadBackup(identity)

        logger.info(f'[KEYS] Created new sharing identity for {identity}')
        return pair
