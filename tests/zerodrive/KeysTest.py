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

import hashlib
import json
import unittest

from mnemonic import Mnemonic

from zerodrive.Kernel import EventService, ZDEvent
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.Errors import AuthenticationFailed, InvalidPhrase, MalformedInput
from zerodrive.Keys import PrimaryKey, PrimaryKeyManager, PRIMARY_KEY_STORE_KEY
from zerodrive.Storage import MemoryKeyValueStore

ABANDON_PHRASE = ' '.join(['abandon'] * 11 + ['about'])
ZOO_PHRASE = ' '.join(['zoo'] * 11 + ['wrong'])

# BIP-39 seed of ABANDON_PHRASE with an empty passphrase
ABANDON_SEED = (
    '5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1'
    '9a5ac40b389cd370d086206dec8aa6c43daea6690f20ad3d8d48b2d2ce9e38e4'
)


class PrimaryKeyTest(unittest.TestCase):

    def testSizeEnforced(self):
        for raw in (b'', b'\x00' * 16, b'\x00' * 33, 'not bytes'):
            with self.subTest(raw=raw):
                with self.assertRaises(MalformedInput):
                    PrimaryKey(raw)

    def testJWK(self):
        key = PrimaryKey(bytes(range(32)))
        jwk = key.toJWK()

        self.assertEqual(jwk['kty'], 'oct')
        self.assertEqual(jwk['alg'], 'A256GCM')
        self.assertNotIn('=', jwk['k'])
        self.assertEqual(PrimaryKey.fromJWK(jwk), key)

    def testBadJWK(self):
        for jwk in (None, {}, {'kty': 'RSA', 'k': 'AAAA'}, {'kty': 'oct', 'k': 'AAAA'}):
            with self.subTest(jwk=jwk):
                with self.assertRaises(MalformedInput):
                    PrimaryKey.fromJWK(jwk)

    def testFingerprintHidesKey(self):
        key = PrimaryKey(bytes(range(32)))
        self.assertEqual(key.fingerprint, hashlib.sha256(bytes(range(32))).hexdigest()[:16])
        self.assertNotIn(key.raw.hex(), repr(key))


class PrimaryKeyManagerTest(unittest.TestCase):

    def setUp(self):
        self.keyValueStore = MemoryKeyValueStore()
        self.manager = PrimaryKeyManager(self.keyValueStore)

    def testGenerateKey(self):
        first = self.manager.generateKey()
        second = self.manager.generateKey()
        self.assertEqual(len(first.raw), 32)
        self.assertNotEqual(first, second)

    def testDeterministicDerivation(self):
        """
        key = SHA-256(BIP39-seed(phrase, "")), identical across calls.
        """
        key = self.manager.deriveKeyFromPhrase(ABANDON_PHRASE)

        self.assertEqual(key.raw, hashlib.sha256(bytes.fromhex(ABANDON_SEED)).digest())
        self.assertEqual(key.raw, hashlib.sha256(Mnemonic.to_seed(ABANDON_PHRASE, passphrase='')).digest())
        self.assertEqual(self.manager.deriveKeyFromPhrase(ABANDON_PHRASE), key)

    def testPhraseKeyProtectsData(self):
        """A phrase-derived key opens its own data and a different phrase's key is rejected."""
        cipher = EnvelopeCipher()
        key = self.manager.deriveKeyFromPhrase(ABANDON_PHRASE)

        blob = cipher.seal(b'hello', key)
        self.assertEqual(cipher.open(blob, key), b'hello')

        otherKey = self.manager.deriveKeyFromPhrase(ZOO_PHRASE)
        with self.assertRaises(AuthenticationFailed):
            cipher.open(blob, otherKey)

    def testNormalization(self):
        messy = '  ABANDON abandon\tabandon abandon  abandon abandon\nabandon abandon abandon abandon abandon About '
        self.assertEqual(self.manager.deriveKeyFromPhrase(messy), self.manager.deriveKeyFromPhrase(ABANDON_PHRASE))

    def testInvalidPhrases(self):
        invalid = [
            ' '.join(['abandon'] * 12), # checksum fails
            ' '.join(['abandon'] * 11 + ['notaword']),
            ' '.join(['abandon'] * 10 + ['about']), # 11 words
            '',
            None,
        ]

        for phrase in invalid:
            with self.subTest(phrase=phrase):
                self.assertFalse(self.manager.validatePhrase(phrase))
                with self.assertRaises(InvalidPhrase):
                    self.manager.deriveKeyFromPhrase(phrase)

    def testGeneratedPhrase(self):
        phrase = self.manager.generateRecoveryPhrase()
        self.assertEqual(len(phrase.split(' ')), 12)
        self.assertTrue(self.manager.validatePhrase(phrase))

        # Recovering the phrase reproduces the key it was generated for
        self.assertEqual(self.manager.deriveKeyFromPhrase(phrase), self.manager.deriveKeyFromPhrase(phrase.upper()))

    def testStoreAndLoad(self):
        self.assertIsNone(self.manager.load())
        self.assertFalse(self.manager.hasKey())

        key = self.manager.generateKey()
        self.manager.store(key)

        self.assertTrue(self.manager.hasKey())
        self.assertEqual(self.manager.load(), key)

        # A second device with the same store sees the same key
        self.assertEqual(PrimaryKeyManager(self.keyValueStore).load(), key)

        self.manager.clear()
        self.assertIsNone(self.manager.load())

    def testStoredDescriptor(self):
        key = self.manager.generateKey()
        self.manager.store(key)

        descriptor = json.loads(self.keyValueStore.get(PRIMARY_KEY_STORE_KEY))
        self.assertEqual(descriptor['kty'], 'oct')

    def testCorruptDescriptor(self):
        self.keyValueStore.set(PRIMARY_KEY_STORE_KEY, b'\xff not json')
        with self.assertRaises(MalformedInput):
            self.manager.load()

    def testStoreTriggersEvent(self):
        ZDEvent.registerAll()
        received = []

        def observer(**kwargs):
            received.append(kwargs)

        ZDEvent.primaryKeyCreate.subscribe(observer)
        self.addCleanup(ZDEvent.primaryKeyCreate.unsubscribe, observer)

        key = self.manager.deriveKeyFromPhrase(ABANDON_PHRASE)
        self.manager.store(key, source='recovery')

        self.assertEqual(received, [{'fingerprint': key.fingerprint, 'source': 'recovery'}])
        self.assertTrue(EventService.getInstance().isRegistered(ZDEvent.primaryKeyCreate.key))


if __name__ == '__main__':
    unittest.main()
