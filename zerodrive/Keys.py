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
Primary (symmetric) key management.

The primary key is a 256-bit AES-GCM key that seals the user's files, the file
index and the sharing key backup. It is either random or derived from a 12 word
BIP-39 recovery phrase:

    seed = BIP39-seed(phrase, passphrase="")
    key  = SHA-256(seed)

so the same phrase always gives the same key. The phrase itself is never stored.
"""

import json
import re

from mnemonic import Mnemonic

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Errors import InvalidPhrase, MalformedInput
from zerodrive.Utils import b64urlDecode, b64urlEncode
from zerodrive.crypto import AES_KEY_SIZE, CryptoInterface

logger = getLogger(__name__)

PRIMARY_KEY_STORE_KEY = 'aes-gcm-key'

# 128 bits of entropy gives 12 words
RECOVERY_PHRASE_STRENGTH = 128
RECOVERY_PHRASE_LANGUAGE = 'english'


class PrimaryKey:

    def __init__(self, raw: bytes):
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != AES_KEY_SIZE:
            raise MalformedInput(f'Primary key must be {AES_KEY_SIZE} bytes')
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    @property
    def fingerprint(self) -> str:
        """Short digest for display and logs, never the key itself."""
        return CryptoInterface().sha256(self._raw).hex()[:16]

    def toJWK(self) -> dict:
        return {
            'kty': 'oct',
            'k': b64urlEncode(self._raw),
            'alg': 'A256GCM',
            'ext': True,
            'key_ops': ['encrypt', 'decrypt'],
        }

    @classmethod
    def fromJWK(cls, jwk: dict) -> 'PrimaryKey':
        if not isinstance(jwk, dict) or jwk.get('kty') != 'oct' or not isinstance(jwk.get('k'), str):
            raise MalformedInput('Stored primary key is not an "oct" JWK')

        raw = b64urlDecode(jwk['k'])
        if len(raw) != AES_KEY_SIZE:
            raise MalformedInput(f'Stored primary key has {len(raw)} bytes, expected {AES_KEY_SIZE}')
        return cls(raw)

    def __eq__(self, other):
        return isinstance(other, PrimaryKey) and self._raw == other._raw

    def __hash__(self):
        return hash(self._raw)

    def __repr__(self):
        return f'<PrimaryKey {self.fingerprint}>'


class PrimaryKeyManager:

    def __init__(self, keyValueStore, crypto=None):
        self.keyValueStore = keyValueStore
        self.crypto = crypto or CryptoInterface()
        self.mnemonic = Mnemonic(RECOVERY_PHRASE_LANGUAGE)

    def generateKey(self) -> PrimaryKey:
        return PrimaryKey(self.crypto.randomBytes(AES_KEY_SIZE))

    def generateRecoveryPhrase(self) -> str:
        return self.mnemonic.generate(strength=RECOVERY_PHRASE_STRENGTH)

    @staticmethod
    def normalizePhrase(phrase) -> str:
        if not isinstance(phrase, str):
            return ''
        return re.sub(r'\s+', ' ', phrase).strip().lower()

    def validatePhrase(self, phrase) -> bool:
        normalized = self.normalizePhrase(phrase)
        if not normalized:
            return False

        words = normalized.split(' ')
        wordSet = set(self.mnemonic.wordlist)
        if any(word not in wordSet for word in words):
            return False

        return self.mnemonic.check(normalized)

    def deriveKeyFromPhrase(self, phrase) -> PrimaryKey:
        """
        Derive the primary key from a recovery phrase.

        Raises:
            InvalidPhrase: unknown words, wrong word count or bad checksum
        """
        if not self.validatePhrase(phrase):
            raise InvalidPhrase('Invalid recovery phrase')

        seed = Mnemonic.to_seed(self.normalizePhrase(phrase), passphrase='')
        return PrimaryKey(self.crypto.sha256(seed))

    def store(self, key: PrimaryKey, source='generated'):
        self.keyValueStore.set(PRIMARY_KEY_STORE_KEY, json.dumps(key.toJWK()).encode('utf-8'))
        logger.info(f'[KEYS] Stored primary key {key.fingerprint}')

        ZDEvent.primaryKeyCreate.trigger(fingerprint=key.fingerprint, source=source)

    def load(self):
        """
        Returns:
            PrimaryKey, or None when no key is stored on this device

        Raises:
            MalformedInput: stored descriptor is unreadable
        """
        data = self.keyValueStore.get(PRIMARY_KEY_STORE_KEY)
        if data is None:
            return None

        try:
            jwk = json.loads(data)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedInput(f'Stored primary key is not valid JSON: {e}') from e

        return PrimaryKey.fromJWK(jwk)

    def hasKey(self) -> bool:
        return self.keyValueStore.get(PRIMARY_KEY_STORE_KEY) is not None

    def clear(self):
        self.keyValueStore.delete(PRIMARY_KEY_STORE_KEY)
        logger.info('[KEYS] Cleared primary key from this device')
