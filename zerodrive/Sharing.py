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
import time

from dataclasses import dataclass, field

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Errors import MalformedInput
from zerodrive.crypto import CryptoInterface, RSA_KEY_SIZE

logger = getLogger(__name__)

SHARING_KEYS_PREFIX = 'sharing-keys/'


def nowMillis():
    return int(time.time() * 1000)


@dataclass
class SharingKeyPair:
    """RSA-OAEP-SHA256 key pair, both halves kept as JWK dicts"""
    publicKeyJwk: dict
    privateKeyJwk: dict
    createdAt: int = field(default_factory=nowMillis)

    @property
    def alg(self):
        return self.privateKeyJwk.get('alg')

    def privateKey(self, crypto=None):
        return (crypto or CryptoInterface()).importRSAPrivateJWK(self.privateKeyJwk)

    def publicKey(self, crypto=None):
        return (crypto or CryptoInterface()).importRSAPublicJWK(self.publicKeyJwk)

    def toDict(self, identity=None):
        data = {
            'publicKeyJwk': self.publicKeyJwk,
            'privateKeyJwk': self.privateKeyJwk,
            'createdAt': self.createdAt,
        }
        if identity is not None:
            data['identity'] = identity
        return data

    @classmethod
    def fromDict(cls, data):
        try:
            return cls(
                publicKeyJwk=data['publicKeyJwk'],
                privateKeyJwk=data['privateKeyJwk'],
                createdAt=int(data.get('createdAt') or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInput(f'Stored sharing key pair is incomplete: {e}') from e


class SharingKeyManager:
    """
    Generates sharing key pairs and keeps them in the local key-value store,
    keyed by the raw identity string.
    """

    def __init__(self, keyValueStore, crypto=None):
        self.keyValueStore = keyValueStore
        self.crypto = crypto or CryptoInterface()

    def _storeKey(self, identity):
        if not identity:
            raise MalformedInput('Identity is required')
        return f'{SHARING_KEYS_PREFIX}{identity}'

    def generateKeyPair(self) -> SharingKeyPair:
        privateKey, publicKey = self.crypto.generateRSAKeyPair(RSA_KEY_SIZE)
        pair = SharingKeyPair(
            publicKeyJwk=self.crypto.exportRSAPublicJWK(publicKey),
            privateKeyJwk=self.crypto.exportRSAPrivateJWK(privateKey),
        )

        ZDEvent.sharingKeyPairCreate.trigger(createdAt=pair.createdAt)
        return pair

    def store(self, identity: str, pair: SharingKeyPair):
        if not pair.publicKeyJwk or not pair.privateKeyJwk:
            raise MalformedInput('Complete key pair is required')

        self.keyValueStore.set(self._storeKey(identity), json.dumps(pair.toDict(identity)).encode('utf-8'))
        logger.info(f'[KEYS] Stored sharing key pair for {identity}')

    def load(self, identity: str):
        if not identity:
            return None

        data = self.keyValueStore.get(self._storeKey(identity))
        if data is None:
            return None

        try:
            return SharingKeyPair.fromDict(json.loads(data))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedInput(f'Stored sharing key pair for {identity} is not valid JSON: {e}') from e

    def exists(self, identity: str) -> bool:
        if not identity:
            return False
        return self.keyValueStore.get(self._storeKey(identity)) is not None

    def delete(self, identity: str):
        if not identity:
            return
        self.keyValueStore.delete(self._storeKey(identity))
        logger.info(f'[KEYS] Deleted sharing key pair for {identity}')

    def listIdentities(self):
        return [key[len(SHARING_KEYS_PREFIX):] for key in self.keyValueStore.keys(SHARING_KEYS_PREFIX)]

    def exportPrivateKey(self, identity: str):
        """Private JWK as a JSON string, or None when no pair is stored."""
        pair = self.load(identity)
        if pair is None:
            return None
        return json.dumps(pair.privateKeyJwk)
