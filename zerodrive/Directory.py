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
Public key directory and share table.

The directory maps identity handles to public JWKs (upsert, last write wins) and
stores ShareRecords until the recipient claims them. Two service backends exist:

- LocalDirectoryService / MemoryDirectoryService: JSON documents in a key-value store
- HTTPDirectoryService: REST endpoints

      PUT   /public-keys/<handle>          {"publicKey": <jwk>}
      GET   /public-keys/<handle>          -> {"publicKey": <jwk>} | 404
      POST  /shares                        <share record>
      GET   /shares?recipientHandle=<h>&claimed=false
      PATCH /shares/<shareId>              {"claimed": true}
"""

import json

from dataclasses import dataclass, asdict
from typing import List, Optional, Protocol

from zerodrive.Kernel import getLogger
from zerodrive.Errors import MalformedInput, RecipientNotRegistered
from zerodrive.Storage import MemoryKeyValueStore
from zerodrive.APIClient import APIClient, DEFAULT_TIMEOUT
from zerodrive.crypto import CryptoInterface

logger = getLogger(__name__)

PUBLIC_KEYS_PREFIX = 'public-keys/'
SHARES_PREFIX = 'shares/'

# Column names of the hosted share table, accepted when reading records back
SHARE_COLUMN_ALIASES = {
    'share_id': 'shareId',
    'recipient_email_hash': 'recipientHandle',
    'recipient_handle': 'recipientHandle',
    'sender_email_hash': 'senderHandle',
    'sender_handle': 'senderHandle',
    'encrypted_file_key': 'encryptedFileKey',
    'encrypted_file_blob_id': 'blobPath',
    'sender_proof': 'senderProof',
    'file_name': 'fileName',
    'file_mime_type': 'mimeType',
    'mime_type': 'mimeType',
    'file_size': 'fileSize',
    'created_at': 'createdAt',
    'is_claimed': 'claimed',
}


@dataclass
class ShareRecord:
    shareId: str
    recipientHandle: str
    senderHandle: str
    encryptedFileKey: str
    blobPath: str
    senderProof: str
    fileName: str
    mimeType: str
    fileSize: int
    createdAt: str
    claimed: bool = False

    def toDict(self):
        return asdict(self)

    @classmethod
    def fromDict(cls, data):
        if not isinstance(data, dict):
            raise MalformedInput('Share record must be an object')

        normalized = {}
        for key, value in data.items():
            normalized[SHARE_COLUMN_ALIASES.get(key, key)] = value

        try:
            return cls(
                shareId=str(normalized['shareId']),
                recipientHandle=normalized['recipientHandle'],
                senderHandle=normalized.get('senderHandle') or '',
                encryptedFileKey=normalized['encryptedFileKey'],
                blobPath=normalized['blobPath'],
                senderProof=normalized.get('senderProof') or '',
                fileName=normalized.get('fileName') or '',
                mimeType=normalized.get('mimeType') or 'application/octet-stream',
                fileSize=int(normalized.get('fileSize') or 0),
                createdAt=normalized.get('createdAt') or '',
                claimed=bool(normalized.get('claimed', False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInput(f'Share record is incomplete: {e}') from e


class DirectoryService(Protocol):
    """DirectoryService protocol that all backends must follow"""

    def upsert(self, handle: str, publicKeyJwk: dict) -> None:
        ...

    def lookup(self, handle: str) -> Optional[dict]:
        ...

    def insertShare(self, record: dict) -> None:
        ...

    def listByRecipientHandle(self, handle: str, includeClaimed: bool = False) -> List[dict]:
        ...

    def markClaimed(self, shareId: str) -> None:
        ...


class LocalDirectoryService:
    """Directory kept as JSON documents in a key-value store (single machine)."""

    def __init__(self, keyValueStore):
        self.keyValueStore = keyValueStore

    def _readJSON(self, key):
        data = self.keyValueStore.get(key)
        if data is None:
            return None
        return json.loads(data)

    def _writeJSON(self, key, value):
        self.keyValueStore.set(key, json.dumps(value).encode('utf-8'))

    def upsert(self, handle, publicKeyJwk):
        self._writeJSON(f'{PUBLIC_KEYS_PREFIX}{handle}', publicKeyJwk)

    def lookup(self, handle):
        return self._readJSON(f'{PUBLIC_KEYS_PREFIX}{handle}')

    def insertShare(self, record):
        self._writeJSON(f"{SHARES_PREFIX}{record['shareId']}", record)

    def listByRecipientHandle(self, handle, includeClaimed=False):
        records = []
        for key in self.keyValueStore.keys(SHARES_PREFIX):
            record = self._readJSON(key)
            if record is None or record.get('recipientHandle') != handle:
                continue
            if record.get('claimed') and not includeClaimed:
                continue
            records.append(record)

        return sorted(records, key=lambda r: r.get('createdAt') or '')

    def markClaimed(self, shareId):
        key = f'{SHARES_PREFIX}{shareId}'
        record = self._readJSON(key)
        if record is None:
            raise MalformedInput(f'Unknown share {shareId}')

        record['claimed'] = True
        self._writeJSON(key, record)


class MemoryDirectoryService(LocalDirectoryService):

    def __init__(self):
        super().__init__(MemoryKeyValueStore())


class HTTPDirectoryService:

    def __init__(self, baseURL, tokenProvider=None, timeout=DEFAULT_TIMEOUT, client=None):
        self.client = client or APIClient(baseURL, tokenProvider=tokenProvider, timeout=timeout)

    def upsert(self, handle, publicKeyJwk):
        self.client.put(f'public-keys/{handle}', json={'publicKey': publicKeyJwk})

    def lookup(self, handle):
        response = self.client.get(f'public-keys/{handle}', allowStatus=(404,))
        if response.status_code == 404:
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedInput(f'Directory returned invalid JSON for {handle}: {e}') from e

        if not isinstance(data, dict):
            return None

        # Accept both {"publicKey": jwk} and a bare JWK
        return data.get('publicKey') if 'publicKey' in data else (data if data.get('kty') else None)

    def insertShare(self, record):
        self.client.post('shares', json=record)

    def listByRecipientHandle(self, handle, includeClaimed=False):
        params = {'recipientHandle': handle}
        if not includeClaimed:
            params['claimed'] = 'false'

        response = self.client.get('shares', params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedInput(f'Directory returned invalid JSON for shares: {e}') from e

        if isinstance(data, dict):
            data = data.get('shares', [])
        return data

    def markClaimed(self, shareId):
        self.client.patch(f'shares/{shareId}', json={'claimed': True})


class PublicKeyDirectory:
    """Client side of the public key directory, working in handles and JWKs."""

    def __init__(self, service, crypto=None):
        self.service = service
        self.crypto = crypto or CryptoInterface()

    def publish(self, handle: str, publicKeyJwk: dict):
        """Idempotent upsert of handle -> public JWK."""
        # Reject anything that would not import for a sender later on
        self.crypto.importRSAPublicJWK(publicKeyJwk)

        self.service.upsert(handle, publicKeyJwk)
        logger.info(f'[DIRECTORY] Published public key for {handle[:12]}')

    def lookup(self, handle: str):
        return self.service.lookup(handle)

    def requirePublicKey(self, handle: str):
        """
        Returns:
            RSAPublicKey for the handle

        Raises:
            RecipientNotRegistered: no public key published under this handle
        """
        publicKeyJwk = self.lookup(handle)
        if not publicKeyJwk:
            raise RecipientNotRegistered(f'Recipient {handle[:12]} has not registered a public key.', handle=handle)
        return self.crypto.importRSAPublicJWK(publicKeyJwk)

    def insertShare(self, record: ShareRecord):
        self.service.insertShare(record.toDict())
        logger.debug(f'[DIRECTORY] Inserted share {record.shareId}')

    def listSharesForRecipient(self, handle: str, includeClaimed=False):
        records = []
        for data in self.service.listByRecipientHandle(handle, includeClaimed=includeClaimed):
            try:
                records.append(ShareRecord.fromDict(data))
            except MalformedInput as e:
                logger.warning(f'[DIRECTORY] Skipping malformed share record: {e}')
        return records

    def markClaimed(self, shareId: str):
        self.service.markClaimed(shareId)
        logger.debug(f'[DIRECTORY] Marked share {shareId} as claimed')
