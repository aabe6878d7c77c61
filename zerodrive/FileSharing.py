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
File sharing envelope.

Sender side:
    1. one-time 256-bit file key
    2. encryptedFile    = AES-256-GCM(fileKey, fileData)        (IV || ct)
    3. encryptedFileKey = RSA-OAEP-SHA256(recipientPublicKey, fileKey)
    4. senderProof      = "<millis>:<sha256(senderHandle-millis)>"

Recipient side reverses 3 with the local private key, then opens 2.
The server only ever holds ciphertext, the wrapped key and the two handles.
"""

import base64
import uuid

from dataclasses import dataclass

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Errors import (
    MalformedInput, NetworkFailure, RecipientKeysMissing, SenderKeysMissing, UnwrapFailed
)
from zerodrive.Directory import ShareRecord
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.Identity import generateSenderProof, hashIdentity
from zerodrive.ObjectStore import SHARED_FILES_PREFIX
from zerodrive.Utils import decodeBinaryField, isoFormat, utcNow
from zerodrive.crypto import AES_KEY_SIZE, CryptoInterface, RSA_OAEP_256

logger = getLogger(__name__)


@dataclass
class SharePackage:
    shareId: str
    encryptedFile: bytes
    recipientHandle: str
    senderHandle: str
    encryptedFileKey: str # base64
    senderProof: str
    fileName: str
    mimeType: str
    fileSize: int
    createdAt: str

    @property
    def blobPath(self):
        return f'{SHARED_FILES_PREFIX}/{self.shareId}'

    def toRecord(self, blobPath=None) -> ShareRecord:
        return ShareRecord(
            shareId=self.shareId,
            recipientHandle=self.recipientHandle,
            senderHandle=self.senderHandle,
            encryptedFileKey=self.encryptedFileKey,
            blobPath=blobPath or self.blobPath,
            senderProof=self.senderProof,
            fileName=self.fileName,
            mimeType=self.mimeType,
            fileSize=self.fileSize,
            createdAt=self.createdAt,
            claimed=False,
        )


class FileSharingProtocol:

    def __init__(self, sharingKeyManager, directory, objectStore=None, cipher=None, crypto=None):
        self.sharingKeyManager = sharingKeyManager
        self.directory = directory
        self.objectStore = objectStore
        self.crypto = crypto or CryptoInterface()
        self.cipher = cipher or EnvelopeCipher(self.crypto)

    def prepareShare(self, fileData: bytes, fileName: str, mimeType: str, recipientIdentity: str, senderIdentity: str):
        """
        Encrypt fileData for recipientIdentity.

        Raises:
            SenderKeysMissing: sender has no local sharing key pair
            RecipientNotRegistered: recipient has no public key (raised before any encryption)
        """
        if not self.sharingKeyManager.exists(senderIdentity):
            raise SenderKeysMissing(f'No sharing key pair for {senderIdentity}. Initialize sharing first.')

        recipientHandle = hashIdentity(recipientIdentity)
        recipientPublicKey = self.directory.requirePublicKey(recipientHandle)

        fileKey = self.crypto.randomBytes(AES_KEY_SIZE)
        encryptedFile = self.cipher.seal(fileData, fileKey)
        wrappedKey = self.crypto.encryptRSAOAEP(recipientPublicKey, fileKey, alg=RSA_OAEP_256)

        package = SharePackage(
            shareId=str(uuid.uuid4()),
            encryptedFile=encryptedFile,
            recipientHandle=recipientHandle,
            senderHandle=hashIdentity(senderIdentity),
            encryptedFileKey=base64.b64encode(wrappedKey).decode('ascii'),
            senderProof=generateSenderProof(senderIdentity),
            fileName=fileName,
            mimeType=mimeType or 'application/octet-stream',
            fileSize=len(fileData),
            createdAt=isoFormat(utcNow()),
        )

        logger.info(f'[SHARE] Prepared share {package.shareId} ({package.fileSize} bytes) for {recipientHandle[:12]}')
        ZDEvent.shareCreate.trigger(
            shareId=package.shareId, recipientHandle=recipientHandle, senderHandle=package.senderHandle
        )
        return package

    def _unwrapFileKey(self, record, pair):
        try:
            wrappedKey = decodeBinaryField(record.encryptedFileKey)
        except MalformedInput as e:
            raise UnwrapFailed(f'Wrapped file key of share {record.shareId} is not decodable: {e}') from e

        if not wrappedKey:
            raise UnwrapFailed(f'Wrapped file key of share {record.shareId} is empty')

        try:
            privateKey = pair.privateKey(self.crypto)
        except MalformedInput as e:
            raise UnwrapFailed(f'Local private key cannot be loaded: {e}') from e

        fileKey = self.crypto.decryptRSAOAEP(privateKey, wrappedKey, alg=pair.alg)
        if len(fileKey) != AES_KEY_SIZE:
            raise UnwrapFailed(f'Unwrapped file key has {len(fileKey)} bytes, expected {AES_KEY_SIZE}')
        return fileKey

    def claim(self, shareRecord, encryptedFileBytes: bytes, recipientIdentity: str):
        """
        Decrypt a received share.

        Returns:
            (plaintext bytes, original file name)

        Raises:
            RecipientKeysMissing: no local key pair for the recipient
            UnwrapFailed: the wrapped key does not open with the local private key
            AuthenticationFailed: file ciphertext is corrupt, payload carries it
        """
        if isinstance(shareRecord, dict):
            shareRecord = ShareRecord.fromDict(shareRecord)

        pair = self.sharingKeyManager.load(recipientIdentity)
        if pair is None:
            raise RecipientKeysMissing(f'No sharing key pair for {recipientIdentity}. Restore or initialize sharing first.')

        fileKey = self._unwrapFileKey(shareRecord, pair)
        plaintext = self.cipher.open(encryptedFileBytes, fileKey)

        logger.info(f'[SHARE] Decrypted share {shareRecord.shareId} ({len(plaintext)} bytes)')
        ZDEvent.shareClaim.trigger(shareId=shareRecord.shareId, senderHandle=shareRecord.senderHandle)
        return plaintext, shareRecord.fileName

    def _requireObjectStore(self):
        if self.objectStore is None:
            raise RuntimeError('FileSharingProtocol needs an object store for this operation')
        return self.objectStore

    def storeShare(self, package: SharePackage) -> ShareRecord:
        """Upload the encrypted bytes to shared-files/<shareId> and insert the share record."""
        blobPath = self._requireObjectStore().put(package.blobPath, package.encryptedFile)

        record = package.toRecord(blobPath)
        self.directory.insertShare(record)

        logger.info(f'[SHARE] Stored share {record.shareId}')
        return record

    def shareFile(self, fileData, fileName, mimeType, recipientIdentity, senderIdentity) -> ShareRecord:
        package = self.prepareShare(fileData, fileName, mimeType, recipientIdentity, senderIdentity)
        return self.storeShare(package)

    def listIncomingShares(self, recipientIdentity: str):
        return self.directory.listSharesForRecipient(hashIdentity(recipientIdentity), includeClaimed=False)

    def claimShare(self, shareRecord, recipientIdentity: str):
        """Download, decrypt, and only then mark the share as claimed."""
        if isinstance(shareRecord, dict):
            shareRecord = ShareRecord.fromDict(shareRecord)

        encryptedFileBytes = self._requireObjectStore().get(shareRecord.blobPath)
        if encryptedFileBytes is None:
            raise NetworkFailure(f'Shared file {shareRecord.blobPath} not found', statusCode=404)

        plaintext, fileName = self.claim(shareRecord, encryptedFileBytes, recipientIdentity)
        self.directory.markClaimed(shareRecord.shareId)
        return plaintext, fileName
