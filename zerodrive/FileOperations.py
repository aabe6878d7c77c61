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

import uuid

from dataclasses import dataclass, field
from typing import List, Tuple

from zerodrive.Kernel import getLogger
from zerodrive.Errors import FileNotFound, NetworkFailure, NoPrimaryKey
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.FileIndex import FileIndexEntry
from zerodrive.ObjectStore import FILES_PREFIX

logger = getLogger(__name__)


@dataclass
class BulkDeleteResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list) # (file id, reason)

    @property
    def ok(self):
        return self.failed == 0


class FileOperations:
    """
    Upload / download / delete of the user's own files.

    Every mutation updates the local index and republishes it, so the remote
    db-list.json stays the authoritative enumeration of stored files.
    """

    def __init__(self, primaryKeyManager, indexSynchronizer, objectStore, cipher=None):
        self.primaryKeyManager = primaryKeyManager
        self.indexSynchronizer = indexSynchronizer
        self.objectStore = objectStore
        self.cipher = cipher or EnvelopeCipher()

    @staticmethod
    def objectPath(fileId):
        return f'{FILES_PREFIX}/{fileId}'

    def _requirePrimaryKey(self):
        primaryKey = self.primaryKeyManager.load()
        if primaryKey is None:
            raise NoPrimaryKey('No encryption key found. Generate or recover your primary key first.')
        return primaryKey

    def upload(self, fileData: bytes, fileName: str, mimeType: str, ownerIdentity: str) -> FileIndexEntry:
        primaryKey = self._requirePrimaryKey()

        fileId = str(uuid.uuid4())
        encrypted = self.cipher.seal(fileData, primaryKey)
        self.objectStore.put(self.objectPath(fileId), encrypted)

        entry = FileIndexEntry(
            id=fileId, name=fileName, mimeType=mimeType or 'application/octet-stream', ownerIdentity=ownerIdentity
        )

        index = self.indexSynchronizer.loadLocal()
        index.add(entry)
        self.indexSynchronizer.publishIndex(index)

        logger.info(f'[STORE] Uploaded {fileName} as {fileId} ({len(fileData)} bytes)')
        return entry

    def listFiles(self, ownerIdentity=None):
        index = self.indexSynchronizer.loadLocal()
        if ownerIdentity is None:
            return index.entries()
        return index.forOwner(ownerIdentity)

    def download(self, fileId: str):
        """
        Returns:
            (plaintext, FileIndexEntry)

        Raises:
            FileNotFound: id not indexed or object missing
            AuthenticationFailed: wrong key or corrupt object, payload carries the ciphertext
        """
        entry = self.indexSynchronizer.loadLocal().get(fileId)
        if entry is None:
            raise FileNotFound(f'File {fileId} is not in the index')

        primaryKey = self._requirePrimaryKey()

        encrypted = self.objectStore.get(self.objectPath(fileId))
        if encrypted is None:
            raise FileNotFound(f'Encrypted object for {entry.name} ({fileId}) is missing')

        return self.cipher.open(encrypted, primaryKey), entry

    def _deleteRemote(self, fileId):
        self.objectStore.delete(self.objectPath(fileId))

    def delete(self, fileId: str) -> bool:
        """
        Delete one file. A failing remote delete is logged and the local index is
        cleaned up anyway. Returns whether the remote object was deleted.
        """
        remoteDeleted = True
        try:
            self._deleteRemote(fileId)
        except NetworkFailure as e:
            remoteDeleted = False
            logger.warning(f'[STORE] Could not delete {fileId} remotely, proceeding locally: {e}')

        index = self.indexSynchronizer.loadLocal()
        if not index.remove(fileId):
            logger.debug(f'[INDEX] {fileId} was not in the local index')

        self.indexSynchronizer.publishIndex(index)
        return remoteDeleted

    def deleteAll(self, ownerIdentity: str) -> BulkDeleteResult:
        """Delete every file of ownerIdentity, best effort on the remote side."""
        index = self.indexSynchronizer.loadLocal()
        entries = index.forOwner(ownerIdentity)

        result = BulkDeleteResult(total=len(entries))
        if not entries:
            return result

        for entry in entries:
            try:
                self._deleteRemote(entry.id)
                result.succeeded += 1
            except NetworkFailure as e:
                result.failed += 1
                result.failures.append((entry.id, str(e)))
                logger.warning(f'[STORE] Failed to delete {entry.id} remotely: {e}')

            index.remove(entry.id)

        self.indexSynchronizer.publishIndex(index)

        logger.info(f'[STORE] Deleted {result.succeeded}/{result.total} files ({result.failed} failed remotely)')
        return result
