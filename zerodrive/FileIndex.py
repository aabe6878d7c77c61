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
Metadata index of a user's files.

The index is the only enumeration of what a user stored: a single remote object
(db-list.json) holding {"version": 1, "files": [...]}, sealed under the primary key
unless index encryption is turned off. A local copy is cached in the key-value
store. Synchronisation is last writer wins: whatever is remote replaces the cache.
"""

import json

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Errors import MalformedInput, NoPrimaryKey
from zerodrive.Envelope import EnvelopeCipher
from zerodrive.ObjectStore import INDEX_PATH
from zerodrive.Utils import isoFormat, parseISODate, utcNow

logger = getLogger(__name__)

INDEX_VERSION = 1
LOCAL_INDEX_KEY = 'file-index'

REQUIRED_ENTRY_FIELDS = ('id', 'name', 'mimeType')


@dataclass
class FileIndexEntry:
    id: str
    name: str
    mimeType: str
    ownerIdentity: str = ''
    uploadedDate: datetime = field(default_factory=utcNow)

    def toDict(self):
        return {
            'id': self.id,
            'name': self.name,
            'mimeType': self.mimeType,
            'ownerIdentity': self.ownerIdentity,
            'uploadedDate': isoFormat(self.uploadedDate),
        }

    @classmethod
    def fromDict(cls, data):
        if not isinstance(data, dict):
            raise MalformedInput('Index entry must be an object')

        missing = [name for name in REQUIRED_ENTRY_FIELDS if not data.get(name)]
        if missing:
            raise MalformedInput(f"Index entry lacks {', '.join(missing)}")

        uploadedDate = data.get('uploadedDate')
        try:
            uploadedDate = parseISODate(uploadedDate) if uploadedDate else utcNow()
        except (TypeError, ValueError) as e:
            raise MalformedInput(f'Index entry has an invalid uploadedDate: {e}') from e

        return cls(
            id=str(data['id']),
            name=data['name'],
            mimeType=data['mimeType'],
            ownerIdentity=data.get('ownerIdentity') or data.get('userEmail') or '',
            uploadedDate=uploadedDate,
        )


class FileIndex:
    """Ordered collection of FileIndexEntry keyed by id."""

    def __init__(self, entries=None):
        self._entries = OrderedDict()
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: FileIndexEntry):
        self._entries[entry.id] = entry

    def remove(self, fileId) -> bool:
        return self._entries.pop(fileId, None) is not None

    def get(self, fileId):
        return self._entries.get(fileId)

    def clear(self):
        self._entries.clear()

    def replace(self, other):
        """Take over other's entries wholesale."""
        self._entries = OrderedDict((entry.id, entry) for entry in other)

    def entries(self):
        return list(self._entries.values())

    def forOwner(self, identity):
        return [entry for entry in self._entries.values() if entry.ownerIdentity == identity]

    def findByName(self, name):
        return [entry for entry in self._entries.values() if entry.name == name]

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries.values()))

    def __contains__(self, fileId):
        return fileId in self._entries

    def toDict(self):
        return {'version': INDEX_VERSION, 'files': [entry.toDict() for entry in self._entries.values()]}

    def toJSON(self) -> bytes:
        return json.dumps(self.toDict()).encode('utf-8')

    @classmethod
    def fromDict(cls, data):
        """Build an index, skipping (and logging) entries that are invalid."""
        if not isinstance(data, dict):
            raise MalformedInput('File index must be an object')

        files = data.get('files') or []
        if not isinstance(files, list):
            raise MalformedInput('File index "files" must be a list')

        index = cls()
        for item in files:
            try:
                index.add(FileIndexEntry.fromDict(item))
            except MalformedInput as e:
                logger.warning(f'[INDEX] Skipping invalid file entry: {e}')
        return index

    @classmethod
    def fromJSON(cls, data: bytes):
        try:
            return cls.fromDict(json.loads(data))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedInput(f'File index is not valid JSON: {e}') from e


class ConflictStrategy:
    """Decides the synchronized index from the local and the remote one."""

    def resolve(self, localIndex: FileIndex, remoteIndex: FileIndex) -> FileIndex:
        raise NotImplementedError()


class RemoteWinsStrategy(ConflictStrategy):

    def resolve(self, localIndex, remoteIndex):
        return remoteIndex


class IndexSynchronizer:

    def __init__(
        self, keyValueStore, objectStore=None, primaryKeyManager=None, encryptIndex=True, strategy=None, cipher=None
    ):
        self.keyValueStore = keyValueStore
        self.objectStore = objectStore
        self.primaryKeyManager = primaryKeyManager
        self.encryptIndex = encryptIndex
        self.strategy = strategy or RemoteWinsStrategy()
        self.cipher = cipher or EnvelopeCipher()

    def _primaryKey(self):
        primaryKey = self.primaryKeyManager.load() if self.primaryKeyManager else None
        if primaryKey is None:
            raise NoPrimaryKey('The file index is encrypted and no primary key is loaded.')
        return primaryKey

    def serialize(self, index: FileIndex) -> bytes:
        data = index.toJSON()
        if self.encryptIndex:
            return self.cipher.seal(data, self._primaryKey())
        return data

    def deserialize(self, data: bytes) -> FileIndex:
        # A plain JSON index (encryption off, or written before it was turned on) is read as is.
        if data[:1] == b'{':
            try:
                return FileIndex.fromJSON(data)
            except MalformedInput:
                if not self.encryptIndex:
                    raise

        if not self.encryptIndex:
            raise MalformedInput('Remote file index is not JSON and index encryption is disabled')

        return FileIndex.fromJSON(self.cipher.open(data, self._primaryKey()))

    def loadLocal(self) -> FileIndex:
        data = self.keyValueStore.get(LOCAL_INDEX_KEY)
        if data is None:
            return FileIndex()
        return FileIndex.fromJSON(data)

    def saveLocal(self, index: FileIndex):
        self.keyValueStore.set(LOCAL_INDEX_KEY, index.toJSON())

    def sync(self, localIndex: FileIndex, remoteIndexBytes) -> FileIndex:
        """
        Replace localIndex with the remote one.

        remoteIndexBytes None means no remote index exists yet: the local index is
        left untouched. Invalid remote entries are skipped.
        """
        if remoteIndexBytes is None:
            logger.info('[INDEX] No remote index yet, keeping local index.')
            return localIndex

        remoteIndex = self.deserialize(remoteIndexBytes)
        resolved = self.strategy.resolve(localIndex, remoteIndex)

        localIndex.replace(resolved)
        self.saveLocal(localIndex)

        logger.info(f'[INDEX] Synchronized {len(localIndex)} entries from remote index.')
        ZDEvent.indexSync.trigger(count=len(localIndex))
        return localIndex

    def _requireObjectStore(self):
        if self.objectStore is None:
            raise RuntimeError('IndexSynchronizer needs an object store for remote operations')
        return self.objectStore

    def publishIndex(self, index: FileIndex):
        """Overwrite the remote index (last writer wins) and refresh the local cache."""
        data = self.serialize(index)
        contentType = 'application/octet-stream' if self.encryptIndex else 'application/json'
        self._requireObjectStore().put(INDEX_PATH, data, contentType=contentType)
        self.saveLocal(index)

        logger.info(f'[INDEX] Published index with {len(index)} entries.')
        ZDEvent.indexPublish.trigger(count=len(index))

    def fetchAndSync(self) -> FileIndex:
        return self.sync(self.loadLocal(), self._requireObjectStore().get(INDEX_PATH))
