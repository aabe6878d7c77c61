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

import os

from zerodrive.Kernel import PUBLIC_VERSION, Singleton, StorageLocator, SecretGetter, getLogger
from zerodrive.Utils import getEnv

# Public key directory and share table REST service. Empty means a local directory under the storage dir.
DIRECTORY_URL = getEnv('ZD_DIRECTORY_URL', '')

# Remote object store. URL wins over directory; both empty means a local folder under the storage dir.
OBJECT_STORE_URL = getEnv('ZD_OBJECT_STORE_URL', '')
OBJECT_STORE_DIR = getEnv('ZD_OBJECT_STORE_DIR', '')

# Seal db-list.json under the primary key (plain JSON when False)
ENCRYPT_INDEX = getEnv('ZD_ENCRYPT_INDEX', True)

# Seconds for every HTTP request made by remote collaborators
HTTP_TIMEOUT = getEnv('ZD_HTTP_TIMEOUT', 30)

ACCESS_TOKEN_SECRET = 'ZD_ACCESS_TOKEN'

KEY_STORE_DIR_NAME = 'keys'
OBJECT_STORE_DIR_NAME = 'objects'
DIRECTORY_DIR_NAME = 'directory'

SUPPORT_URL = 'https://github.com/zerodrive/zerodrive/issues'

logger = getLogger(__name__)


class SecretTokenProvider:
    """
    Supplies the bearer token for HTTP collaborators from SecretGetter.

    A refresh drops the cached value and reads the environment / .secret file again,
    so a token rotated on disk is picked up by the retry after a 401.
    """

    def __init__(self, secretName=ACCESS_TOKEN_SECRET):
        self.secretName = secretName

    def __call__(self, refresh=False):
        secretGetter = SecretGetter.getInstance()
        if refresh:
            secretGetter.reload()
        return secretGetter.get(self.secretName)


# Singleton
class SettingsGetter(Singleton):

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            raise RuntimeError('Get SettingsGetter before initialized it.')
        return cls._instances[cls]

    def initialize(
        self,
        storageDir=None,
        directoryURL=DIRECTORY_URL,
        objectStoreURL=OBJECT_STORE_URL,
        objectStoreDir=OBJECT_STORE_DIR,
        encryptIndex=ENCRYPT_INDEX,
        httpTimeout=HTTP_TIMEOUT,
        tokenProvider=None,
    ):
        """Initialize the SettingsGetter with storage location and remote endpoints."""
        self._storageDir = storageDir
        self._directoryURL = directoryURL
        self._objectStoreURL = objectStoreURL
        self._objectStoreDir = objectStoreDir
        self._encryptIndex = encryptIndex
        self._httpTimeout = httpTimeout
        self._tokenProvider = tokenProvider or SecretTokenProvider()

        # Cache for collaborators, one per process
        self._keyValueStore = None
        self._objectStore = None
        self._directoryService = None

    @property
    def version(self):
        return PUBLIC_VERSION

    @property
    def storageDir(self):
        if self._storageDir is None:
            self._storageDir = StorageLocator.getInstance().ensureStorageDir()
        return self._storageDir

    @property
    def encryptIndex(self) -> bool:
        return self._encryptIndex

    @property
    def httpTimeout(self):
        return self._httpTimeout

    @property
    def tokenProvider(self):
        return self._tokenProvider

    def hasRemoteDirectory(self):
        return bool(self._directoryURL)

    def hasRemoteObjectStore(self):
        return bool(self._objectStoreURL or self._objectStoreDir)

    def getKeyValueStore(self):
        """Get the local key-value store holding key material and caches"""
        if self._keyValueStore is None:
            from zerodrive.Storage import FileKeyValueStore

            self._keyValueStore = FileKeyValueStore(os.path.join(self.storageDir, KEY_STORE_DIR_NAME))
        return self._keyValueStore

    def getObjectStore(self):
        """Get object store instance - always returns a result (remote or local folder)"""
        if self._objectStore is not None:
            return self._objectStore

        from zerodrive.ObjectStore import HTTPObjectStore, LocalObjectStore

        if self._objectStoreURL:
            self._objectStore = HTTPObjectStore(
                self._objectStoreURL, tokenProvider=self._tokenProvider, timeout=self._httpTimeout
            )
        elif self._objectStoreDir:
            self._objectStore = LocalObjectStore(self._objectStoreDir)
        else:
            # Offline: objects live under the storage directory
            logger.debug('[STORE] No remote object store configured, using local folder.')
            self._objectStore = LocalObjectStore(os.path.join(self.storageDir, OBJECT_STORE_DIR_NAME))

        return self._objectStore

    def getDirectoryService(self):
        """Get directory service instance - always returns a result (remote or local)"""
        if self._directoryService is not None:
            return self._directoryService

        from zerodrive.Directory import HTTPDirectoryService, LocalDirectoryService
        from zerodrive.Storage import FileKeyValueStore

        if self._directoryURL:
            self._directoryService = HTTPDirectoryService(
                self._directoryURL, tokenProvider=self._tokenProvider, timeout=self._httpTimeout
            )
        else:
            logger.debug('[DIRECTORY] No directory service configured, using local directory.')
            self._directoryService = LocalDirectoryService(
                FileKeyValueStore(os.path.join(self.storageDir, DIRECTORY_DIR_NAME))
            )

        return self._directoryService
