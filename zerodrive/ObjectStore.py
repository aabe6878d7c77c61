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
Remote object store collaborators. They only ever receive ciphertext.

- MemoryObjectStore: dict backed, for tests
- LocalObjectStore: a plain directory (e.g. a folder synced by a cloud drive client)
- HTTPObjectStore: PUT / GET / DELETE of raw bytes under <baseURL>/objects/<path>

get() returns None for a missing object and delete() of a missing object is not an error.
"""

import os
import threading

from contextlib import contextmanager

from typing import Optional, Protocol
from urllib.parse import quote

from zerodrive.Kernel import getLogger
from zerodrive.Errors import MalformedInput, NetworkFailure
from zerodrive.APIClient import APIClient, DEFAULT_TIMEOUT

logger = getLogger(__name__)

# Remote layout
SHARED_FILES_PREFIX = 'shared-files'
KEY_BACKUPS_PREFIX = 'key-backups'
FILES_PREFIX = 'files'
INDEX_PATH = 'db-list.json'

OCTET_STREAM = 'application/octet-stream'


class ObjectStore(Protocol):
    """ObjectStore protocol that all implementations must follow"""

    def put(self, path: str, data: bytes, contentType: str = OCTET_STREAM) -> str:
        ... # Returns a reference (usually the path itself)

    def get(self, path: str) -> Optional[bytes]:
        ...

    def delete(self, path: str) -> None:
        ...


def normalizeObjectPath(path):
    parts = [part for part in path.replace('\\', '/').split('/') if part]
    if not parts or any(part in ('.', '..') for part in parts):
        raise MalformedInput(f'Invalid object path: {path!r}')
    return '/'.join(parts)


class MemoryObjectStore:

    def __init__(self):
        self.objects = {}
        self._lock = threading.Lock()

    def put(self, path, data, contentType=OCTET_STREAM):
        path = normalizeObjectPath(path)
        with self._lock:
            self.objects[path] = bytes(data)
        return path

    def get(self, path):
        with self._lock:
            return self.objects.get(normalizeObjectPath(path))

    def delete(self, path):
        with self._lock:
            self.objects.pop(normalizeObjectPath(path), None)


class LocalObjectStore:
    """
    Objects as files under root. OS errors surface as NetworkFailure, the same
    failure callers already handle for a remote store.
    """

    def __init__(self, root):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _fullPath(self, path):
        return os.path.join(self.root, *normalizeObjectPath(path).split('/'))

    @contextmanager
    def _storeErrors(self, action, path):
        try:
            yield
        except OSError as e:
            raise NetworkFailure(f'Failed to {action} {path} in {self.root}: {e}') from e

    def put(self, path, data, contentType=OCTET_STREAM):
        fullPath = self._fullPath(path)

        with self._storeErrors('put', path):
            os.makedirs(os.path.dirname(fullPath), exist_ok=True)

            tmpPath = f'{fullPath}.part'
            with open(tmpPath, 'wb') as f:
                f.write(data)
            os.replace(tmpPath, fullPath)

        logger.debug(f'[STORE] Put {path} ({len(data)} bytes) in {self.root}')
        return normalizeObjectPath(path)

    def get(self, path):
        fullPath = self._fullPath(path)
        if not os.path.isfile(fullPath):
            return None

        with self._storeErrors('read', path):
            with open(fullPath, 'rb') as f:
                return f.read()

    def delete(self, path):
        fullPath = self._fullPath(path)
        with self._storeErrors('delete', path):
            if os.path.isfile(fullPath):
                os.remove(fullPath)


class HTTPObjectStore:

    def __init__(self, baseURL, tokenProvider=None, timeout=DEFAULT_TIMEOUT, client=None):
        self.client = client or APIClient(baseURL, tokenProvider=tokenProvider, timeout=timeout)

    def _objectPath(self, path):
        return f"objects/{quote(normalizeObjectPath(path), safe='/')}"

    def put(self, path, data, contentType=OCTET_STREAM):
        self.client.put(self._objectPath(path), data=data, headers={'Content-Type': contentType})
        logger.debug(f'[STORE] Uploaded {path} ({len(data)} bytes)')
        return normalizeObjectPath(path)

    def get(self, path):
        response = self.client.get(self._objectPath(path), allowStatus=(404,))
        if response.status_code == 404:
            return None
        return response.content

    def delete(self, path):
        self.client.delete(self._objectPath(path), allowStatus=(404,))
