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
Local key-value persistence for key material and caches.

- MemoryKeyValueStore: process-local dict, used by tests and throwaway sessions
- FileKeyValueStore: one owner-only file per key under a storage directory

Keys are plain strings ("aes-gcm-key", "sharing-keys/alice@example.com", ...);
values are bytes.
"""

import os
import threading

from typing import Iterable, Optional, Protocol
from urllib.parse import quote, unquote

from zerodrive.Kernel import getLogger

logger = getLogger(__name__)


class KeyValueStore(Protocol):
    """KeyValueStore protocol that all implementations must follow"""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = '') -> Iterable[str]:
        ...


class MemoryKeyValueStore:

    def __init__(self):
        self._data = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def set(self, key, value):
        if isinstance(value, str):
            value = value.encode('utf-8')

        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix=''):
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class FileKeyValueStore:
    """
    File backed store. Each key maps to one file whose name is the
    percent-encoded key, so "/" inside keys never creates directories.
    Files are written owner read/write only (0600).
    """

    FILE_MODE = 0o600

    def __init__(self, directory: str):
        self.directory = os.path.abspath(directory)
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    def _pathFor(self, key):
        return os.path.join(self.directory, quote(key, safe=''))

    def get(self, key):
        path = self._pathFor(key)
        if not os.path.exists(path):
            return None

        with open(path, 'rb') as f:
            return f.read()

    def set(self, key, value):
        if isinstance(value, str):
            value = value.encode('utf-8')

        path = self._pathFor(key)
        tmpPath = f'{path}.tmp'

        fd = os.open(tmpPath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.FILE_MODE)
        with os.fdopen(fd, 'wb') as f:
            f.write(value)

        os.chmod(tmpPath, self.FILE_MODE)
        os.replace(tmpPath, path)
        logger.debug(f'[STORE] Wrote {key} ({len(value)} bytes)')

    def delete(self, key):
        path = self._pathFor(key)
        if os.path.exists(path):
            os.remove(path)
            logger.debug(f'[STORE] Deleted {key}')

    def keys(self, prefix=''):
        names = []
        for fileName in os.listdir(self.directory):
            if fileName.endswith('.tmp'):
                continue

            key = unquote(fileName)
            if key.startswith(prefix):
                names.append(key)
        return sorted(names)
