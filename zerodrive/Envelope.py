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

from zerodrive.Kernel import getLogger
from zerodrive.Errors import AuthenticationFailed, MalformedInput
from zerodrive.crypto import AES_KEY_SIZE, GCM_NONCE_SIZE, CryptoInterface

logger = getLogger(__name__)

# IV plus at least one byte of ciphertext
MIN_BLOB_SIZE = GCM_NONCE_SIZE + 1


class EnvelopeCipher:
    """
    AES-256-GCM sealing with the wire framing IV(12) || ciphertext || tag(16).

    Used for file contents, the metadata index, share payloads and key backups.
    A key is either raw 32 bytes or anything exposing them as .raw (PrimaryKey).
    """

    def __init__(self, crypto=None):
        self.crypto = crypto or CryptoInterface()

    @staticmethod
    def _rawKey(key):
        raw = getattr(key, 'raw', key)
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != AES_KEY_SIZE:
            raise MalformedInput(f'AES-256-GCM key must be {AES_KEY_SIZE} bytes')
        return bytes(raw)

    def seal(self, plaintext: bytes, key) -> bytes:
        """Encrypt under a fresh random 96-bit IV, returns IV || ciphertext."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        nonce, ciphertext = self.crypto.encryptAESGCM(self._rawKey(key), plaintext)
        return nonce + ciphertext

    def open(self, blob: bytes, key) -> bytes:
        """
        Split the IV off and decrypt.

        Raises:
            MalformedInput: blob shorter than 13 bytes or key of the wrong size
            AuthenticationFailed: tag mismatch (wrong key or tampered data)
        """
        if blob is None or len(blob) < MIN_BLOB_SIZE:
            raise MalformedInput(
                f'Encrypted data is too short to contain IV and ciphertext ({0 if blob is None else len(blob)} bytes)'
            )

        rawKey = self._rawKey(key)
        blob = bytes(blob)

        try:
            return self.crypto.decryptAESGCM(rawKey, blob[:GCM_NONCE_SIZE], blob[GCM_NONCE_SIZE:])
        except AuthenticationFailed as e:
            raise AuthenticationFailed(str(e), payload=blob) from e
