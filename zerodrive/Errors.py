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


class ZeroDriveError(Exception):
    """Base exception for all ZeroDrive errors"""
    pass


class InvalidPhrase(ZeroDriveError):
    """Recovery phrase failed the BIP-39 wordlist or checksum check"""
    pass


class MalformedInput(ZeroDriveError):
    """Blob, key or descriptor is structurally invalid (too short, wrong length, bad encoding)"""
    pass


class AuthenticationFailed(ZeroDriveError):
    """
    AES-GCM tag did not verify: wrong key or tampered data.

    payload keeps the undecryptable ciphertext when the caller may want to export it.
    """

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.payload = payload


class UnwrapFailed(ZeroDriveError):
    """RSA-OAEP unwrap of a file key failed: wrong private key or corrupt wrapped key"""
    pass


class NoPrimaryKey(ZeroDriveError):
    """Operation needs the primary key but none is loaded on this device"""
    pass


class MalformedBackup(ZeroDriveError):
    """Decrypted key backup is not a usable RSA private JWK"""
    pass


class RecipientNotRegistered(ZeroDriveError):
    """Recipient handle has no public key in the directory"""

    def __init__(self, message, handle=None):
        super().__init__(message)
        self.handle = handle


class SenderKeysMissing(ZeroDriveError):
    """Local sharing key pair for the sender does not exist"""
    pass


class RecipientKeysMissing(ZeroDriveError):
    """Local sharing key pair for the recipient does not exist"""
    pass


class FileNotFound(ZeroDriveError):
    """File id is not in the index, or its encrypted object is gone"""
    pass


class NetworkFailure(ZeroDriveError):
    """Remote collaborator (directory or object store) failed"""

    def __init__(self, message, statusCode=None, response=None):
        super().__init__(message)
        self.statusCode = statusCode
        self.response = response


class UnauthenticatedError(NetworkFailure):
    """Raised when credentials are missing or still rejected (401) after a token refresh"""
    pass
