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

from abc import ABC, abstractmethod

from zerodrive.Kernel import classForName, getLogger

logger = getLogger(__name__)

AES_KEY_SIZE = 32
GCM_NONCE_SIZE = 12
GCM_TAG_SIZE = 16

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# JWK "alg" values understood by the RSA unwrap path
RSA_OAEP_256 = 'RSA-OAEP-256'
RSA_OAEP = 'RSA-OAEP'


class CryptoBackend(ABC):
    """Abstract base class for cryptographic backends"""

    @abstractmethod
    def getName(self):
        """Get backend name"""
        pass

    @abstractmethod
    def randomBytes(self, length):
        """Return length bytes from the OS CSPRNG"""
        pass

    @abstractmethod
    def sha256(self, data):
        """SHA-256 digest of bytes, returns bytes"""
        pass

    @abstractmethod
    def encryptAESGCM(self, keyOrCipher, plaintext, nonce=None, aad=None):
        """Encrypt with AES-GCM, returns (nonce, ciphertext+tag) tuple"""
        pass

    @abstractmethod
    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        """Decrypt with AES-GCM, returns plaintext. Raises AuthenticationFailed on a bad tag."""
        pass

    @abstractmethod
    def createAESGCM(self, key):
        """Create a reusable AES-GCM cipher object"""
        pass

    @abstractmethod
    def generateRSAKeyPair(self, keySize=RSA_KEY_SIZE):
        """Generate RSA key pair, returns (privateKey, publicKey)"""
        pass

    @abstractmethod
    def encryptRSAOAEP(self, publicKey, plaintext, alg=RSA_OAEP_256):
        """Encrypt data with RSA-OAEP, returns ciphertext bytes"""
        pass

    @abstractmethod
    def decryptRSAOAEP(self, privateKey, ciphertext, alg=RSA_OAEP_256):
        """Decrypt data with RSA-OAEP, returns plaintext bytes. Raises UnwrapFailed."""
        pass

    @abstractmethod
    def exportRSAPrivateJWK(self, privateKey):
        """Export RSA private key as a JWK dict"""
        pass

    @abstractmethod
    def exportRSAPublicJWK(self, publicKey):
        """Export RSA public key as a JWK dict"""
        pass

    @abstractmethod
    def importRSAPrivateJWK(self, jwk):
        """Load RSA private key from a JWK dict, recomputing absent CRT parameters"""
        pass

    @abstractmethod
    def importRSAPublicJWK(self, jwk):
        """Load RSA public key from a JWK dict"""
        pass


class CryptoInterface:
    """Main crypto interface with automatic backend selection"""

    BACKENDS = ['cryptography']

    def __init__(self, preferredBackend=None):
        self.backend = self._initializeBackend(preferredBackend)

    def _initializeBackend(self, preferredBackend=None):
        """Initialize crypto backend, trying the preferred one first"""
        backendList = list(self.BACKENDS)

        if preferredBackend in backendList:
            backendList.remove(preferredBackend)
            backendList.insert(0, preferredBackend)
        elif preferredBackend is not None:
            logger.warning(f"[CRYPTO] Requested backend '{preferredBackend}' is unknown, using auto selection.")

        for backendName in backendList:
            try:
                backendModule = f'{backendName[0].upper()}{backendName[1:]}'
                backendClass = classForName(f'zerodrive.crypto.{backendModule}.{backendModule}Backend')
                return backendClass()
            except ImportError as e:
                logger.debug(f"Failed to load crypto backend {backendName}: {e}")
                continue

        raise RuntimeError("No crypto backend available - please install 'cryptography'")

    def getBackendName(self):
        """Get current backend name"""
        return self.backend.getName()

    def __getattr__(self, name):
        # Delegate any undefined method to backend
        return getattr(self.backend, name)
