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

import hashlib
import os

from cryptography.hazmat.primitives.asymmetric import rsa, padding as asymPadding
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from zerodrive.Kernel import getLogger
from zerodrive.Errors import AuthenticationFailed, MalformedInput, UnwrapFailed
from zerodrive.Utils import b64urlToInt, intToB64url
from zerodrive.crypto import (
    CryptoBackend, GCM_NONCE_SIZE, RSA_KEY_SIZE, RSA_OAEP, RSA_OAEP_256, RSA_PUBLIC_EXPONENT
)

logger = getLogger(__name__)


class CryptographyBackend(CryptoBackend):
    """Cryptography library backend implementation"""

    def __init__(self):
        self.hashes = hashes
        self.AESGCM = AESGCM

    def getName(self):
        return "cryptography"

    def randomBytes(self, length):
        return os.urandom(length)

    def sha256(self, data):
        if isinstance(data, str):
            data = data.encode('utf-8')
        return hashlib.sha256(data).digest()

    def encryptAESGCM(self, keyOrCipher, plaintext, nonce=None, aad=None):
        """Encrypt with AES-GCM, returns (nonce, ciphertext+tag) tuple"""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        # Accept either a key (bytes) or pre-created cipher object (AESGCM instance)
        if isinstance(keyOrCipher, self.AESGCM):
            aesgcm = keyOrCipher
        else:
            aesgcm = self.createAESGCM(keyOrCipher)

        if nonce is None:
            nonce = os.urandom(GCM_NONCE_SIZE) # 96-bit nonce for GCM

        ciphertext = aesgcm.encrypt(nonce, plaintext, aad)
        return (nonce, ciphertext)

    def decryptAESGCM(self, keyOrCipher, nonce, ciphertextWithTag, aad=None):
        """Decrypt with AES-GCM, returns plaintext"""
        if isinstance(keyOrCipher, self.AESGCM):
            aesgcm = keyOrCipher
        else:
            aesgcm = self.createAESGCM(keyOrCipher)

        try:
            return aesgcm.decrypt(nonce, ciphertextWithTag, aad)
        except InvalidTag as e:
            raise AuthenticationFailed('AES-GCM authentication tag did not verify') from e

    def createAESGCM(self, key):
        """Create a reusable AES-GCM cipher object"""
        try:
            return self.AESGCM(key)
        except (ValueError, TypeError) as e:
            raise MalformedInput(f'Invalid AES-GCM key: {e}') from e

    def generateRSAKeyPair(self, keySize=RSA_KEY_SIZE):
        """Generate RSA key pair"""
        privateKey = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=keySize)
        publicKey = privateKey.public_key()
        return (privateKey, publicKey)

    def _oaepPadding(self, alg):
        if alg == RSA_OAEP_256:
            algorithm = self.hashes.SHA256()
        elif alg in (RSA_OAEP, 'RSA-OAEP-1'):
            algorithm = self.hashes.SHA1()
        else:
            logger.warning(f"[CRYPTO] Unknown RSA alg '{alg}', falling back to OAEP with SHA-256.")
            algorithm = self.hashes.SHA256()

        return asymPadding.OAEP(mgf=asymPadding.MGF1(algorithm=algorithm), algorithm=algorithm, label=None)

    def encryptRSAOAEP(self, publicKey, plaintext, alg=RSA_OAEP_256):
        """Encrypt data with RSA-OAEP"""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        return publicKey.encrypt(plaintext, self._oaepPadding(alg))

    def decryptRSAOAEP(self, privateKey, ciphertext, alg=RSA_OAEP_256):
        """Decrypt data with RSA-OAEP"""
        try:
            return privateKey.decrypt(ciphertext, self._oaepPadding(alg))
        except ValueError as e:
            raise UnwrapFailed('RSA-OAEP decryption failed') from e

    def exportRSAPrivateJWK(self, privateKey):
        numbers = privateKey.private_numbers()
        publicNumbers = numbers.public_numbers

        return {
            'kty': 'RSA',
            'n': intToB64url(publicNumbers.n),
            'e': intToB64url(publicNumbers.e),
            'd': intToB64url(numbers.d),
            'p': intToB64url(numbers.p),
            'q': intToB64url(numbers.q),
            'dp': intToB64url(numbers.dmp1),
            'dq': intToB64url(numbers.dmq1),
            'qi': intToB64url(numbers.iqmp),
            'alg': RSA_OAEP_256,
            'ext': True,
            'key_ops': ['decrypt'],
        }

    def exportRSAPublicJWK(self, publicKey):
        numbers = publicKey.public_numbers()

        return {
            'kty': 'RSA',
            'n': intToB64url(numbers.n),
            'e': intToB64url(numbers.e),
            'alg': RSA_OAEP_256,
            'ext': True,
            'key_ops': ['encrypt'],
        }

    def importRSAPrivateJWK(self, jwk):
        """
        Load an RSA private key from a JWK dict.

        Only n, e and d are required; p, q and the CRT exponents are recomputed
        when a backup omitted them.
        """
        try:
            n = b64urlToInt(jwk['n'])
            e = b64urlToInt(jwk['e'])
            d = b64urlToInt(jwk['d'])

            if jwk.get('p') and jwk.get('q'):
                p = b64urlToInt(jwk['p'])
                q = b64urlToInt(jwk['q'])
            else:
                logger.debug('[CRYPTO] Private JWK lacks prime factors, recovering them from n, e, d.')
                p, q = rsa.rsa_recover_prime_factors(n, e, d)

            dp = b64urlToInt(jwk['dp']) if jwk.get('dp') else rsa.rsa_crt_dmp1(d, p)
            dq = b64urlToInt(jwk['dq']) if jwk.get('dq') else rsa.rsa_crt_dmq1(d, q)
            qi = b64urlToInt(jwk['qi']) if jwk.get('qi') else rsa.rsa_crt_iqmp(p, q)

            publicNumbers = rsa.RSAPublicNumbers(e, n)
            return rsa.RSAPrivateNumbers(p, q, d, dp, dq, qi, publicNumbers).private_key()
        except (KeyError, TypeError, ValueError) as err:
            raise MalformedInput(f'Invalid RSA private JWK: {err}') from err

    def importRSAPublicJWK(self, jwk):
        try:
            if jwk.get('kty') != 'RSA':
                raise ValueError(f"unexpected kty {jwk.get('kty')!r}")

            n = b64urlToInt(jwk['n'])
            e = b64urlToInt(jwk['e'])
            return rsa.RSAPublicNumbers(e, n).public_key()
        except (AttributeError, KeyError, TypeError, ValueError) as err:
            raise MalformedInput(f'Invalid RSA public JWK: {err}') from err
