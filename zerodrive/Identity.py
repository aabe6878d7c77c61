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
import hmac
import time

from zerodrive.Kernel import getLogger
from zerodrive.Errors import MalformedInput

logger = getLogger(__name__)


def normalizeIdentity(identity: str) -> str:
    return identity.strip().lower()


def hashIdentity(identity: str) -> str:
    """
    One-way handle for an identity (e-mail address): lowercase, trim, SHA-256, hex.

    Unsalted, so the same identity maps to the same handle on every client and the
    directory can be queried without revealing the address.
    """
    if not isinstance(identity, str) or not identity.strip():
        raise MalformedInput('Identity must be a non-empty string')

    return hashlib.sha256(normalizeIdentity(identity).encode('utf-8')).hexdigest()


def _proofDigest(handle, timestamp):
    return hashlib.sha256(f'{handle}-{timestamp}'.encode('utf-8')).hexdigest()


def generateSenderProof(senderIdentity: str, timestamp: int = None) -> str:
    """
    Provenance string "<millis>:<sha256hex(handle-millis)>".

    Anyone who knows the sender's identity can produce it; it is metadata for
    display and audit, not an authentication mechanism.
    """
    if timestamp is None:
        timestamp = int(time.time() * 1000)

    return f'{timestamp}:{_proofDigest(hashIdentity(senderIdentity), timestamp)}'


def parseSenderProof(proof: str):
    """Split a sender proof into (timestamp millis, digest)."""
    if not isinstance(proof, str) or ':' not in proof:
        raise MalformedInput('Sender proof must look like "<millis>:<digest>"')

    timestampText, digest = proof.split(':', 1)
    try:
        timestamp = int(timestampText)
    except ValueError as e:
        raise MalformedInput(f'Sender proof timestamp is not an integer: {timestampText!r}') from e

    if len(digest) != 64:
        raise MalformedInput('Sender proof digest must be 64 hex characters')

    return timestamp, digest.lower()


def verifySenderProof(proof: str, senderIdentity: str) -> bool:
    try:
        timestamp, digest = parseSenderProof(proof)
    except MalformedInput as e:
        logger.debug(f'[SHARE] Unparsable sender proof: {e}')
        return False

    return hmac.compare_digest(digest, _proofDigest(hashIdentity(senderIdentity), timestamp))
