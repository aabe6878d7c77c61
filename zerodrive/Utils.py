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

import base64
import binascii
import os
import re
import sys

from datetime import datetime, timezone

import bitmath
import requests

from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from zerodrive.Kernel import getLogger
from zerodrive.Errors import MalformedInput

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

DATA_URL_PATTERN = re.compile(r'^data:[^,]*,')

logger = getLogger(__name__)


# flush is required when stdout is a pipe or a frozen executable.
def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        # Fallback for terminals that don't support certain characters
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {sys.stdout.encoding=}")

        buf = getattr(sys.stdout, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
            return

        print(text.encode(sys.stdout.encoding, errors='replace').decode(sys.stdout.encoding), flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    best = bitmath.Byte(size).best_prefix(system=bitmath.SI)

    # Unit text of plain bytes differs between bitmath releases, prefix class names do not
    if isinstance(best, (bitmath.Byte, bitmath.Bit)):
        return f"{size:.{decimal}f} {'Bytes' if plural else 'Byte'}"

    prefix = type(best).__name__.replace('B', '').upper()
    return f'{best.value:.{decimal}f}{prefix}'


def sendException(logger, e, action=None, errorPrefix="Oops, something went wrong"):
    # Imported here, Settings depends on this module for getEnv.
    from zerodrive.Settings import SUPPORT_URL

    if e and errorPrefix:
        flushPrint(f'{errorPrefix}: {e}')
    elif e:
        flushPrint(f'{e}')
    else: # only errorPrefix without e?
        logger.error(f'Incorrect argument: {errorPrefix=} {e=}')

    if action:
        flushPrint(action)
    else:
        flushPrint('Please try again or try later.')

    flushPrint(f'\nIf you still get the same problem, please report it at {SUPPORT_URL}.\n')

    logger.exception(e)

    if os.getenv('RAISE_EXCEPTION', 'False') == 'True' and isinstance(e, BaseException):
        raise e


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default


def b64urlEncode(data: bytes) -> str:
    """Unpadded base64url, the encoding JWK members use"""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64urlDecode(text: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(text + '=' * (-len(text) % 4))
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedInput(f'Invalid base64url value: {e}') from e


def intToB64url(value: int) -> str:
    length = max(1, (value.bit_length() + 7) // 8)
    return b64urlEncode(value.to_bytes(length, 'big'))


def b64urlToInt(text: str) -> int:
    return int.from_bytes(b64urlDecode(text), 'big')


def decodeBinaryField(value) -> bytes:
    """
    Decode a binary field coming back from a remote record.

    Accepts raw bytes, standard or URL-safe base64 (with or without padding or a
    data-URL prefix) and the "\\x" prefixed hex text a BYTEA column returns.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)

    if not isinstance(value, str):
        raise MalformedInput(f'Unsupported binary field type: {type(value).__name__}')

    text = value.strip()

    if text.startswith('\\x'):
        try:
            return bytes.fromhex(text[2:])
        except ValueError as e:
            raise MalformedInput(f'Invalid hex field: {e}') from e

    text = DATA_URL_PATTERN.sub('', text)
    text = re.sub(r'\s+', '', text).replace('-', '+').replace('_', '/')
    text += '=' * (-len(text) % 4)

    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInput(f'Invalid base64 field: {e}') from e


def utcNow():
    return datetime.now(timezone.utc)


def isoFormat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parseISODate(text: str) -> datetime:
    """Parse an ISO-8601 date, including the trailing "Z" form JavaScript writes"""
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def createHTTPSession(retries=3, backoffFactor=0.5, allowedMethods=None):
    """
    Build a requests session whose adapter retries connection errors and 5xx
    answers on idempotent methods. Status handling above that is left to callers.
    """
    if allowedMethods is None:
        allowedMethods = {'GET', 'PUT', 'DELETE', 'PATCH'}

    retryConfig = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoffFactor,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=allowedMethods,
        raise_on_status=False # Let the caller map the final status
    )

    adapter = HTTPAdapter(max_retries=retryConfig)

    session = requests.Session()
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session
