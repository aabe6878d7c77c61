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

import platform
import sys
import os
import signal

import certifi

from zerodrive.Kernel import getLogger
from zerodrive.Settings import SettingsGetter
from zerodrive.CLI import (
    ZeroDriveContext, configureCLIParser, loadEnvFile, processGlobalArguments, runCommand
)
from zerodrive.Errors import (
    AuthenticationFailed, FileNotFound, InvalidPhrase, MalformedBackup, MalformedInput, NetworkFailure,
    NoPrimaryKey, RecipientKeysMissing, RecipientNotRegistered, SenderKeysMissing, UnauthenticatedError,
    UnwrapFailed, ZeroDriveError
)
from zerodrive.Utils import flushPrint, sendException

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second Ctrl+C - force immediate exit without cleanup messages
            os._exit(0)
        else:
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)


def setupSettings():
    # Load .env file early (before any configuration is read)
    loadEnvFile()

    if platform.system().lower() != 'windows':
        os.environ.setdefault("SSL_CERT_FILE", certifi.where())

    return SettingsGetter()


# Messages for conditions the user can act on; anything else goes through sendException.
USER_ERRORS = (
    (InvalidPhrase, 'Invalid recovery phrase: check the words and their order.'),
    (NoPrimaryKey, 'No primary key on this device. Run "zerodrive keygen" or "zerodrive recover" first.'),
    (SenderKeysMissing, 'Sharing is not set up for this identity. Run "zerodrive init-sharing" first.'),
    (RecipientKeysMissing, 'No sharing keys for this identity. Run "zerodrive restore" or "zerodrive init-sharing".'),
    (RecipientNotRegistered, 'The recipient has not set up ZeroDrive sharing yet.'),
    (UnwrapFailed, 'This share was not encrypted for your key pair.'),
    (AuthenticationFailed, 'Decryption failed: wrong key or corrupted data.'),
    (MalformedBackup, 'The key backup is damaged and cannot be restored.'),
    (UnauthenticatedError, 'The server rejected your credentials. Refresh ZD_ACCESS_TOKEN and try again.'),
    (FileNotFound, None),
    (MalformedInput, None),
)


def reportError(e):
    for errorClass, message in USER_ERRORS:
        if isinstance(e, errorClass):
            flushPrint(f'Error: {message or e}')
            logger.debug(f'{errorClass.__name__}: {e}')
            return 1

    if isinstance(e, NetworkFailure):
        sendException(logger, e, errorPrefix='Failed to reach the server')
        return 1

    sendException(logger, e)
    return 1


def main(argv=None):
    """Console entry point"""
    settingsGetter = setupSettings()
    setupGracefulShutdown()

    parser = configureCLIParser()
    args = parser.parse_args(argv)

    exitCode = processGlobalArguments(args)
    if exitCode is not None:
        return exitCode

    if not args.command:
        parser.print_help()
        return 1

    try:
        context = ZeroDriveContext.fromSettings(settingsGetter)
        return runCommand(args, context)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        return 0
    except ValueError as e:
        # Missing identity and similar argument problems
        flushPrint(f'Error: {e}')
        return 1
    except ZeroDriveError as e:
        return reportError(e)
    except PermissionError as e:
        flushPrint(f'Error: {e}')
        return 1
    except Exception as e:
        sendException(logger, e)
        return 1


if __name__ == '__main__':
    sys.exit(main() or 0)
