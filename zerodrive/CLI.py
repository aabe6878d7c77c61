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

import argparse
import json
import logging
import logging.config
import mimetypes
import os
import platform

from pathlib import Path, PurePosixPath

from zerodrive.Kernel import PUBLIC_VERSION, getLogger, configureGlobalLogLevel, LOG_LEVEL_MAPPING, StorageLocator
from zerodrive.Settings import SUPPORT_URL
from zerodrive.Utils import flushPrint, formatSize, getEnv
from zerodrive.Errors import AuthenticationFailed, FileNotFound, MalformedInput, RecipientKeysMissing
from zerodrive.Keys import PrimaryKeyManager
from zerodrive.Sharing import SharingKeyManager
from zerodrive.Directory import PublicKeyDirectory
from zerodrive.Backup import KeyBackupManager
from zerodrive.FileIndex import IndexSynchronizer
from zerodrive.FileOperations import FileOperations
from zerodrive.FileSharing import FileSharingProtocol
from zerodrive.Identity import hashIdentity
from zerodrive.crypto import CryptoInterface
from zerodrive.Activity import ActivityLog

logger = getLogger(__name__)

ENCRYPTED_EXPORT_SUFFIX = '.encrypted'


def loadEnvFile():
    """
    Load environment variables from .env file using StorageLocator.
    Only sets variables that are not already defined in os.environ.
    """
    storageLocator = StorageLocator.getInstance()
    envFilePath = storageLocator.findConfig('.env')

    if not os.path.exists(envFilePath):
        return

    loadedCount = 0
    with open(envFilePath, 'r', encoding='utf-8') as f:
        for lineNum, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                flushPrint(f'Warning: .env line {lineNum}: Invalid format (missing =): {line}')
                continue

            key, _, value = line.partition('=')
            key = key.strip()
            value = value.strip()

            if not key:
                flushPrint(f'Warning: .env line {lineNum}: Empty key')
                continue

            if (value.startswith('"') and value.endswith('"')) or \
               (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]

            # Environment takes precedence
            if key not in os.environ:
                os.environ[key] = value
                loadedCount += 1
            else:
                logger.debug(f'.env: Skipped {key} (already set in environment)')

    logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')


def configureLogging(logLevel):
    """Configure logging from a level name or a logging config JSON file

    Priority order:
    1. logLevel parameter (from --log-level CLI argument)
    2. ZD_LOGGING_LEVEL environment variable
    3. None (no configuration change)
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('ZD_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, FileNotFoundError, KeyError, ValueError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    suppressNoisyLogger()
    return logLevel


def showVersion():
    flushPrint(f"ZeroDrive v{PUBLIC_VERSION}")
    flushPrint(f"Crypto backend: {CryptoInterface().getBackendName()}")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")
    flushPrint(f"Support: {SUPPORT_URL}")


class ZeroDriveContext:
    """Wires the managers on top of the three collaborators (local store, object store, directory)."""

    def __init__(self, keyValueStore, objectStore, directoryService, encryptIndex=True, crypto=None):
        self.crypto = crypto or CryptoInterface()

        self.keyValueStore = keyValueStore
        self.objectStore = objectStore

        self.primaryKeys = PrimaryKeyManager(keyValueStore, crypto=self.crypto)
        self.sharingKeys = SharingKeyManager(keyValueStore, crypto=self.crypto)
        self.directory = PublicKeyDirectory(directoryService, crypto=self.crypto)
        self.backups = KeyBackupManager(
            self.primaryKeys, self.sharingKeys, directory=self.directory, objectStore=objectStore, crypto=self.crypto
        )
        self.index = IndexSynchronizer(
            keyValueStore, objectStore=objectStore, primaryKeyManager=self.primaryKeys, encryptIndex=encryptIndex
        )
        self.files = FileOperations(self.primaryKeys, self.index, objectStore)
        self.sharing = FileSharingProtocol(self.sharingKeys, self.directory, objectStore=objectStore, crypto=self.crypto)
        self.activity = ActivityLog(keyValueStore)

    @classmethod
    def fromSettings(cls, settingsGetter):
        return cls(
            settingsGetter.getKeyValueStore(),
            settingsGetter.getObjectStore(),
            settingsGetter.getDirectoryService(),
            encryptIndex=settingsGetter.encryptIndex,
        )


def configureCLIParser():
    """Configure the argparse parser with one sub-command per operation

    Returns:
        argparse.ArgumentParser
    """

    def validateLogLevel(logLevel):
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        validLevels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if logLevel.upper() not in validLevels:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
            )
        return logLevel.upper()

    def addGlobalArguments(parser, default):
        parser.add_argument("--version", action="store_true", default=default, help="Show version information")
        parser.add_argument(
            "--log-level",
            type=validateLogLevel,
            default=default,
            help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file",
            metavar="LEVEL_OR_FILE",
            dest="logLevel"
        )
        parser.add_argument(
            "--identity",
            default=default,
            help="Identity (e-mail) to act as (default: ZD_IDENTITY environment variable)",
            metavar="EMAIL",
        )

    # Globals given after the sub-command must not reset the ones given before it
    commandGlobals = argparse.ArgumentParser(add_help=False)
    addGlobalArguments(commandGlobals, argparse.SUPPRESS)

    parser = argparse.ArgumentParser(
        prog='zerodrive', description="ZeroDrive keeps your files encrypted before they ever leave this device."
    )
    addGlobalArguments(parser, None)

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def addCommand(name, helpText):
        return subparsers.add_parser(name, help=helpText, parents=[commandGlobals])

    keygenParser = addCommand('keygen', 'Create a new primary key and print its recovery phrase')
    keygenParser.add_argument("--force", action="store_true", help="Replace an existing primary key")

    recoverParser = addCommand('recover', 'Re-create the primary key from a recovery phrase')
    recoverParser.add_argument("--phrase", help="12 word recovery phrase (prompted when omitted)")

    addCommand('forget', 'Remove the primary key from this device')
    addCommand('init-sharing', 'Create or recover the sharing key pair and publish the public key')
    addCommand('backup', 'Upload an encrypted backup of the sharing private key')
    addCommand('restore', 'Restore the sharing key pair from the remote backup')

    uploadParser = addCommand('upload', 'Encrypt and upload a file')
    uploadParser.add_argument("file", metavar="FILE")
    uploadParser.add_argument("--mime-type", dest="mimeType", help="MIME type (guessed from the name by default)")

    downloadParser = addCommand('download', 'Download and decrypt a file')
    downloadParser.add_argument("fileId", metavar="FILE_ID")
    downloadParser.add_argument("--output", "-o", metavar="PATH", help="Output path (default: original file name)")

    listParser = addCommand('list', 'List your files')
    listParser.add_argument("--no-sync", action="store_true", dest="noSync", help="Use the local index only")

    deleteParser = addCommand('delete', 'Delete a file')
    deleteParser.add_argument("fileId", metavar="FILE_ID")

    deleteAllParser = addCommand('delete-all', 'Delete all your files')
    deleteAllParser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    shareParser = addCommand('share', 'Share a file with another user')
    shareParser.add_argument("file", metavar="FILE")
    shareParser.add_argument("--to", required=True, dest="recipient", metavar="EMAIL", help="Recipient identity")
    shareParser.add_argument("--mime-type", dest="mimeType", help="MIME type (guessed from the name by default)")

    addCommand('inbox', 'List files shared with you')

    claimParser = addCommand('claim', 'Download and decrypt a file shared with you')
    claimParser.add_argument("shareId", metavar="SHARE_ID")
    claimParser.add_argument("--output", "-o", metavar="PATH", help="Output path (default: original file name)")

    whoisParser = addCommand('whois', 'Print the directory handle of an identity')
    whoisParser.add_argument("email", metavar="EMAIL")

    addCommand('status', 'Show the keys held on this device')

    exportParser = addCommand('export-key', 'Write the sharing private key (JWK) to a file')
    exportParser.add_argument("--output", "-o", required=True, metavar="PATH", help="Where to write the key")

    activityParser = addCommand('activity', 'Show recent key and sharing activity on this device')
    activityParser.add_argument("--limit", type=int, default=20, help="Number of entries to show (default: 20)")
    activityParser.add_argument("--clear", action="store_true", help="Erase the activity log")

    return parser


def guessMimeType(fileName, mimeType=None):
    if mimeType:
        return mimeType
    guessed, _ = mimetypes.guess_type(fileName)
    return guessed or 'application/octet-stream'


def resolveIdentity(args):
    identity = getattr(args, 'identity', None) or getEnv('ZD_IDENTITY', None)
    if not identity:
        raise ValueError('An identity is required: pass --identity or set ZD_IDENTITY.')
    return identity


def safeFileName(name):
    """Bare file name from a name chosen by a sender or the remote index."""
    baseName = PurePosixPath(str(name or '').replace('\\', '/')).name
    if baseName in ('', '.', '..'):
        raise MalformedInput(f'Refusing to write a file named {name!r}')
    return baseName


def outputPath(args, remoteName, suffix=''):
    # An explicit --output is the user's choice; remote names never leave the working directory
    if args.output:
        return f'{args.output}{suffix}'
    return f'{safeFileName(remoteName)}{suffix}'


def writeOutput(path, data):
    Path(path).write_bytes(data)
    flushPrint(f'Saved {path} ({formatSize(len(data))})')


def cmdKeygen(args, context):
    if context.primaryKeys.hasKey() and not args.force:
        flushPrint('A primary key already exists on this device. Use --force to replace it.')
        return 1

    phrase = context.primaryKeys.generateRecoveryPhrase()
    key = context.primaryKeys.deriveKeyFromPhrase(phrase)
    context.primaryKeys.store(key, source='phrase')

    flushPrint('Your recovery phrase (write it down, it is the only way to recover your files):\n')
    flushPrint(f'    {phrase}\n')
    flushPrint(f'Primary key fingerprint: {key.fingerprint}')
    return 0


def cmdRecover(args, context, promptPhrase=input):
    phrase = args.phrase or promptPhrase('Recovery phrase: ')
    key = context.primaryKeys.deriveKeyFromPhrase(phrase)
    context.primaryKeys.store(key, source='recovery')

    flushPrint(f'Primary key recovered, fingerprint: {key.fingerprint}')
    return 0


def cmdForget(args, context):
    context.primaryKeys.clear()
    flushPrint('Primary key removed from this device.')
    return 0


def cmdInitSharing(args, context):
    identity = resolveIdentity(args)
    context.backups.ensureSharingIdentity(identity)
    flushPrint(f'Sharing is ready for {identity} (handle {hashIdentity(identity)}).')
    return 0


def cmdBackup(args, context):
    identity = resolveIdentity(args)
    path = context.backups.uploadBackup(identity)
    if path is None:
        flushPrint('Key backup was not uploaded, see the log for details.')
        return 1

    flushPrint(f'Key backup stored at {path}')
    return 0


def cmdRestore(args, context):
    identity = resolveIdentity(args)
    pair = context.backups.recover(identity)
    if pair is None:
        flushPrint(f'No key backup found for {identity}.')
        return 1

    flushPrint(f'Sharing key pair for {identity} restored.')
    return 0


def cmdUpload(args, context):
    identity = resolveIdentity(args)
    filePath = Path(args.file)
    if not filePath.is_file():
        flushPrint(f'"{args.file}" does not exist!')
        return 1

    entry = context.files.upload(
        filePath.read_bytes(), filePath.name, guessMimeType(filePath.name, args.mimeType), identity
    )
    flushPrint(f'Uploaded {entry.name} as {entry.id}')
    return 0


def cmdDownload(args, context):
    try:
        plaintext, entry = context.files.download(args.fileId)
    except AuthenticationFailed as e:
        index = context.index.loadLocal()
        entry = index.get(args.fileId)
        exportPath = outputPath(args, entry.name, ENCRYPTED_EXPORT_SUFFIX)

        flushPrint('Decryption failed: the primary key does not match the one used to encrypt this file.')
        if e.payload is not None:
            writeOutput(exportPath, e.payload)
        return 1

    writeOutput(outputPath(args, entry.name), plaintext)
    return 0


def cmdList(args, context):
    identity = resolveIdentity(args)
    if not args.noSync:
        context.index.fetchAndSync()

    entries = context.files.listFiles(identity)
    if not entries:
        flushPrint('No files.')
        return 0

    for entry in entries:
        flushPrint(f'{entry.id}  {entry.uploadedDate:%Y-%m-%d %H:%M}  {entry.mimeType:<28}  {entry.name}')
    return 0


def cmdDelete(args, context):
    if not context.files.delete(args.fileId):
        flushPrint(f'Could not delete {args.fileId} remotely (it may already be gone). Removed it locally.')
    else:
        flushPrint(f'Deleted {args.fileId}')
    return 0


def cmdDeleteAll(args, context, confirm=input):
    identity = resolveIdentity(args)
    if not args.yes:
        answer = confirm(f'Delete ALL files of {identity}? Type "yes" to continue: ')
        if answer.strip().lower() != 'yes':
            flushPrint('Aborted.')
            return 1

    result = context.files.deleteAll(identity)
    flushPrint(f'Deleted {result.succeeded} of {result.total} files.')
    if result.failed:
        flushPrint(f'{result.failed} file(s) could not be deleted remotely (they were removed from your index).')
    return 0


def cmdShare(args, context):
    identity = resolveIdentity(args)
    filePath = Path(args.file)
    if not filePath.is_file():
        flushPrint(f'"{args.file}" does not exist!')
        return 1

    record = context.sharing.shareFile(
        filePath.read_bytes(), filePath.name, guessMimeType(filePath.name, args.mimeType), args.recipient, identity
    )
    flushPrint(f'Shared {record.fileName} with {args.recipient} (share {record.shareId})')
    return 0


def cmdInbox(args, context):
    identity = resolveIdentity(args)
    records = context.sharing.listIncomingShares(identity)
    if not records:
        flushPrint('Nothing shared with you.')
        return 0

    for record in records:
        flushPrint(f'{record.shareId}  {formatSize(record.fileSize):>8}  {record.fileName}  (from {record.senderHandle[:12]})')
    return 0


def cmdClaim(args, context):
    identity = resolveIdentity(args)
    records = {record.shareId: record for record in context.sharing.listIncomingShares(identity)}

    record = records.get(args.shareId)
    if record is None:
        raise FileNotFound(f'No unclaimed share {args.shareId} for {identity}')

    try:
        plaintext, fileName = context.sharing.claimShare(record, identity)
    except AuthenticationFailed as e:
        flushPrint('Decryption failed: the shared file is corrupted.')
        if e.payload is not None:
            writeOutput(outputPath(args, record.fileName, ENCRYPTED_EXPORT_SUFFIX), e.payload)
        return 1

    writeOutput(outputPath(args, fileName), plaintext)
    return 0


def cmdWhois(args, context):
    flushPrint(hashIdentity(args.email))
    return 0


def cmdStatus(args, context):
    primaryKey = context.primaryKeys.load()
    if primaryKey is None:
        flushPrint('Primary key: none (run "zerodrive keygen" or "zerodrive recover")')
    else:
        flushPrint(f'Primary key: {primaryKey.fingerprint}')

    identities = sorted(context.sharingKeys.listIdentities())
    if not identities:
        flushPrint('Sharing identities: none')
        return 0

    flushPrint('Sharing identities:')
    for identity in identities:
        flushPrint(f'    {identity}  (handle {hashIdentity(identity)[:12]})')
    return 0


def cmdExportKey(args, context):
    identity = resolveIdentity(args)
    privateJwk = context.sharingKeys.exportPrivateKey(identity)
    if privateJwk is None:
        raise RecipientKeysMissing(f'No sharing key pair for {identity} on this device')

    fd = os.open(args.output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(privateJwk)

    flushPrint(f'Sharing private key of {identity} written to {args.output}. Keep it secret.')
    return 0


def cmdActivity(args, context):
    if args.clear:
        context.activity.clear()
        flushPrint('Activity log cleared.')
        return 0

    entries = context.activity.entries()[-args.limit:] if args.limit > 0 else []
    if not entries:
        flushPrint('No activity recorded.')
        return 0

    for entry in entries:
        details = ', '.join(f'{key}={value}' for key, value in entry.items() if key not in ('event', 'at'))
        flushPrint(f"{entry['at']}  {entry['event']:<22}  {details}")
    return 0


COMMANDS = {
    'keygen': cmdKeygen,
    'recover': cmdRecover,
    'forget': cmdForget,
    'init-sharing': cmdInitSharing,
    'backup': cmdBackup,
    'restore': cmdRestore,
    'upload': cmdUpload,
    'download': cmdDownload,
    'list': cmdList,
    'delete': cmdDelete,
    'delete-all': cmdDeleteAll,
    'share': cmdShare,
    'inbox': cmdInbox,
    'claim': cmdClaim,
    'whois': cmdWhois,
    'status': cmdStatus,
    'export-key': cmdExportKey,
    'activity': cmdActivity,
}


def processGlobalArguments(args):
    """
    Handle global options before command dispatch.

    Returns:
        int or None: exit code for an early exit, None to continue
    """
    configureLogging(args.logLevel)

    if args.version:
        showVersion()
        return 0

    return None


def runCommand(args, context):
    handler = COMMANDS.get(args.command)
    if handler is None:
        raise ValueError(f'Unknown command: {args.command}')
    with context.activity.attached():
        return handler(args, context)
