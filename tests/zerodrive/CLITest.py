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

import io
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from zerodrive.CLI import (
    ZeroDriveContext, configureCLIParser, guessMimeType, resolveIdentity, runCommand, cmdDeleteAll, cmdRecover,
    ENCRYPTED_EXPORT_SUFFIX, safeFileName
)
from zerodrive.Directory import MemoryDirectoryService
from zerodrive.Errors import MalformedInput, NoPrimaryKey, RecipientKeysMissing
from zerodrive.Identity import hashIdentity
from zerodrive.ObjectStore import MemoryObjectStore
from zerodrive.Storage import MemoryKeyValueStore
from zerodrive.crypto import CryptoInterface

ALICE = 'alice@example.com'
BOB = 'bob@example.com'
PHRASE = ' '.join(['abandon'] * 11 + ['about'])


class CLIParserTest(unittest.TestCase):

    def setUp(self):
        self.parser = configureCLIParser()

    def testGlobalsBeforeAndAfterCommand(self):
        args = self.parser.parse_args(['--identity', ALICE, 'list'])
        self.assertEqual(args.identity, ALICE)
        self.assertEqual(args.command, 'list')
        self.assertFalse(args.noSync)

        args = self.parser.parse_args(['list', '--identity', BOB, '--no-sync'])
        self.assertEqual(args.identity, BOB)
        self.assertTrue(args.noSync)

    def testDefaults(self):
        args = self.parser.parse_args(['whois', ALICE])
        self.assertIsNone(args.identity)
        self.assertIsNone(args.logLevel)
        self.assertFalse(args.version)

    def testLogLevel(self):
        args = self.parser.parse_args(['--log-level', 'debug'])
        self.assertEqual(args.logLevel, 'DEBUG')
        self.assertIsNone(args.command)

        with patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(['--log-level', 'LOUD'])

    def testShareRequiresRecipient(self):
        with patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(['share', 'file.txt'])

        args = self.parser.parse_args(['share', 'file.txt', '--to', BOB, '--mime-type', 'text/plain'])
        self.assertEqual((args.file, args.recipient, args.mimeType), ('file.txt', BOB, 'text/plain'))


class CLIHelperTest(unittest.TestCase):

    def testGuessMimeType(self):
        self.assertEqual(guessMimeType('report.pdf'), 'application/pdf')
        self.assertEqual(guessMimeType('blob.unknownext'), 'application/octet-stream')
        self.assertEqual(guessMimeType('report.pdf', 'text/plain'), 'text/plain')

    def testResolveIdentity(self):
        parser = configureCLIParser()

        with patch.dict(os.environ, {'ZD_IDENTITY': BOB}):
            self.assertEqual(resolveIdentity(parser.parse_args(['list'])), BOB)
            self.assertEqual(resolveIdentity(parser.parse_args(['list', '--identity', ALICE])), ALICE)

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('ZD_IDENTITY', None)
            with self.assertRaises(ValueError):
                resolveIdentity(parser.parse_args(['list']))


    def testSafeFileName(self):
        self.assertEqual(safeFileName('report.pdf'), 'report.pdf')
        self.assertEqual(safeFileName('../escaped.txt'), 'escaped.txt')
        self.assertEqual(safeFileName('/etc/passwd'), 'passwd')
        self.assertEqual(safeFileName('..\\..\\win.ini'), 'win.ini')

        for name in ('', '.', '..', '../', None):
            with self.subTest(name=name):
                with self.assertRaises(MalformedInput):
                    safeFileName(name)


class CLICommandTest(unittest.TestCase):
    """Runs sub-commands against in-memory collaborators shared by two users."""

    @classmethod
    def setUpClass(cls):
        cls.crypto = CryptoInterface()

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tempDir)

        self.objectStore = MemoryObjectStore()
        self.directoryService = MemoryDirectoryService()

        self.alice = self.createContext()
        self.bob = self.createContext()
        self.parser = configureCLIParser()

        self.stdout = io.StringIO()
        patcher = patch('sys.stdout', self.stdout)
        patcher.start()
        self.addCleanup(patcher.stop)

        # Identity always comes from the command line in these tests
        environ = patch.dict(os.environ)
        environ.start()
        self.addCleanup(environ.stop)
        os.environ.pop('ZD_IDENTITY', None)

    def createContext(self):
        return ZeroDriveContext(
            MemoryKeyValueStore(), self.objectStore, self.directoryService, encryptIndex=True, crypto=self.crypto
        )

    def runCLI(self, context, *argv):
        return runCommand(self.parser.parse_args(list(argv)), context)

    def writeFile(self, name, data):
        path = os.path.join(self.tempDir, name)
        with open(path, 'wb') as f:
            f.write(data)
        return path

    def testKeygen(self):
        self.assertEqual(self.runCLI(self.alice, 'keygen'), 0)
        key = self.alice.primaryKeys.load()
        self.assertIsNotNone(key)
        self.assertIn(key.fingerprint, self.stdout.getvalue())

        # The printed phrase reproduces the key
        phraseLine = [line for line in self.stdout.getvalue().splitlines() if line.startswith('    ')][0]
        self.assertEqual(self.alice.primaryKeys.deriveKeyFromPhrase(phraseLine), key)

        self.assertEqual(self.runCLI(self.alice, 'keygen'), 1)
        self.assertEqual(self.alice.primaryKeys.load(), key)

        self.assertEqual(self.runCLI(self.alice, 'keygen', '--force'), 0)
        self.assertNotEqual(self.alice.primaryKeys.load(), key)

    def testRecoverAndForget(self):
        self.assertEqual(self.runCLI(self.alice, 'recover', '--phrase', PHRASE), 0)
        expected = self.alice.primaryKeys.deriveKeyFromPhrase(PHRASE)
        self.assertEqual(self.alice.primaryKeys.load(), expected)

        self.assertEqual(self.runCLI(self.alice, 'forget'), 0)
        self.assertFalse(self.alice.primaryKeys.hasKey())

        args = self.parser.parse_args(['recover'])
        self.assertEqual(cmdRecover(args, self.bob, promptPhrase=lambda prompt: PHRASE.upper()), 0)
        self.assertEqual(self.bob.primaryKeys.load(), expected)

    def testUploadListDownload(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        source = self.writeFile('notes.txt', b'my private notes')

        self.assertEqual(self.runCLI(self.alice, 'upload', source, '--identity', ALICE), 0)
        entry = self.alice.files.listFiles(ALICE)[0]
        self.assertEqual(entry.name, 'notes.txt')
        self.assertEqual(entry.mimeType, 'text/plain')

        self.assertEqual(self.runCLI(self.alice, 'list', '--identity', ALICE), 0)
        self.assertIn(entry.id, self.stdout.getvalue())

        output = os.path.join(self.tempDir, 'out.txt')
        self.assertEqual(self.runCLI(self.alice, 'download', entry.id, '-o', output), 0)
        with open(output, 'rb') as f:
            self.assertEqual(f.read(), b'my private notes')

    def testListOnSecondDevice(self):
        """The second device of the same user sees files after syncing the remote index."""
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.alice, 'upload', self.writeFile('a.txt', b'a'), '--identity', ALICE)

        laptop = self.createContext()
        self.runCLI(laptop, 'recover', '--phrase', PHRASE)

        self.assertEqual(self.runCLI(laptop, 'list', '--identity', ALICE, '--no-sync'), 0)
        self.assertEqual(laptop.files.listFiles(ALICE), [])

        self.assertEqual(self.runCLI(laptop, 'list', '--identity', ALICE), 0)
        self.assertEqual([entry.name for entry in laptop.files.listFiles(ALICE)], ['a.txt'])

    def testDownloadWithWrongKeyExportsCiphertext(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.alice, 'upload', self.writeFile('a.txt', b'a'), '--identity', ALICE)
        entry = self.alice.files.listFiles(ALICE)[0]

        self.runCLI(self.alice, 'keygen', '--force')
        output = os.path.join(self.tempDir, 'a-out.txt')

        self.assertEqual(self.runCLI(self.alice, 'download', entry.id, '-o', output), 1)
        self.assertFalse(os.path.exists(output))
        self.assertTrue(os.path.exists(output + ENCRYPTED_EXPORT_SUFFIX))

    def testDeleteAndDeleteAll(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        for name in ('a.txt', 'b.txt', 'c.txt'):
            self.runCLI(self.alice, 'upload', self.writeFile(name, b'x'), '--identity', ALICE)

        first = self.alice.files.listFiles(ALICE)[0]
        self.assertEqual(self.runCLI(self.alice, 'delete', first.id), 0)
        self.assertEqual(len(self.alice.files.listFiles(ALICE)), 2)

        args = self.parser.parse_args(['delete-all', '--identity', ALICE])
        self.assertEqual(cmdDeleteAll(args, self.alice, confirm=lambda prompt: 'no'), 1)
        self.assertEqual(len(self.alice.files.listFiles(ALICE)), 2)

        self.assertEqual(self.runCLI(self.alice, 'delete-all', '--identity', ALICE, '--yes'), 0)
        self.assertEqual(self.alice.files.listFiles(ALICE), [])

    def testShareInboxClaim(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.bob, 'keygen')

        self.assertEqual(self.runCLI(self.alice, 'init-sharing', '--identity', ALICE), 0)
        self.assertEqual(self.runCLI(self.bob, 'init-sharing', '--identity', BOB), 0)

        source = self.writeFile('photo.jpg', b'\xff\xd8 jpeg bytes')
        self.assertEqual(self.runCLI(self.alice, 'share', source, '--to', BOB, '--identity', ALICE), 0)

        self.assertEqual(self.runCLI(self.bob, 'inbox', '--identity', BOB), 0)
        shares = self.bob.sharing.listIncomingShares(BOB)
        self.assertEqual(len(shares), 1)
        self.assertIn(shares[0].shareId, self.stdout.getvalue())

        output = os.path.join(self.tempDir, 'received.jpg')
        self.assertEqual(self.runCLI(self.bob, 'claim', shares[0].shareId, '-o', output, '--identity', BOB), 0)
        with open(output, 'rb') as f:
            self.assertEqual(f.read(), b'\xff\xd8 jpeg bytes')

        self.assertEqual(self.bob.sharing.listIncomingShares(BOB), [])

    def testClaimKeepsSenderNameInWorkingDirectory(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.bob, 'keygen')
        self.runCLI(self.alice, 'init-sharing', '--identity', ALICE)
        self.runCLI(self.bob, 'init-sharing', '--identity', BOB)

        record = self.alice.sharing.shareFile(b'hello', '../escaped.txt', 'text/plain', BOB, ALICE)

        workDir = os.path.join(self.tempDir, 'work', 'cwd')
        os.makedirs(workDir)
        self.addCleanup(os.chdir, os.getcwd())
        os.chdir(workDir)

        self.assertEqual(self.runCLI(self.bob, 'claim', record.shareId, '--identity', BOB), 0)

        with open(os.path.join(workDir, 'escaped.txt'), 'rb') as f:
            self.assertEqual(f.read(), b'hello')
        self.assertFalse(os.path.exists(os.path.join(self.tempDir, 'work', 'escaped.txt')))

    def testStatusAndExportKey(self):
        self.assertEqual(self.runCLI(self.alice, 'status'), 0)
        self.assertIn('Primary key: none', self.stdout.getvalue())

        with self.assertRaises(RecipientKeysMissing):
            self.runCLI(self.alice, 'export-key', '-o', os.path.join(self.tempDir, 'k.json'), '--identity', ALICE)

        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.alice, 'init-sharing', '--identity', ALICE)

        self.assertEqual(self.runCLI(self.alice, 'status'), 0)
        self.assertIn(self.alice.primaryKeys.load().fingerprint, self.stdout.getvalue())
        self.assertIn(hashIdentity(ALICE)[:12], self.stdout.getvalue())

        keyPath = os.path.join(self.tempDir, 'k.json')
        self.assertEqual(self.runCLI(self.alice, 'export-key', '-o', keyPath, '--identity', ALICE), 0)
        with open(keyPath) as f:
            self.assertEqual(json.load(f), self.alice.sharingKeys.load(ALICE).privateKeyJwk)

        if os.name == 'posix':
            self.assertEqual(os.stat(keyPath).st_mode & 0o077, 0)

    def testActivity(self):
        self.assertEqual(self.runCLI(self.alice, 'activity'), 0)
        self.assertIn('No activity recorded.', self.stdout.getvalue())

        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.alice, 'init-sharing', '--identity', ALICE)
        self.runCLI(self.bob, 'keygen')

        events = [entry['event'] for entry in self.alice.activity.entries()]
        self.assertEqual(events[0], '/keys/primary/create')
        self.assertIn('/keys/sharing/create', events)

        # Bob's key creation went to Bob's log only
        self.assertEqual([entry['event'] for entry in self.bob.activity.entries()], ['/keys/primary/create'])

        self.assertEqual(self.runCLI(self.alice, 'activity', '--limit', '1'), 0)
        self.assertIn(events[-1], self.stdout.getvalue().splitlines()[-1])

        self.assertEqual(self.runCLI(self.alice, 'activity', '--clear'), 0)
        self.assertEqual(self.alice.activity.entries(), [])

    def testBackupRestore(self):
        self.runCLI(self.alice, 'recover', '--phrase', PHRASE)
        self.runCLI(self.alice, 'init-sharing', '--identity', ALICE)
        self.assertEqual(self.runCLI(self.alice, 'backup', '--identity', ALICE), 0)

        laptop = self.createContext()
        with self.assertRaises(NoPrimaryKey):
            self.runCLI(laptop, 'restore', '--identity', ALICE)

        self.runCLI(laptop, 'recover', '--phrase', PHRASE)
        self.assertEqual(self.runCLI(laptop, 'restore', '--identity', ALICE), 0)
        self.assertEqual(
            laptop.sharingKeys.load(ALICE).privateKeyJwk['d'], self.alice.sharingKeys.load(ALICE).privateKeyJwk['d']
        )

    def testRestoreWithoutBackup(self):
        self.runCLI(self.bob, 'keygen')
        self.assertEqual(self.runCLI(self.bob, 'restore', '--identity', BOB), 1)

    def testWhois(self):
        self.assertEqual(self.runCLI(self.alice, 'whois', 'Alice@Example.com'), 0)
        self.assertIn(hashIdentity(ALICE), self.stdout.getvalue())


if __name__ == '__main__':
    unittest.main()
