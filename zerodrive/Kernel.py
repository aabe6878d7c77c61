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

import os
import re
import logging
import platform
import threading
import json

# Error reporting is off unless a SENTRY_DSN is configured explicitly
# (environment or .secret file).
import sentry_sdk

from pathlib import Path
from enum import Enum

from signalslot import Signal

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.0.0'

LOG_LEVEL_MAPPING = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
SENTRY_LOG_FORMAT = '%(asctime)s version[%(version)s] : %(message)s'

# Key material and credentials that must never leave the process through a log line
REDACTIONS = (
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(["\'](?:d|p|q|dp|dq|qi|k)["\']\s*:\s*["\'])[A-Za-z0-9_\-]+(["\'])'), r'\1[REDACTED]\2'),
    (re.compile(r'((?:phrase|mnemonic|access_token|accessToken)=)\S+', re.IGNORECASE), r'\1[REDACTED]'),
)


def redact(text):
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message with tokens and private JWK fields masked."""

    def filter(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def _attachHandler(logger, handler, formatter):
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)


def configureGlobalLogLevel(logLevel):
    """
    Set the root level and make sure a console handler exists at that level.
    Applies to every logger created through getLogger().
    """
    rootLogger = logging.getLogger()
    rootLogger.setLevel(logLevel)

    formatter = logging.Formatter(LOG_FORMAT)

    consoleHandlers = [
        h for h in rootLogger.handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, SentryHandler)
    ]
    if not consoleHandlers:
        consoleHandler = logging.StreamHandler()
        consoleHandler.setLevel(logLevel)
        _attachHandler(rootLogger, consoleHandler, formatter)
        return

    for handler in consoleHandlers:
        handler.setLevel(logLevel)
        handler.setFormatter(formatter)
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())


if os.getenv('ZD_LOGGING_LEVEL'):
    envLogLevel = LOG_LEVEL_MAPPING.get(os.getenv('ZD_LOGGING_LEVEL').upper())
    if envLogLevel is not None:
        configureGlobalLogLevel(envLogLevel)


def _initSentry(version):
    sentryDsn = SecretGetter.getInstance().get('SENTRY_DSN')
    if not sentryDsn:
        return False

    # Silence "sentry is attempting to send pending events..." on exit
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=sentryDsn,
        default_integrations=False,
        integrations=[
            LoggingIntegration(),
            sentryAtexit.AtexitIntegration(),
        ],
        release=f'zerodrive@{version}',
        send_default_pii=False,
        # Frames may hold plaintext, keys or phrases
        include_local_variables=False,
    )
    return True


def getLogger(name, version=PUBLIC_VERSION):
    """
    Get a logger adapter carrying the version and a redacting Sentry handler.
    Sentry itself is initialized once, and only when a SENTRY_DSN can be found
    through SecretGetter; otherwise the handler stays inert.
    """
    try:
        sentryInitialized = False
        if not sentry_sdk.get_client().is_active():
            sentryInitialized = _initSentry(version)

        logger = logging.getLogger(name)

        if not any(isinstance(h, SentryHandler) for h in logger.handlers):
            _attachHandler(logger, SentryHandler(), logging.Formatter(SENTRY_LOG_FORMAT))

        adapter = logging.LoggerAdapter(logger, {'version': version or 'unknown'})

        if sentryInitialized:
            adapter.debug('Sentry initialized')

        return adapter

    except Exception as e:
        fallbackLogger = logging.getLogger(name)
        fallbackLogger.warning(f"Failed to initialize Sentry: {e}")
        return fallbackLogger


def classForName(qualifiedName):
    """
    Resolve a dotted name to a module or a module attribute.
    """
    qualifiedName = str(qualifiedName)

    moduleName, _, attributeName = qualifiedName.rpartition('.')
    if not moduleName:
        return __import__(qualifiedName)

    module = __import__(moduleName, fromlist=[attributeName])

    try:
        return getattr(module, attributeName)
    except AttributeError:
        raise ImportError(f"Unable to import '{qualifiedName}'.")


class Singleton:
    """
    Thread-safe singleton base. Subclasses override initialize() instead of
    __init__; it runs once per instance lifetime.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if cls not in cls._instances:
            with cls._lock:
                if cls not in cls._instances:
                    cls._instances[cls] = super().__new__(cls)
        return cls._instances[cls]

    def __init__(self, *args, **kwargs):
        if not hasattr(self, '_initialized'):
            self.initialize(*args, **kwargs)
            self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            cls()
        return cls._instances[cls]

    @classmethod
    def resetInstance(cls):
        """Forget the instance so the next construction initializes again (tests)."""
        with cls._lock:
            cls._instances.pop(cls, None)


class EventTiming(Enum):
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class EventService(Singleton):
    """
    Dispatches named events to observers. Every event owns a (before, after) pair of
    signalslot Signals; observers are called with keyword arguments only.
    """

    def initialize(self):
        self.signals = {}

    def reset(self):
        """Drop every registered event. Test isolation only."""
        self.signals.clear()

    @staticmethod
    def _toTiming(timing):
        if timing is None or isinstance(timing, EventTiming):
            return timing

        if not isinstance(timing, str):
            raise ValueError(f"Timing must be EventTiming, str or None, got {type(timing)}")

        try:
            return EventTiming(timing.upper())
        except ValueError:
            raise ValueError(f"Invalid timing value: '{timing}'. Must be 'BEFORE' or 'AFTER'.")

    def _signalsFor(self, event, timing):
        before, after = self.signals[event]
        if timing is None:
            return (before, after)
        return (before,) if timing == EventTiming.BEFORE else (after,)

    def isRegistered(self, event):
        return event in self.signals

    def register(self, event):
        if self.isRegistered(event):
            return False
        self.signals[event] = (Signal(), Signal())
        return True

    def trigger(self, event, timing=None, **kwargs):
        """Emit before then after signals (or only the requested phase). Unknown events are ignored."""
        timing = self._toTiming(timing)
        if not self.isRegistered(event):
            return

        for signalObject in self._signalsFor(event, timing):
            signalObject.emit(**kwargs)

    def subscribe(self, event, observer, timing=EventTiming.AFTER):
        if not self.isRegistered(event):
            raise KeyError(f"You must register event '{event}' first.")

        timing = self._toTiming(timing)
        if timing is None:
            raise ValueError("Timing must be EventTiming.BEFORE or EventTiming.AFTER.")

        signalObject, = self._signalsFor(event, timing)
        if observer not in signalObject._slots:
            signalObject.connect(observer)

    def unsubscribe(self, event, observer, timing=None):
        if not self.isRegistered(event):
            return

        for signalObject in self._signalsFor(event, self._toTiming(timing)):
            if observer in signalObject._slots:
                signalObject.disconnect(observer)


class Event:
    """Named event bound to the EventService singleton."""

    def __init__(self, key):
        self.key = key

    @property
    def eventService(self):
        return EventService.getInstance()

    def subscribe(self, observer, timing=EventTiming.AFTER):
        return self.eventService.subscribe(self.key, observer, timing=timing)

    def unsubscribe(self, observer, timing=None):
        return self.eventService.unsubscribe(self.key, observer, timing=timing)

    def trigger(self, **kwargs):
        return self.eventService.trigger(self.key, **kwargs)

    def register(self):
        return self.eventService.register(self.key)


class StorageLocator(Singleton):
    """
    Resolves where keys, the index cache and config files live.

    Order: ZD_STORAGE_LOCATION (when it names an existing directory), then
    ~/.zerodrive, then the platform config directory, then the working directory.
    Directories created here are owner-only since they hold key material.
    """

    def initialize(self, appName='zerodrive'):
        self.appName = appName
        self.logger = logging.getLogger(__name__)

    def _getPlatformDir(self):
        system = platform.system()

        if system == 'Windows':
            return os.path.join(os.getenv('APPDATA', os.path.expanduser('~')), self.appName)
        if system == 'Darwin':
            return os.path.expanduser(f'~/Library/Application Support/{self.appName}')
        return os.path.expanduser(f'~/.config/{self.appName}')

    def _getEnvStorageLocation(self):
        envStorageLocation = os.getenv('ZD_STORAGE_LOCATION')
        if envStorageLocation and os.path.isdir(envStorageLocation):
            return envStorageLocation
        return None

    def candidateDirs(self):
        envStorageLocation = self._getEnvStorageLocation()
        if envStorageLocation:
            return [envStorageLocation]

        return [
            os.path.expanduser(f'~{os.path.sep}.{self.appName}'),
            self._getPlatformDir(),
            os.path.abspath('.'),
        ]

    @staticmethod
    def _isWritable(storageDir):
        probe = os.path.join(storageDir, '.write_test')
        try:
            Path(probe).write_text('probe')
            return True
        except OSError:
            return False
        finally:
            if os.path.exists(probe):
                os.remove(probe)

    def ensureStorageDir(self):
        """Return the first candidate directory that exists (or can be created) and is writable."""
        for storageDir in self.candidateDirs():
            try:
                if not os.path.isdir(storageDir):
                    os.makedirs(storageDir, mode=0o700, exist_ok=True)
            except OSError as e:
                self.logger.warning(f'Unable to create storage directory {storageDir} => {e}.')
                continue

            if self._isWritable(storageDir):
                return storageDir

            self.logger.warning(f'Storage directory {storageDir} is not writable.')

        return os.path.abspath('.')

    def findStorage(self, filename):
        """
        Path of an existing file with this name in the first candidate directory
        holding one, else where it would be created. The file may not exist.
        """
        candidates = self.candidateDirs()

        for storageDir in candidates:
            path = os.path.join(storageDir, filename)
            if os.path.exists(path):
                return path

        return os.path.join(candidates[0], filename)

    def findConfig(self, filename):
        return self.findStorage(filename)


class SecretGetter(Singleton):
    """
    Looks up credentials (ZD_ACCESS_TOKEN, SENTRY_DSN...) in the environment
    first, then in the .secret JSON file located through StorageLocator.
    Values are cached until reload().
    """

    DEFAULT_SECRET_FILE = '.secret'

    def initialize(self, secretFileName=DEFAULT_SECRET_FILE):
        self.secretFileName = secretFileName
        self._cache = {}
        self._secretData = None

    def getPath(self):
        return StorageLocator.getInstance().findStorage(self.secretFileName)

    def _loadSecretFile(self):
        if self._secretData is not None:
            return self._secretData

        secretPath = self.getPath()
        self._secretData = {}

        if os.path.exists(secretPath):
            try:
                self._secretData = json.loads(Path(secretPath).read_text())
            except (json.JSONDecodeError, OSError) as e:
                logging.getLogger(__name__).warning(f"Failed to load secret file {secretPath}: {e}")

        return self._secretData

    def get(self, key: str):
        """Secret value or None."""
        if self._cache.get(key):
            return self._cache[key]

        value = os.getenv(key) or self._loadSecretFile().get(key)
        if value:
            self._cache[key] = value
        return value

    def reload(self):
        """Forget cached values; the next get() reads the environment and .secret file again."""
        self._cache.clear()
        self._secretData = None


# Event pattern: RESTful + /[action] (create, update, get, delete, others...)
class ZDEvent:
    primaryKeyCreate = Event('/keys/primary/create')
    sharingKeyPairCreate = Event('/keys/sharing/create')
    keyBackupCreate = Event('/keys/backup/create')
    sharingKeyPairRestore = Event('/keys/sharing/restore')

    shareCreate = Event('/share/create')
    shareClaim = Event('/share/claim')

    indexPublish = Event('/index/publish')
    indexSync = Event('/index/sync')

    @classmethod
    def all(cls):
        return [value for value in vars(cls).values() if isinstance(value, Event)]

    @classmethod
    def registerAll(cls):
        for event in cls.all():
            event.register()


ZDEvent.registerAll()
