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

import json

from contextlib import contextmanager

from zerodrive.Kernel import getLogger, ZDEvent
from zerodrive.Utils import isoFormat, utcNow

logger = getLogger(__name__)

ACTIVITY_STORE_KEY = 'activity-log'
MAX_ENTRIES = 200

# Events worth keeping on the device. Their keyword arguments carry handles,
# fingerprints and ids only, never key material.
AUDITED_EVENTS = (
    ZDEvent.primaryKeyCreate,
    ZDEvent.sharingKeyPairCreate,
    ZDEvent.sharingKeyPairRestore,
    ZDEvent.keyBackupCreate,
    ZDEvent.shareCreate,
    ZDEvent.shareClaim,
)


class ActivityLog:
    """
    Device-local trail of key and sharing events, newest last, capped at maxEntries.

    Observers are only connected while attached() is active so several logs
    (one per context) never record each other's events.
    """

    def __init__(self, keyValueStore, maxEntries=MAX_ENTRIES, events=AUDITED_EVENTS):
        self.keyValueStore = keyValueStore
        self.maxEntries = maxEntries
        self.events = events
        self._observers = {}

    def entries(self):
        data = self.keyValueStore.get(ACTIVITY_STORE_KEY)
        if not data:
            return []

        try:
            entries = json.loads(data)
        except ValueError as e:
            logger.warning(f'[AUDIT] Activity log is unreadable, starting over: {e}')
            return []

        return entries if isinstance(entries, list) else []

    def record(self, eventKey, details):
        entry = {'event': eventKey, 'at': isoFormat(utcNow())}
        entry.update({key: value for key, value in details.items() if isinstance(value, (str, int, float, bool))})

        entries = (self.entries() + [entry])[-self.maxEntries:]
        self.keyValueStore.set(ACTIVITY_STORE_KEY, json.dumps(entries).encode('utf-8'))

        logger.info(f'[AUDIT] {eventKey} {json.dumps(details, sort_keys=True, default=str)}')
        return entry

    def clear(self):
        self.keyValueStore.delete(ACTIVITY_STORE_KEY)

    def _observerFor(self, eventKey):

        def observer(**kwargs):
            self.record(eventKey, kwargs)

        return observer

    def attach(self):
        for event in self.events:
            if event.key not in self._observers:
                self._observers[event.key] = self._observerFor(event.key)
                event.subscribe(self._observers[event.key])

    def detach(self):
        for event in self.events:
            observer = self._observers.pop(event.key, None)
            if observer is not None:
                event.unsubscribe(observer)

    @contextmanager
    def attached(self):
        self.attach()
        try:
            yield self
        finally:
            self.detach()
