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
import tempfile

# Keep test runs away from the real key store and any configured remote service
os.environ['ZD_STORAGE_LOCATION'] = tempfile.mkdtemp(prefix='zerodrive-tests-')

from zerodrive.Settings import SettingsGetter

settingsGetter = SettingsGetter(
    storageDir=os.environ['ZD_STORAGE_LOCATION'], directoryURL='', objectStoreURL='', objectStoreDir=''
)
