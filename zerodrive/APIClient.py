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

import requests

from zerodrive.Kernel import getLogger
from zerodrive.Errors import NetworkFailure, UnauthenticatedError
from zerodrive.Utils import createHTTPSession

logger = getLogger(__name__)

DEFAULT_TIMEOUT = 30


class APIClient:
    """
    Thin requests wrapper shared by the remote collaborators.

    Every request carries the bearer token from tokenProvider(refresh=False). A 401
    asks the provider for a fresh token once and replays the request; a second 401
    raises UnauthenticatedError. Transport errors and other non-2xx answers become
    NetworkFailure, except statuses the caller lists in allowStatus.
    """

    def __init__(self, baseURL, tokenProvider=None, timeout=DEFAULT_TIMEOUT, session=None):
        self.baseURL = baseURL.rstrip('/')
        self.tokenProvider = tokenProvider
        self.timeout = timeout
        self.session = session or createHTTPSession()

    def getServerURL(self):
        return self.baseURL

    def buildURL(self, path):
        return f"{self.baseURL}/{path.lstrip('/')}"

    def makeHeaders(self, token, headers=None):
        merged = {'Accept': 'application/json'}
        if token:
            merged['Authorization'] = f'Bearer {token}'
        if headers:
            merged.update(headers)
        return merged

    def _getToken(self, refresh=False):
        if self.tokenProvider is None:
            return None
        return self.tokenProvider(refresh=refresh)

    def _send(self, method, url, token, headers, **kwargs):
        try:
            return self.session.request(
                method, url, headers=self.makeHeaders(token, headers), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f'{method} {url} failed: {e}') from e

    def request(self, method, path, allowStatus=(), headers=None, **kwargs):
        url = self.buildURL(path)

        response = self._send(method, url, self._getToken(), headers, **kwargs)

        if response.status_code == 401 and self.tokenProvider is not None:
            logger.debug(f'[API] {method} {path} got 401, refreshing access token.')
            response = self._send(method, url, self._getToken(refresh=True), headers, **kwargs)

        if response.status_code in allowStatus:
            return response

        if response.status_code == 401:
            raise UnauthenticatedError(
                f'{method} {path} unauthenticated: HTTP 401', statusCode=401, response=response
            )

        if not 200 <= response.status_code < 300:
            raise NetworkFailure(
                f'{method} {path} failed: HTTP {response.status_code}',
                statusCode=response.status_code,
                response=response,
            )

        return response

    def get(self, path, params=None, **kwargs):
        return self.request('GET', path, params=params, **kwargs)

    def post(self, path, json=None, **kwargs):
        return self.request('POST', path, json=json, **kwargs)

    def put(self, path, data=None, json=None, **kwargs):
        return self.request('PUT', path, data=data, json=json, **kwargs)

    def patch(self, path, json=None, **kwargs):
        return self.request('PATCH', path, json=json, **kwargs)

    def delete(self, path, **kwargs):
        return self.request('DELETE', path, **kwargs)
