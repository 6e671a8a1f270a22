#!/usr/bin/env python3
"""
Backend API Client Module for the Ops Dashboard engine

Async HTTP client (aiohttp) for the dashboard backend. One coroutine per
data source. Every request carries the session headers; failures are
classified once into opsdash.errors and raised. The client never retries:
retrying is a user action (view.retry()).
"""

import logging
import time

import aiohttp

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
    idle_ids,
    parse_entities,
    unwrap_list,
)
from opsdash.errors import UnknownError, classify_error, error_from_status
from opsdash.stats import normalize_release_report

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30
DEFAULT_BUILD_LIMIT = 20
REPOSITORY_ALL = 'all'


def unwrap_envelope(payload, endpoint=''):
    """Strip the backend's {"success": ..., "data": ...} envelope

    Raises:
        UnknownError: If the envelope reports success=false
    """
    if isinstance(payload, dict) and 'success' in payload:
        if not payload.get('success'):
            message = payload.get('error') if isinstance(payload.get('error'), str) else None
            raise UnknownError(message, endpoint=endpoint)
        return payload.get('data')
    return payload


class ApiClient:
    """Dashboard backend client using aiohttp

    Attributes:
        base_url: Backend API root (e.g. http://localhost:3001/api)
        session_context: SessionContext providing auth and scope headers
        timeout_sec: Total timeout per request
    """

    def __init__(self, base_url, session_context, timeout_sec=DEFAULT_TIMEOUT_SEC, http_session=None):
        self.base_url = base_url.rstrip('/')
        self.session_context = session_context
        self.timeout_sec = timeout_sec
        self._http_session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_http_session(self):
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
                headers={'Accept': 'application/json'},
            )
            self._owns_session = True
        return self._http_session

    async def close(self):
        if self._owns_session and self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()

    async def request(self, endpoint, params=None):
        """GET an endpoint and return the decoded JSON body (envelope removed)

        Args:
            endpoint: Path relative to base_url (e.g. 'pull-requests/idle')
            params: Optional query parameters dict

        Returns:
            Parsed JSON payload

        Raises:
            FetchError: Classified failure (timeout, HTTP status, transport)
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        start_time = time.monotonic()

        try:
            async with self._get_http_session().get(
                    url, params=params, headers=self.session_context.headers()) as response:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                if response.status >= 400:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
                    logger.error(f"GET {endpoint} -> {response.status} {response.reason} in {elapsed_ms:.1f}ms")
                    raise error_from_status(response.status, body, endpoint=endpoint)

                try:
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    logger.error(f"GET {endpoint} -> invalid JSON in {elapsed_ms:.1f}ms: {e}")
                    raise UnknownError(endpoint=endpoint) from e

                logger.debug(f"GET {endpoint} -> {response.status} in {elapsed_ms:.1f}ms")
                return unwrap_envelope(payload, endpoint)

        except Exception as e:
            error = classify_error(e, endpoint=endpoint)
            if error is not e:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                logger.error(f"GET {endpoint} -> {error.kind} in {elapsed_ms:.1f}ms: {e!r}")
                raise error from e
            raise

    async def get_pull_requests(self):
        payload = await self.request('pull-requests')
        return parse_entities(KIND_PULL_REQUEST, unwrap_list(payload, 'pullRequests'))

    async def get_idle_pull_requests(self):
        """Identifiers of pull requests the backend considers idle"""
        payload = await self.request('pull-requests/idle')
        return idle_ids(unwrap_list(payload, 'pullRequests'))

    async def get_recent_builds(self, limit=DEFAULT_BUILD_LIMIT, repository=REPOSITORY_ALL):
        params = {'limit': str(limit)}
        if repository and repository != REPOSITORY_ALL:
            params['repository'] = repository
        payload = await self.request('builds/recent', params)
        return parse_entities(KIND_BUILD, unwrap_list(payload, 'builds'))

    async def get_releases(self, time_range, limit, skip=0):
        params = dict(time_range.to_params())
        params['limit'] = str(limit)
        params['skip'] = str(skip)
        payload = await self.request('releases', params)
        return parse_entities(KIND_RELEASE, unwrap_list(payload, 'releases'))

    async def get_release_stats(self, time_range):
        payload = await self.request('releases/stats', time_range.to_params())
        return normalize_release_report(payload)

    async def get_release_definitions(self):
        payload = await self.request('releases/definitions')
        return [d for d in unwrap_list(payload, 'definitions') if isinstance(d, dict)]

    async def get_work_items(self):
        payload = await self.request('work-items')
        return parse_entities(KIND_WORK_ITEM, unwrap_list(payload, 'workItems'))

    async def get_sprint_summary(self):
        payload = await self.request('work-items/sprint-summary')
        return payload if isinstance(payload, dict) else {}

    async def get_overdue_items(self):
        payload = await self.request('work-items/overdue')
        return parse_entities(KIND_WORK_ITEM, unwrap_list(payload, 'workItems'))

    async def get_dashboard_summary(self):
        payload = await self.request('dashboard/summary')
        return payload if isinstance(payload, dict) else {}
