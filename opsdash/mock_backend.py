#!/usr/bin/env python3
"""
Mock backend for the Ops Dashboard engine

Serves the same coroutines as ApiClient from a scenario JSON file (see
config_loader.load_mock_data). Individual sources can be forced to fail with
a given HTTP status, which is how degraded and error states are exercised
without a live backend.

Failure specs look like "source:status", e.g. "idle_pull_requests:500",
"builds:401" or "release_stats:timeout".
"""

import asyncio
import logging

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
    idle_ids,
    parse_entities,
)
from opsdash.errors import RequestTimeout, error_from_status
from opsdash.stats import normalize_release_report, percent, release_stats

logger = logging.getLogger(__name__)

MOCK_SOURCES = (
    'pull_requests',
    'idle_pull_requests',
    'builds',
    'releases',
    'release_stats',
    'release_definitions',
    'work_items',
    'sprint_summary',
    'overdue_items',
    'dashboard_summary',
)


def parse_failure_specs(specs):
    """Parse ["source:status", ...] into {source: status}

    status is an int HTTP code or the string 'timeout'. Invalid entries are
    logged and skipped.
    """
    failures = {}
    for spec in specs or []:
        source, _, status = str(spec).partition(':')
        source = source.strip()
        status = status.strip().lower()
        if source not in MOCK_SOURCES:
            logger.warning(f"Ignoring mock failure for unknown source: {spec}")
            continue
        if status == 'timeout':
            failures[source] = status
            continue
        try:
            failures[source] = int(status)
        except ValueError:
            logger.warning(f"Ignoring mock failure with invalid status: {spec}")
    return failures


class MockBackend:
    """Scenario-backed stand-in for ApiClient

    Attributes:
        data: Scenario dict (pull_requests, builds, releases, ...)
        failures: {source: status} forced failures
        delay: Seconds to sleep before answering (0 for none)
        calls: Source names in the order they were requested
    """

    def __init__(self, data, failures=None, delay=0):
        self.data = data or {}
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []

    @classmethod
    def from_config(cls, config, data):
        return cls(data, failures=parse_failure_specs(config.get('mock_failures', [])))

    def fail(self, source, status):
        """Force a source to fail from now on"""
        self.failures[source] = status

    def recover(self, source):
        self.failures.pop(source, None)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        pass

    async def _answer(self, source):
        self.calls.append(source)
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.failures.get(source)
        if status is None:
            logger.debug(f"Mock {source} -> 200")
            return
        logger.debug(f"Mock {source} -> forced failure {status}")
        if status == 'timeout':
            raise RequestTimeout(endpoint=source)
        raise error_from_status(status, endpoint=source)

    def _list(self, key):
        value = self.data.get(key, [])
        return value if isinstance(value, list) else []

    async def get_pull_requests(self):
        await self._answer('pull_requests')
        return parse_entities(KIND_PULL_REQUEST, self._list('pull_requests'))

    async def get_idle_pull_requests(self):
        await self._answer('idle_pull_requests')
        return idle_ids(self._list('idle_pull_requests'))

    async def get_recent_builds(self, limit=20, repository='all'):
        await self._answer('builds')
        builds = parse_entities(KIND_BUILD, self._list('builds'))
        if repository and repository != 'all':
            builds = [b for b in builds if b.repository == repository]
        return builds[:limit]

    async def get_releases(self, time_range, limit, skip=0):
        # Scenario releases are static, so the time range only travels with the request
        await self._answer('releases')
        releases = parse_entities(KIND_RELEASE, self._list('releases'))
        return releases[skip:skip + limit]

    async def get_release_stats(self, time_range):
        await self._answer('release_stats')
        report = self.data.get('release_stats')
        if isinstance(report, dict):
            return normalize_release_report(report)
        stats = release_stats(parse_entities(KIND_RELEASE, self._list('releases')))
        return {
            'total': stats['total'],
            'success_rate': stats['success_rate'],
            'rate': stats['rate'],
            'pending_approvals': stats['pending_approvals'],
            'active_deployments': stats['active_deployments'],
        }

    async def get_release_definitions(self):
        await self._answer('release_definitions')
        return [d for d in self._list('release_definitions') if isinstance(d, dict)]

    async def get_work_items(self):
        await self._answer('work_items')
        return parse_entities(KIND_WORK_ITEM, self._list('work_items'))

    async def get_sprint_summary(self):
        await self._answer('sprint_summary')
        summary = self.data.get('sprint_summary')
        return summary if isinstance(summary, dict) else {}

    async def get_overdue_items(self):
        await self._answer('overdue_items')
        return parse_entities(KIND_WORK_ITEM, self._list('overdue_items'))

    async def get_dashboard_summary(self):
        await self._answer('dashboard_summary')
        summary = self.data.get('dashboard_summary')
        if isinstance(summary, dict):
            return summary
        builds = self._list('builds')
        succeeded = sum(1 for b in builds if isinstance(b, dict) and b.get('result') == 'succeeded')
        pull_requests = self._list('pull_requests')
        return {
            'workItems': {'total': len(self._list('work_items')), 'overdue': len(self._list('overdue_items'))},
            'builds': {'total': len(builds), 'succeeded': succeeded, 'successRate': percent(succeeded, len(builds))},
            'pullRequests': {
                'total': len(pull_requests),
                'active': sum(1 for pr in pull_requests if isinstance(pr, dict) and pr.get('status') == 'active'),
                'idle': len(self._list('idle_pull_requests')),
            },
            'releases': {'total': len(self._list('releases'))},
        }
