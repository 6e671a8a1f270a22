#!/usr/bin/env python3
"""
Tests for fetch orchestration
- Per-source loading flags and the ready rule
- Primary vs secondary failure policy
- Timeouts, cancellation and last-request-wins
- run_id logging context
"""

import asyncio
import unittest
import sys
import os
from unittest.mock import MagicMock

# Add parent directory to path to import the opsdash package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from opsdash.errors import ServerError, Unauthorized
from opsdash.fetch_orchestrator import (
    FetchOrchestrator,
    FetchSource,
    LoadingState,
    ViewState,
    is_settled,
)


def returning(value, delay=0):
    async def fetch():
        if delay:
            await asyncio.sleep(delay)
        return value
    return fetch


def raising(error, delay=0):
    async def fetch():
        if delay:
            await asyncio.sleep(delay)
        raise error
    return fetch


class TestViewState(unittest.TestCase):
    """Test ViewState bookkeeping"""

    def test_is_settled(self):
        """Test that pending flags mean not settled"""
        self.assertTrue(is_settled({'a': LoadingState.LOADED, 'b': LoadingState.FAILED}))
        self.assertFalse(is_settled({'a': LoadingState.LOADED, 'b': LoadingState.PENDING}))

    def test_updates_replace_containers(self):
        """Test that updates replace the data dict instead of mutating it"""
        state = ViewState()
        state.begin([FetchSource('a', returning([]))])
        before = state.data
        state.set_loaded('a', [1])
        self.assertIsNot(state.data, before)
        self.assertEqual(before, {})

    def test_not_ready_while_pending(self):
        """Test that a pending source blocks readiness"""
        state = ViewState()
        state.begin([FetchSource('a', returning([])), FetchSource('b', returning([]), primary=False)])
        state.set_loaded('a', [])
        self.assertFalse(state.is_ready())
        state.set_failed('b', [])
        self.assertTrue(state.is_ready())


class TestFetchOrchestrator(unittest.IsolatedAsyncioTestCase):
    """Test FetchOrchestrator.run()"""

    async def test_all_sources_loaded(self):
        """Test that successful fetches fill their own slots"""
        orchestrator = FetchOrchestrator('test')
        snapshot = await orchestrator.run([
            FetchSource('pull_requests', returning(['pr'])),
            FetchSource('idle_pull_requests', returning(frozenset({1})), primary=False),
        ])
        self.assertTrue(snapshot['ready'])
        self.assertIsNone(snapshot['error'])
        self.assertEqual(snapshot['loading'], {'pull_requests': 'loaded', 'idle_pull_requests': 'loaded'})
        self.assertEqual(orchestrator.state.get('pull_requests'), ['pr'])
        self.assertEqual(orchestrator.state.get('idle_pull_requests'), frozenset({1}))

    async def test_secondary_failure_degrades(self):
        """Test that a failed secondary source falls back to its default"""
        orchestrator = FetchOrchestrator('test')
        with self.assertLogs('opsdash.fetch_orchestrator', level='WARNING') as logs:
            snapshot = await orchestrator.run([
                FetchSource('pull_requests', returning(['pr'])),
                FetchSource('idle_pull_requests', raising(ServerError(status_code=500)),
                            primary=False, default=frozenset),
            ])
        self.assertTrue(snapshot['ready'])
        self.assertIsNone(snapshot['error'])
        self.assertEqual(snapshot['loading']['idle_pull_requests'], 'failed')
        self.assertEqual(orchestrator.state.get('idle_pull_requests'), frozenset())
        self.assertEqual(orchestrator.state.get('pull_requests'), ['pr'])
        self.assertTrue(any('idle_pull_requests' in line for line in logs.output))

    async def test_primary_failure_aborts_view(self):
        """Test that a failed primary source clears data and flags and sets the error"""
        orchestrator = FetchOrchestrator('test')
        snapshot = await orchestrator.run([
            FetchSource('builds', raising(ServerError(status_code=503))),
            FetchSource('extra', returning(['x']), primary=False),
        ])
        self.assertFalse(snapshot['ready'])
        self.assertEqual(snapshot['error']['kind'], 'server_error')
        self.assertEqual(snapshot['error']['source'], 'builds')
        self.assertTrue(snapshot['error']['retryable'])
        self.assertEqual(snapshot['data'], {})
        self.assertNotIn('pending', snapshot['loading'].values())
        self.assertNotIn('loaded', snapshot['loading'].values())

    async def test_primary_failure_cancels_siblings(self):
        """Test that outstanding fetches of the failed run are cancelled"""
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return ['late']

        orchestrator = FetchOrchestrator('test')
        await orchestrator.run([
            FetchSource('releases', slow),
            FetchSource('release_stats', raising(ServerError(status_code=500), delay=0.01)),
        ])
        self.assertTrue(cancelled.is_set())
        self.assertIsNone(orchestrator.state.get('releases'))

    async def test_unauthorized_calls_hook(self):
        """Test that an unauthorized primary failure triggers the sign-out hook once"""
        hook = MagicMock()
        orchestrator = FetchOrchestrator('test', on_unauthorized=hook)
        snapshot = await orchestrator.run([FetchSource('builds', raising(Unauthorized(status_code=401)))])
        hook.assert_called_once_with()
        self.assertEqual(snapshot['error']['kind'], 'unauthorized')

    async def test_unauthorized_secondary_signs_out(self):
        """Test that a secondary 401 signs out while the slot still degrades"""
        hook = MagicMock()
        orchestrator = FetchOrchestrator('test', on_unauthorized=hook)
        snapshot = await orchestrator.run([
            FetchSource('pull_requests', returning([])),
            FetchSource('idle_pull_requests', raising(Unauthorized()), primary=False, default=frozenset),
        ])
        hook.assert_called_once_with()
        self.assertTrue(snapshot['ready'])
        self.assertIsNone(snapshot['error'])
        self.assertEqual(orchestrator.state.get('idle_pull_requests'), frozenset())

    async def test_unauthorized_hook_once_per_run(self):
        """Test that several 401s in one run sign out only once"""
        hook = MagicMock()
        orchestrator = FetchOrchestrator('test', on_unauthorized=hook)
        await orchestrator.run([
            FetchSource('summary', returning({})),
            FetchSource('builds', raising(Unauthorized()), primary=False),
            FetchSource('pull_requests', raising(Unauthorized()), primary=False),
        ])
        hook.assert_called_once_with()
        await orchestrator.run([FetchSource('builds', raising(Unauthorized()), primary=False)])
        self.assertEqual(hook.call_count, 2)

    async def test_timeout(self):
        """Test that a hanging fetch becomes a timeout failure"""
        orchestrator = FetchOrchestrator('test', timeout=0.01)
        snapshot = await orchestrator.run([FetchSource('builds', returning([], delay=1))])
        self.assertEqual(snapshot['error']['kind'], 'timeout')

    async def test_unexpected_exception_classified(self):
        """Test that arbitrary fetch exceptions are classified as unknown"""
        orchestrator = FetchOrchestrator('test')
        snapshot = await orchestrator.run([FetchSource('builds', raising(RuntimeError('boom')))])
        self.assertEqual(snapshot['error']['kind'], 'unknown')
        self.assertNotIn('boom', snapshot['error']['message'])

    async def test_pending_during_run(self):
        """Test that the view is not ready while a fetch is in flight"""
        orchestrator = FetchOrchestrator('test')
        observed = {}

        async def slow():
            await asyncio.sleep(0.01)
            return []

        async def probe():
            observed['ready'] = orchestrator.state.is_ready()
            observed['loading'] = dict(orchestrator.state.loading)
            return []

        await orchestrator.run([FetchSource('a', slow), FetchSource('b', probe)])
        self.assertFalse(observed['ready'])
        self.assertEqual(observed['loading']['a'], LoadingState.PENDING)
        self.assertTrue(orchestrator.state.is_ready())

    async def test_last_request_wins(self):
        """Test that a slower, older run cannot overwrite a newer result"""
        orchestrator = FetchOrchestrator('test')
        first = asyncio.ensure_future(orchestrator.run([FetchSource('items', returning(['old'], delay=0.05))]))
        await asyncio.sleep(0)
        await orchestrator.run([FetchSource('items', returning(['new']))])
        await first
        self.assertEqual(orchestrator.state.get('items'), ['new'])
        self.assertTrue(orchestrator.state.is_ready())

    async def test_stale_failure_discarded(self):
        """Test that a superseded run failing late does not put the view in error"""
        orchestrator = FetchOrchestrator('test')
        first = asyncio.ensure_future(orchestrator.run([
            FetchSource('items', raising(ServerError(status_code=500), delay=0.05))]))
        await asyncio.sleep(0)
        await orchestrator.run([FetchSource('items', returning(['new']))])
        await first
        self.assertIsNone(orchestrator.state.error)
        self.assertEqual(orchestrator.state.get('items'), ['new'])

    async def test_run_id_in_logs(self):
        """Test that log lines carry the run id of the load"""
        orchestrator = FetchOrchestrator('pull-requests')
        with self.assertLogs('opsdash.fetch_orchestrator', level='INFO') as logs:
            await orchestrator.run([FetchSource('pull_requests', returning([]))])
            await orchestrator.run([FetchSource('pull_requests', returning([]))])
        self.assertTrue(any('[run_id=pull-requests-1]' in line for line in logs.output))
        self.assertTrue(any('[run_id=pull-requests-2]' in line for line in logs.output))

    async def test_retry_after_failure_recovers(self):
        """Test that a new run after an error clears it"""
        orchestrator = FetchOrchestrator('test')
        await orchestrator.run([FetchSource('builds', raising(ServerError(status_code=500)))])
        snapshot = await orchestrator.run([FetchSource('builds', returning(['b']))])
        self.assertTrue(snapshot['ready'])
        self.assertIsNone(snapshot['error'])


if __name__ == '__main__':
    unittest.main()
