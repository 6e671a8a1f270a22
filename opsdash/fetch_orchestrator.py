#!/usr/bin/env python3
"""
Fetch orchestration for the Ops Dashboard engine

A view issues several independent backend fetches. FetchOrchestrator runs
each one as its own task on the current event loop, tracks a per-source
loading flag, and applies the failure policy:

- primary source fails   -> the whole view goes to an error state
- secondary source fails -> that slot falls back to its default, view continues

Results from a superseded run are discarded when they arrive (last request
wins), using per-source generation counters captured when the fetch is issued.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field

from opsdash.errors import Unauthorized, classify_error

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SEC = 30


class LoadingState(enum.Enum):
    PENDING = 'pending'
    LOADED = 'loaded'
    FAILED = 'failed'


def is_settled(loading):
    """True when no source in the loading map is still pending"""
    return all(state is not LoadingState.PENDING for state in loading.values())


@dataclass(frozen=True)
class FetchSource:
    """One named backend fetch belonging to a view

    Attributes:
        name: Slot name in the view state (e.g. 'pull_requests')
        fetch: Zero-argument callable returning an awaitable
        primary: Failure aborts the view when True
        default: Factory for the value stored when a secondary fetch fails
    """

    name: str
    fetch: object
    primary: bool = True
    default: object = field(default=list)


@dataclass(frozen=True)
class ViewError:
    """Retryable view-level error raised by a failed primary source"""

    source: str
    error: Exception

    @property
    def kind(self):
        return self.error.kind

    @property
    def message(self):
        return self.error.user_message

    def to_dict(self):
        result = self.error.to_dict()
        result['source'] = self.source
        result['retryable'] = True
        return result


class ViewState:
    """Per-view fetch state: data slots, loading flags, view error

    Every update replaces the slot value and the containing dict; nothing is
    mutated in place, so list identity can be used as a change signal.
    """

    def __init__(self):
        self.data = {}
        self.loading = {}
        self.primary = {}
        self.error = None
        self.generation = 0

    def begin(self, sources):
        """Mark every source pending and clear the previous view error"""
        self.generation += 1
        self.error = None
        self.primary = {**self.primary, **{s.name: s.primary for s in sources}}
        self.loading = {**self.loading, **{s.name: LoadingState.PENDING for s in sources}}

    def set_loaded(self, name, value):
        self.data = {**self.data, name: value}
        self.loading = {**self.loading, name: LoadingState.LOADED}

    def set_failed(self, name, value):
        self.data = {**self.data, name: value}
        self.loading = {**self.loading, name: LoadingState.FAILED}

    def fail_view(self, view_error):
        """Enter the error state: discard every stored list, no flag left pending"""
        self.error = view_error
        self.data = {}
        self.loading = {name: LoadingState.FAILED for name in self.loading}

    def get(self, name, default=None):
        return self.data.get(name, default)

    def is_ready(self):
        """No view error and every source loaded (or failed, for secondary sources)"""
        if self.error is not None:
            return False
        for name, state in self.loading.items():
            if state is LoadingState.LOADED:
                continue
            if state is LoadingState.FAILED and not self.primary.get(name, True):
                continue
            return False
        return True

    def snapshot(self):
        return {
            'generation': self.generation,
            'ready': self.is_ready(),
            'error': self.error.to_dict() if self.error else None,
            'loading': {name: state.value for name, state in self.loading.items()},
            'data': dict(self.data),
        }


class FetchOrchestrator:
    """Run a view's fetches concurrently and fold outcomes into a ViewState

    Attributes:
        name: View name used in run ids (e.g. 'pull-requests')
        state: ViewState owned by the view
        timeout: Per-fetch timeout in seconds
        on_unauthorized: Callable invoked once per run when any fetch is
            rejected as unauthorized (session teardown and sign-out)
    """

    def __init__(self, name, state=None, timeout=DEFAULT_FETCH_TIMEOUT_SEC, on_unauthorized=None):
        self.name = name
        self.state = state if state is not None else ViewState()
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self.run_counter = 0
        self._generations = {}
        self._signed_out_runs = set()

    def _generate_run_id(self):
        self.run_counter += 1
        return f"{self.name}-{self.run_counter}"

    def _is_current(self, name, token):
        return self._generations.get(name) == token

    def _retire(self, tokens):
        """Invalidate every source of a run that has not been superseded yet"""
        for name, token in tokens.items():
            if self._is_current(name, token):
                self._generations[name] = token + 1

    async def run(self, sources):
        """Fetch all sources of one view load

        Args:
            sources: List of FetchSource

        Returns:
            dict: ViewState snapshot after every source settled. Fetch
                  failures are folded into the state, never raised.
        """
        run_id = self._generate_run_id()
        log_prefix = f"[run_id={run_id}] "

        tokens = {}
        for source in sources:
            tokens[source.name] = self._generations.get(source.name, 0) + 1
            self._generations[source.name] = tokens[source.name]

        self.state.begin(sources)
        logger.info(f"{log_prefix}Starting fetch of {len(sources)} sources: {', '.join(s.name for s in sources)}")

        tasks = {}
        for source in sources:
            tasks[source.name] = asyncio.ensure_future(
                self._run_source(source, tokens, tasks, log_prefix))

        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                raise result

        snapshot = self.state.snapshot()
        if self.state.error is not None:
            logger.error(f"{log_prefix}View load failed: {self.state.error.message}")
        else:
            failed = [name for name, state in snapshot['loading'].items() if state == LoadingState.FAILED.value]
            if failed:
                logger.info(f"{log_prefix}View loaded with degraded sections: {', '.join(failed)}")
            else:
                logger.info(f"{log_prefix}View loaded successfully")
        return snapshot

    async def _run_source(self, source, tokens, tasks, log_prefix):
        token = tokens[source.name]
        try:
            value = await asyncio.wait_for(source.fetch(), timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_error(e, endpoint=source.name)
            if not self._is_current(source.name, token):
                logger.debug(f"{log_prefix}Discarding stale failure from {source.name}")
                return
            if source.primary:
                self._fail_view(source, error, tokens, tasks, log_prefix)
            else:
                logger.warning(f"{log_prefix}Secondary source {source.name} failed ({error.kind}): {error.user_message}")
                self.state.set_failed(source.name, source.default())
                if isinstance(error, Unauthorized):
                    self._sign_out(log_prefix)
            return

        if not self._is_current(source.name, token):
            logger.debug(f"{log_prefix}Discarding stale result from {source.name}")
            return
        self.state.set_loaded(source.name, value)
        logger.debug(f"{log_prefix}Loaded {source.name}")

    def _fail_view(self, source, error, tokens, tasks, log_prefix):
        logger.error(f"{log_prefix}Primary source {source.name} failed ({error.kind}): {error.user_message}")
        self._retire(tokens)
        self.state.fail_view(ViewError(source=source.name, error=error))

        current = asyncio.current_task()
        for task in tasks.values():
            if task is not current and not task.done():
                task.cancel()

        if isinstance(error, Unauthorized):
            self._sign_out(log_prefix)

    def _sign_out(self, log_prefix):
        """Tear the session down at most once per run, whichever source saw the 401"""
        if log_prefix in self._signed_out_runs:
            return
        self._signed_out_runs.add(log_prefix)
        logger.warning(f"{log_prefix}Session rejected by backend, signing out")
        if self.on_unauthorized is not None:
            self.on_unauthorized()
