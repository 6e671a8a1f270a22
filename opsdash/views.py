#!/usr/bin/env python3
"""
View controllers for the Ops Dashboard engine

Each view owns its ViewState and composes the engine pieces:

    load() -> FetchOrchestrator.run(sources)
           -> stats()   (StatsCache over the primary list)
           -> ordered() (filter + priority sort over the primary list)

Views are driven by explicit triggers only (load, refresh, retry, filter,
sort, page and time-range changes). There is no background refresh.
"""

import logging

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
    entity_to_dict,
)
from opsdash.fetch_orchestrator import (
    DEFAULT_FETCH_TIMEOUT_SEC,
    FetchOrchestrator,
    FetchSource,
    LoadingState,
    ViewState,
)
from opsdash.pagination import (
    DEFAULT_ITEMS_PER_PAGE,
    DEFAULT_TIME_RANGE,
    PaginationController,
    TimeRange,
)
from opsdash.pipeline import (
    ALL,
    DEFAULT_SORT_KEY,
    FILTER_ALL,
    SORT_KEYS,
    FilterCriteria,
    filter_options,
    predicate_names,
    render,
)
from opsdash.priority import classify
from opsdash.session import COMPACT_LAYOUT_ENABLED, RELEASE_AI_INSIGHTS_ENABLED
from opsdash.stats import (
    StatsCache,
    build_stats,
    pull_request_stats,
    release_stats,
    work_item_stats,
)

logger = logging.getLogger(__name__)

DEFAULT_BUILD_LIMIT = 20
ATTENTION_LIMIT = 5


class BaseView:
    """Shared view plumbing; subclasses declare sources and stats

    Subclasses set:
        name: View name used in run ids and logs
        kind: Entity kind of the primary list
        primary_slot: State slot holding the primary list
        auxiliary_slot: State slot feeding stats and priority (or None)
    """

    name = 'view'
    kind = None
    primary_slot = None
    auxiliary_slot = None

    def __init__(self, backend, session=None, preferences=None, timeout=DEFAULT_FETCH_TIMEOUT_SEC):
        self.backend = backend
        self.session = session
        self.preferences = preferences
        self.state = ViewState()
        self.orchestrator = FetchOrchestrator(
            self.name, self.state, timeout=timeout, on_unauthorized=self._on_unauthorized)
        self.criteria = ALL
        self.sort_key = DEFAULT_SORT_KEY
        self._stats_cache = StatsCache(self.compute_stats)
        self._render_cache = StatsCache(self._render)

    def _on_unauthorized(self):
        if self.session is not None:
            self.session.sign_out()

    def sources(self):
        raise NotImplementedError

    async def load(self):
        """Fetch every source of the view; returns the view snapshot"""
        await self.orchestrator.run(self.sources())
        return self.snapshot()

    async def refresh(self):
        return await self.load()

    async def retry(self):
        logger.info(f"Retrying {self.name} view")
        return await self.load()

    @property
    def loading(self):
        return dict(self.state.loading)

    @property
    def error(self):
        return self.state.error

    def is_ready(self):
        return self.state.is_ready()

    def raw(self):
        return self.state.get(self.primary_slot, [])

    def auxiliary(self):
        if self.auxiliary_slot is None:
            return None
        return self.state.get(self.auxiliary_slot)

    def build_context(self, auxiliary):
        return {}

    def compute_stats(self, raw, auxiliary):
        raise NotImplementedError

    def stats(self):
        return self._stats_cache.get(self.raw(), self.auxiliary())

    def set_filter(self, predicate=FILTER_ALL, value=None):
        """Replace the active predicate, keeping the search text

        Raises:
            ValueError: If the predicate is not defined for this view's kind
        """
        if predicate not in predicate_names(self.kind):
            raise ValueError(f"Unknown {self.kind} filter: {predicate}")
        self.criteria = FilterCriteria(predicate=predicate, value=value, search=self.criteria.search)

    def set_search(self, text):
        self.criteria = FilterCriteria(
            predicate=self.criteria.predicate, value=self.criteria.value, search=text or '')

    def set_sort(self, sort_key):
        if sort_key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_key}")
        self.sort_key = sort_key

    def _render(self, raw, auxiliary, criteria, sort_key):
        return render(self.kind, raw, criteria, sort_key, self.build_context(auxiliary))

    def ordered(self):
        """Filtered, priority-ordered primary list (recomputed only on input change)"""
        return self._render_cache.get(self.raw(), self.auxiliary(), self.criteria, self.sort_key)

    def filter_options(self):
        return filter_options(self.kind, self.raw())

    def _items(self, entities):
        context = self.build_context(self.auxiliary())
        items = []
        for entity in entities:
            item = entity_to_dict(entity)
            item['priority'] = classify(self.kind, entity, context)
            items.append(item)
        return items

    def snapshot(self):
        """JSON-friendly state for presentation layers"""
        state = self.state.snapshot()
        ready = state['ready']
        return {
            'view': self.name,
            'ready': ready,
            'loading': state['loading'],
            'error': state['error'],
            'stats': self.stats() if ready else None,
            'filter': {
                'predicate': self.criteria.predicate,
                'value': self.criteria.value,
                'search': self.criteria.search,
            },
            'sort': self.sort_key,
            'items': self._items(self.ordered()) if ready else [],
        }


class PullRequestsView(BaseView):
    """Active pull requests plus the externally computed idle list"""

    name = 'pull-requests'
    kind = KIND_PULL_REQUEST
    primary_slot = 'pull_requests'
    auxiliary_slot = 'idle_pull_requests'

    def sources(self):
        return [
            FetchSource('pull_requests', self.backend.get_pull_requests),
            FetchSource('idle_pull_requests', self.backend.get_idle_pull_requests,
                        primary=False, default=frozenset),
        ]

    def auxiliary(self):
        return self.state.get(self.auxiliary_slot, frozenset())

    def build_context(self, auxiliary):
        return {'idle_ids': auxiliary or frozenset()}

    def compute_stats(self, raw, auxiliary):
        return pull_request_stats(raw, auxiliary)


class PipelinesView(BaseView):
    """Recent builds, optionally narrowed server-side to one repository"""

    name = 'pipelines'
    kind = KIND_BUILD
    primary_slot = 'builds'

    def __init__(self, backend, session=None, preferences=None, timeout=DEFAULT_FETCH_TIMEOUT_SEC,
                 build_limit=DEFAULT_BUILD_LIMIT):
        super().__init__(backend, session, preferences, timeout)
        self.build_limit = build_limit
        self.repository = 'all'

    def sources(self):
        limit, repository = self.build_limit, self.repository
        return [
            FetchSource('builds', lambda: self.backend.get_recent_builds(limit, repository)),
        ]

    def compute_stats(self, raw, auxiliary):
        return build_stats(raw)

    async def set_build_limit(self, limit):
        """Change how many builds are requested; re-fetches"""
        if limit <= 0:
            raise ValueError(f"Build limit must be positive, got: {limit}")
        self.build_limit = limit
        return await self.load()

    async def set_repository(self, repository):
        """Narrow the build list server-side; 'all' removes the filter. Re-fetches"""
        self.repository = repository or 'all'
        return await self.load()

    def snapshot(self):
        result = super().snapshot()
        result['build_limit'] = self.build_limit
        result['repository'] = self.repository
        result['filter_options'] = self.filter_options()
        return result


class ReleasesView(BaseView):
    """Paged, time-ranged releases with server-reported stats

    The server-reported total drives page counts. A time-range change resets
    to page 1 and issues exactly one fetch; a page change fetches only the
    releases of the new page, and only when the page actually changes.
    """

    name = 'releases'
    kind = KIND_RELEASE
    primary_slot = 'releases'

    def __init__(self, backend, session=None, preferences=None, timeout=DEFAULT_FETCH_TIMEOUT_SEC,
                 items_per_page=DEFAULT_ITEMS_PER_PAGE, time_range=None):
        super().__init__(backend, session, preferences, timeout)
        self.pagination = PaginationController(items_per_page, time_range)
        self._local_stats_cache = StatsCache(release_stats)

    def _releases_source(self, request):
        return FetchSource(
            'releases',
            lambda: self.backend.get_releases(request.time_range, request.limit, request.offset))

    def _stats_source(self, time_range):
        return FetchSource('release_stats', lambda: self.backend.get_release_stats(time_range))

    def sources(self):
        request = self.pagination.current_request()
        return [
            self._stats_source(request.time_range),
            self._releases_source(request),
            FetchSource('release_definitions', self.backend.get_release_definitions, primary=False),
        ]

    async def _run(self, sources):
        await self.orchestrator.run(sources)
        report = self.state.get('release_stats')
        if report is not None:
            self.pagination.set_total_count(report.get('total', 0))
        return self.snapshot()

    async def load(self):
        return await self._run(self.sources())

    def _needs_full_fetch(self):
        """True after a view error or while any primary source is not loaded"""
        if self.state.error is not None:
            return True
        return any(
            self.state.loading.get(name) is not LoadingState.LOADED
            for name in ('release_stats', 'releases'))

    async def change_time_range(self, time_range):
        """Switch the time window; always exactly one re-fetch of page 1"""
        request = self.pagination.change_time_range(time_range)
        if self._needs_full_fetch():
            return await self._run(self.sources())
        return await self._run([self._stats_source(request.time_range), self._releases_source(request)])

    async def change_page(self, page):
        """Go to a page; returns None without fetching if the page is unchanged

        After a failed load the whole view is re-fetched for the new page so
        every primary source is loaded again.
        """
        request = self.pagination.change_page(page)
        if request is None:
            return None
        logger.debug(f"Fetching releases page {request.page} (offset={request.offset}, limit={request.limit})")
        if self._needs_full_fetch():
            return await self._run(self.sources())
        return await self._run([self._releases_source(request)])

    async def retry(self):
        """Retry from the default 1-day window, page 1"""
        logger.info(f"Retrying {self.name} view with default time range")
        self.pagination.change_time_range(TimeRange.preset(DEFAULT_TIME_RANGE))
        return await self.load()

    def compute_stats(self, raw, report):
        return dict(report or {})

    def stats(self):
        return self._stats_cache.get(self.raw(), self.state.get('release_stats'))

    def local_stats(self):
        """Categorical counts over the releases on the current page"""
        return self._local_stats_cache.get(self.raw())

    @property
    def ai_insights_enabled(self):
        if self.preferences is None:
            return False
        return self.preferences.get(RELEASE_AI_INSIGHTS_ENABLED)

    def set_ai_insights_enabled(self, enabled):
        if self.preferences is None:
            raise RuntimeError("No preference store configured")
        self.preferences.set(RELEASE_AI_INSIGHTS_ENABLED, enabled)

    def snapshot(self):
        result = super().snapshot()
        result['pagination'] = self.pagination.snapshot()
        result['local_stats'] = self.local_stats() if result['ready'] else None
        result['definitions'] = [
            d.get('name') for d in self.state.get('release_definitions', []) if d.get('name')]
        result['filter_options'] = self.filter_options()
        result['ai_insights_enabled'] = self.ai_insights_enabled
        return result


class WorkItemsView(BaseView):
    """Current sprint work items with the separately fetched overdue list"""

    name = 'work-items'
    kind = KIND_WORK_ITEM
    primary_slot = 'work_items'
    auxiliary_slot = 'overdue_items'

    def sources(self):
        return [
            FetchSource('work_items', self.backend.get_work_items),
            FetchSource('overdue_items', self.backend.get_overdue_items, primary=False),
            FetchSource('sprint_summary', self.backend.get_sprint_summary, primary=False, default=dict),
        ]

    def auxiliary(self):
        return self.state.get(self.auxiliary_slot, [])

    def build_context(self, auxiliary):
        return {'overdue_ids': frozenset(item.id for item in auxiliary or [])}

    def compute_stats(self, raw, auxiliary):
        return work_item_stats(raw, auxiliary)

    def snapshot(self):
        result = super().snapshot()
        result['sprint_summary'] = self.state.get('sprint_summary', {})
        return result


class DashboardView(BaseView):
    """Landing view: server-aggregated summary plus what needs attention first

    Only the summary is primary. The build and pull request lists feed the
    attention section and degrade to empty on failure.
    """

    name = 'dashboard'
    primary_slot = 'summary'

    def __init__(self, backend, session=None, preferences=None, timeout=DEFAULT_FETCH_TIMEOUT_SEC,
                 build_limit=DEFAULT_BUILD_LIMIT):
        super().__init__(backend, session, preferences, timeout)
        self.build_limit = build_limit

    def sources(self):
        limit = self.build_limit
        return [
            FetchSource('summary', self.backend.get_dashboard_summary, default=dict),
            FetchSource('builds', lambda: self.backend.get_recent_builds(limit), primary=False),
            FetchSource('pull_requests', self.backend.get_pull_requests, primary=False),
            FetchSource('idle_pull_requests', self.backend.get_idle_pull_requests,
                        primary=False, default=frozenset),
        ]

    def compute_stats(self, raw, auxiliary):
        return raw

    def stats(self):
        return self.state.get('summary', {})

    def attention(self, limit=ATTENTION_LIMIT):
        """Most urgent builds and pull requests, by priority rank"""
        idle = self.state.get('idle_pull_requests', frozenset())
        builds = render(KIND_BUILD, self.state.get('builds', []))
        pull_requests = render(KIND_PULL_REQUEST, self.state.get('pull_requests', []),
                               context={'idle_ids': idle})
        return {
            'builds': [dict(entity_to_dict(b), priority=classify(KIND_BUILD, b)) for b in builds[:limit]],
            'pull_requests': [
                dict(entity_to_dict(pr), priority=classify(KIND_PULL_REQUEST, pr, {'idle_ids': idle}))
                for pr in pull_requests[:limit]
            ],
        }

    @property
    def compact_layout(self):
        if self.preferences is None:
            return False
        return self.preferences.get(COMPACT_LAYOUT_ENABLED)

    def snapshot(self):
        state = self.state.snapshot()
        ready = state['ready']
        return {
            'view': self.name,
            'ready': ready,
            'loading': state['loading'],
            'error': state['error'],
            'stats': self.stats() if ready else None,
            'attention': self.attention() if ready else None,
            'compact_layout': self.compact_layout,
        }


VIEWS = {
    'dashboard': DashboardView,
    'pull-requests': PullRequestsView,
    'pipelines': PipelinesView,
    'releases': ReleasesView,
    'work-items': WorkItemsView,
}
