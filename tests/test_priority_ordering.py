#!/usr/bin/env python3
"""
Tests for urgency ranking and the filter/sort pipeline
- Rank tables per entity kind
- Stable two-level ordering (priority, secondary key)
- Single-predicate filtering and free-text search
"""

import unittest
import sys
import os
from datetime import datetime, timedelta, timezone

# Add parent directory to path to import the opsdash package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
    Build,
    PullRequest,
    Release,
    WorkItem,
)
from opsdash.pipeline import (
    FilterCriteria,
    apply_filter,
    filter_options,
    predicate_names,
    render,
    sort_entities,
)
from opsdash.priority import (
    build_priority,
    classify,
    pull_request_priority,
    release_priority,
    work_item_priority,
)

BASE_TIME = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def at(hours_ago):
    return BASE_TIME - timedelta(hours=hours_ago)


class TestPriority(unittest.TestCase):
    """Test per-kind rank functions"""

    def test_pull_request_ranks(self):
        """Test conflicts < unassigned < idle < active < done"""
        conflicts = PullRequest(id=1, status='active', merge_status='conflicts', reviewers=('Sam',))
        unassigned = PullRequest(id=2, status='active')
        idle = PullRequest(id=3, status='active', reviewers=('Sam',))
        active = PullRequest(id=4, status='active', reviewers=('Sam',))
        done = PullRequest(id=5, status='completed', reviewers=('Sam',))
        idle_ids = frozenset({3})
        ranks = [pull_request_priority(pr, idle_ids) for pr in (conflicts, unassigned, idle, active, done)]
        self.assertEqual(ranks, [0, 1, 2, 3, 4])

    def test_build_ranks(self):
        """Test in progress < failed < partially succeeded < canceled < succeeded"""
        builds = [
            Build(id=1, status='inProgress'),
            Build(id=2, status='completed', result='failed'),
            Build(id=3, status='completed', result='partiallySucceeded'),
            Build(id=4, status='completed', result='canceled'),
            Build(id=5, status='completed', result='succeeded'),
        ]
        self.assertEqual([build_priority(b) for b in builds], [0, 1, 2, 3, 4])

    def test_release_ranks_case_insensitive(self):
        """Test release ranks with mixed-case statuses"""
        cases = {
            'WaitingForApproval': 0,
            'failed': 1,
            'REJECTED': 1,
            'inProgress': 2,
            'Deploying': 2,
            'pending': 3,
            'notStarted': 3,
            'canceled': 4,
            'cancelled': 4,
            'abandoned': 4,
            'succeeded': 5,
            'notDeployed': 5,
        }
        for status, rank in cases.items():
            with self.subTest(status=status):
                self.assertEqual(release_priority(Release(id=1, status=status)), rank)

    def test_work_item_ranks(self):
        """Test overdue < active unassigned < active < not started < completed"""
        overdue_ids = frozenset({1})
        items = [
            WorkItem(id=1, state='Active', assigned_to='Sam'),
            WorkItem(id=2, state='Active'),
            WorkItem(id=3, state='Active', assigned_to='Sam'),
            WorkItem(id=4, state='New'),
            WorkItem(id=5, state='Done'),
        ]
        self.assertEqual([work_item_priority(i, overdue_ids) for i in items], [0, 1, 2, 3, 4])

    def test_completed_overdue_item_ranks_done(self):
        """Test that a completed item stays last even if listed as overdue"""
        self.assertEqual(work_item_priority(WorkItem(id=1, state='Closed'), frozenset({1})), 4)

    def test_classify_unknown_kind(self):
        """Test that an unknown kind raises ValueError"""
        with self.assertRaises(ValueError):
            classify('deployment', Build(id=1))


class TestOrdering(unittest.TestCase):
    """Test sort_entities() and render()"""

    def test_conflicts_before_unassigned(self):
        """Test [active unassigned, conflicts] renders conflicts first"""
        pr1 = PullRequest(id=1, status='active')
        pr2 = PullRequest(id=2, status='active', merge_status='conflicts', reviewers=('Sam',))
        ordered = render(KIND_PULL_REQUEST, [pr1, pr2])
        self.assertEqual([pr.id for pr in ordered], [2, 1])

    def test_conflicts_always_first(self):
        """Test that every conflicting PR precedes every non-conflicting one"""
        prs = [
            PullRequest(id=i, status='active', reviewers=('Sam',) if i % 2 else (),
                        merge_status='conflicts' if i % 3 == 0 else 'succeeded',
                        created_on=at(i))
            for i in range(1, 13)
        ]
        ordered = render(KIND_PULL_REQUEST, prs, sort_key='oldest')
        flags = [pr.has_conflicts for pr in ordered]
        self.assertEqual(flags, sorted(flags, reverse=True))

    def test_newest_within_rank(self):
        """Test newest-first secondary order within one rank"""
        builds = [
            Build(id=1, status='completed', result='succeeded', start_time=at(5)),
            Build(id=2, status='completed', result='succeeded', start_time=at(1)),
            Build(id=3, status='completed', result='failed', start_time=at(10)),
        ]
        ordered = render(KIND_BUILD, builds)
        self.assertEqual([b.id for b in ordered], [3, 2, 1])

    def test_oldest_and_missing_timestamp(self):
        """Test oldest-first with a missing timestamp sorting as the epoch"""
        builds = [
            Build(id=1, status='completed', result='succeeded', start_time=at(5)),
            Build(id=2, status='completed', result='succeeded'),
        ]
        ordered = sort_entities(KIND_BUILD, builds, 'oldest')
        self.assertEqual([b.id for b in ordered], [2, 1])

    def test_title_sort_case_sensitive(self):
        """Test lexicographic, case-sensitive title ordering"""
        releases = [Release(id=1, name='beta', status='succeeded'),
                    Release(id=2, name='Alpha', status='succeeded'),
                    Release(id=3, name='alpha', status='succeeded')]
        ordered = sort_entities(KIND_RELEASE, releases, 'title')
        self.assertEqual([r.name for r in ordered], ['Alpha', 'alpha', 'beta'])

    def test_stable_for_equal_keys(self):
        """Test that equal (priority, secondary) keys keep input order"""
        builds = [Build(id=i, status='completed', result='succeeded', start_time=at(1)) for i in range(6)]
        ordered = render(KIND_BUILD, builds)
        self.assertEqual([b.id for b in ordered], list(range(6)))

    def test_input_not_modified(self):
        """Test that render returns a new list and leaves the input alone"""
        builds = [Build(id=1, status='completed', result='succeeded'), Build(id=2, status='inProgress')]
        original = list(builds)
        render(KIND_BUILD, builds)
        self.assertEqual(builds, original)

    def test_unknown_sort_key_falls_back_to_newest(self):
        """Test that an unknown sort key behaves like newest"""
        builds = [
            Build(id=1, status='completed', result='succeeded', start_time=at(5)),
            Build(id=2, status='completed', result='succeeded', start_time=at(1)),
        ]
        with self.assertLogs('opsdash.pipeline', level='WARNING'):
            ordered = sort_entities(KIND_BUILD, builds, 'popularity')
        self.assertEqual([b.id for b in ordered], [2, 1])


class TestFiltering(unittest.TestCase):
    """Test apply_filter() and filter_options()"""

    def setUp(self):
        self.prs = [
            PullRequest(id=1, title='Fix login bug', status='active', reviewers=('Sam',)),
            PullRequest(id=2, title='Add metrics', status='active'),
            PullRequest(id=3, title='Login page copy', status='active', merge_status='conflicts'),
            PullRequest(id=4, title='Old change', status='completed'),
        ]

    def test_predicates(self):
        """Test each pull request predicate"""
        context = {'idle_ids': frozenset({4})}
        cases = {
            'all': [1, 2, 3, 4],
            'under-review': [1],
            'unassigned': [2, 3],
            'idle': [4],
            'conflicts': [3],
        }
        for predicate, expected in cases.items():
            with self.subTest(predicate=predicate):
                result = apply_filter(KIND_PULL_REQUEST, self.prs, FilterCriteria(predicate), context)
                self.assertEqual([pr.id for pr in result], expected)

    def test_search_case_insensitive(self):
        """Test free-text search combined with the active predicate"""
        result = apply_filter(KIND_PULL_REQUEST, self.prs, FilterCriteria(search='LOGIN'))
        self.assertEqual([pr.id for pr in result], [1, 3])
        result = apply_filter(KIND_PULL_REQUEST, self.prs, FilterCriteria('conflicts', search='login'))
        self.assertEqual([pr.id for pr in result], [3])

    def test_idempotent(self):
        """Test that filtering an already filtered list changes nothing"""
        criteria = FilterCriteria('unassigned', search='a')
        once = apply_filter(KIND_PULL_REQUEST, self.prs, criteria)
        twice = apply_filter(KIND_PULL_REQUEST, once, criteria)
        self.assertEqual(once, twice)

    def test_unknown_predicate(self):
        """Test that an unknown predicate raises ValueError"""
        with self.assertRaises(ValueError):
            apply_filter(KIND_PULL_REQUEST, self.prs, FilterCriteria('stale'))

    def test_value_predicates(self):
        """Test value-bearing release and build predicates"""
        releases = [
            Release(id=1, name='R1', status='failed', definition_name='web',
                    environments=(('staging', 'rejected'),)),
            Release(id=2, name='R2', status='succeeded', definition_name='api',
                    environments=(('staging', 'succeeded'), ('production', 'succeeded'))),
        ]
        by_env = apply_filter(KIND_RELEASE, releases, FilterCriteria('environment', 'production'))
        self.assertEqual([r.id for r in by_env], [2])
        by_def = apply_filter(KIND_RELEASE, releases, FilterCriteria('definition', 'web'))
        self.assertEqual([r.id for r in by_def], [1])
        by_status = apply_filter(KIND_RELEASE, releases, FilterCriteria('status', 'succeeded'))
        self.assertEqual([r.id for r in by_status], [2])

        builds = [Build(id=1, repository='web'), Build(id=2, repository='api')]
        self.assertEqual([b.id for b in apply_filter(KIND_BUILD, builds, FilterCriteria('repository', 'api'))], [2])

    def test_work_item_overdue(self):
        """Test the overdue predicate uses the overdue id set"""
        items = [WorkItem(id=1, state='Active'), WorkItem(id=2, state='Active')]
        result = apply_filter(KIND_WORK_ITEM, items, FilterCriteria('overdue'), {'overdue_ids': frozenset({2})})
        self.assertEqual([i.id for i in result], [2])

    def test_predicate_names(self):
        """Test the advertised predicate names per kind"""
        self.assertEqual(predicate_names(KIND_PULL_REQUEST),
                         ('all', 'under-review', 'unassigned', 'idle', 'conflicts'))
        self.assertIn('repository', predicate_names(KIND_BUILD))

    def test_filter_options(self):
        """Test distinct, sorted filter choices"""
        releases = [
            Release(id=1, definition_name='web', status='failed', environments=(('staging', 'x'),)),
            Release(id=2, definition_name='api', status='failed',
                    environments=(('production', 'x'), ('staging', 'x'))),
        ]
        options = filter_options(KIND_RELEASE, releases)
        self.assertEqual(options['environment'], ['production', 'staging'])
        self.assertEqual(options['definition'], ['api', 'web'])
        self.assertEqual(options['status'], ['failed'])
        self.assertEqual(filter_options(KIND_PULL_REQUEST, []), {})


if __name__ == '__main__':
    unittest.main()
