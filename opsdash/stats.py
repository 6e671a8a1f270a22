#!/usr/bin/env python3
"""
Summary statistics for the Ops Dashboard engine

Pure functions reducing a raw entity list (plus auxiliary lists fetched from
separate sources) into a summary dict. Every summary carries:
- total: number of entities
- by_category: exhaustive, mutually exclusive breakdown (sums to total)
- rate: integer percentage, 0 when total is 0

Summaries are recomputed, never patched. StatsCache decides when to
recompute based on list identity.
"""

import logging
import math

logger = logging.getLogger(__name__)

# Success-rate health buckets (percentages)
HEALTHY_THRESHOLD = 90
FAIR_THRESHOLD = 70

HEALTH_HEALTHY = 'healthy'
HEALTH_FAIR = 'fair'
HEALTH_CRITICAL = 'critical'
HEALTH_UNKNOWN = 'unknown'

# Release status groups (lowercased)
RELEASE_WAITING_STATUSES = ('waitingforapproval',)
RELEASE_FAILED_STATUSES = ('failed', 'rejected')
RELEASE_IN_PROGRESS_STATUSES = ('inprogress', 'deploying')
RELEASE_PENDING_STATUSES = ('pending', 'notstarted', 'notdeployed')
RELEASE_CANCELED_STATUSES = ('canceled', 'cancelled', 'abandoned')
RELEASE_SUCCEEDED_STATUSES = ('succeeded',)

# Work item states
WORK_ITEM_COMPLETED_STATES = ('Done', 'Closed', 'Resolved', 'Completed')
WORK_ITEM_NOT_STARTED_STATES = ('Defined', 'New', 'Blocked', 'Paused', 'Removed', 'Released to Production')


def percent(matching, total):
    """Integer percentage rounded half up; 0 when total is 0"""
    if not total:
        return 0
    return int(math.floor(matching / total * 100 + 0.5))


def health_bucket(rate, total=None):
    """Classify a success rate: healthy (>=90), fair (70-89), critical (<70)

    Args:
        rate: Integer success rate percentage
        total: Optional sample size; 0 yields 'unknown'

    Returns:
        str: One of healthy, fair, critical, unknown
    """
    if total == 0:
        return HEALTH_UNKNOWN
    if rate >= HEALTHY_THRESHOLD:
        return HEALTH_HEALTHY
    if rate >= FAIR_THRESHOLD:
        return HEALTH_FAIR
    return HEALTH_CRITICAL


def _count_categories(items, categorize, categories):
    """Count items into a fixed, ordered set of categories"""
    counts = {name: 0 for name in categories}
    for item in items:
        counts[categorize(item)] += 1
    return counts


def pull_request_category(pr):
    if pr.is_active:
        return 'reviewed' if pr.has_reviewers else 'unassigned'
    if pr.status == 'completed':
        return 'completed'
    if pr.status == 'abandoned':
        return 'abandoned'
    return 'other'


def pull_request_stats(pull_requests, idle_pull_requests=None):
    """Calculate pull request summary statistics

    Args:
        pull_requests: List of PullRequest entities (primary list)
        idle_pull_requests: Idle list from the separate idle source. Its size
            is the idle count; idle-ness is never derived locally.

    Returns:
        dict: total, active, unassigned, conflicts, idle, by_category, rate
    """
    pull_requests = pull_requests or []
    by_category = _count_categories(
        pull_requests, pull_request_category,
        ('reviewed', 'unassigned', 'completed', 'abandoned', 'other'))
    total = len(pull_requests)

    return {
        'total': total,
        'active': by_category['reviewed'],
        'unassigned': by_category['unassigned'],
        'conflicts': sum(1 for pr in pull_requests if pr.has_conflicts),
        'idle': len(idle_pull_requests or ()),
        'by_category': by_category,
        'rate': percent(by_category['reviewed'], total),
    }


def build_category(build):
    if build.is_in_progress:
        return 'in_progress'
    return {
        'succeeded': 'succeeded',
        'failed': 'failed',
        'partiallySucceeded': 'partially_succeeded',
        'canceled': 'canceled',
    }.get(build.result, 'other')


def build_stats(builds):
    """Calculate build summary statistics

    'failed' and 'succeeded' count by result, 'in_progress' by status, the
    same way the pipelines view counts them. by_category resolves overlaps
    by putting in-progress builds first.

    Returns:
        dict: total, succeeded, failed, in_progress, partially_succeeded,
              canceled, by_category, success_rate, rate, health
    """
    builds = builds or []
    total = len(builds)
    succeeded = sum(1 for b in builds if b.result == 'succeeded')
    success_rate = percent(succeeded, total)

    return {
        'total': total,
        'succeeded': succeeded,
        'failed': sum(1 for b in builds if b.result == 'failed'),
        'in_progress': sum(1 for b in builds if b.is_in_progress),
        'partially_succeeded': sum(1 for b in builds if b.result == 'partiallySucceeded'),
        'canceled': sum(1 for b in builds if b.result == 'canceled'),
        'by_category': _count_categories(
            builds, build_category,
            ('in_progress', 'succeeded', 'failed', 'partially_succeeded', 'canceled', 'other')),
        'success_rate': success_rate,
        'rate': success_rate,
        'health': health_bucket(success_rate, total),
    }


def release_category(release):
    status = release.normalized_status
    if status in RELEASE_WAITING_STATUSES:
        return 'waiting_for_approval'
    if status in RELEASE_FAILED_STATUSES:
        return 'failed'
    if status in RELEASE_IN_PROGRESS_STATUSES:
        return 'in_progress'
    if status in RELEASE_PENDING_STATUSES:
        return 'pending'
    if status in RELEASE_CANCELED_STATUSES:
        return 'canceled'
    if status in RELEASE_SUCCEEDED_STATUSES:
        return 'succeeded'
    return 'other'


def release_stats(releases):
    """Calculate release summary statistics from the local release list

    Returns:
        dict: total, pending_approvals, active_deployments, by_category,
              success_rate, rate
    """
    releases = releases or []
    total = len(releases)
    by_category = _count_categories(
        releases, release_category,
        ('waiting_for_approval', 'failed', 'in_progress', 'pending', 'canceled', 'succeeded', 'other'))
    success_rate = percent(by_category['succeeded'], total)

    return {
        'total': total,
        'pending_approvals': by_category['waiting_for_approval'],
        'active_deployments': by_category['in_progress'],
        'by_category': by_category,
        'success_rate': success_rate,
        'rate': success_rate,
    }


def _finite_number(value, default=0):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    return value


def normalize_release_report(report):
    """Normalize the server-reported release stats

    The backend reports totalReleases, successRate, pendingApprovals and
    activeDeployments for the selected time range. Missing or non-finite
    values become 0, success_rate is rounded half up to an integer percentage
    and is 0 whenever the total is 0.

    Args:
        report: dict from the release stats source (or None)

    Returns:
        dict: total, success_rate, rate, pending_approvals, active_deployments
    """
    report = report if isinstance(report, dict) else {}
    total = _finite_number(report.get('totalReleases', report.get('total')))
    total = max(0, int(total))

    if total == 0:
        success_rate = 0
    else:
        success_rate = _finite_number(report.get('successRate'))
        success_rate = max(0, min(100, int(math.floor(success_rate + 0.5))))

    return {
        'total': total,
        'success_rate': success_rate,
        'rate': success_rate,
        'pending_approvals': max(0, int(_finite_number(report.get('pendingApprovals')))),
        'active_deployments': max(0, int(_finite_number(report.get('activeDeployments')))),
    }


def work_item_category(item):
    if item.state in WORK_ITEM_COMPLETED_STATES:
        return 'completed'
    if item.state in WORK_ITEM_NOT_STARTED_STATES or item.state == 'Unknown':
        return 'not_started'
    return 'active'


def work_item_stats(work_items, overdue_items=None):
    """Calculate sprint work item summary statistics

    Args:
        work_items: List of WorkItem entities for the current sprint
        overdue_items: List from the separate overdue source

    Returns:
        dict: total, active, completed, overdue, unassigned, by_category, rate
    """
    work_items = work_items or []
    total = len(work_items)
    by_category = _count_categories(
        work_items, work_item_category, ('completed', 'active', 'not_started'))

    return {
        'total': total,
        'active': by_category['active'],
        'completed': by_category['completed'],
        'overdue': len(overdue_items or ()),
        'unassigned': sum(1 for item in work_items if not item.assigned_to),
        'by_category': by_category,
        'rate': percent(by_category['completed'], total),
    }


class StatsCache:
    """Recompute a summary only when the input lists change identity

    Lists are replaced, never mutated, so identity is a reliable change signal.
    """

    def __init__(self, compute):
        self.compute = compute
        self._inputs = None
        self._value = None
        self.recomputations = 0

    def get(self, *inputs):
        if self._inputs is not None and len(inputs) == len(self._inputs) and all(
                a is b for a, b in zip(inputs, self._inputs)):
            return self._value
        self._value = self.compute(*inputs)
        self._inputs = inputs
        self.recomputations += 1
        logger.debug(f"Recomputed {getattr(self.compute, '__name__', 'stats')} (#{self.recomputations})")
        return self._value
