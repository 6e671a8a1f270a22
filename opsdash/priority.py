#!/usr/bin/env python3
"""
Urgency ranks for the Ops Dashboard engine

Each entity kind gets a small integer rank used only as the primary sort key
(lower sorts first). The ordering puts what blocks forward progress ahead of
what is in flight, and what is in flight ahead of what already finished.
"""

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
)
from opsdash.stats import (
    RELEASE_CANCELED_STATUSES,
    RELEASE_FAILED_STATUSES,
    RELEASE_IN_PROGRESS_STATUSES,
    RELEASE_WAITING_STATUSES,
    work_item_category,
)

# Pull request ranks
PR_CONFLICTS = 0
PR_UNASSIGNED = 1
PR_IDLE = 2
PR_ACTIVE = 3
PR_DONE = 4

# Build ranks
BUILD_IN_PROGRESS = 0
BUILD_FAILED = 1
BUILD_PARTIALLY_SUCCEEDED = 2
BUILD_CANCELED = 3
BUILD_DONE = 4

# Release ranks
RELEASE_WAITING_FOR_APPROVAL = 0
RELEASE_FAILED = 1
RELEASE_IN_PROGRESS = 2
RELEASE_PENDING = 3
RELEASE_CANCELED = 4
RELEASE_DONE = 5

# Work item ranks
WORK_ITEM_OVERDUE = 0
WORK_ITEM_UNASSIGNED = 1
WORK_ITEM_ACTIVE = 2
WORK_ITEM_NOT_STARTED = 3
WORK_ITEM_DONE = 4


def pull_request_priority(pr, idle_ids=frozenset()):
    """Rank a pull request

    0 merge conflicts (merge blocked), 1 active without reviewers,
    2 listed by the idle source, 3 active, 4 completed/abandoned.
    """
    if pr.has_conflicts:
        return PR_CONFLICTS
    if pr.is_active and not pr.has_reviewers:
        return PR_UNASSIGNED
    if pr.id in idle_ids:
        return PR_IDLE
    if pr.is_active:
        return PR_ACTIVE
    return PR_DONE


def build_priority(build):
    """Rank a build: in progress, failed, partially succeeded, canceled, succeeded"""
    if build.is_in_progress:
        return BUILD_IN_PROGRESS
    if build.result == 'failed':
        return BUILD_FAILED
    if build.result == 'partiallySucceeded':
        return BUILD_PARTIALLY_SUCCEEDED
    if build.result == 'canceled':
        return BUILD_CANCELED
    return BUILD_DONE


def release_priority(release):
    status = release.normalized_status
    if status in RELEASE_WAITING_STATUSES:
        return RELEASE_WAITING_FOR_APPROVAL
    if status in RELEASE_FAILED_STATUSES:
        return RELEASE_FAILED
    if status in RELEASE_IN_PROGRESS_STATUSES:
        return RELEASE_IN_PROGRESS
    # notDeployed is shown as pending but ranks with succeeded/unknown
    if status in ('pending', 'notstarted'):
        return RELEASE_PENDING
    if status in RELEASE_CANCELED_STATUSES:
        return RELEASE_CANCELED
    return RELEASE_DONE


def work_item_priority(item, overdue_ids=frozenset()):
    """Rank a work item: overdue, active unassigned, active, not started, completed"""
    category = work_item_category(item)
    if category == 'completed':
        return WORK_ITEM_DONE
    if item.id in overdue_ids:
        return WORK_ITEM_OVERDUE
    if category == 'active':
        return WORK_ITEM_ACTIVE if item.assigned_to else WORK_ITEM_UNASSIGNED
    return WORK_ITEM_NOT_STARTED


def classify(kind, entity, context=None):
    """Dispatch to the rank function for an entity kind

    Args:
        kind: One of the entity kinds in opsdash.entities
        entity: The entity to rank
        context: Auxiliary context dict; uses 'idle_ids' for pull requests
                 and 'overdue_ids' for work items

    Returns:
        int: Urgency rank (lower is more urgent)
    """
    context = context or {}
    if kind == KIND_PULL_REQUEST:
        return pull_request_priority(entity, context.get('idle_ids', frozenset()))
    if kind == KIND_BUILD:
        return build_priority(entity)
    if kind == KIND_RELEASE:
        return release_priority(entity)
    if kind == KIND_WORK_ITEM:
        return work_item_priority(entity, context.get('overdue_ids', frozenset()))
    raise ValueError(f"Unknown entity kind: {kind}")
