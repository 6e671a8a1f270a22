#!/usr/bin/env python3
"""
Filter and ordering pipeline for the Ops Dashboard engine

render() applies a single active filter predicate plus free-text search,
then a stable two-level sort: urgency rank first, then the user-selected
secondary key. Filtering drops entities; it never mutates them.
"""

import logging
from dataclasses import dataclass

from opsdash.entities import (
    KIND_BUILD,
    KIND_PULL_REQUEST,
    KIND_RELEASE,
    KIND_WORK_ITEM,
    timestamp_or_epoch,
)
from opsdash.priority import classify
from opsdash.stats import work_item_category

logger = logging.getLogger(__name__)

FILTER_ALL = 'all'

SORT_NEWEST = 'newest'
SORT_OLDEST = 'oldest'
SORT_TITLE = 'title'
SORT_KEYS = (SORT_NEWEST, SORT_OLDEST, SORT_TITLE)
DEFAULT_SORT_KEY = SORT_NEWEST


@dataclass(frozen=True)
class FilterCriteria:
    """Single active predicate (with optional value) plus free-text search"""

    predicate: str = FILTER_ALL
    value: str = None
    search: str = ''


ALL = FilterCriteria()


def _pull_request_predicates(context):
    idle_ids = context.get('idle_ids', frozenset())
    return {
        'under-review': lambda pr, _: pr.is_active and pr.has_reviewers,
        'unassigned': lambda pr, _: pr.is_active and not pr.has_reviewers,
        'idle': lambda pr, _: pr.id in idle_ids,
        'conflicts': lambda pr, _: pr.has_conflicts,
    }


def _build_predicates(context):
    return {
        'succeeded': lambda b, _: b.result == 'succeeded',
        'failed': lambda b, _: b.result == 'failed',
        'inProgress': lambda b, _: b.is_in_progress,
        'canceled': lambda b, _: b.result == 'canceled',
        'partiallySucceeded': lambda b, _: b.result == 'partiallySucceeded',
        'repository': lambda b, value: b.repository == value,
    }


def _release_predicates(context):
    return {
        'status': lambda r, value: r.status == value,
        'environment': lambda r, value: value in r.environment_names,
        'definition': lambda r, value: r.definition_name == value,
    }


def _work_item_predicates(context):
    overdue_ids = context.get('overdue_ids', frozenset())
    return {
        'active': lambda w, _: work_item_category(w) == 'active',
        'completed': lambda w, _: work_item_category(w) == 'completed',
        'overdue': lambda w, _: w.id in overdue_ids,
        'unassigned': lambda w, _: not w.assigned_to,
    }


PREDICATE_BUILDERS = {
    KIND_PULL_REQUEST: _pull_request_predicates,
    KIND_BUILD: _build_predicates,
    KIND_RELEASE: _release_predicates,
    KIND_WORK_ITEM: _work_item_predicates,
}

# Fields searched by free text, per kind
SEARCH_FIELDS = {
    KIND_PULL_REQUEST: ('title',),
    KIND_BUILD: ('name', 'repository'),
    KIND_RELEASE: ('name', 'definition_name'),
    KIND_WORK_ITEM: ('title',),
}

# Timestamp used by newest/oldest, per kind
TIMESTAMP_FIELDS = {
    KIND_PULL_REQUEST: 'created_on',
    KIND_BUILD: 'start_time',
    KIND_RELEASE: 'created_on',
    KIND_WORK_ITEM: 'created_on',
}


def predicate_names(kind):
    """Names accepted as FilterCriteria.predicate for a kind"""
    return (FILTER_ALL,) + tuple(PREDICATE_BUILDERS[kind]({}).keys())


def apply_filter(kind, entities, criteria=ALL, context=None):
    """Keep only entities matching the active predicate and search text

    Args:
        kind: Entity kind
        entities: List of entities
        criteria: FilterCriteria
        context: Auxiliary context (idle_ids, overdue_ids)

    Returns:
        list: New list of matching entities in input order

    Raises:
        ValueError: If the predicate name is unknown for this kind
    """
    context = context or {}
    criteria = criteria or ALL
    predicates = PREDICATE_BUILDERS[kind](context)

    if criteria.predicate in (None, '', FILTER_ALL):
        predicate = None
    elif criteria.predicate in predicates:
        predicate = predicates[criteria.predicate]
    else:
        raise ValueError(f"Unknown {kind} filter: {criteria.predicate}")

    needle = (criteria.search or '').strip().lower()
    search_fields = SEARCH_FIELDS[kind]

    filtered = []
    for entity in entities or []:
        if predicate is not None and not predicate(entity, criteria.value):
            continue
        if needle and not any(needle in (getattr(entity, name) or '').lower() for name in search_fields):
            continue
        filtered.append(entity)
    return filtered


def secondary_key(kind, sort_key):
    """Build the secondary sort key function for a sort name

    newest sorts timestamps descending, oldest ascending, title by
    case-sensitive lexicographic order of the display name.
    """
    timestamp_field = TIMESTAMP_FIELDS[kind]
    if sort_key == SORT_TITLE:
        return lambda entity: entity.display_name or ''
    if sort_key == SORT_OLDEST:
        return lambda entity: timestamp_or_epoch(getattr(entity, timestamp_field)).timestamp()
    if sort_key not in (None, '', SORT_NEWEST):
        logger.warning(f"Unknown sort key '{sort_key}', using {DEFAULT_SORT_KEY}")
    return lambda entity: -timestamp_or_epoch(getattr(entity, timestamp_field)).timestamp()


def sort_entities(kind, entities, sort_key=DEFAULT_SORT_KEY, context=None):
    """Stable sort by (priority, secondary key); equal keys keep input order"""
    context = context or {}
    secondary = secondary_key(kind, sort_key)
    return sorted(entities, key=lambda entity: (classify(kind, entity, context), secondary(entity)))


def render(kind, entities, criteria=ALL, sort_key=DEFAULT_SORT_KEY, context=None):
    """Filter then order a raw entity list for display

    Args:
        kind: Entity kind (pull_request, build, release, work_item)
        entities: Raw entity list (not modified)
        criteria: FilterCriteria with a single active predicate
        sort_key: newest (default), oldest or title
        context: Auxiliary context dict (idle_ids, overdue_ids)

    Returns:
        list: New ordered list
    """
    filtered = apply_filter(kind, entities, criteria, context)
    return sort_entities(kind, filtered, sort_key, context)


def filter_options(kind, entities):
    """Distinct values for the value-bearing predicates of a kind

    Returns:
        dict: predicate name -> sorted list of distinct non-empty values
    """
    entities = entities or []
    if kind == KIND_BUILD:
        return {'repository': sorted({b.repository for b in entities if b.repository})}
    if kind == KIND_RELEASE:
        return {
            'environment': sorted({name for r in entities for name in r.environment_names if name}),
            'definition': sorted({r.definition_name for r in entities if r.definition_name}),
            'status': sorted({r.status for r in entities if r.status}),
        }
    return {}
