#!/usr/bin/env python3
"""
Entity schema for the Ops Dashboard engine

Typed, immutable records for the four resource kinds the engine works with
(pull requests, builds, releases, work items). Payloads from the backend are
loosely shaped JSON; each from_dict() maps missing or malformed fields to the
documented defaults below instead of failing.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

KIND_PULL_REQUEST = 'pull_request'
KIND_BUILD = 'build'
KIND_RELEASE = 'release'
KIND_WORK_ITEM = 'work_item'

ENTITY_KINDS = (KIND_PULL_REQUEST, KIND_BUILD, KIND_RELEASE, KIND_WORK_ITEM)


def parse_timestamp(value):
    """Parse an ISO-8601 timestamp into an aware UTC datetime

    Accepts a trailing 'Z' and fractional seconds of any length (the backend
    sends 7-digit fractions). Naive values are taken as UTC.

    Returns:
        datetime or None if the value is missing or unparseable
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        # fromisoformat only accepts up to 6 fractional digits
        if '.' in text:
            head, _, tail = text.partition('.')
            digits = ''
            while tail and tail[0].isdigit():
                digits += tail[0]
                tail = tail[1:]
            text = f"{head}.{digits[:6].ljust(6, '0')}{tail}" if digits else head + tail
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def timestamp_or_epoch(value):
    """Sort helper: missing timestamps compare as the epoch"""
    return value if value is not None else EPOCH


def _str(value, default=''):
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _dict(value):
    return value if isinstance(value, dict) else {}


def _display_name(value, default=''):
    """Azure-style identity refs are dicts with displayName; accept bare strings too"""
    if isinstance(value, dict):
        return _str(value.get('displayName') or value.get('uniqueName'), default)
    if isinstance(value, str) and value:
        return value
    return default


@dataclass(frozen=True)
class PullRequest:
    """Pull request fields used for stats, priority and ordering"""

    id: object
    title: str = ''
    status: str = 'unknown'
    merge_status: str = 'notSet'
    reviewers: tuple = ()
    created_on: datetime = None
    last_activity: datetime = None
    repository: str = ''
    created_by: str = ''
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    kind = KIND_PULL_REQUEST

    @property
    def is_active(self):
        return self.status == 'active'

    @property
    def has_reviewers(self):
        return len(self.reviewers) > 0

    @property
    def has_conflicts(self):
        return self.merge_status == 'conflicts'

    @property
    def display_name(self):
        return self.title

    @classmethod
    def from_dict(cls, payload):
        payload = _dict(payload)
        reviewers = payload.get('reviewers')
        if not isinstance(reviewers, list):
            reviewers = []
        created_on = parse_timestamp(payload.get('creationDate'))
        last_commit_date = parse_timestamp(
            _dict(_dict(payload.get('lastMergeCommit')).get('committer')).get('date'))
        return cls(
            id=payload.get('pullRequestId', payload.get('id')),
            title=_str(payload.get('title')),
            status=_str(payload.get('status'), 'unknown'),
            merge_status=_str(payload.get('mergeStatus'), 'notSet'),
            reviewers=tuple(_display_name(r, 'Unknown') for r in reviewers),
            created_on=created_on,
            last_activity=last_commit_date or created_on,
            repository=_str(_dict(payload.get('repository')).get('name')),
            created_by=_display_name(payload.get('createdBy')),
            raw=payload,
        )


@dataclass(frozen=True)
class Build:
    """Build (pipeline run) fields used for stats, priority and ordering"""

    id: object
    name: str = ''
    status: str = 'unknown'
    result: str = ''
    start_time: datetime = None
    finish_time: datetime = None
    repository: str = 'Unknown'
    definition: str = ''
    requested_by: str = ''
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    kind = KIND_BUILD

    @property
    def is_in_progress(self):
        return self.status == 'inProgress'

    @property
    def display_name(self):
        return self.name

    @classmethod
    def from_dict(cls, payload):
        payload = _dict(payload)
        definition = _str(_dict(payload.get('definition')).get('name'))
        repository = _str(_dict(payload.get('repository')).get('name')) or definition or 'Unknown'
        return cls(
            id=payload.get('id'),
            name=_str(payload.get('buildNumber')) or definition,
            status=_str(payload.get('status'), 'unknown'),
            result=_str(payload.get('result')),
            start_time=parse_timestamp(payload.get('startTime')),
            finish_time=parse_timestamp(payload.get('finishTime')),
            repository=repository,
            definition=definition,
            requested_by=_display_name(payload.get('requestedFor') or payload.get('requestedBy')),
            raw=payload,
        )


@dataclass(frozen=True)
class Release:
    """Release fields used for stats, priority and ordering"""

    id: object
    name: str = ''
    status: str = 'unknown'
    definition_name: str = ''
    created_on: datetime = None
    environments: tuple = ()
    created_by: str = ''
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    kind = KIND_RELEASE

    @property
    def normalized_status(self):
        return self.status.lower()

    @property
    def environment_names(self):
        return tuple(name for name, _ in self.environments)

    @property
    def display_name(self):
        return self.name

    @classmethod
    def from_dict(cls, payload):
        payload = _dict(payload)
        environments = payload.get('environments')
        if not isinstance(environments, list):
            environments = []
        definition_name = payload.get('definitionName')
        if definition_name is None:
            definition_name = _dict(payload.get('releaseDefinition')).get('name')
        return cls(
            id=payload.get('id'),
            name=_str(payload.get('name')),
            status=_str(payload.get('status'), 'unknown'),
            definition_name=_str(definition_name),
            created_on=parse_timestamp(payload.get('createdOn')),
            environments=tuple(
                (_str(_dict(env).get('name')), _str(_dict(env).get('status'), 'unknown'))
                for env in environments if _dict(env).get('name')
            ),
            created_by=_display_name(payload.get('createdBy')),
            raw=payload,
        )


@dataclass(frozen=True)
class WorkItem:
    """Work item fields (Azure 'fields' bag flattened)"""

    id: object
    title: str = 'No title'
    state: str = 'Unknown'
    work_item_type: str = 'Item'
    assigned_to: str = None
    priority: int = None
    due_date: datetime = None
    created_on: datetime = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    kind = KIND_WORK_ITEM

    @property
    def display_name(self):
        return self.title

    @classmethod
    def from_dict(cls, payload):
        payload = _dict(payload)
        fields = _dict(payload.get('fields'))
        priority = fields.get('Microsoft.VSTS.Common.Priority')
        try:
            priority = int(priority) if priority is not None else None
        except (ValueError, TypeError):
            priority = None
        return cls(
            id=payload.get('id'),
            title=_str(fields.get('System.Title')) or 'No title',
            state=_str(fields.get('System.State')) or 'Unknown',
            work_item_type=_str(fields.get('System.WorkItemType')) or 'Item',
            assigned_to=_display_name(fields.get('System.AssignedTo')) or None,
            priority=priority,
            due_date=parse_timestamp(fields.get('Microsoft.VSTS.Scheduling.DueDate')),
            created_on=parse_timestamp(fields.get('System.CreatedDate')),
            raw=payload,
        )


ENTITY_TYPES = {
    KIND_PULL_REQUEST: PullRequest,
    KIND_BUILD: Build,
    KIND_RELEASE: Release,
    KIND_WORK_ITEM: WorkItem,
}


def unwrap_list(payload, key=None):
    """Extract the record list from a backend response

    The backend wraps lists as {"value": [...]}, {"success": true, "data": {key: [...]}}
    or sends a bare list. Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    if key and isinstance(payload.get(key), list):
        return payload[key]
    data = payload.get('data')
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if key and isinstance(data.get(key), list):
            return data[key]
        if isinstance(data.get('value'), list):
            return data['value']
    if isinstance(payload.get('value'), list):
        return payload['value']
    return []


def parse_entities(kind, records):
    """Parse a list of raw payloads into entities of the given kind

    Non-dict records are skipped with a debug log.

    Returns:
        list: Parsed entity instances (new list)
    """
    entity_type = ENTITY_TYPES[kind]
    entities = []
    skipped = 0
    for record in records or []:
        if not isinstance(record, dict):
            skipped += 1
            continue
        entities.append(entity_type.from_dict(record))
    if skipped:
        logger.debug(f"Skipped {skipped} malformed {kind} records")
    return entities


def idle_ids(records):
    """Reduce the idle pull request payload to a frozenset of pull request ids"""
    ids = set()
    for record in records or []:
        if isinstance(record, dict):
            pr_id = record.get('pullRequestId', record.get('id'))
        else:
            pr_id = record
        if pr_id is not None:
            ids.add(pr_id)
    return frozenset(ids)


def entity_to_dict(entity):
    """JSON-friendly view of an entity (raw payload omitted, datetimes as ISO strings)"""
    result = {'kind': entity.kind}
    for f in fields(entity):
        if f.name == 'raw':
            continue
        value = getattr(entity, f.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, tuple):
            value = [list(v) if isinstance(v, tuple) else v for v in value]
        result[f.name] = value
    return result
