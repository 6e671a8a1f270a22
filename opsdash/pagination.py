#!/usr/bin/env python3
"""
Pagination and time-range state for paged views

PaginationController owns {current_page, items_per_page, total_pages,
time_range} and decides which state changes require a re-fetch. Page counts
come from the server-reported total, never from the length of the page held
locally. Out-of-range page requests are clamped and never sent upstream.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

# Preset value -> (label, hours)
TIME_RANGE_PRESETS = {
    '12h': ('12 Hours', 12),
    '1d': ('1 Day', 24),
    '7d': ('7 Days', 24 * 7),
    '15d': ('15 Days', 24 * 15),
    '30d': ('30 Days', 24 * 30),
}
DEFAULT_TIME_RANGE = '1d'
MAX_CUSTOM_RANGE_DAYS = 90

DEFAULT_ITEMS_PER_PAGE = 50


def to_utc_iso(value):
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass(frozen=True)
class TimeRange:
    """Closed time window [start, end] with start <= end"""

    start: datetime
    end: datetime
    label: str = 'Custom'
    value: str = 'custom'

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Time range start {self.start.isoformat()} is after end {self.end.isoformat()}")

    @classmethod
    def preset(cls, value=DEFAULT_TIME_RANGE, now=None):
        """Build a preset range ending now (computed at call time)"""
        if value not in TIME_RANGE_PRESETS:
            raise ValueError(f"Unknown time range preset: {value}")
        label, hours = TIME_RANGE_PRESETS[value]
        end = now or datetime.now(timezone.utc)
        return cls(start=end - timedelta(hours=hours), end=end, label=label, value=value)

    @classmethod
    def custom(cls, start, end):
        """Build a custom range; at most MAX_CUSTOM_RANGE_DAYS days long"""
        if end - start > timedelta(days=MAX_CUSTOM_RANGE_DAYS):
            raise ValueError(f"Custom time range must be {MAX_CUSTOM_RANGE_DAYS} days or less")
        label = f"{start.strftime('%b %d')} - {end.strftime('%b %d')}"
        return cls(start=start, end=end, label=label, value='custom')

    def to_params(self):
        """Query parameters understood by the release endpoints (UTC, Z suffix)"""
        return {
            'fromDate': to_utc_iso(self.start),
            'toDate': to_utc_iso(self.end),
        }


@dataclass(frozen=True)
class PageRequest:
    """A single fetch for one page of a time-ranged list"""

    page: int
    offset: int
    limit: int
    time_range: TimeRange


def total_pages_for(total_count, items_per_page):
    """ceil(total_count / items_per_page); 0 for an empty or invalid total"""
    if not total_count or total_count < 0:
        return 0
    return math.ceil(total_count / items_per_page)


class PaginationController:
    """Page and time-range state for one view

    Attributes:
        current_page: 1-based page index
        items_per_page: Page size sent upstream as the limit
        total_pages: Derived from the last server-reported total
        time_range: Active TimeRange
    """

    def __init__(self, items_per_page=DEFAULT_ITEMS_PER_PAGE, time_range=None):
        if items_per_page <= 0:
            raise ValueError(f"items_per_page must be positive, got: {items_per_page}")
        self.items_per_page = items_per_page
        self.time_range = time_range or TimeRange.preset(DEFAULT_TIME_RANGE)
        self.current_page = 1
        self.total_pages = 0
        self.total_count = 0

    def set_total_count(self, total_count):
        """Record the server-reported total and recompute total_pages"""
        try:
            total_count = int(total_count or 0)
        except (ValueError, TypeError):
            logger.warning(f"Invalid total count: {total_count!r}. Using 0")
            total_count = 0
        self.total_count = max(0, total_count)
        self.total_pages = total_pages_for(self.total_count, self.items_per_page)
        return self.total_pages

    def clamp(self, page):
        """Clamp a requested page index into [1, total_pages] (1 when there are no pages)"""
        upper = max(1, self.total_pages)
        return max(1, min(int(page), upper))

    def current_request(self):
        return PageRequest(
            page=self.current_page,
            offset=(self.current_page - 1) * self.items_per_page,
            limit=self.items_per_page,
            time_range=self.time_range,
        )

    def change_time_range(self, time_range):
        """Switch the time window: page resets to 1 and exactly one fetch is due

        Returns:
            PageRequest: the single re-fetch for page 1 of the new range
        """
        self.time_range = time_range
        self.current_page = 1
        logger.debug(f"Time range changed to {time_range.value} ({time_range.label}), page reset to 1")
        return self.current_request()

    def change_page(self, page):
        """Move to another page

        Returns:
            PageRequest: re-fetch scoped to the new page's offset/limit
            None: if the clamped page equals the current page (no fetch)
        """
        clamped = self.clamp(page)
        if clamped != page:
            logger.debug(f"Requested page {page} clamped to {clamped} (total_pages={self.total_pages})")
        if clamped == self.current_page:
            return None
        self.current_page = clamped
        return self.current_request()

    def snapshot(self):
        return {
            'current_page': self.current_page,
            'items_per_page': self.items_per_page,
            'total_pages': self.total_pages,
            'total_count': self.total_count,
            'time_range': {
                'from': self.time_range.start.isoformat(),
                'to': self.time_range.end.isoformat(),
                'label': self.time_range.label,
                'value': self.time_range.value,
            },
        }
