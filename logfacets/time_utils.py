#!/usr/bin/env python3
"""
Time window handling for facet queries.
Parses user time specifications and turns them into a queried window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging
import re

from .config import TIME_RANGES

logger = logging.getLogger('logfacets.time_utils')

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


@dataclass(frozen=True)
class TimeParseResult:
    """Result of parsing a time specification."""
    timestamp: datetime
    is_relative: bool


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [start, end) window over the request timestamp column"""
    start: datetime
    end: datetime

    @property
    def period_ms(self) -> int:
        return int((self.end - self.start).total_seconds() * 1000)

    def data_age_ms(self, now: Optional[datetime] = None) -> int:
        """Age of the oldest row the window can touch"""
        reference = now or datetime.now()
        return max(0, int((reference - self.start).total_seconds() * 1000))

    def to_sql(self, column: str = 'timestamp') -> str:
        """WHERE-clause condition selecting rows inside the window"""
        return (f"{column} >= TIMESTAMP '{self.start.strftime(TIMESTAMP_FORMAT)}' "
                f"AND {column} < TIMESTAMP '{self.end.strftime(TIMESTAMP_FORMAT)}'")

    def describe(self) -> str:
        return f"{self.start.strftime(TIMESTAMP_FORMAT)} - {self.end.strftime(TIMESTAMP_FORMAT)}"


_RELATIVE_COMPONENT_RE = re.compile(r'(\d+(?:\.\d*)?)([a-z]+)')
_RELATIVE_UNITS_IN_SECONDS = {
    's': 1.0,
    'sec': 1.0,
    'secs': 1.0,
    'm': 60.0,
    'min': 60.0,
    'mins': 60.0,
    'h': 3600.0,
    'hr': 3600.0,
    'hour': 3600.0,
    'hours': 3600.0,
    'd': 86400.0,
    'day': 86400.0,
    'days': 86400.0,
    'w': 604800.0,
    'week': 604800.0,
    'weeks': 604800.0,
}


def parse_duration(spec: str) -> Optional[timedelta]:
    """Parse durations like '15m', '2h30m' or '7d'; None if not a duration."""
    compact = (spec or '').strip().lower().replace(' ', '')
    if compact.endswith('ago'):
        compact = compact[:-3]
    if not compact:
        return None

    total_seconds = 0.0
    cursor = 0
    for match in _RELATIVE_COMPONENT_RE.finditer(compact):
        if match.start() != cursor:
            return None
        cursor = match.end()
        raw_value, unit_key = match.groups()
        unit_seconds = _RELATIVE_UNITS_IN_SECONDS.get(unit_key)
        if unit_seconds is None:
            return None
        total_seconds += float(raw_value) * unit_seconds

    if cursor != len(compact):
        return None
    return timedelta(seconds=total_seconds)


def parse_time_spec(time_str: str, now: Optional[datetime] = None) -> TimeParseResult:
    """Parse 'now', a relative offset ('2h ago', '30m') or an absolute timestamp."""
    if time_str is None:
        raise ValueError("Time string cannot be None")

    spec = time_str.strip()
    if not spec:
        raise ValueError("Time string cannot be empty")

    reference = now or datetime.now()

    if spec.lower() == 'now':
        return TimeParseResult(reference, True)

    delta = parse_duration(spec)
    if delta is not None:
        return TimeParseResult(reference - delta, True)

    trimmed_spec = spec.rstrip('zZ')
    try:
        return TimeParseResult(datetime.fromisoformat(trimmed_spec), False)
    except ValueError:
        pass

    for fmt in ('%Y-%m-%d %H:%M', '%Y-%m-%d'):
        try:
            return TimeParseResult(datetime.strptime(trimmed_spec, fmt), False)
        except ValueError:
            continue

    raise ValueError(f"Cannot parse time: {time_str}")


def window_for_range(range_key: str, now: Optional[datetime] = None) -> TimeWindow:
    """Window of a named range ('15m', '1h', '12h', '24h', '7d') ending now"""
    if range_key in TIME_RANGES:
        period = timedelta(milliseconds=TIME_RANGES[range_key])
    else:
        period = parse_duration(range_key)
        if period is None or period.total_seconds() <= 0:
            raise ValueError(f"Unknown time range: {range_key}")
    end = (now or datetime.now()).replace(microsecond=0)
    return TimeWindow(end - period, end)


def resolve_window(
    time_range: Optional[str] = None,
    from_spec: Optional[str] = None,
    to_spec: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeWindow:
    """Resolve CLI-style time arguments into a TimeWindow.

    An explicit --from wins over a named range; a missing --to means now.
    """
    reference = (now or datetime.now()).replace(microsecond=0)

    if not from_spec:
        return window_for_range(time_range or '1h', reference)

    start = parse_time_spec(from_spec, now=reference).timestamp
    end = parse_time_spec(to_spec, now=reference).timestamp if to_spec else reference
    if end <= start:
        raise ValueError(f"Empty time window: {from_spec} .. {to_spec or 'now'}")

    logger.debug(f"Resolved time window {start} - {end}")
    return TimeWindow(start, end)

