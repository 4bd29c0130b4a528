# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities for parsing and formatting Toggl and Graph timestamps
"""
import calendar
import re
from datetime import datetime, timedelta
from typing import Optional

import pytz

_FRACTION_RE = re.compile(r'\.(\d+)')


def utc_now() -> datetime:
    """Get current time in UTC"""
    return datetime.now(pytz.UTC)


def get_display_time(tz_name: str = 'UTC') -> datetime:
    """Get current time in the configured display timezone"""
    return datetime.now(_zone(tz_name))


def _zone(tz_name: str):
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO 8601 string into an aware UTC datetime.

    Accepts a trailing 'Z', explicit offsets and fractional seconds of any
    precision (Graph uses seven digits). Naive values are taken as UTC.
    Returns None when the value is missing or unparseable.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    # fromisoformat only takes up to microseconds
    text = _FRACTION_RE.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return pytz.UTC.localize(parsed)
    return parsed.astimezone(pytz.UTC)


def format_utc_iso(dt: datetime) -> str:
    """Format as UTC ISO 8601 with millisecond precision, e.g. 2025-03-01T09:00:00.000Z"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    dt = dt.astimezone(pytz.UTC)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def format_graph_datetime(dt: datetime) -> dict:
    """Render a datetime as a Graph {"dateTime", "timeZone"} pair in UTC"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    dt = dt.astimezone(pytz.UTC)
    return {'dateTime': dt.strftime('%Y-%m-%dT%H:%M:%S'), 'timeZone': 'UTC'}


def parse_graph_datetime(field: dict) -> Optional[datetime]:
    """Convert Microsoft Graph {"dateTime": str, "timeZone": str} into an aware UTC datetime."""
    if not field or not field.get('dateTime'):
        return None

    tz_label = field.get('timeZone', 'UTC') or 'UTC'
    parsed = parse_timestamp(field['dateTime'])
    if parsed is None:
        return None

    if tz_label == 'UTC' or _has_offset(field['dateTime']):
        return parsed

    # Naive value in a named zone: re-localize
    tz = _zone(tz_label)
    naive = parsed.replace(tzinfo=None)
    return tz.localize(naive).astimezone(pytz.UTC)


def _has_offset(value: str) -> bool:
    return value.endswith('Z') or bool(re.search(r'[+-]\d{2}:\d{2}$', value))


def to_unix_seconds(dt: datetime) -> int:
    return int(dt.timestamp())


def from_unix_seconds(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, pytz.UTC)


def months_before(dt: datetime, months: int) -> datetime:
    """Same wall time `months` calendar months earlier, clamping the day"""
    month_index = dt.month - 1 - months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def days_before(dt: datetime, days: int) -> datetime:
    return dt - timedelta(days=days)


def format_display_time(dt: Optional[datetime], tz_name: str = 'UTC') -> str:
    """Format datetime in the display timezone for log lines"""
    if dt is None:
        return "Never"
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(_zone(tz_name)).strftime('%b %d, %Y at %I:%M %p %Z')
