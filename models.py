# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models shared by the Toggl client, the calendar store and the sync engine
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from utils.timezone import format_utc_iso, parse_timestamp

ID_TOKEN = "ID:"
COMPOSITE_PREFIX = "NO_ID:"
DEFAULT_LABEL = "(no description)"

# Trailing identifier token: composite keys run to the end of the title (line
# breaks included), native keys are Toggl's numeric ids.
_TRAILING_KEY_RE = re.compile(r'(?:^|\s)ID:(NO_ID:.+|\d+)$', re.DOTALL)


# =============================================================================
# ERRORS
# =============================================================================

class TogglApiError(Exception):
    """Unexpected response from the Toggl API; retryable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTimestampError(ValueError):
    """A timestamp could not be parsed into a valid instant"""


class CalendarNotFoundError(Exception):
    """The configured calendar could not be resolved"""


class CalendarApiError(Exception):
    """A calendar store call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class TimeRecord:
    """A Toggl time entry; timestamps are kept as the raw API strings"""
    id: Optional[str]
    start: Optional[str]
    stop: Optional[str] = None
    description: Optional[str] = None
    workspace_id: Optional[str] = None
    project_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict) -> 'TimeRecord':
        def _str_or_none(value):
            return None if value is None or value == '' else str(value)

        return cls(
            id=_str_or_none(data.get('id')),
            start=data.get('start'),
            stop=data.get('stop'),
            description=data.get('description'),
            workspace_id=_str_or_none(data.get('workspace_id', data.get('wid'))),
            project_id=_str_or_none(data.get('project_id', data.get('pid'))),
        )

    @property
    def start_time(self) -> Optional[datetime]:
        return parse_timestamp(self.start)

    @property
    def stop_time(self) -> Optional[datetime]:
        return parse_timestamp(self.stop)

    @property
    def in_progress(self) -> bool:
        return not self.stop


@dataclass(frozen=True)
class ProjectInfo:
    name: str = ''

    @classmethod
    def from_api(cls, data) -> 'ProjectInfo':
        if not isinstance(data, dict):
            return cls()
        return cls(name=data.get('name') or '')


@dataclass
class CalendarEvent:
    """A calendar event; event_id is the store handle, never used for correlation"""
    event_id: str
    title: str
    start: datetime
    end: datetime
    last_updated: Optional[datetime] = None
    raw: Dict = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SyncCursor:
    watermark: int = -1
    resume_index: int = 0

    @property
    def is_absent(self) -> bool:
        return self.watermark < 0


# =============================================================================
# TITLE / KEY HELPERS
# =============================================================================

def composite_key(record: TimeRecord, default_label: str = DEFAULT_LABEL) -> str:
    """Fallback identifier for records without a native id"""
    start = record.start_time
    if start is None:
        raise InvalidTimestampError(f"Invalid start date: {record.start!r}")
    return f"{COMPOSITE_PREFIX}{format_utc_iso(start)}_{record.description or default_label}"


def record_key(record: TimeRecord, default_label: str = DEFAULT_LABEL) -> str:
    return record.id or composite_key(record, default_label)


def build_title(description: Optional[str], project_name: str, key: str,
                default_label: str = DEFAULT_LABEL) -> str:
    """Canonical event title: "<description> : <project> ID:<key>" """
    parts = [description or default_label, project_name]
    return " : ".join(p for p in parts if p) + f" {ID_TOKEN}{key}"


def extract_key(title: Optional[str]) -> Optional[str]:
    """Return the key of a properly terminated trailing ID token, else None"""
    if not title:
        return None
    match = _TRAILING_KEY_RE.search(title)
    return match.group(1) if match else None


def is_composite_key(key: str) -> bool:
    return key.startswith(COMPOSITE_PREFIX)


def contains_key_token(title: Optional[str], key: str) -> bool:
    """True when `ID:<key>` appears as a whole token anywhere in the title"""
    if not title:
        return False
    pattern = r'(?:^|\s)' + re.escape(ID_TOKEN + key) + r'(?=\s|$)'
    return re.search(pattern, title) is not None


def ends_with_key_token(title: Optional[str], key: str) -> bool:
    """True when the title, trailing whitespace aside, already ends in `ID:<key>`"""
    if not title:
        return False
    trimmed = title.rstrip()
    suffix = ID_TOKEN + key
    if not trimmed.endswith(suffix):
        return False
    return len(trimmed) == len(suffix) or trimmed[-len(suffix) - 1].isspace()
