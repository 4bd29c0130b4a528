"""
Structured Logger - JSON log lines for sync runs and outbound API calls
"""
import json
import logging
from typing import Any, Dict, Optional

from utils.timezone import get_display_time

SERVICE_NAME = "toggl-calendar-sync"

# Display zone for log timestamps, set by configure_logging()
_display_timezone = 'UTC'

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = 'INFO', structured: bool = True, display_timezone: str = 'UTC'):
    """Install a single stream handler on the root logger"""
    global _display_timezone
    _display_timezone = display_timezone

    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def _stamp() -> Dict[str, str]:
    return {
        "timestamp": get_display_time(_display_timezone).isoformat(),
        "timezone": _display_timezone,
    }


def _level_for_event(event_type: str) -> int:
    name = event_type.lower()
    if "error" in name or "failed" in name:
        return logging.ERROR
    if "timed_out" in name or "warning" in name:
        return logging.WARNING
    return logging.INFO


class StructuredLogger:
    """Emits one JSON object per event through a standard logger"""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, fields: Dict[str, Any]):
        entry = {**_stamp(), "event_type": event_type, "service": SERVICE_NAME, "logger": self.name}
        entry.update(fields)
        self.logger.log(level, json.dumps(entry, default=str))

    def log_sync_event(self, event_type: str, details: Dict[str, Any]):
        """Run lifecycle event: sync_started, sync_completed, sync_timed_out, sync_failed"""
        self._emit(_level_for_event(event_type), event_type, details)

    def log_api_call(self, method: str, endpoint: str, status_code: Optional[int] = None,
                     duration_ms: Optional[float] = None, error: Optional[str] = None):
        fields = {"method": method, "endpoint": endpoint}
        if status_code is not None:
            fields["status_code"] = status_code
        if duration_ms is not None:
            fields["duration_ms"] = round(duration_ms, 1)
        if error:
            fields["error"] = error

        # 404 is an expected answer for existence checks
        failed = bool(error) or (status_code is not None and status_code >= 400 and status_code != 404)
        self._emit(logging.ERROR if failed else logging.DEBUG, "api_call", fields)

    def log_performance(self, operation: str, duration_seconds: float,
                        item_count: Optional[int] = None, success: bool = True):
        fields = {
            "operation": operation,
            "duration_seconds": round(duration_seconds, 3),
            "success": success,
        }
        if item_count is not None:
            fields["item_count"] = item_count
            fields["records_per_second"] = round(item_count / duration_seconds, 2) if duration_seconds > 0 else 0
        self._emit(logging.INFO, "performance", fields)


class JsonFormatter(logging.Formatter):
    """Wraps plain log messages in JSON; structured messages pass through"""

    def format(self, record):
        message = record.getMessage()
        if message.startswith('{'):
            try:
                if isinstance(json.loads(message), dict):
                    return message
            except ValueError:
                pass

        entry = {**_stamp(), "level": record.levelname, "logger": record.name, "message": message}
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)
