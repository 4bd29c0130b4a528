# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for Toggl Calendar Sync

All settings are read once by load_config() into an immutable SyncConfig that is
handed to every component at construction time.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


class ConfigError(Exception):
    """Raised when an environment value cannot be interpreted"""


@dataclass(frozen=True)
class SyncConfig:
    # Environment
    environment: str = 'production'
    debug: bool = False

    # Toggl Track
    toggl_api_hostname: str = 'https://api.track.toggl.com'
    toggl_basic_auth: str = ''
    toggl_api_token: str = ''

    # Microsoft Graph calendar
    tenant_id: str = ''
    client_id: str = ''
    client_secret: str = ''
    calendar_mailbox: str = ''
    calendar_name: str = 'Toggl'
    calendar_id: str = ''

    # Notifications
    notification_email: str = ''
    notification_sender: str = ''

    # Persistence
    data_dir: str = '/data'
    checkpoint_key: str = 'toggl_exporter:lastmodify_datetime'
    progress_key: str = 'toggl_exporter:last_processed_index'
    cache_ttl_seconds: int = 12 * 60 * 60

    # Retry Settings
    retry_count: int = 5
    retry_delay_ms: int = 2000
    http_timeout_seconds: int = 30

    # Sync Settings
    lock_timeout_seconds: int = 30
    overlap_seconds: int = 24 * 60 * 60
    initial_lookback_days: int = 30
    match_search_months: int = 3
    search_cache_seconds: int = 600
    default_label: str = '(no description)'

    # Execution budgets per invocation mode (seconds)
    watch_budget_seconds: float = 240
    manual_complete_budget_seconds: float = 330
    manual_timeout_budget_seconds: float = 60
    manual_initial_budget_seconds: float = 60

    # Scheduler
    scheduler_enabled: bool = True
    watch_interval_min: int = 15
    continuation_delay_seconds: int = 1

    # Display / Logging
    display_timezone: str = 'UTC'
    log_level: str = 'INFO'
    structured_logging: bool = True

    # Web
    admin_api_key: str = ''
    port: int = 5000

    @property
    def lock_file(self) -> str:
        return os.path.join(self.data_dir, 'sync.lock')

    @property
    def checkpoint_file(self) -> str:
        return os.path.join(self.data_dir, 'checkpoint.json')

    @property
    def cache_dir(self) -> str:
        return os.path.join(self.data_dir, 'cache')


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    return raw.lower() in ('1', 'true', 'yes', 'on')


def load_config(environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """Build the immutable configuration from environment variables"""
    env = os.environ if environ is None else environ

    environment = env.get('ENVIRONMENT', 'production')
    debug = environment == 'development'

    log_level = env.get('LOG_LEVEL', 'INFO').upper()
    # Development Settings
    if debug:
        log_level = 'DEBUG'

    return SyncConfig(
        environment=environment,
        debug=debug,
        toggl_api_hostname=env.get('TOGGL_API_HOSTNAME', 'https://api.track.toggl.com').rstrip('/'),
        toggl_basic_auth=env.get('TOGGL_BASIC_AUTH', ''),
        toggl_api_token=env.get('TOGGL_API_TOKEN', ''),
        tenant_id=env.get('TENANT_ID', ''),
        client_id=env.get('CLIENT_ID', ''),
        client_secret=env.get('CLIENT_SECRET', ''),
        calendar_mailbox=env.get('CALENDAR_MAILBOX', ''),
        calendar_name=env.get('CALENDAR_NAME', 'Toggl'),
        calendar_id=env.get('CALENDAR_ID', ''),
        notification_email=env.get('NOTIFICATION_EMAIL', ''),
        notification_sender=env.get('NOTIFICATION_SENDER', env.get('CALENDAR_MAILBOX', '')),
        data_dir=env.get('DATA_DIR', '/data'),
        checkpoint_key=env.get('CHECKPOINT_KEY', 'toggl_exporter:lastmodify_datetime'),
        progress_key=env.get('PROGRESS_KEY', 'toggl_exporter:last_processed_index'),
        cache_ttl_seconds=_get_int(env, 'CACHE_TTL_SECONDS', 12 * 60 * 60),
        retry_count=_get_int(env, 'RETRY_COUNT', 5),
        retry_delay_ms=_get_int(env, 'RETRY_DELAY_MS', 2000),
        http_timeout_seconds=_get_int(env, 'HTTP_TIMEOUT_SECONDS', 30),
        lock_timeout_seconds=_get_int(env, 'LOCK_TIMEOUT_SECONDS', 30),
        overlap_seconds=_get_int(env, 'OVERLAP_SECONDS', 24 * 60 * 60),
        initial_lookback_days=_get_int(env, 'INITIAL_LOOKBACK_DAYS', 30),
        match_search_months=_get_int(env, 'MATCH_SEARCH_MONTHS', 3),
        search_cache_seconds=_get_int(env, 'SEARCH_CACHE_SECONDS', 600),
        default_label=env.get('DEFAULT_LABEL', '(no description)'),
        watch_budget_seconds=_get_float(env, 'WATCH_BUDGET_SECONDS', 240),
        manual_complete_budget_seconds=_get_float(env, 'MANUAL_COMPLETE_BUDGET_SECONDS', 330),
        manual_timeout_budget_seconds=_get_float(env, 'MANUAL_TIMEOUT_BUDGET_SECONDS', 60),
        manual_initial_budget_seconds=_get_float(env, 'MANUAL_INITIAL_BUDGET_SECONDS', 60),
        scheduler_enabled=_get_bool(env, 'SCHEDULER_ENABLED', True),
        watch_interval_min=_get_int(env, 'WATCH_INTERVAL_MIN', 15),
        continuation_delay_seconds=_get_int(env, 'CONTINUATION_DELAY_SECONDS', 1),
        display_timezone=env.get('DISPLAY_TIMEZONE', 'UTC'),
        log_level=log_level,
        structured_logging=_get_bool(env, 'STRUCTURED_LOGGING', True),
        admin_api_key=env.get('ADMIN_API_KEY', ''),
        port=_get_int(env, 'PORT', 5000),
    )
