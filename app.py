#!/usr/bin/env python3
# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Toggl Calendar Sync - Web service with scheduled watch runs

Run with gunicorn: gunicorn -c gunicorn.conf.py "app:create_app()"
"""
import logging
import secrets
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import Flask, current_app, jsonify, request

from auth import MicrosoftAuth
from cal_ops import CalendarReader, CalendarStore, CalendarWriter
from config import SyncConfig, load_config
from notify import EmailNotifier
from sync import (
    CheckpointStore, EventMatcher, EventSweeper, EventWriter, RunLock, RunMode,
    SyncEngine, SyncHistory, SyncScheduler
)
from toggl import TogglClient
from utils.kv_store import CacheStore, DurableStore
from utils.logger import configure_logging
from utils.timezone import format_display_time, from_unix_seconds, utc_now

logger = logging.getLogger(__name__)

SERVICE_NAME = "toggl-calendar-sync"
__version__ = "1.0.0"


@dataclass
class Components:
    """Everything the web surface and the CLI operate on"""
    config: SyncConfig
    engine: SyncEngine
    sweeper: EventSweeper
    checkpoints: CheckpointStore
    history: SyncHistory
    notifier: Optional[EmailNotifier] = None
    scheduler: Optional[SyncScheduler] = None
    auth: Optional[MicrosoftAuth] = None


def build_components(config: SyncConfig) -> Components:
    """Wire the production collaborators from configuration"""
    auth = MicrosoftAuth(config)
    store = CalendarStore(CalendarReader(auth, config), CalendarWriter(auth, config), config)
    toggl = TogglClient(config)
    notifier = EmailNotifier(config, auth)

    checkpoints = CheckpointStore.from_config(
        config, DurableStore(config.checkpoint_file), CacheStore(config.cache_dir)
    )
    lock = RunLock(config.lock_file)
    history = SyncHistory()

    engine = SyncEngine(
        config,
        fetcher=toggl,
        matcher=EventMatcher(store, config, notifier=notifier),
        writer=EventWriter(store),
        checkpoints=checkpoints,
        lock=lock,
        notifier=notifier,
        history=history
    )
    sweeper = EventSweeper(store, toggl, config, lock=lock)
    scheduler = SyncScheduler(engine, config, auth=auth)

    logger.info("✅ Sync components initialized")
    return Components(
        config=config,
        engine=engine,
        sweeper=sweeper,
        checkpoints=checkpoints,
        history=history,
        notifier=notifier,
        scheduler=scheduler,
        auth=auth
    )


def _components() -> Components:
    return current_app.config['COMPONENTS']


def require_api_key(view):
    """Reject mutating requests without the admin key, when one is configured"""
    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = _components().config.admin_api_key
        if expected:
            provided = request.headers.get('X-API-Key', '')
            if not secrets.compare_digest(provided, expected):
                logger.warning(f"Rejected request to {request.path}: invalid or missing API key")
                return jsonify({"error": "Invalid or missing API key", "code": "UNAUTHORIZED"}), 401
        return view(*args, **kwargs)
    return wrapper


def _report_failure(action: str, error: Exception):
    logger.error(f"{action} failed: {type(error).__name__}: {error}")
    notifier = _components().notifier
    if notifier is not None:
        notifier.notify(error)
    return jsonify({"success": False, "error": str(error)}), 500


def create_app(components: Optional[Components] = None) -> Flask:
    """Application factory"""
    if components is None:
        config = load_config()
        configure_logging(config.log_level, config.structured_logging, config.display_timezone)
        components = build_components(config)
        if config.scheduler_enabled and components.scheduler is not None:
            components.scheduler.start()

    app = Flask(__name__)
    app.config['COMPONENTS'] = components

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Server'] = 'Toggl Calendar Sync'
        return response

    @app.route('/health')
    def health_check():
        """Lightweight health check"""
        return jsonify({
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "service": SERVICE_NAME,
            "version": __version__
        }), 200

    @app.route('/status')
    def get_status():
        """Current checkpoint, scheduler state and last run"""
        c = _components()
        cursor = c.checkpoints.read()
        watermark_display = "Never"
        if not cursor.is_absent:
            watermark_display = format_display_time(from_unix_seconds(cursor.watermark), c.config.display_timezone)

        last_run = c.history.last_entry()
        status = {
            "watermark": None if cursor.is_absent else cursor.watermark,
            "watermark_display": watermark_display,
            "resume_index": cursor.resume_index,
            "batch_in_progress": cursor.resume_index > 0,
            "scheduler_running": c.scheduler.is_running() if c.scheduler else False,
            "continuation_pending": c.scheduler.has_pending_continuation() if c.scheduler else False,
            "graph_configured": c.auth.is_authenticated() if c.auth else False,
            "notifications_enabled": c.notifier.enabled if c.notifier else False,
            "last_run": None,
            "timezone": c.config.display_timezone,
            "current_time": utc_now().isoformat()
        }
        if last_run:
            status["last_run"] = {
                "mode": last_run['mode'],
                "status": last_run['status'],
                "success": last_run['success'],
                "timestamp": last_run['timestamp'].isoformat(),
                "timestamp_display": format_display_time(last_run['timestamp'], c.config.display_timezone),
                "error": last_run['error']
            }
        return jsonify(status)

    @app.route('/history')
    def get_history():
        """Run statistics and recent failures"""
        c = _components()
        hours = request.args.get('hours', default=24, type=int)
        stats = c.history.get_statistics(hours)
        stats['recent_failures'] = c.history.get_recent_failures()
        return jsonify(stats)

    @app.route('/sync/<mode>', methods=['POST'])
    @require_api_key
    def trigger_sync(mode):
        """Run one sync leg in the requested mode"""
        try:
            run_mode = RunMode(mode)
        except ValueError:
            return jsonify({"error": f"Unknown sync mode: {mode}"}), 404

        c = _components()
        logger.info(f"🔄 Manual sync requested: {run_mode.value}")
        result = c.engine.run(run_mode)

        if result.get('continuation_requested') and c.scheduler is not None:
            c.scheduler.request_continuation()

        return jsonify(result), 200 if result['success'] else 500

    @app.route('/checkpoint/clear', methods=['POST'])
    @require_api_key
    def clear_checkpoint():
        """Forget the watermark and any in-flight batch position"""
        try:
            _components().checkpoints.clear()
        except Exception as e:
            return _report_failure("Checkpoint clear", e)
        return jsonify({"success": True, "message": "Checkpoint cleared"})

    @app.route('/notify/test', methods=['POST'])
    @require_api_key
    def send_test_notification():
        notifier = _components().notifier
        if notifier is None:
            return jsonify({"success": False, "message": "Notifier not configured"}), 500
        sent = notifier.send_test()
        return jsonify({
            "success": sent,
            "message": "Test email sent" if sent else "Test email not sent; check the logs"
        }), 200 if sent else 500

    @app.route('/duplicates/remove', methods=['POST'])
    @require_api_key
    def remove_duplicates():
        payload = request.get_json(silent=True) or {}
        try:
            stats = _components().sweeper.remove_duplicates(
                months=int(payload.get('months', 3)),
                prefer_latest=bool(payload.get('prefer_latest', False))
            )
        except Exception as e:
            return _report_failure("Duplicate removal", e)
        return jsonify({"success": True, **stats})

    @app.route('/duplicates/create-test', methods=['POST'])
    @require_api_key
    def create_test_duplicates():
        try:
            events = _components().sweeper.create_test_duplicates()
        except Exception as e:
            return _report_failure("Test duplicate creation", e)
        return jsonify({
            "success": True,
            "created": len(events),
            "title": events[0].title if events else None
        })

    @app.route('/sweep/<range_name>', methods=['POST'])
    @require_api_key
    def sweep_deleted(range_name):
        """Remove events whose Toggl entry was deleted"""
        sweeper = _components().sweeper
        try:
            range_start = sweeper.range_start(range_name)
        except ValueError:
            return jsonify({"error": f"Unknown sweep range: {range_name}"}), 404

        try:
            stats = sweeper.sweep_deleted(range_start)
        except Exception as e:
            return _report_failure(f"Deletion sweep ({range_name})", e)
        return jsonify({"success": True, "range": range_name, **stats})

    @app.route('/scheduler/start', methods=['POST'])
    @require_api_key
    def start_scheduler():
        scheduler = _components().scheduler
        if scheduler is None:
            return jsonify({"error": "Scheduler not initialized"}), 500
        if scheduler.is_running():
            return jsonify({"success": True, "message": "Scheduler is already running"})
        scheduler.start()
        return jsonify({"success": True, "message": "Scheduler started successfully"})

    @app.route('/scheduler/stop', methods=['POST'])
    @require_api_key
    def stop_scheduler():
        scheduler = _components().scheduler
        if scheduler is None:
            return jsonify({"error": "Scheduler not initialized"}), 500
        scheduler.stop()
        return jsonify({"success": True, "message": "Scheduler stopped"})

    return app


if __name__ == '__main__':
    flask_app = create_app()
    port = flask_app.config['COMPONENTS'].config.port
    logger.info(f"Starting Toggl calendar sync service on port {port}")
    flask_app.run(host='0.0.0.0', port=port)
