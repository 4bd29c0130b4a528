#!/usr/bin/env python3
# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Toggl Calendar Sync - Command line operations

Usage:
    python manage.py watch|timeout|complete|initial [--max-legs N]
    python manage.py clear-checkpoint
    python manage.py test-notify
    python manage.py remove-duplicates [--prefer-latest] [--months N]
    python manage.py create-test-duplicates
    python manage.py sweep-deleted --range short|long
    python manage.py status
"""
import argparse
import json
import logging
import sys
import time
import traceback

from app import Components, build_components
from config import ConfigError, load_config
from sync import RunMode
from sync.sweeper import SWEEP_RANGES
from utils.logger import configure_logging

logger = logging.getLogger(__name__)


def run_sync(components: Components, mode: RunMode, max_legs: int = 100, sleep=time.sleep) -> dict:
    """
    Run a sync mode, enacting continuations as sequential watch legs

    Returns the result of the last leg.
    """
    result = components.engine.run(mode)
    legs = 1
    while result.get('continuation_requested'):
        if legs >= max_legs:
            logger.warning(f"Stopping after {legs} legs; run 'watch' again to resume at index {result['next_index']}")
            break
        sleep(components.config.continuation_delay_seconds)
        logger.info(f"Continuing batch (leg {legs + 1}) from index {result['next_index']}")
        result = components.engine.run(RunMode.WATCH)
        legs += 1
    return result


def _print(data: dict):
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Toggl → calendar sync operations')
    parser.add_argument('--verbose', action='store_true', help='Show detailed logging')
    commands = parser.add_subparsers(dest='command', required=True)

    for mode in RunMode:
        sub = commands.add_parser(mode.value, help=f'Run a {mode.value} sync')
        sub.add_argument('--max-legs', type=int, default=100,
                         help='Maximum number of continuation legs to run in this process')

    commands.add_parser('clear-checkpoint', help='Forget the watermark and the resume index')
    commands.add_parser('test-notify', help='Send a test notification email')

    dup = commands.add_parser('remove-duplicates', help='Delete events sharing an identifier')
    dup.add_argument('--prefer-latest', action='store_true', help='Keep the most recently updated event')
    dup.add_argument('--months', type=int, default=3, help='Trailing window to scan')

    commands.add_parser('create-test-duplicates', help='Create two events sharing one identifier')

    sweep = commands.add_parser('sweep-deleted', help='Delete events whose Toggl entry was removed')
    sweep.add_argument('--range', dest='range_name', choices=SWEEP_RANGES, default='short')

    commands.add_parser('status', help='Show the persisted checkpoint')
    return parser


def dispatch(args, components: Components) -> int:
    """Run one command; returns the process exit code"""
    command = args.command

    if command in {mode.value for mode in RunMode}:
        result = run_sync(components, RunMode(command), max_legs=args.max_legs)
        _print(result)
        return 0 if result['success'] else 1

    if command == 'clear-checkpoint':
        components.checkpoints.clear()
        logger.info("Checkpoint cleared")
        return 0

    if command == 'test-notify':
        return 0 if components.notifier and components.notifier.send_test() else 1

    if command == 'status':
        cursor = components.checkpoints.read()
        _print({
            'watermark': None if cursor.is_absent else cursor.watermark,
            'resume_index': cursor.resume_index
        })
        return 0

    try:
        if command == 'remove-duplicates':
            _print(components.sweeper.remove_duplicates(months=args.months, prefer_latest=args.prefer_latest))
        elif command == 'create-test-duplicates':
            events = components.sweeper.create_test_duplicates()
            _print({'created': len(events), 'title': events[0].title if events else None})
        elif command == 'sweep-deleted':
            sweeper = components.sweeper
            _print(sweeper.sweep_deleted(sweeper.range_start(args.range_name)))
    except Exception as e:
        logger.error(f"❌ {command} failed: {type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        if components.notifier is not None:
            components.notifier.notify(e)
        return 1
    return 0


def main(argv=None) -> int:
    """Main function"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    level = 'DEBUG' if args.verbose else config.log_level
    configure_logging(level, config.structured_logging, config.display_timezone)

    return dispatch(args, build_components(config))


if __name__ == "__main__":
    sys.exit(main())
