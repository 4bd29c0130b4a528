"""Shared utilities: retry, logging, timezone helpers and key-value storage"""
from utils.logger import JsonFormatter, StructuredLogger, configure_logging
from utils.retry import retry, retry_fixed

__all__ = ['JsonFormatter', 'StructuredLogger', 'configure_logging', 'retry', 'retry_fixed']
