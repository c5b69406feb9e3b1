"""
Logging setup for the mirror crawler.

Worker loggers are CrawlerLogAdapter instances carrying the worker id; each
call can add the URL being processed (and its depth) through ``extra``, which
the JSON formatter writes out as separate fields.
"""

import logging
import logging.handlers
import json
import os
import platform
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

import psutil

from .config import LoggingConfig


# Record attributes written as top-level JSON fields when present
CONTEXT_FIELDS = ('worker', 'url', 'depth')

NOISY_LOGGERS = ('aiohttp.access', 'aiohttp.internal')

THIRD_PARTY_LEVELS = {
    'aiohttp': logging.WARNING,
    'redis': logging.WARNING,
    'asyncio': logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno
        }
        log_entry.update(
            (key, getattr(record, key)) for key in CONTEXT_FIELDS if hasattr(record, key)
        )
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """
    Prefixes messages with ``[worker-id]`` and attaches the worker id to every
    record. Call-level ``extra`` (usually ``url`` and ``depth``) is kept
    alongside it.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    @property
    def worker(self) -> Optional[str]:
        return self.extra.get('worker')

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**kwargs.get('extra', {}), **self.extra}
        if self.worker:
            msg = f"[{self.worker}] {msg}"
        return msg, kwargs


class PerformanceFilter(logging.Filter):
    """Drops records from noisy third-party loggers."""

    def __init__(self, suppress_modules: Optional[tuple] = None):
        super().__init__()
        self.suppress_modules = tuple(suppress_modules or NOISY_LOGGERS)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.suppress_modules)


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Configure the root logger from the logging section.

    Three handlers are installed: console (INFO and up), a rotating main log
    file (everything) and ``errors.log`` next to it (ERROR and up).

    Returns:
        Configured root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    handlers = [
        console_handler,
        _rotating_handler(log_file, logging.DEBUG, 50, 5, formatter),
        _rotating_handler(log_file.parent / 'errors.log', logging.ERROR, 10, 3, formatter),
    ]
    for handler in handlers:
        if enable_performance_filtering and handler.level < logging.ERROR:
            handler.addFilter(PerformanceFilter())
        root_logger.addHandler(handler)

    for logger_name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info(f"Logging to {log_file} at level {config.level}")
    return root_logger


def get_crawler_logger(name: str, **context) -> CrawlerLogAdapter:
    """Logger for ``name`` that tags every record with ``context`` (e.g. ``worker='worker-1'``)."""
    return CrawlerLogAdapter(logging.getLogger(name), context)


def log_system_info():
    """Log system and environment information."""
    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version}")
    logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")

    for var in ('PATH', 'PYTHONPATH', 'HOME', 'USER'):
        logger.debug(f"ENV {var}: {os.environ.get(var, 'Not set')}")
