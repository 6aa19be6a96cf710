from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Final

from rich.console import Console
from rich.logging import RichHandler

from .config import ServiceConfig

LOG_FILE_NAME: Final[str] = "shtrih-scanner.log"
_FILE_FORMAT: Final[str] = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_ROOT_LOGGER: Final[str] = "shtrih_scanner"


def parse_log_level(value: str | None) -> int:
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    service: ServiceConfig | None,
    *,
    console: Console,
    logs_dir: Path,
    verbose: bool = False,
) -> Path | None:
    """Configure the package logger: Rich console output, plus a daily-rotated file.

    The file handler is only installed when a service config is present. Returns
    the log file path, or None when logging stays console-only.
    """

    logger = logging.getLogger(_ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if verbose else parse_log_level(service.log_level if service else None)
    logger.setLevel(level)

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if service is None:
        logger.warning("Service settings not found or invalid; logging to console only")
        return None

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot create log directory %s: %s; logging to console only", logs_dir, exc)
        return None

    log_path = logs_dir / LOG_FILE_NAME
    file_handler = TimedRotatingFileHandler(
        log_path,
        when="midnight",
        backupCount=service.log_days,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    file_handler.setLevel(level)
    logger.addHandler(file_handler)
    logger.info(
        "Logging configured: level=%s, rotation=%d day(s), file=%s",
        logging.getLevelName(level),
        service.log_days,
        log_path,
    )
    return log_path
