from __future__ import annotations

import io
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest
from rich.console import Console

from shtrih_scanner.config import ServiceConfig
from shtrih_scanner.logging_setup import LOG_FILE_NAME, parse_log_level, setup_logging


def _console() -> Console:
    return Console(file=io.StringIO(), width=120)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("debug", logging.DEBUG),
        (" Warning ", logging.WARNING),
        ("ERROR", logging.ERROR),
        ("chatty", logging.INFO),
        ("", logging.INFO),
        (None, logging.INFO),
    ],
)
def test_parse_log_level(value: str | None, expected: int) -> None:
    assert parse_log_level(value) == expected


def test_console_only_without_service_config(tmp_path: Path) -> None:
    console = _console()

    log_path = setup_logging(None, console=console, logs_dir=tmp_path / "logs")

    assert log_path is None
    assert not (tmp_path / "logs").exists()
    assert "logging to console only" in console.file.getvalue()  # type: ignore[attr-defined]


def test_file_handler_uses_service_settings(tmp_path: Path) -> None:
    log_path = setup_logging(
        ServiceConfig(log_level="warning", log_days=3),
        console=_console(),
        logs_dir=tmp_path / "logs",
    )

    assert log_path == tmp_path / "logs" / LOG_FILE_NAME
    logger = logging.getLogger("shtrih_scanner")
    assert logger.level == logging.WARNING
    rotating = [h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler)]
    assert len(rotating) == 1
    assert rotating[0].backupCount == 3

    logging.getLogger("shtrih_scanner.workflow").warning("disk almost full")
    assert "disk almost full" in log_path.read_text(encoding="utf-8")


def test_verbose_overrides_level_and_handlers_are_replaced(tmp_path: Path) -> None:
    service = ServiceConfig(log_level="error")
    setup_logging(service, console=_console(), logs_dir=tmp_path)
    setup_logging(service, console=_console(), logs_dir=tmp_path, verbose=True)

    logger = logging.getLogger("shtrih_scanner")
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
