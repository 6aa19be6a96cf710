from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from ..models import FieldMap

logger = logging.getLogger(__name__)

HOSTNAME_KEY: Final[str] = "hostname"
MODEL_NAME_KEY: Final[str] = "modelName"
RECORD_SUFFIX: Final[str] = ".json"


@dataclass(frozen=True, slots=True)
class Donor:
    """Persisted file lending its workstation metadata to freshly polled devices.

    `ideal` donors carry `hostname` but no `modelName` (pure workstation files);
    the others are device files that happen to carry a hostname.
    """

    path: Path
    fields: FieldMap
    ideal: bool


def is_record_file(path: Path) -> bool:
    """Record files end in a lowercase `.json`; the match is case-sensitive on every OS."""

    return path.suffix == RECORD_SUFFIX and path.is_file()


def _read_field_map(path: Path) -> FieldMap | None:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot read donor candidate %s: %s", path, exc)
        return None
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Cannot parse donor candidate %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Donor candidate %s is not a JSON object", path)
        return None
    return data


def find_donor(output_dir: Path) -> Donor | None:
    """Pick the donor file from `output_dir`.

    Files are visited in sorted name order. The first ideal donor wins
    immediately; otherwise the first candidate is returned. None when no file
    carries a hostname (or the directory does not exist).
    """

    try:
        entries = sorted(output_dir.iterdir(), key=lambda p: p.name)
    except FileNotFoundError:
        logger.info("Output directory %s does not exist, no donor available", output_dir)
        return None
    except OSError as exc:
        logger.warning("Cannot list %s: %s", output_dir, exc)
        return None

    first_candidate: Donor | None = None
    for path in entries:
        if not is_record_file(path):
            continue
        data = _read_field_map(path)
        if data is None or HOSTNAME_KEY not in data:
            continue

        if MODEL_NAME_KEY not in data:
            logger.info("Using workstation donor file %s", path)
            return Donor(path=path, fields=data, ideal=True)

        if first_candidate is None:
            first_candidate = Donor(path=path, fields=data, ideal=False)
            logger.info("Donor candidate (used if no workstation file is found): %s", path)

    if first_candidate is not None:
        logger.info("No workstation donor file, falling back to %s", first_candidate.path)
        return first_candidate

    logger.info("No donor files in %s, using local workstation data", output_dir)
    return None


def local_donor_fields(hostname: str | None = None) -> FieldMap:
    """Minimal donor used when nothing on disk carries workstation metadata."""

    return {HOSTNAME_KEY: hostname if hostname is not None else socket.gethostname()}
