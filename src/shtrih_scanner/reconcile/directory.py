from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Final

from ..models import FieldMap, PolledDevice
from .donor import Donor, find_donor, is_record_file, local_donor_fields

logger = logging.getLogger(__name__)

SERIAL_NUMBER_KEY: Final[str] = "serialNumber"
TIMESTAMP_KEYS: Final[tuple[str, ...]] = ("current_time", "v_time")
TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
DEFAULT_OUTPUT_DIR: Final[Path] = Path("date")


@dataclass
class ReconcileReport:
    written: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    donor: Donor | None = None

    @property
    def success_count(self) -> int:
        return len(self.written)


def is_canonical_name(stem: str) -> bool:
    """Canonical record files are named after a serial number: ASCII digits only."""

    return bool(stem) and stem.isascii() and stem.isdigit()


def cleanup_output_dir(output_dir: Path) -> list[Path]:
    """Delete every non-canonical `.json` file below `output_dir` (recursively).

    Non-JSON files are left alone. Returns the deleted paths.
    """

    if not output_dir.is_dir():
        logger.info("Directory %s not found, nothing to clean", output_dir)
        return []

    logger.info("Cleaning %s of non-canonical files", output_dir)
    try:
        candidates = sorted(output_dir.rglob("*"))
    except OSError as exc:
        logger.error("Cannot list %s during cleanup: %s", output_dir, exc)
        return []

    removed: list[Path] = []
    for path in candidates:
        if not is_record_file(path) or is_canonical_name(path.stem):
            continue
        logger.info("Removing non-canonical file %s", path)
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("Cannot remove %s: %s", path, exc)
            continue
        removed.append(path)

    if removed:
        logger.info("Cleanup removed %d file(s)", len(removed))
    else:
        logger.info("No non-canonical files to remove")
    return removed


def merge_fields(
    donor: Mapping[str, Any],
    fresh: Mapping[str, Any],
    *,
    serial_number: str,
    timestamp: str,
) -> FieldMap:
    """Layer fresh device fields over a copy of the donor map.

    Empty fresh strings never erase donor values. The serial number and both
    timestamps are always set from this run.
    """

    merged: FieldMap = dict(donor)
    for key, value in fresh.items():
        if isinstance(value, str) and value == "":
            continue
        merged[key] = value
    merged[SERIAL_NUMBER_KEY] = serial_number
    for key in TIMESTAMP_KEYS:
        merged[key] = timestamp
    return merged


def write_record(path: Path, fields: Mapping[str, Any]) -> None:
    """Create or overwrite one record file. Raises OSError on failure."""

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(fields, indent=4, sort_keys=True, ensure_ascii=False)
    path.write_text(text, encoding="utf-8")


def record_path(output_dir: Path, serial_number: str) -> Path:
    return output_dir / f"{serial_number}.json"


def reconcile_devices(
    polled: Sequence[PolledDevice],
    output_dir: Path,
    *,
    hostname: str | None = None,
    now: Callable[[], datetime] = datetime.now,
) -> ReconcileReport:
    """Donor lookup, cleanup, then one merged file per polled device.

    The donor is read before cleanup deletes non-canonical files.
    """

    report = ReconcileReport()
    report.donor = find_donor(output_dir)
    report.removed = cleanup_output_dir(output_dir)

    donor_fields = report.donor.fields if report.donor is not None else local_donor_fields(hostname)

    for device in polled:
        serial = device.record.serial_number.strip()
        path = record_path(output_dir, serial)
        if report.donor is not None:
            logger.info("Preparing data for KKT %s using donor %s", serial, report.donor.path.name)
        else:
            logger.info("Preparing data for KKT %s with local workstation data", serial)

        merged = merge_fields(
            donor_fields,
            device.record.to_field_map(),
            serial_number=serial,
            timestamp=now().strftime(TIMESTAMP_FORMAT),
        )
        try:
            write_record(path, merged)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Cannot write record for KKT %s to %s: %s", serial, path, exc)
            report.failed.append(serial)
            continue
        logger.info("Saved data for KKT %s to %s", serial, path)
        report.written.append(path)

    logger.info(
        "Record files processed: %d written, %d failed", len(report.written), len(report.failed)
    )
    return report
