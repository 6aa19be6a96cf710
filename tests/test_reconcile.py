from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from shtrih_scanner.models import PolledDevice, SerialConnection
from shtrih_scanner.reconcile.directory import (
    cleanup_output_dir,
    is_canonical_name,
    merge_fields,
    reconcile_devices,
    write_record,
)

_FIXED_NOW = datetime(2025, 6, 1, 12, 30, 45)


def _polled(record) -> PolledDevice:  # noqa: ANN001
    return PolledDevice(descriptor=SerialConnection(port_name="COM3", baud_index=6), record=record)


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.mark.parametrize(
    ("stem", "expected"),
    [
        ("999", True),
        ("0012345678901234", True),
        ("abc", False),
        ("12a", False),
        ("", False),
        ("١٢٣", False),
    ],
)
def test_is_canonical_name(stem: str, expected: bool) -> None:
    assert is_canonical_name(stem) is expected


def test_cleanup_removes_non_numeric_json_recursively(tmp_path: Path) -> None:
    (tmp_path / "999.json").write_text("{}", encoding="utf-8")
    (tmp_path / "donor.json").write_text("{}", encoding="utf-8")
    (tmp_path / "readme.txt").write_text("keep", encoding="utf-8")
    nested = tmp_path / "archive"
    nested.mkdir()
    (nested / "old-kkt.json").write_text("{}", encoding="utf-8")
    (nested / "123.json").write_text("{}", encoding="utf-8")

    removed = cleanup_output_dir(tmp_path)

    assert sorted(p.name for p in removed) == ["donor.json", "old-kkt.json"]
    assert (tmp_path / "999.json").exists()
    assert (tmp_path / "readme.txt").exists()
    assert (nested / "123.json").exists()
    assert not (tmp_path / "donor.json").exists()


def test_cleanup_missing_directory(tmp_path: Path) -> None:
    assert cleanup_output_dir(tmp_path / "nope") == []


def test_merge_fields_keeps_donor_values_over_empty_strings() -> None:
    donor = {
        "hostname": "pos-1",
        "ofdName": "Такском",
        "serialNumber": "OLD",
        "teamviewer": "42",
    }
    fresh = {"ofdName": "", "modelName": "ШТРИХ", "attribute_excise": False}

    merged = merge_fields(donor, fresh, serial_number="123", timestamp="2025-06-01 12:30:45")

    assert merged["ofdName"] == "Такском"
    assert merged["modelName"] == "ШТРИХ"
    assert merged["attribute_excise"] is False
    assert merged["hostname"] == "pos-1"
    assert merged["teamviewer"] == "42"
    assert merged["serialNumber"] == "123"
    assert merged["current_time"] == "2025-06-01 12:30:45"
    assert merged["v_time"] == "2025-06-01 12:30:45"
    # Donor map is not mutated.
    assert donor["serialNumber"] == "OLD"


def test_write_record_uses_four_space_indent(tmp_path: Path) -> None:
    path = tmp_path / "sub" / "1.json"
    write_record(path, {"b": "Ромашка", "a": 1})
    text = path.read_text(encoding="utf-8")
    assert text.startswith('{\n    "a": 1,\n    "b": "Ромашка"')


def test_reconcile_uses_ideal_donor_then_deletes_it(
    tmp_path: Path,
    record_factory,  # noqa: ANN001
) -> None:
    (tmp_path / "workstation.json").write_text(
        json.dumps({"hostname": "pos-1", "anydesk": "123 456"}), encoding="utf-8"
    )

    report = reconcile_devices(
        [_polled(record_factory("0012345678901234", ofd_name=""))],
        tmp_path,
        now=lambda: _FIXED_NOW,
    )

    target = tmp_path / "0012345678901234.json"
    assert report.written == [target]
    assert report.removed == [tmp_path / "workstation.json"]
    assert report.donor is not None and report.donor.ideal
    data = _read(target)
    assert data["hostname"] == "pos-1"
    assert data["anydesk"] == "123 456"
    assert "ofdName" not in data
    assert data["serialNumber"] == "0012345678901234"
    assert data["current_time"] == "2025-06-01 12:30:45"
    assert data["v_time"] == "2025-06-01 12:30:45"


def test_reconcile_candidate_donor_and_existing_record(
    tmp_path: Path,
    record_factory,  # noqa: ANN001
) -> None:
    existing = tmp_path / "0012345678901234.json"
    existing.write_text(
        json.dumps({"hostname": "pos-9", "modelName": "old model", "RNM": "000", "extra": "kept"}),
        encoding="utf-8",
    )

    report = reconcile_devices(
        [_polled(record_factory("0012345678901234"))],
        tmp_path,
        now=lambda: _FIXED_NOW,
    )

    assert report.donor is not None and not report.donor.ideal
    assert report.removed == []
    data = _read(existing)
    assert data["hostname"] == "pos-9"
    assert data["extra"] == "kept"
    assert data["modelName"] == "ШТРИХ-М-01Ф"
    assert data["RNM"] == "0006543210012345"


def test_reconcile_without_donor_uses_local_hostname(
    tmp_path: Path,
    record_factory,  # noqa: ANN001
) -> None:
    out = tmp_path / "date"

    report = reconcile_devices(
        [_polled(record_factory("77")), _polled(record_factory("78"))],
        out,
        hostname="cashbox-3",
        now=lambda: _FIXED_NOW,
    )

    assert report.donor is None
    assert [p.name for p in report.written] == ["77.json", "78.json"]
    assert _read(out / "77.json")["hostname"] == "cashbox-3"
    assert _read(out / "78.json")["serialNumber"] == "78"


def test_reconcile_is_idempotent_apart_from_timestamps(
    tmp_path: Path,
    record_factory,  # noqa: ANN001
) -> None:
    devices = [_polled(record_factory("500"))]
    reconcile_devices(devices, tmp_path, hostname="pos", now=lambda: datetime(2025, 1, 1))
    first = _read(tmp_path / "500.json")

    reconcile_devices(devices, tmp_path, hostname="pos", now=lambda: datetime(2025, 1, 2))
    second = _read(tmp_path / "500.json")

    assert second["current_time"] == "2025-01-02 00:00:00"
    for key in ("current_time", "v_time"):
        first.pop(key)
        second.pop(key)
    assert first == second
    assert sorted(p.name for p in tmp_path.iterdir()) == ["500.json"]


def test_reconcile_counts_write_failures(tmp_path: Path, record_factory) -> None:  # noqa: ANN001
    # A directory squatting on the target name makes the write fail.
    (tmp_path / "600.json").mkdir()

    report = reconcile_devices(
        [_polled(record_factory("600")), _polled(record_factory("601"))],
        tmp_path,
        hostname="pos",
        now=lambda: _FIXED_NOW,
    )

    assert report.failed == ["600"]
    assert report.written == [tmp_path / "601.json"]
    assert report.success_count == 1


def test_uppercase_json_suffix_is_neither_cleaned_nor_donor(
    tmp_path: Path,
    record_factory,  # noqa: ANN001
) -> None:
    upper = tmp_path / "WORKSTATION.JSON"
    upper.write_text(json.dumps({"hostname": "from-upper"}), encoding="utf-8")

    report = reconcile_devices(
        [_polled(record_factory("90"))],
        tmp_path,
        hostname="local-host",
        now=lambda: _FIXED_NOW,
    )

    assert report.donor is None
    assert upper.exists()
    assert report.removed == []
    assert _read(tmp_path / "90.json")["hostname"] == "local-host"
    assert cleanup_output_dir(tmp_path) == []
    assert upper.exists()
