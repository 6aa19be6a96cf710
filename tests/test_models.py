from __future__ import annotations

import pytest

from shtrih_scanner.models import (
    CONNECTION_TYPE_NETWORK,
    CONNECTION_TYPE_SERIAL,
    FiscalRecord,
    NetworkConnection,
    SerialConnection,
    parse_com_number,
)


@pytest.mark.parametrize(
    ("name", "expected"),
    [("COM3", 3), ("COM12", 12), ("/dev/ttyS0", 0), (" COM7 ", 7), ("/dev/ttyUSB10", 10)],
)
def test_parse_com_number(name: str, expected: int) -> None:
    assert parse_com_number(name) == expected


@pytest.mark.parametrize("name", ["COM", "", "/dev/ttyACM"])
def test_parse_com_number_rejects_names_without_digits(name: str) -> None:
    with pytest.raises(ValueError, match="Invalid serial port name"):
        parse_com_number(name)


def test_serial_connection_describe_and_type() -> None:
    conn = SerialConnection(port_name="COM3", baud_index=6)
    assert conn.connection_type == CONNECTION_TYPE_SERIAL
    assert conn.password == 30
    assert conn.com_number == 3
    assert conn.baud_rate == 115200
    assert conn.describe() == "COM3 @ 115200"


def test_serial_connection_unknown_baud_index() -> None:
    conn = SerialConnection(port_name="COM1", baud_index=42)
    assert conn.baud_rate is None
    assert conn.describe() == "COM1 @ index 42"


def test_network_connection_is_hashable_and_typed() -> None:
    a = NetworkConnection(ip_address="192.168.137.1", tcp_port=7778)
    b = NetworkConnection(ip_address="192.168.137.1", tcp_port=7778)
    assert a == b
    assert len({a, b}) == 1
    assert a.connection_type == CONNECTION_TYPE_NETWORK
    assert a.describe() == "192.168.137.1:7778"


def test_fiscal_record_field_map_uses_persisted_keys(record_factory) -> None:  # noqa: ANN001
    fields = record_factory("42").to_field_map()
    assert fields["serialNumber"] == "42"
    assert fields["RNM"] == "0006543210012345"
    assert fields["datetime_reg"] == "2024-03-15"
    assert fields["dateTime_end"] == "2027-03-15"
    assert fields["attribute_marked"] is True
    assert fields["attribute_excise"] is False
    # Empty licenses are omitted entirely.
    assert "licenses" not in fields


def test_fiscal_record_keeps_non_empty_licenses(record_factory) -> None:  # noqa: ANN001
    record = record_factory(licenses="Подписка до 1 квартала 2025 года")
    assert record.to_field_map()["licenses"] == "Подписка до 1 квартала 2025 года"


def test_fiscal_record_from_field_map_ignores_unknown_keys() -> None:
    record = FiscalRecord.from_field_map(
        {"serialNumber": "77", "modelName": "X", "hostname": "pos-1", "attribute_excise": True}
    )
    assert record.serial_number == "77"
    assert record.model_name == "X"
    assert record.attribute_excise is True
    assert record.ofd_name == ""


def test_fiscal_record_from_field_map_validates_types() -> None:
    with pytest.raises(ValueError, match="attribute_marked"):
        FiscalRecord.from_field_map({"attribute_marked": "yes"})
    with pytest.raises(ValueError, match="serialNumber"):
        FiscalRecord.from_field_map({"serialNumber": 12})


def test_fiscal_record_validity_requires_serial() -> None:
    assert not FiscalRecord().is_valid
    assert not FiscalRecord(serial_number="   ").is_valid
    assert FiscalRecord(serial_number="1").is_valid
