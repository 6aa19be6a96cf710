from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

import pytest

from shtrih_scanner.driver.fixture import FixtureDevice, FixtureDriverFactory
from shtrih_scanner.models import FiscalRecord, NetworkConnection, SerialConnection


def make_record(serial: str = "0012345678901234", **overrides: object) -> FiscalRecord:
    values: dict[str, object] = {
        "model_name": "ШТРИХ-М-01Ф",
        "serial_number": serial,
        "registration_number": "0006543210012345",
        "organization_name": "ООО Ромашка",
        "address": "г. Москва, ул. Ленина, д. 1",
        "inn": "7701234567",
        "fn_serial": "9960440300112233",
        "registration_date": "2024-03-15",
        "fn_end_date": "2027-03-15",
        "ofd_name": "Такском",
        "software_date": "2024-01-22",
        "ffd_version": "120",
        "fn_execution": "ФН-1.2",
        "installed_driver": "5.17.0.1185",
        "attribute_marked": True,
    }
    values.update(overrides)
    return FiscalRecord(**values)  # type: ignore[arg-type]


@pytest.fixture
def record_factory() -> Callable[..., FiscalRecord]:
    return make_record


@pytest.fixture
def serial_com3() -> SerialConnection:
    return SerialConnection(port_name="COM3", baud_index=6)


@pytest.fixture
def network_device() -> NetworkConnection:
    return NetworkConnection(ip_address="192.168.137.111", tcp_port=7778)


@pytest.fixture
def two_device_factory(
    serial_com3: SerialConnection,
    network_device: NetworkConnection,
) -> FixtureDriverFactory:
    return FixtureDriverFactory(
        [
            FixtureDevice(descriptor=serial_com3, record=make_record("0012345678901234")),
            FixtureDevice(
                descriptor=network_device,
                record=make_record("0098765432109876", model_name="ШТРИХ-ЛАЙТ-01Ф"),
            ),
        ],
        serial_ports=["COM1", "COM3"],
    )


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """CLI tests install handlers on the package logger; drop them between tests."""

    logger = logging.getLogger("shtrih_scanner")
    level = logger.level
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
