from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import ConnectionSettings, settings_to_descriptor
from ..models import ConnectionDescriptor, FiscalRecord, NetworkConnection
from .base import DriverError, DriverNotConnected, DriverResultError, FiscalDriver


@dataclass(frozen=True, slots=True)
class FixtureDevice:
    """Scripted behaviour of one endpoint in a fixture."""

    descriptor: ConnectionDescriptor
    record: FiscalRecord | None = None
    result_code: int = 0
    connect_error: str | None = None
    fetch_error: str | None = None
    disconnect_error: str | None = None


class FixtureDriver(FiscalDriver):
    """Driver replaying one `FixtureDevice` (or nothing, for absent endpoints)."""

    def __init__(self, device: FixtureDevice | None) -> None:
        self._device = device
        self._connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.fetch_calls = 0

    def connect(self) -> None:
        self.connect_calls += 1
        device = self._device
        if device is None:
            raise DriverError("No device answers on this connection")
        if device.connect_error is not None:
            raise DriverError(device.connect_error)
        if device.result_code != 0:
            raise DriverResultError(device.result_code, "Fixture result code")
        self._connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        if not self._connected:
            return
        self._connected = False
        if self._device is not None and self._device.disconnect_error is not None:
            raise DriverError(self._device.disconnect_error)

    def fetch_fiscal_record(self) -> FiscalRecord:
        self.fetch_calls += 1
        if not self._connected:
            raise DriverNotConnected("Fixture driver is not connected")
        device = self._device
        assert device is not None
        if device.fetch_error is not None:
            raise DriverError(device.fetch_error)
        if device.record is None:
            raise DriverError("Fixture device has no record")
        return device.record


class FixtureDriverFactory:
    """Fixture-backed driver factory used for --dry-run and tests.

    Fixture layout (JSON):

        {
          "serial_ports": ["COM3"],
          "devices": [
            {"connection": {"type_connect": 0, "com_port": "COM3", "com_baudrate": "115200"},
             "record": {"serialNumber": "0012...", "modelName": "..."}},
            {"connection": {"type_connect": 6, "ip": "192.168.137.111", "ip_port": "7778"},
             "result_code": 1}
          ]
        }

    Network devices are also reachable for the bare TCP stage of discovery.
    """

    def __init__(
        self,
        devices: list[FixtureDevice],
        *,
        serial_ports: list[str] | None = None,
    ) -> None:
        self._devices = {device.descriptor: device for device in devices}
        self._serial_ports = list(serial_ports or [])
        self.created: list[FixtureDriver] = []

    @classmethod
    def from_path(cls, fixture_path: Path) -> FixtureDriverFactory:
        return cls.from_text(fixture_path.read_text(encoding="utf-8"))

    @classmethod
    def from_text(cls, text: str) -> FixtureDriverFactory:
        data: Any = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Fixture root must be a JSON object")

        ports = data.get("serial_ports", [])
        if not isinstance(ports, list) or not all(isinstance(p, str) for p in ports):
            raise ValueError('Fixture key "serial_ports" must be a list of strings')

        raw_devices = data.get("devices", [])
        if not isinstance(raw_devices, list):
            raise ValueError('Fixture key "devices" must be a list')

        devices: list[FixtureDevice] = []
        for index, entry in enumerate(raw_devices):
            if not isinstance(entry, dict):
                raise ValueError(f"Fixture device #{index} must be a JSON object")
            connection = entry.get("connection")
            if not isinstance(connection, dict):
                raise ValueError(f'Fixture device #{index} must contain a "connection" object')
            descriptor = settings_to_descriptor(ConnectionSettings.from_json(connection))

            record_obj = entry.get("record")
            record: FiscalRecord | None = None
            if record_obj is not None:
                if not isinstance(record_obj, dict):
                    raise ValueError(f'Fixture device #{index} "record" must be an object')
                record = FiscalRecord.from_field_map(record_obj)

            result_code = entry.get("result_code", 0)
            if not isinstance(result_code, int) or isinstance(result_code, bool):
                raise ValueError(f'Fixture device #{index} "result_code" must be an int')

            devices.append(
                FixtureDevice(
                    descriptor=descriptor,
                    record=record,
                    result_code=result_code,
                    connect_error=_optional_str(entry, "connect_error", index),
                    fetch_error=_optional_str(entry, "fetch_error", index),
                    disconnect_error=_optional_str(entry, "disconnect_error", index),
                )
            )
        return cls(devices, serial_ports=ports)

    def __call__(
        self,
        descriptor: ConnectionDescriptor,
        *,
        timeout_ms: int | None = None,  # noqa: ARG002
    ) -> FixtureDriver:
        driver = FixtureDriver(self._devices.get(descriptor))
        self.created.append(driver)
        return driver

    def list_ports(self) -> list[str]:
        return list(self._serial_ports)

    def is_reachable(
        self,
        ip_address: str,
        tcp_port: int,
        timeout_s: float,  # noqa: ARG002
    ) -> bool:
        return NetworkConnection(ip_address=ip_address, tcp_port=tcp_port) in self._devices

    @property
    def descriptors(self) -> list[ConnectionDescriptor]:
        return list(self._devices)


def _optional_str(entry: dict[str, Any], key: str, index: int) -> str | None:
    value = entry.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f'Fixture device #{index} "{key}" must be a string')
