from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Final

FieldMap = dict[str, Any]

CONNECTION_TYPE_SERIAL: Final[int] = 0
CONNECTION_TYPE_NETWORK: Final[int] = 6
DEFAULT_PASSWORD: Final[int] = 30

# Baud rate -> index understood by the DrvFR driver.
BAUD_RATE_INDEXES: Final[dict[int, int]] = {
    2400: 0,
    4800: 1,
    9600: 2,
    19200: 3,
    38400: 4,
    57600: 5,
    115200: 6,
}
BAUD_RATES_BY_INDEX: Final[dict[int, int]] = {v: k for k, v in BAUD_RATE_INDEXES.items()}

_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")


def parse_com_number(port_name: str) -> int:
    """Return the numeric part of a serial port name (`COM3` -> 3, `/dev/ttyS0` -> 0)."""

    m = _TRAILING_DIGITS_RE.search(port_name.strip())
    if m is None:
        raise ValueError(f"Invalid serial port name: {port_name!r}")
    return int(m.group(1))


@dataclass(frozen=True, slots=True)
class SerialConnection:
    port_name: str
    baud_index: int
    password: int = DEFAULT_PASSWORD

    connection_type: int = field(default=CONNECTION_TYPE_SERIAL, init=False, repr=False)

    @property
    def com_number(self) -> int:
        return parse_com_number(self.port_name)

    @property
    def baud_rate(self) -> int | None:
        return BAUD_RATES_BY_INDEX.get(self.baud_index)

    def describe(self) -> str:
        rate = self.baud_rate
        return f"{self.port_name} @ {rate if rate is not None else f'index {self.baud_index}'}"


@dataclass(frozen=True, slots=True)
class NetworkConnection:
    ip_address: str
    tcp_port: int
    password: int = DEFAULT_PASSWORD

    connection_type: int = field(default=CONNECTION_TYPE_NETWORK, init=False, repr=False)

    def describe(self) -> str:
        return f"{self.ip_address}:{self.tcp_port}"


ConnectionDescriptor = SerialConnection | NetworkConnection


@dataclass(slots=True)
class FiscalRecord:
    """Fiscal/identity data reported by one device.

    Field metadata carries the JSON key used in persisted record files.
    """

    model_name: str = field(default="", metadata={"key": "modelName"})
    serial_number: str = field(default="", metadata={"key": "serialNumber"})
    registration_number: str = field(default="", metadata={"key": "RNM"})
    organization_name: str = field(default="", metadata={"key": "organizationName"})
    address: str = field(default="", metadata={"key": "address"})
    inn: str = field(default="", metadata={"key": "INN"})
    fn_serial: str = field(default="", metadata={"key": "fn_serial"})
    registration_date: str = field(default="", metadata={"key": "datetime_reg"})
    fn_end_date: str = field(default="", metadata={"key": "dateTime_end"})
    ofd_name: str = field(default="", metadata={"key": "ofdName"})
    software_date: str = field(default="", metadata={"key": "bootVersion"})
    ffd_version: str = field(default="", metadata={"key": "ffdVersion"})
    fn_execution: str = field(default="", metadata={"key": "fnExecution"})
    installed_driver: str = field(default="", metadata={"key": "installed_driver"})
    attribute_excise: bool = field(default=False, metadata={"key": "attribute_excise"})
    attribute_marked: bool = field(default=False, metadata={"key": "attribute_marked"})
    licenses: str = field(default="", metadata={"key": "licenses", "omit_empty": True})

    @property
    def is_valid(self) -> bool:
        return bool(self.serial_number.strip())

    def to_field_map(self) -> FieldMap:
        out: FieldMap = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.metadata.get("omit_empty") and not value:
                continue
            out[f.metadata["key"]] = value
        return out

    @classmethod
    def from_field_map(cls, data: FieldMap) -> FiscalRecord:
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            key = f.metadata["key"]
            if key not in data:
                continue
            value = data[key]
            if isinstance(f.default, bool):
                if not isinstance(value, bool):
                    raise ValueError(f"Field {key!r} must be a boolean, got {value!r}")
            elif not isinstance(value, str):
                raise ValueError(f"Field {key!r} must be a string, got {value!r}")
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class PolledDevice:
    descriptor: ConnectionDescriptor
    record: FiscalRecord
