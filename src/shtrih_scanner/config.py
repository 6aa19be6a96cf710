from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Final

from .models import (
    BAUD_RATE_INDEXES,
    BAUD_RATES_BY_INDEX,
    CONNECTION_TYPE_NETWORK,
    CONNECTION_TYPE_SERIAL,
    DEFAULT_PASSWORD,
    ConnectionDescriptor,
    NetworkConnection,
    SerialConnection,
    parse_com_number,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE: Final[Path] = Path("connect.json")
DEFAULT_SERVICE_FILE: Final[Path] = Path("service.json")
DEFAULT_LOG_DAYS: Final[int] = 7
SHTRIH_SECTION: Final[str] = "shtrih"


class ConfigError(Exception):
    """Raised when the static connection list cannot be used."""


@dataclass(frozen=True, slots=True)
class ConnectionSettings:
    """One connection block of `connect.json`, as written by humans."""

    type_connect: int
    com_port: str = ""
    com_baudrate: str = ""
    ip: str = ""
    ip_port: str = ""

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> ConnectionSettings:
        type_connect = data.get("type_connect")
        if not isinstance(type_connect, int) or isinstance(type_connect, bool):
            raise ValueError(f"type_connect must be an int, got {type_connect!r}")
        return cls(
            type_connect=type_connect,
            com_port=str(data.get("com_port") or ""),
            com_baudrate=str(data.get("com_baudrate") or ""),
            ip=str(data.get("ip") or ""),
            ip_port=str(data.get("ip_port") or ""),
        )

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    log_level: str = "info"
    log_days: int = DEFAULT_LOG_DAYS


@dataclass(frozen=True, slots=True)
class StaticConfig:
    """Parsed `connect.json`.

    `shtrih` is None when the section is absent (a different state from an
    empty list, which records that a previous scan found nothing).
    """

    shtrih: list[ConnectionSettings] | None
    raw: dict[str, Any]


def settings_to_descriptor(settings: ConnectionSettings) -> ConnectionDescriptor:
    """Map one settings block to a descriptor. Raises ValueError on invalid data."""

    match settings.type_connect:
        case 0:
            parse_com_number(settings.com_port)
            try:
                baud_index = BAUD_RATE_INDEXES[int(settings.com_baudrate)]
            except (KeyError, ValueError) as exc:
                raise ValueError(
                    f"Invalid baud rate {settings.com_baudrate!r} for port {settings.com_port!r}"
                ) from exc
            return SerialConnection(
                port_name=settings.com_port,
                baud_index=baud_index,
                password=DEFAULT_PASSWORD,
            )
        case 6:
            try:
                port = int(settings.ip_port)
            except ValueError as exc:
                raise ValueError(
                    f"Invalid TCP port {settings.ip_port!r} for IP {settings.ip!r}"
                ) from exc
            if not settings.ip:
                raise ValueError("Missing IP address for network connection")
            return NetworkConnection(
                ip_address=settings.ip,
                tcp_port=port,
                password=DEFAULT_PASSWORD,
            )
        case _:
            raise ValueError(f"Unknown connection type {settings.type_connect}")


def settings_to_descriptors(settings: Iterable[ConnectionSettings]) -> list[ConnectionDescriptor]:
    """Convert settings blocks, skipping (and logging) the invalid ones."""

    descriptors: list[ConnectionDescriptor] = []
    for block in settings:
        try:
            descriptors.append(settings_to_descriptor(block))
        except ValueError as exc:
            logger.warning("Skipping connection block %s: %s", block, exc)
    return descriptors


def descriptor_to_settings(descriptor: ConnectionDescriptor) -> ConnectionSettings:
    if isinstance(descriptor, SerialConnection):
        rate = BAUD_RATES_BY_INDEX.get(descriptor.baud_index)
        return ConnectionSettings(
            type_connect=CONNECTION_TYPE_SERIAL,
            com_port=descriptor.port_name,
            com_baudrate=str(rate) if rate is not None else "",
        )
    return ConnectionSettings(
        type_connect=CONNECTION_TYPE_NETWORK,
        ip=descriptor.ip_address,
        ip_port=str(descriptor.tcp_port),
    )


def parse_static_config(text: str) -> StaticConfig:
    """Parse `connect.json` text. Raises ConfigError when it is unusable."""

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a JSON object")

    section = data.get(SHTRIH_SECTION)
    if section is None:
        return StaticConfig(shtrih=None, raw=data)
    if not isinstance(section, list):
        raise ConfigError(f'Section "{SHTRIH_SECTION}" must be a list')

    blocks: list[ConnectionSettings] = []
    for item in section:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object connection block: %r", item)
            continue
        try:
            blocks.append(ConnectionSettings.from_json(item))
        except ValueError as exc:
            logger.warning("Skipping connection block %r: %s", item, exc)
    return StaticConfig(shtrih=blocks, raw=data)


def _read_existing_raw(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("Cannot read %s (%s); it will be recreated", path, exc)
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("%s is corrupted (%s); it will be overwritten", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("%s root is not an object; it will be overwritten", path)
        return {}
    return data


def save_connection_list(path: Path, descriptors: Sequence[ConnectionDescriptor]) -> bool:
    """Write descriptors into the `shtrih` section, keeping other sections intact.

    An empty sequence records "no devices found" so later runs skip discovery.
    Returns False (after logging) when the file cannot be written.
    """

    data = _read_existing_raw(path)
    data[SHTRIH_SECTION] = [descriptor_to_settings(d).to_json() for d in descriptors]
    try:
        path.write_text(json.dumps(data, indent=4, ensure_ascii=False) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.error("Cannot write connection list to %s: %s", path, exc)
        return False
    logger.info("Saved %d connection(s) to %s", len(descriptors), path)
    return True


def load_service_config(path: Path) -> ServiceConfig | None:
    """Load `service.json`. Returns None when missing or malformed."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Cannot parse %s: %s", path, exc)
        return None
    service = data.get("service") if isinstance(data, dict) else None
    if not isinstance(service, dict):
        logger.warning('%s has no "service" object', path)
        return None

    log_level = service.get("log_level")
    log_days = service.get("log_days")
    if not isinstance(log_days, int) or isinstance(log_days, bool) or log_days <= 0:
        log_days = DEFAULT_LOG_DAYS
    return ServiceConfig(
        log_level=log_level if isinstance(log_level, str) and log_level.strip() else "info",
        log_days=log_days,
    )
