from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Final

from serial.tools import list_ports

from ..driver.base import DriverFactory
from ..models import (
    BAUD_RATE_INDEXES,
    ConnectionDescriptor,
    NetworkConnection,
    SerialConnection,
    parse_com_number,
)
from .observer import ScanObserver
from .probe import probe_connection, tcp_port_open

logger = logging.getLogger(__name__)

PortLister = Callable[[], list[str]]
TcpCheck = Callable[[str, int, float], bool]

# Standard TCP port of Shtrih-M devices and the subnets Windows hands out to
# USB/RNDIS-attached registrars.
DEFAULT_TCP_PORT: Final[int] = 7778
DEFAULT_SUBNETS: Final[tuple[str, ...]] = ("192.168.137.", "192.168.138.")
# Fastest and slowest rates; an exhaustive sweep is too slow for interactive use.
DEFAULT_SERIAL_BAUD_RATES: Final[tuple[int, ...]] = (115200, 4800)


class DiscoveryPhase(enum.Enum):
    IDLE = "idle"
    SCANNING_SERIAL = "serial_scan"
    SCANNING_NETWORK = "network_scan"
    DONE = "done"


@dataclass(frozen=True)
class DiscoveryConfig:
    com_timeout_ms: int = 200
    tcp_timeout_ms: int = 200
    serial_baud_rates: tuple[int, ...] = DEFAULT_SERIAL_BAUD_RATES
    subnets: tuple[str, ...] = DEFAULT_SUBNETS
    host_range: tuple[int, int] = (1, 254)
    tcp_port: int = DEFAULT_TCP_PORT
    pool_size: int = 50

    def __post_init__(self) -> None:
        if self.com_timeout_ms <= 0 or self.tcp_timeout_ms <= 0:
            raise ValueError("timeouts must be > 0 ms")
        if not self.serial_baud_rates:
            raise ValueError("serial_baud_rates must not be empty")
        for rate in self.serial_baud_rates:
            if rate not in BAUD_RATE_INDEXES:
                raise ValueError(f"Unsupported baud rate: {rate}")
        first, last = self.host_range
        if not (0 <= first <= last <= 255):
            raise ValueError(f"Invalid host range: {self.host_range}")
        if not (0 < self.tcp_port <= 0xFFFF):
            raise ValueError(f"Invalid TCP port: {self.tcp_port}")
        if self.pool_size <= 0:
            raise ValueError("pool_size must be > 0")

    def iter_addresses(self) -> Iterator[str]:
        first, last = self.host_range
        for subnet in self.subnets:
            prefix = subnet if subnet.endswith(".") else f"{subnet}."
            for host in range(first, last + 1):
                yield f"{prefix}{host}"


@dataclass
class DiscoveryResult:
    serial: list[SerialConnection] = field(default_factory=list)
    network: list[NetworkConnection] = field(default_factory=list)

    @property
    def descriptors(self) -> list[ConnectionDescriptor]:
        # Serial hits always come first.
        return [*self.serial, *self.network]


def system_serial_ports() -> list[str]:
    return [port.device for port in list_ports.comports()]


def find_on_serial_port(
    port_name: str,
    factory: DriverFactory,
    *,
    config: DiscoveryConfig,
) -> SerialConnection | None:
    """Try each configured baud rate on one port; first success wins.

    Every attempt is a full session open/close: the driver cannot change the
    baud rate of an open session.
    """

    try:
        parse_com_number(port_name)
    except ValueError:
        logger.warning("Skipping serial port with unparseable name %r", port_name)
        return None

    for rate in config.serial_baud_rates:
        descriptor = SerialConnection(port_name=port_name, baud_index=BAUD_RATE_INDEXES[rate])
        if probe_connection(descriptor, factory, timeout_ms=config.com_timeout_ms):
            logger.info("Device found on %s at %d baud", port_name, rate)
            return descriptor
    return None


def scan_serial_ports(
    factory: DriverFactory,
    *,
    config: DiscoveryConfig,
    port_lister: PortLister = system_serial_ports,
    observer: ScanObserver | None = None,
) -> list[SerialConnection]:
    """Sequentially probe every serial port visible to the OS."""

    try:
        ports = list(port_lister())
    except Exception as exc:  # noqa: BLE001 - enumeration failure means an empty phase
        logger.warning("Cannot list serial ports: %s", exc)
        ports = []

    if observer is not None:
        observer.phase_start(DiscoveryPhase.SCANNING_SERIAL.value, total=len(ports))
    if not ports:
        logger.info("No serial ports found")
        if observer is not None:
            observer.phase_finish(DiscoveryPhase.SCANNING_SERIAL.value)
        return []

    logger.info("Serial ports: %s", ", ".join(ports))
    found: list[SerialConnection] = []
    for port_name in ports:
        if observer is not None:
            observer.status(f"Probing {port_name}")
        descriptor = find_on_serial_port(port_name, factory, config=config)
        if descriptor is not None:
            found.append(descriptor)
            if observer is not None:
                observer.device_found(
                    DiscoveryPhase.SCANNING_SERIAL.value,
                    f"Found device on {descriptor.describe()}",
                )
        if observer is not None:
            observer.phase_advance(DiscoveryPhase.SCANNING_SERIAL.value)

    if observer is not None:
        observer.phase_finish(DiscoveryPhase.SCANNING_SERIAL.value)
    return found


def check_address(
    ip_address: str,
    factory: DriverFactory,
    *,
    config: DiscoveryConfig,
    tcp_check: TcpCheck = tcp_port_open,
) -> NetworkConnection | None:
    """Two-stage probe of one address: bare TCP connect, then a driver session."""

    if not tcp_check(ip_address, config.tcp_port, config.tcp_timeout_ms / 1000.0):
        return None

    logger.info("Open port at %s:%d, checking compatibility", ip_address, config.tcp_port)
    descriptor = NetworkConnection(ip_address=ip_address, tcp_port=config.tcp_port)
    if not probe_connection(descriptor, factory, timeout_ms=config.tcp_timeout_ms):
        return None
    logger.info("Device confirmed at %s", descriptor.describe())
    return descriptor


def scan_network(
    factory: DriverFactory,
    *,
    config: DiscoveryConfig,
    tcp_check: TcpCheck = tcp_port_open,
    observer: ScanObserver | None = None,
) -> list[NetworkConnection]:
    """Probe the RNDIS subnets with at most `config.pool_size` concurrent workers.

    Each worker owns its driver session. Results arrive in completion order.
    """

    addresses = list(config.iter_addresses())
    if observer is not None:
        observer.phase_start(DiscoveryPhase.SCANNING_NETWORK.value, total=len(addresses))
    if not addresses:
        if observer is not None:
            observer.phase_finish(DiscoveryPhase.SCANNING_NETWORK.value)
        return []

    logger.info(
        "Scanning %d addresses on port %d (subnets: %s)",
        len(addresses),
        config.tcp_port,
        ", ".join(config.subnets),
    )
    found: list[NetworkConnection] = []
    with ThreadPoolExecutor(
        max_workers=min(config.pool_size, len(addresses)),
        thread_name_prefix="kkt-scan",
    ) as executor:
        futures = {
            executor.submit(
                check_address, address, factory, config=config, tcp_check=tcp_check
            ): address
            for address in addresses
        }
        for future in as_completed(futures):
            address = futures[future]
            try:
                descriptor = future.result()
            except Exception as exc:  # noqa: BLE001 - one address never aborts the scan
                logger.warning("Probe of %s failed unexpectedly: %s", address, exc)
                descriptor = None
            if descriptor is not None:
                found.append(descriptor)
                if observer is not None:
                    observer.device_found(
                        DiscoveryPhase.SCANNING_NETWORK.value,
                        f"Found device at {descriptor.describe()}",
                    )
            if observer is not None:
                observer.phase_advance(DiscoveryPhase.SCANNING_NETWORK.value)

    if observer is not None:
        observer.phase_finish(DiscoveryPhase.SCANNING_NETWORK.value)
    return found


class DiscoveryEngine:
    """Runs serial then network discovery: IDLE -> SCANNING_SERIAL -> SCANNING_NETWORK -> DONE."""

    def __init__(
        self,
        factory: DriverFactory,
        *,
        config: DiscoveryConfig | None = None,
        port_lister: PortLister = system_serial_ports,
        tcp_check: TcpCheck = tcp_port_open,
        observer: ScanObserver | None = None,
    ) -> None:
        self._factory = factory
        self._config = config or DiscoveryConfig()
        self._port_lister = port_lister
        self._tcp_check = tcp_check
        self._observer = observer
        self.phase = DiscoveryPhase.IDLE

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    def run(self) -> DiscoveryResult:
        if self.phase is not DiscoveryPhase.IDLE:
            raise RuntimeError(f"Discovery already ran (phase={self.phase.value})")

        result = DiscoveryResult()

        self.phase = DiscoveryPhase.SCANNING_SERIAL
        logger.info("--- Searching for devices on serial ports ---")
        result.serial = scan_serial_ports(
            self._factory,
            config=self._config,
            port_lister=self._port_lister,
            observer=self._observer,
        )

        self.phase = DiscoveryPhase.SCANNING_NETWORK
        logger.info("--- Searching for devices on RNDIS networks ---")
        result.network = scan_network(
            self._factory,
            config=self._config,
            tcp_check=self._tcp_check,
            observer=self._observer,
        )

        self.phase = DiscoveryPhase.DONE
        logger.info("--- Discovery finished, %d device(s) found ---", len(result.descriptors))
        return result


def discover_devices(
    factory: DriverFactory,
    *,
    config: DiscoveryConfig | None = None,
    port_lister: PortLister = system_serial_ports,
    tcp_check: TcpCheck = tcp_port_open,
    observer: ScanObserver | None = None,
) -> list[ConnectionDescriptor]:
    engine = DiscoveryEngine(
        factory,
        config=config,
        port_lister=port_lister,
        tcp_check=tcp_check,
        observer=observer,
    )
    return engine.run().descriptors


def estimate_worst_case_s(config: DiscoveryConfig, *, serial_ports: Sequence[str]) -> float:
    """Upper bound of one discovery run, ignoring stage-2 probes."""

    address_count = sum(1 for _ in config.iter_addresses())
    batches = -(-address_count // config.pool_size)
    serial_s = len(serial_ports) * len(config.serial_baud_rates) * config.com_timeout_ms / 1000.0
    return serial_s + batches * config.tcp_timeout_ms / 1000.0
