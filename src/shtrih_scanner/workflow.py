from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .config import (
    ConfigError,
    parse_static_config,
    save_connection_list,
    settings_to_descriptors,
)
from .driver.base import DriverFactory
from .models import ConnectionDescriptor, PolledDevice
from .reconcile.directory import ReconcileReport, reconcile_devices
from .scanner.discovery import (
    DiscoveryConfig,
    PortLister,
    TcpCheck,
    discover_devices,
    system_serial_ports,
)
from .scanner.observer import ScanObserver
from .scanner.poller import poll_devices
from .scanner.probe import tcp_port_open

logger = logging.getLogger(__name__)


class RunMode(enum.Enum):
    CONFIG = "config"
    DISCOVERY = "discovery"


@dataclass
class RunResult:
    mode: RunMode
    descriptors: list[ConnectionDescriptor] = field(default_factory=list)
    polled: list[PolledDevice] = field(default_factory=list)
    report: ReconcileReport | None = None


@dataclass(frozen=True)
class RunContext:
    """Everything one run needs; I/O collaborators are injectable for tests and --dry-run."""

    factory: DriverFactory
    config_file: Path
    output_dir: Path
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    port_lister: PortLister = system_serial_ports
    tcp_check: TcpCheck = tcp_port_open
    observer: ScanObserver | None = None
    hostname: str | None = None
    now: Callable[[], datetime] = datetime.now


def process_devices(
    descriptors: Sequence[ConnectionDescriptor],
    ctx: RunContext,
) -> tuple[list[PolledDevice], ReconcileReport | None]:
    """Poll every descriptor and reconcile the record directory with the results."""

    polled = poll_devices(descriptors, ctx.factory, observer=ctx.observer)
    if not polled:
        logger.info("--- No data collected, record files left untouched ---")
        return polled, None

    logger.info("--- Collected data from %d device(s), updating record files ---", len(polled))
    report = reconcile_devices(polled, ctx.output_dir, hostname=ctx.hostname, now=ctx.now)
    return polled, report


def run_discovery_mode(ctx: RunContext) -> RunResult:
    result = RunResult(mode=RunMode.DISCOVERY)
    result.descriptors = discover_devices(
        ctx.factory,
        config=ctx.discovery,
        port_lister=ctx.port_lister,
        tcp_check=ctx.tcp_check,
        observer=ctx.observer,
    )

    if not result.descriptors:
        logger.info("No Shtrih-M devices found")
        # Record the empty result so later runs skip the scan.
        save_connection_list(ctx.config_file, [])
        return result

    logger.info("Found %d device(s), collecting data", len(result.descriptors))
    result.polled, result.report = process_devices(result.descriptors, ctx)
    if result.polled:
        save_connection_list(ctx.config_file, [device.descriptor for device in result.polled])
    return result


def run_config_mode(text: str, ctx: RunContext) -> RunResult:
    try:
        static = parse_static_config(text)
    except ConfigError as exc:
        logger.warning("Cannot parse %s (%s), switching to discovery", ctx.config_file, exc)
        return run_discovery_mode(ctx)

    if static.shtrih is None:
        logger.warning('No "shtrih" section in %s, switching to discovery', ctx.config_file)
        return run_discovery_mode(ctx)

    result = RunResult(mode=RunMode.CONFIG)
    if not static.shtrih:
        logger.info("Device list in %s is empty, nothing to poll", ctx.config_file)
        return result

    logger.info("Found %d Shtrih-M connection(s) in %s", len(static.shtrih), ctx.config_file)
    result.descriptors = settings_to_descriptors(static.shtrih)
    if not result.descriptors:
        logger.warning("No valid connection in %s, check its contents", ctx.config_file)
        return result

    result.polled, result.report = process_devices(result.descriptors, ctx)
    return result


def run(ctx: RunContext) -> RunResult:
    """Config mode when the connection list exists, discovery mode otherwise."""

    try:
        text = ctx.config_file.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("%s not found, starting discovery", ctx.config_file)
        return run_discovery_mode(ctx)
    except OSError as exc:
        logger.error("Cannot read %s (%s), starting discovery", ctx.config_file, exc)
        return run_discovery_mode(ctx)

    logger.info("Using connection list %s", ctx.config_file)
    return run_config_mode(text, ctx)
