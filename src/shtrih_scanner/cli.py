from __future__ import annotations

import json
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

import typer
from rich.console import Console

from . import __version__
from .config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_SERVICE_FILE,
    load_service_config,
    save_connection_list,
)
from .driver.base import DriverFactory
from .driver.drvfr import drvfr_factory
from .driver.fixture import FixtureDriverFactory
from .logging_setup import setup_logging
from .models import SerialConnection
from .reconcile.directory import DEFAULT_OUTPUT_DIR
from .scanner.discovery import (
    DiscoveryConfig,
    DiscoveryEngine,
    PortLister,
    TcpCheck,
    estimate_worst_case_s,
    system_serial_ports,
)
from .scanner.probe import tcp_port_open
from .ui.live import make_scan_observer
from .ui.summary import render_summary
from .workflow import RunContext, run

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@dataclass(frozen=True)
class _Backend:
    factory: DriverFactory
    port_lister: PortLister
    tcp_check: TcpCheck
    label: str


def _load_default_fixture_text() -> tuple[str | None, str | None]:
    """Return (text, source label) of the demo fixture shipped with the package."""

    name = "demo_devices.json"
    try:
        text = resources.files("shtrih_scanner.fixtures").joinpath(name).read_text(encoding="utf-8")
    except (ModuleNotFoundError, OSError):
        return (None, None)
    return (text, f"packaged:{name}")


def _build_backend(*, dry_run: bool, fixture: Path | None) -> _Backend:
    if not dry_run:
        if fixture is not None:
            typer.echo("--fixture requires --dry-run.", err=True)
            raise typer.Exit(2)
        return _Backend(
            factory=drvfr_factory,
            port_lister=system_serial_ports,
            tcp_check=tcp_port_open,
            label="DrvFR",
        )

    source: str | None = None
    try:
        if fixture is not None:
            if not fixture.exists():
                typer.echo(f"Fixture not found: {fixture}", err=True)
                raise typer.Exit(2)
            source = str(fixture)
            factory = FixtureDriverFactory.from_path(fixture)
        else:
            text, source = _load_default_fixture_text()
            if text is None:
                typer.echo("Fixture not found: demo_devices.json", err=True)
                raise typer.Exit(2)
            factory = FixtureDriverFactory.from_text(text)
    except (OSError, json.JSONDecodeError, ValueError) as exc:
        typer.echo(f"Invalid fixture: {source} ({exc})", err=True)
        raise typer.Exit(2) from exc

    return _Backend(
        factory=factory,
        port_lister=factory.list_ports,
        tcp_check=factory.is_reachable,
        label=f"dry-run fixture {source}",
    )


def _build_discovery_config(com_timeout_ms: int, tcp_timeout_ms: int) -> DiscoveryConfig:
    try:
        return DiscoveryConfig(com_timeout_ms=com_timeout_ms, tcp_timeout_ms=tcp_timeout_ms)
    except ValueError as exc:
        typer.echo(f"Invalid discovery settings: {exc}", err=True)
        raise typer.Exit(2) from exc


def _scan_scope(config: DiscoveryConfig) -> str:
    subnets = ", ".join(f"{subnet.rstrip('.')}.x" for subnet in config.subnets)
    return f"Discovery scope: serial ports, then {subnets} on TCP port {config.tcp_port}"


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Print version and exit.",
        is_eager=True,
    ),
) -> None:
    if version:
        typer.echo(f"shtrih-scanner {__version__}")
        raise typer.Exit(0)


@app.command("run")
def run_command(
    config_file: Path = typer.Option(  # noqa: B008
        DEFAULT_CONFIG_FILE,
        "--config-file",
        envvar="SHTRIH_CONFIG_FILE",
        help="Static connection list. Missing file triggers device discovery.",
    ),
    service_file: Path = typer.Option(  # noqa: B008
        DEFAULT_SERVICE_FILE,
        "--service-file",
        envvar="SHTRIH_SERVICE_FILE",
        help="Service settings (log level, log retention days).",
    ),
    output_dir: Path = typer.Option(  # noqa: B008
        DEFAULT_OUTPUT_DIR,
        "--output-dir",
        envvar="SHTRIH_OUTPUT_DIR",
        help="Directory holding one <serialNumber>.json record per device.",
    ),
    logs_dir: Path = typer.Option(  # noqa: B008
        Path("logs"),
        "--logs-dir",
        envvar="SHTRIH_LOGS_DIR",
        help="Directory for the rotating log file.",
    ),
    com_timeout_ms: int = typer.Option(  # noqa: B008
        200,
        "--com-timeout-ms",
        help="Per-attempt timeout while probing serial ports.",
    ),
    tcp_timeout_ms: int = typer.Option(  # noqa: B008
        200,
        "--tcp-timeout-ms",
        help="Per-address timeout while probing RNDIS networks.",
    ),
    dry_run: bool = typer.Option(  # noqa: B008
        False,
        "--dry-run",
        help="Replay a device fixture instead of talking to real hardware.",
    ),
    fixture: Path | None = typer.Option(  # noqa: B008
        None,
        "--fixture",
        help="Fixture JSON for --dry-run (defaults to the bundled demo fixture).",
    ),
    verbose: bool = typer.Option(  # noqa: B008
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    """Poll configured (or discovered) KKT devices and update their record files."""

    console = Console(stderr=True)
    discovery = _build_discovery_config(com_timeout_ms, tcp_timeout_ms)
    backend = _build_backend(dry_run=dry_run, fixture=fixture)

    setup_logging(
        load_service_config(service_file),
        console=console,
        logs_dir=logs_dir,
        verbose=verbose,
    )

    with make_scan_observer(
        console=console,
        title=f"shtrih-scanner v{__version__} ({backend.label})",
        subtitle=_scan_scope(discovery),
    ) as observer:
        result = run(
            RunContext(
                factory=backend.factory,
                config_file=config_file,
                output_dir=output_dir,
                discovery=discovery,
                port_lister=backend.port_lister,
                tcp_check=backend.tcp_check,
                observer=observer,
            )
        )

    # Summary to stderr; stdout lists written record files only.
    render_summary(console, result.polled, report=result.report, output_dir=output_dir)
    if result.report is not None:
        for path in result.report.written:
            typer.echo(str(path))


@app.command()
def discover(
    config_file: Path = typer.Option(  # noqa: B008
        DEFAULT_CONFIG_FILE,
        "--config-file",
        envvar="SHTRIH_CONFIG_FILE",
        help="Connection list updated by --save.",
    ),
    service_file: Path = typer.Option(  # noqa: B008
        DEFAULT_SERVICE_FILE,
        "--service-file",
        envvar="SHTRIH_SERVICE_FILE",
        help="Service settings (log level, log retention days).",
    ),
    logs_dir: Path = typer.Option(  # noqa: B008
        Path("logs"),
        "--logs-dir",
        envvar="SHTRIH_LOGS_DIR",
        help="Directory for the rotating log file.",
    ),
    save: bool = typer.Option(  # noqa: B008
        False,
        "--save",
        help="Write the discovered connections into the connection list.",
    ),
    com_timeout_ms: int = typer.Option(  # noqa: B008
        200,
        "--com-timeout-ms",
        help="Per-attempt timeout while probing serial ports.",
    ),
    tcp_timeout_ms: int = typer.Option(  # noqa: B008
        200,
        "--tcp-timeout-ms",
        help="Per-address timeout while probing RNDIS networks.",
    ),
    dry_run: bool = typer.Option(  # noqa: B008
        False,
        "--dry-run",
        help="Replay a device fixture instead of talking to real hardware.",
    ),
    fixture: Path | None = typer.Option(  # noqa: B008
        None,
        "--fixture",
        help="Fixture JSON for --dry-run (defaults to the bundled demo fixture).",
    ),
    verbose: bool = typer.Option(  # noqa: B008
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    """Search serial ports and RNDIS subnets for KKT devices (no polling)."""

    console = Console(stderr=True)
    discovery = _build_discovery_config(com_timeout_ms, tcp_timeout_ms)
    backend = _build_backend(dry_run=dry_run, fixture=fixture)
    setup_logging(
        load_service_config(service_file),
        console=console,
        logs_dir=logs_dir,
        verbose=verbose,
    )

    try:
        ports = backend.port_lister()
    except Exception:  # noqa: BLE001 - the engine logs enumeration failures itself
        ports = []
    typer.echo(
        f"Worst-case scan time: {estimate_worst_case_s(discovery, serial_ports=ports):.1f}s",
        err=True,
    )

    with make_scan_observer(
        console=console,
        title="shtrih-scanner discovery",
        subtitle=_scan_scope(discovery),
    ) as observer:
        engine = DiscoveryEngine(
            backend.factory,
            config=discovery,
            port_lister=lambda: list(ports),
            tcp_check=backend.tcp_check,
            observer=observer,
        )
        descriptors = engine.run().descriptors

    if not descriptors:
        typer.echo("No devices found.", err=True)
    for descriptor in descriptors:
        kind = "serial" if isinstance(descriptor, SerialConnection) else "network"
        typer.echo(f"{kind} {descriptor.describe()}")

    if save:
        save_connection_list(config_file, descriptors)
