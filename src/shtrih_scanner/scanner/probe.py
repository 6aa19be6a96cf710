from __future__ import annotations

import logging
import socket

from ..driver.base import DriverError, DriverFactory, FiscalDriver
from ..models import ConnectionDescriptor

logger = logging.getLogger(__name__)


def probe_connection(
    descriptor: ConnectionDescriptor,
    factory: DriverFactory,
    *,
    timeout_ms: int | None = None,
) -> bool:
    """Open and close one driver session against `descriptor`.

    Success means `connect()` returned and the device reported result code 0.
    Driver failures are logged at debug level and reported as False.
    """

    try:
        driver = factory(descriptor, timeout_ms=timeout_ms)
    except DriverError as exc:
        logger.debug("Cannot create driver for %s: %s", descriptor.describe(), exc)
        return False

    try:
        driver.connect()
    except DriverError as exc:
        logger.debug("Probe of %s failed: %s", descriptor.describe(), exc)
        # Partially opened sessions must still be released.
        _safe_disconnect(driver, descriptor)
        return False

    _safe_disconnect(driver, descriptor)
    return True


def _safe_disconnect(driver: FiscalDriver, descriptor: ConnectionDescriptor) -> None:
    try:
        driver.disconnect()
    except DriverError as exc:
        logger.debug("Disconnect after probe of %s failed: %s", descriptor.describe(), exc)


def tcp_port_open(ip_address: str, tcp_port: int, timeout_s: float) -> bool:
    """Bare TCP connect used to reject unused addresses cheaply."""

    try:
        with socket.create_connection((ip_address, tcp_port), timeout=timeout_s):
            return True
    except OSError:
        return False
