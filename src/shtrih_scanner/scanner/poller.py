from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Final

from ..driver.base import DriverError, DriverFactory
from ..models import ConnectionDescriptor, PolledDevice
from .observer import ScanObserver

logger = logging.getLogger(__name__)

POLL_PHASE: Final[str] = "polling"


def poll_device(descriptor: ConnectionDescriptor, factory: DriverFactory) -> PolledDevice | None:
    """Connect, fetch the fiscal record, disconnect.

    Returns None (after logging) when the device cannot be used for this run.
    """

    try:
        driver = factory(descriptor)
    except DriverError as exc:
        logger.warning("Cannot create driver for %s: %s", descriptor.describe(), exc)
        return None

    try:
        driver.connect()
    except DriverError as exc:
        logger.warning("Cannot connect to %s: %s", descriptor.describe(), exc)
        return None

    try:
        record = driver.fetch_fiscal_record()
    except DriverError as exc:
        logger.warning("Cannot read fiscal data from %s: %s", descriptor.describe(), exc)
        record = None
    finally:
        try:
            driver.disconnect()
        except DriverError as exc:
            logger.warning("Disconnect from %s failed: %s", descriptor.describe(), exc)

    if record is None:
        return None
    if not record.is_valid:
        logger.warning(
            "Empty serial number reported by %s, record discarded", descriptor.describe()
        )
        return None
    return PolledDevice(descriptor=descriptor, record=record)


def poll_devices(
    descriptors: Sequence[ConnectionDescriptor],
    factory: DriverFactory,
    *,
    observer: ScanObserver | None = None,
) -> list[PolledDevice]:
    """Poll every descriptor in order; one failing device never stops the others."""

    if observer is not None:
        observer.phase_start(POLL_PHASE, total=len(descriptors))

    polled: list[PolledDevice] = []
    for descriptor in descriptors:
        logger.info("--- Polling device at %s ---", descriptor.describe())
        if observer is not None:
            observer.status(f"Polling {descriptor.describe()}")
        device = poll_device(descriptor, factory)
        if device is not None:
            polled.append(device)
            if observer is not None:
                observer.device_found(
                    POLL_PHASE,
                    f"{device.record.model_name or 'KKT'} #{device.record.serial_number} "
                    f"at {descriptor.describe()}"
                )
        elif observer is not None:
            observer.log(f"No data from {descriptor.describe()}", level="warn")
        if observer is not None:
            observer.phase_advance(POLL_PHASE)

    if observer is not None:
        observer.phase_finish(POLL_PHASE)

    if polled:
        logger.info("Collected data from %d device(s)", len(polled))
    else:
        logger.info("No data collected from any device")
    return polled
