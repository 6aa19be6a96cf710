from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from ..models import ConnectionDescriptor, FiscalRecord


class DriverError(Exception):
    """Base class for fiscal driver errors (port busy, session open/close failure...)."""


class DriverNotConnected(DriverError):
    """Raised when a record is requested before a successful `connect()`."""


class DriverResultError(DriverError):
    """Raised when the device reports a non-zero result code.

    The transport-level call may have succeeded; a port or address that accepts a
    session but is not a fiscal registrar ends up here.
    """

    def __init__(self, code: int, description: str = "") -> None:
        self.code = code
        self.description = description
        text = f"[{code}] {description}".rstrip()
        super().__init__(f"Driver error: {text}")


class FiscalDriver(ABC):
    """Session against one fiscal registrar.

    A driver instance is owned by exactly one thread for its whole lifetime.
    """

    @abstractmethod
    def connect(self) -> None:
        """Open the session. Raises `DriverError` on failure."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session. Idempotent and best-effort.

        May raise `DriverError`; callers log it and carry on.
        """

    @abstractmethod
    def fetch_fiscal_record(self) -> FiscalRecord:
        """Collect the fiscal record. Only valid after a successful `connect()`."""


class DriverFactory(Protocol):
    def __call__(
        self,
        descriptor: ConnectionDescriptor,
        *,
        timeout_ms: int | None = None,
    ) -> FiscalDriver: ...
