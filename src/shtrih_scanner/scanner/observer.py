from __future__ import annotations

from typing import Protocol


class ScanObserver(Protocol):
    """Observer for discovery/polling progress.

    Scanner code uses this interface to drive a UI (Rich) or nothing at all.
    Calls come from the thread driving the scan, never from probe workers.
    Implementations must be fast and must not raise.
    """

    def phase_start(self, phase: str, *, total: int) -> None:
        """Start (or reset) a phase progress bar."""

    def phase_advance(self, phase: str, *, advance: int = 1) -> None:
        """Advance a phase progress bar."""

    def phase_finish(self, phase: str) -> None:
        """Mark a phase as complete."""

    def device_found(self, phase: str, description: str) -> None:
        """Report a device confirmed during `phase`."""

    def status(self, message: str) -> None:
        """Update the current operation status line."""

    def log(self, message: str, *, level: str = "info") -> None:
        """Emit a scrollable log line (info/warn/error)."""
