from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Final

from rich.console import Console, Group
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.rule import Rule
from rich.text import Text

from ..scanner.discovery import DiscoveryPhase
from ..scanner.observer import ScanObserver
from ..scanner.poller import POLL_PHASE

_PHASE_LABELS: Final[dict[str, str]] = {
    DiscoveryPhase.SCANNING_SERIAL.value: "Serial ports",
    DiscoveryPhase.SCANNING_NETWORK.value: "RNDIS networks",
    POLL_PHASE: "Polling",
}
_LEVEL_STYLES: Final[dict[str, str]] = {"warn": "yellow", "error": "red"}


@dataclass(slots=True)
class _PhaseState:
    task_id: TaskID
    total: int
    found: int = 0


class NullScanObserver(AbstractContextManager["NullScanObserver"]):
    """Observer for non-interactive runs; progress is covered by the log."""

    def __enter__(self) -> NullScanObserver:
        return self

    def __exit__(self, *_exc: object) -> None:
        return None

    def phase_start(self, phase: str, *, total: int) -> None:
        pass

    def phase_advance(self, phase: str, *, advance: int = 1) -> None:
        pass

    def phase_finish(self, phase: str) -> None:
        pass

    def device_found(self, phase: str, description: str) -> None:
        pass

    def status(self, message: str) -> None:
        pass

    def log(self, message: str, *, level: str = "info") -> None:
        pass


class RichScanObserver(AbstractContextManager["RichScanObserver"]):
    """One progress bar per phase with a running count of devices found."""

    def __init__(self, *, console: Console, title: str, subtitle: str | None = None) -> None:
        self._title = title
        self._subtitle = subtitle
        self._running = False
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("{task.description}"),
            BarColumn(bar_width=None),
            MofNCompleteColumn(),
            TextColumn("[green]{task.fields[found]} found"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim", markup=False),
            console=console,
            transient=True,
            expand=True,
        )
        self._phases: dict[str, _PhaseState] = {}
        self._active: str | None = None

    def __enter__(self) -> RichScanObserver:
        self._progress.start()
        self._running = True
        lines: list[Rule | Text] = [Rule(self._title, style="dim")]
        if self._subtitle:
            lines.append(Text(self._subtitle, style="dim"))
        self._progress.console.print(Group(*lines))
        return self

    def __exit__(self, *_exc: object) -> None:
        if self._running:
            self._progress.stop()
            self._running = False
        return None

    def phase_start(self, phase: str, *, total: int) -> None:
        state = self._phases.get(phase)
        if state is None:
            task_id = self._progress.add_task(
                _PHASE_LABELS.get(phase, phase), total=total, found=0, status=""
            )
            self._phases[phase] = _PhaseState(task_id=task_id, total=total)
        else:
            state.total = total
            state.found = 0
            self._progress.reset(state.task_id, total=total, found=0, status="")
        if self._active is not None and self._active != phase:
            self._progress.update(self._phases[self._active].task_id, status="")
        self._active = phase

    def phase_advance(self, phase: str, *, advance: int = 1) -> None:
        state = self._phases.get(phase)
        if state is not None:
            self._progress.advance(state.task_id, advance)

    def phase_finish(self, phase: str) -> None:
        state = self._phases.get(phase)
        if state is not None:
            self._progress.update(state.task_id, completed=state.total, status="")

    def device_found(self, phase: str, description: str) -> None:
        state = self._phases.get(phase)
        if state is not None:
            state.found += 1
            self._progress.update(state.task_id, found=state.found)
        self.log(description)

    def status(self, message: str) -> None:
        if self._active is not None:
            self._progress.update(self._phases[self._active].task_id, status=message)

    def log(self, message: str, *, level: str = "info") -> None:
        style = _LEVEL_STYLES.get(level, "white")
        stamp = datetime.now().strftime("%H:%M:%S")
        # Messages carry device-reported text; never parse them as markup.
        self._progress.console.print(Text.assemble((stamp, "dim"), " ", (message, style)))


def make_scan_observer(
    *,
    console: Console,
    title: str,
    subtitle: str | None = None,
) -> AbstractContextManager[ScanObserver]:
    if console.is_terminal:
        return RichScanObserver(console=console, title=title, subtitle=subtitle)
    return NullScanObserver()
