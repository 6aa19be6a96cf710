from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..models import PolledDevice
from ..reconcile.directory import ReconcileReport


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def render_summary(
    console: Console,
    polled: Sequence[PolledDevice],
    *,
    report: ReconcileReport | None,
    output_dir: Path,
) -> None:
    console.print()
    console.print(Text("Run Summary", style="bold"))

    header = f"devices={len(polled)}"
    if report is not None:
        header += (
            f" written={len(report.written)} failed={len(report.failed)}"
            f" removed={len(report.removed)}"
        )
        if report.donor is not None:
            kind = "workstation" if report.donor.ideal else "candidate"
            header += f" donor={report.donor.path.name} ({kind})"
        else:
            header += " donor=local"
    console.print(Text(header, style="dim"))

    if not polled:
        console.print("No devices polled.", style="yellow")
        return

    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Serial", style="cyan", no_wrap=True)
    table.add_column("Model", style="white")
    table.add_column("Connection", style="white", no_wrap=True)
    table.add_column("RNM", style="white", no_wrap=True)
    table.add_column("FN expiry", style="white", no_wrap=True)
    table.add_column("Marked", style="white", justify="center")
    table.add_column("Excise", style="white", justify="center")

    for device in polled:
        record = device.record
        table.add_row(
            # Device-reported strings are plain text, not markup.
            Text(record.serial_number),
            Text(record.model_name or "n/a"),
            device.descriptor.describe(),
            Text(record.registration_number or "n/a"),
            record.fn_end_date or "n/a",
            _yes_no(record.attribute_marked),
            _yes_no(record.attribute_excise),
        )

    console.print(table)
    console.print(Text(f"output_dir={output_dir}", style="dim"))
