"""Rich output helpers shared by the VoxGate Recorder commands."""

import os
from contextlib import contextmanager
from typing import Any, Dict, List

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

console = Console(
    theme=Theme(
        {
            "info": "cyan",
            "success": "green",
            "warning": "yellow",
            "error": "bold red",
            "debug": "dim white",
        }
    )
)

# Upper end of the meter; full-scale int16 RMS is about 90.3 dB
METER_MAX_DB = 100


def make_device_table(devices: List[Dict[str, Any]]) -> Table:
    """Render input devices as a table, one row per device.

    Args:
        devices: Rows from :meth:`RecordingEngine.list_devices`.
    """
    table = Table(header_style="bold", expand=False)
    for title, options in (
        ("ID", {"style": "cyan", "justify": "right"}),
        ("Name", {"overflow": "fold"}),
        ("Driver", {"style": "dim"}),
        ("Inputs", {"style": "dim", "justify": "right"}),
        ("Rate", {"style": "dim", "justify": "right", "no_wrap": True}),
        ("", {"no_wrap": True}),
    ):
        table.add_column(title, **options)

    for device in devices:
        table.add_row(
            str(device["id"]),
            device["name"],
            device.get("driver", "").upper(),
            str(device.get("channels", "")),
            f"{device.get('rate', '')} Hz",
            "[bold green]DEFAULT[/bold green]" if device.get("is_default") else "",
        )
    return table


def make_settings_table(settings: Dict[str, Any]) -> Table:
    """Two-column grid of setting name / value pairs."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    for name, value in settings.items():
        grid.add_row(f"{name}:", str(value))
    return grid


def make_level_progress() -> Progress:
    """Live meter showing the monitor loudness and the detector state.

    The task expects two extra fields, ``db_text`` and ``status``::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=METER_MAX_DB, db_text="-- dB", status="")
            progress.update(task, completed=level, db_text=f"{level:.1f} dB", status="idle")
    """
    return Progress(
        TextColumn("📈 Monitor Level"),
        BarColumn(bar_width=50, complete_style="green", finished_style="red"),
        TextColumn("[bold]{task.fields[db_text]}[/bold]"),
        TextColumn("{task.fields[status]}"),
        console=console,
        transient=True,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Redirect file descriptor 2 to the null device while PortAudio probes devices.

    ALSA and JACK print their diagnostics straight to the C-level stderr,
    which ``contextlib.redirect_stderr`` cannot reach.
    """
    saved_fd = os.dup(2)
    null_fd = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(null_fd, 2)
        yield
    finally:
        os.dup2(saved_fd, 2)
        os.close(null_fd)
        os.close(saved_fd)


__all__ = [
    "console",
    "suppress_stderr",
    "make_device_table",
    "make_settings_table",
    "make_level_progress",
    "METER_MAX_DB",
]
