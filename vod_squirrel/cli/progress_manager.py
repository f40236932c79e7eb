"""
Manages a Rich Live display for segment downloads.
Shows the overall job progress, the number of active transfers and the current
transfer speed.
"""

import asyncio
from datetime import datetime

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from vod_squirrel.utils.formatting import format_size


class ProgressManager:
    """
    A live progress display fed by the segment coordinator.

    Works as an async context manager; outside of it (or with `quiet=True`) the
    counters are still maintained but nothing is rendered.
    """

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            MofNCompleteColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

        self._live: Live | None = None
        self._task_id: TaskID | None = None
        self._stats = {
            "total_segments": 0,
            "completed": 0,
            "failed": 0,
            "active": 0,
            "peak_active": 0,
            "current_speed": 0.0,
            "start_time": None,
        }

    def start_job(self, description: str, total_segments: int) -> None:
        self._stats.update(
            total_segments=total_segments,
            completed=0,
            failed=0,
            active=0,
            peak_active=0,
            start_time=datetime.now(),
        )
        if self._task_id is not None:
            self.progress.remove_task(self._task_id)
        self._task_id = self.progress.add_task(description, total=total_segments)
        self._refresh()

    def segment_started(self) -> None:
        self._stats["active"] += 1
        self._stats["peak_active"] = max(
            self._stats["peak_active"], self._stats["active"]
        )
        self._refresh()

    def segment_finished(
        self, success: bool, was_active: bool = True, speed_bps: float = 0.0
    ) -> None:
        if was_active:
            self._stats["active"] = max(0, self._stats["active"] - 1)
        if success:
            self._stats["completed"] += 1
        else:
            self._stats["failed"] += 1
        self._stats["current_speed"] = speed_bps
        if self._task_id is not None:
            self.progress.update(
                self._task_id,
                completed=self._stats["completed"] + self._stats["failed"],
            )
        self._refresh()

    def _render(self) -> Panel:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Downloaded:",
            f"[green]{self._stats['completed']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Active:",
            f"[cyan]{self._stats['active']}[/cyan]",
            "Speed:",
            f"[magenta]{format_size(int(self._stats['current_speed']))}/s[/magenta]",
        )
        header = Text("🐿️  vod-squirrel", style="bold cyan")
        return Panel(
            Group(header, stats_table, self.progress),
            title="[bold]📥 Segments[/bold]",
            border_style="blue",
        )

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    async def __aenter__(self):
        if self.quiet:
            return self
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.1)
            self._live.stop()
            self._live = None
