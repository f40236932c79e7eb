"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vod_squirrel.models.config import SECRET_FIELDS, AppConfig
from vod_squirrel.models.session import RegistrationReport
from vod_squirrel.models.stats import JobStats
from vod_squirrel.utils.formatting import format_duration, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `vod-squirrel init` to write a fresh configuration.",
            "• Tokens can also be supplied via TWITCH_OAUTH_ACCESS_TOKEN / OAUTH_TOKEN.",
        ],
        "VideoUnavailableError": [
            "• The VOD may be deleted, private or subscriber-only.",
            "• Set `twitch_access_token` to access subscriber-only VODs.",
        ],
        "PlaylistError": [
            "• The VOD may still be processing; try again in a few minutes.",
        ],
        "TwitchAPIError": [
            "• The Twitch API might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "IncompleteDownloadError": [
            "• Run the same command again; completed segments are resumed.",
            "• Increase `segment_attempts` or lower `parallelism` in the config.",
        ],
        "ConcatenationError": [
            "• Make sure `ffmpeg` is installed and available in PATH.",
            "• Run `vod-squirrel diagnose` to check your setup.",
        ],
        "UploadError": [
            "• Your YouTube OAuth token may have expired.",
            "• Check your channel's upload quota.",
        ],
        "SessionTerminatedError": [
            "• Check your internet connection.",
            "• EventSub may be unavailable; try again later.",
        ],
        "ProtocolError": [
            "• Twitch sent messages this version does not understand.",
            "• Run with -vv to see the offending frames.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: AppConfig):
    """Displays the effective configuration, hiding secrets."""
    console = Console()
    lines = []
    for key in sorted(AppConfig.get_ini_keys()):
        value: Any = getattr(config, key)
        if key in SECRET_FIELDS:
            value = "[hidden]" if value else "[dim]<not set>[/dim]"
        lines.append(f"{key} = {value}")

    console.print(
        Panel(
            "\n".join(lines),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    def _present(value: str) -> str:
        return "[green]✓ Set[/green]" if value else "[yellow]✗ Missing[/yellow]"

    table.add_row("Twitch Token:", _present(config.twitch_access_token))
    table.add_row("YouTube Token:", _present(config.youtube_oauth_token))
    table.add_row("Parallelism:", str(config.parallelism))
    table.add_row("Segment Attempts:", str(config.segment_attempts))
    table.add_row("Working Directory:", f"[dim]{config.work_root}[/dim]")
    table.add_row("Cleanup:", "✓ Enabled" if config.cleanup else "✗ Disabled")
    table.add_row("Privacy:", config.privacy_status)

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_registration_table(report: RegistrationReport):
    """Shows the per-channel outcome of a subscription batch."""
    console = Console()
    table = Table(box=box.SIMPLE, title=f"Session [dim]{report.session_id}[/dim]")
    table.add_column("Channel", style="bold cyan", justify="right")
    table.add_column("Result")
    for subject_id, result in sorted(report.results.items()):
        if result.ok:
            outcome = "[green]✓ Subscribed[/green]"
        else:
            outcome = f"[red]✗ {result.error or 'failed'}[/red]"
        table.add_row(str(subject_id), outcome)
    console.print(table)


def print_summary_panel(
    stats: JobStats,
    duration_s: float,
    output_path: Path | None = None,
    cancelled: bool = False,
):
    """Displays the final summary of a download job."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:",
        f"[bold green]{stats.segments_downloaded}[/bold green] / {stats.segments_total}",
    )
    if stats.segments_resumed > 0:
        stats_table.add_row("○ Resumed:", f"[yellow]{stats.segments_resumed}[/yellow]")
    if stats.segments_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.segments_failed}[/bold red]")
    if stats.segment_retries > 0:
        stats_table.add_row("Retries:", f"[yellow]{stats.segment_retries}[/yellow]")

    stats_table.add_row("", "")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.bytes_downloaded)}[/cyan]"
    )
    avg_speed = stats.bytes_downloaded / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    if stats.peak_speed_bps > 0:
        stats_table.add_row(
            "Peak Speed:",
            f"[magenta]{format_size(int(stats.peak_speed_bps))}/s[/magenta]",
        )
    stats_table.add_row("Peak Concurrent:", f"[green]{stats.peak_in_flight}[/green]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if output_path:
        stats_table.add_row("Output:", f"[dim]{output_path}[/dim]")

    if cancelled:
        title = "⚠️  [bold]Download Cancelled[/bold]"
        border_color = "yellow"
    else:
        title = "🐿️  [bold]Download Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
