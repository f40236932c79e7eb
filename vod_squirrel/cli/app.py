"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiohttp
import typer
from rich.console import Console
from rich.logging import RichHandler

from vod_squirrel import __version__
from vod_squirrel.api.client import TwitchAPIClient
from vod_squirrel.core.cancellation import CancellationBroadcaster
from vod_squirrel.core.coordinator import SegmentedDownloadCoordinator
from vod_squirrel.core.orchestrator import ArchiveOutcome, Orchestrator
from vod_squirrel.events.registration import SubscriptionRegistrar
from vod_squirrel.events.session import EventSession
from vod_squirrel.exceptions import ConfigurationError, VodSquirrelError
from vod_squirrel.media import ffmpeg
from vod_squirrel.media.downloader import SegmentFetcher, close_connection_pool
from vod_squirrel.media.uploader import YouTubeUploader
from vod_squirrel.models.config import AppConfig
from vod_squirrel.storage.config_manager import ConfigManager, get_config_dir
from vod_squirrel.utils.backoff import ReconnectBackoff
from vod_squirrel.utils.path import extract_video_id
from vod_squirrel.utils.system import warn_open_file_limit

from .formatters import (
    print_config,
    print_registration_table,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("vod_squirrel")

app = typer.Typer(
    name="vod-squirrel",
    help=(
        "Archives Twitch VODs: downloads them segment by segment, joins them with"
        " ffmpeg and uploads them to YouTube."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """VOD Squirrel CLI"""
    if version:
        console.print(f"[bold]vod-squirrel[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("vod_squirrel").setLevel("DEBUG" if verbose >= 2 else "INFO")

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _load_config(**cli_options) -> AppConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _parse_vod(vod: str) -> int:
    try:
        return extract_video_id(vod)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e


@asynccontextmanager
async def _orchestrator(
    config: AppConfig,
    cancellation: CancellationBroadcaster,
    progress_manager: ProgressManager | None,
    upload: bool,
) -> AsyncIterator[Orchestrator]:
    """Builds an Orchestrator and closes every HTTP session it used."""
    api_client = TwitchAPIClient(config.twitch_client_id)
    uploader = (
        YouTubeUploader(config.require_youtube_token(), config.privacy_status)
        if upload
        else None
    )
    fetcher = SegmentFetcher(
        max_attempts=config.segment_attempts,
        base_delay=config.retry_base_delay,
        timeout=config.segment_timeout_or_none,
        max_workers=config.parallelism,
    )
    coordinator = SegmentedDownloadCoordinator(
        fetcher, cancellation, progress_manager=progress_manager
    )
    try:
        yield Orchestrator(config, api_client, coordinator, cancellation, uploader)
    finally:
        await close_connection_pool()
        await api_client.close()
        if uploader:
            await uploader.close()


async def _preflight(config: AppConfig) -> None:
    if not await ffmpeg.is_installed():
        raise ConfigurationError("`ffmpeg` is not installed or available in PATH!")
    warn_open_file_limit(config.parallelism)


def _report(outcome: ArchiveOutcome, duration: float) -> None:
    print_summary_panel(
        outcome.stats, duration, outcome.output_path, cancelled=outcome.cancelled
    )
    if outcome.cancelled:
        console.print(
            "[yellow]⚠️  Operation cancelled; completed segments were kept "
            "for resume.[/yellow]"
        )


def _download_options(
    parallelism: int | None, temp_dir: Path | None, cleanup: bool | None
) -> dict:
    return {
        "parallelism": parallelism,
        "temp_dir": str(temp_dir) if temp_dir else None,
        "cleanup": cleanup,
    }


@app.command(name="download")
def download_command(
    vod: str = typer.Argument(..., help="Twitch video ID or URL."),
    output: Path | None = typer.Option(  # noqa: B008
        None, "-o", "--output", help="Where to save the video (default: ./<id>.mp4)."
    ),
    parallelism: int | None = typer.Option(
        None, "-p", "--parallelism", help="Number of simultaneous segment downloads."
    ),
    temp_dir: Path | None = typer.Option(  # noqa: B008
        None, "--temp-dir", help="Directory where videos are processed."
    ),
    cleanup: bool | None = typer.Option(
        None, "--cleanup/--no-cleanup", help="Remove downloaded segments afterwards."
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide the live progress."),
):
    """Download a VOD and keep the concatenated file."""
    video_id = _parse_vod(vod)
    config = _load_config(**_download_options(parallelism, temp_dir, cleanup))
    destination = output or Path.cwd() / f"{video_id}.mp4"

    async def _download_async():
        cancellation = CancellationBroadcaster()
        cancellation.install_signal_handlers()
        await _preflight(config)

        start_time = time.monotonic()
        async with (
            ProgressManager(console=console, quiet=quiet) as progress_manager,
            _orchestrator(config, cancellation, progress_manager, upload=False) as orchestrator,
        ):
            console.print(f"[bold cyan]🐿️  Downloading VOD {video_id}...[/bold cyan]")
            outcome = await orchestrator.save_video(video_id, destination)
        _report(outcome, time.monotonic() - start_time)

    asyncio.run(_download_async())


@app.command(name="archive")
def archive_command(
    vod: str = typer.Argument(..., help="Twitch video ID or URL."),
    parallelism: int | None = typer.Option(
        None, "-p", "--parallelism", help="Number of simultaneous segment downloads."
    ),
    temp_dir: Path | None = typer.Option(  # noqa: B008
        None, "--temp-dir", help="Directory where videos are processed."
    ),
    cleanup: bool | None = typer.Option(
        None, "--cleanup/--no-cleanup", help="Remove processing remnants afterwards."
    ),
    privacy: str | None = typer.Option(
        None, "--privacy", help="YouTube privacy status: public, unlisted or private."
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide the live progress."),
):
    """Download a VOD and upload it to YouTube."""
    video_id = _parse_vod(vod)
    config = _load_config(
        **_download_options(parallelism, temp_dir, cleanup), privacy_status=privacy
    )

    async def _archive_async():
        cancellation = CancellationBroadcaster()
        cancellation.install_signal_handlers()
        await _preflight(config)

        start_time = time.monotonic()
        async with (
            ProgressManager(console=console, quiet=quiet) as progress_manager,
            _orchestrator(config, cancellation, progress_manager, upload=True) as orchestrator,
        ):
            console.print(f"[bold cyan]🐿️  Archiving VOD {video_id}...[/bold cyan]")
            outcome = await orchestrator.archive_video(video_id)
        _report(outcome, time.monotonic() - start_time)

    asyncio.run(_archive_async())


@app.command(name="monitor")
def monitor_command(
    channel_ids: list[int] = typer.Argument(  # noqa: B008
        ..., help="Numeric Twitch channel (broadcaster) IDs to watch."
    ),
    parallelism: int | None = typer.Option(
        None, "-p", "--parallelism", help="Number of simultaneous segment downloads."
    ),
    temp_dir: Path | None = typer.Option(  # noqa: B008
        None, "--temp-dir", help="Directory where videos are processed."
    ),
):
    """Archive each channel's latest VOD whenever it goes offline."""
    config = _load_config(**_download_options(parallelism, temp_dir, None))
    access_token = config.require_twitch_token()

    async def _monitor_async():
        cancellation = CancellationBroadcaster()
        cancellation.install_signal_handlers()
        await _preflight(config)

        registrar = SubscriptionRegistrar(config.twitch_oauth_client_id, access_token)
        event_session = EventSession(
            cancellation,
            registrar=registrar,
            keepalive_timeout=config.keepalive_timeout,
            backoff=ReconnectBackoff(cooldown=config.reconnect_cooldown),
            on_registered=print_registration_table,
        )
        console.print(
            f"[bold cyan]🐿️  Watching {len(channel_ids)} channel(s). "
            "Press Ctrl+C to stop.[/bold cyan]"
        )
        try:
            async with _orchestrator(
                config, cancellation, progress_manager=None, upload=True
            ) as orchestrator:
                outcomes = await orchestrator.monitor(channel_ids, event_session)
        finally:
            await event_session.aclose()

        uploaded = sum(1 for outcome in outcomes if outcome.upload)
        console.print(f"[green]✓ Monitoring stopped. {uploaded} VOD(s) archived.[/green]")

    asyncio.run(_monitor_async())


@app.command()
def init(
    twitch_token: str = typer.Option(
        "", "--twitch-token", help="Twitch user access token (needed for monitor)."
    ),
    youtube_token: str = typer.Option(
        "", "--youtube-token", help="YouTube OAuth access token (needed for uploads)."
    ),
    parallelism: int = typer.Option(20, "-p", "--parallelism"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Write the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "twitch_access_token": twitch_token,
        "youtube_oauth_token": youtube_token,
        "parallelism": parallelism,
    }
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready! Try: [cyan]vod-squirrel download <VOD>[/cyan]")


@app.command()
def validate():
    """Validate and show the effective configuration."""
    try:
        config = _load_config()
    except VodSquirrelError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
    print_config(CONFIG_FILE, config)
    print_validation_table(config)


@app.command()
def diagnose():
    """Diagnose common configuration and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False

    if asyncio.run(ffmpeg.is_installed()):
        console.print("[green]✓[/] ffmpeg is installed.")
    else:
        console.print("[red]✗ ffmpeg is not installed or not in PATH.[/red]")
        issues_found = True

    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[yellow]○ No config file; defaults and environment are used.[/] "
            "Run [cyan]vod-squirrel init[/cyan] to create one."
        )

    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration is valid and can be loaded.")
        warn_open_file_limit(config.parallelism)
    except VodSquirrelError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        issues_found = True

    console.print("\n[dim]Testing connectivity to Twitch...[/dim]")

    async def test_connection() -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with (
                aiohttp.ClientSession(timeout=timeout) as session,
                session.get("https://gql.twitch.tv/gql") as resp,
            ):
                # GraphQL answers GET with an error status, but it answers
                console.print(
                    f"[green]✓[/] Reached the Twitch API (status {resp.status})."
                )
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            return False

    if not asyncio.run(test_connection()):
        issues_found = True

    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
