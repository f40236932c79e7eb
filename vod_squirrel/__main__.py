"""
Console entry point: runs the Typer app and turns its outcome into an exit code.

Cancellation (Ctrl+C, SIGTERM) is a normal way to stop a download or a monitor
run, so it exits with status 0; application errors are shown as a panel with
suggestions and exit with status 1.
"""

import asyncio
import logging
import os
import sys

from rich.console import Console

from vod_squirrel.cli.app import app
from vod_squirrel.cli.formatters import format_error_with_suggestions
from vod_squirrel.exceptions import OperationCancelled, VodSquirrelError

EXIT_OK = 0
EXIT_FAILURE = 1

log = logging.getLogger("vod_squirrel")


def _use_utf8_streams() -> None:
    # Progress bars and panels use box-drawing characters and emoji
    if os.name != "nt":
        return
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            continue


def main() -> None:
    _use_utf8_streams()
    console = Console(stderr=True)

    try:
        app()
    except OperationCancelled:
        console.print(
            "\n[yellow]⚠️  Cancelled. Completed segments stay on disk and are "
            "resumed by the next run.[/yellow]"
        )
        sys.exit(EXIT_OK)
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Interrupted.[/yellow]")
        sys.exit(EXIT_OK)
    except VodSquirrelError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(EXIT_FAILURE)
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
