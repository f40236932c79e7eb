"""
Joins downloaded segments into a single video with ffmpeg's concat demuxer.
"""

import asyncio
import logging
import shutil
from pathlib import Path

import aiofiles

from vod_squirrel.exceptions import ConcatenationError

log = logging.getLogger(__name__)

CONCAT_LIST_NAME = "concat.txt"


async def is_installed(binary: str = "ffmpeg") -> bool:
    """Checks if ffmpeg is installed and runnable from PATH."""
    log.debug("Checking for ffmpeg installation")
    if shutil.which(binary) is None:
        return False
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "-version",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    return await process.wait() == 0


def _escape(path: Path) -> str:
    # concat list entries are single-quoted; a quote is written as '\''
    return str(path.resolve()).replace("\\", "/").replace("'", "'\\''")


async def write_concat_list(segment_paths: list[Path], list_path: Path) -> Path:
    async with aiofiles.open(list_path, "w", encoding="utf-8") as f:
        for path in segment_paths:
            await f.write(f"file '{_escape(path)}'\n")
    return list_path


async def concat_segments(
    segment_paths: list[Path], out_file: Path, binary: str = "ffmpeg"
) -> Path:
    """
    Concatenates `segment_paths` in the given order into `out_file`.

    Raises:
        ConcatenationError: If ffmpeg is missing or exits unsuccessfully.
    """
    if not segment_paths:
        raise ConcatenationError("There are no segments to concatenate.")

    list_path = await write_concat_list(
        segment_paths, out_file.parent / CONCAT_LIST_NAME
    )
    command = [
        binary,
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(list_path),
        "-c",
        "copy",
        "-avoid_negative_ts",
        "make_zero",
        "-y",
        str(out_file),
    ]
    log.debug(f"Running: {' '.join(command)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ConcatenationError(
            "`ffmpeg` is not installed or available in PATH!"
        ) from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        log.error("[red]Video concatenation was unsuccessful[/red]")
        if stdout:
            log.error(f"stdout: {stdout.decode(errors='replace').strip()}")
        if stderr:
            log.error(f"stderr: {stderr.decode(errors='replace').strip()}")
        raise ConcatenationError(f"ffmpeg exited with code {process.returncode}.")

    log.info(f"Successfully concatenated {len(segment_paths)} segments!")
    return out_file
