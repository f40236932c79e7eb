"""
Checks on the host environment that affect large parallel downloads.
"""

import logging
import os

log = logging.getLogger(__name__)


def warn_open_file_limit(parallelism: int) -> None:
    """
    Warns when the soft open-file limit is too low for the requested parallelism.

    Every in-flight segment holds a socket and a file handle, and ffmpeg later
    opens the segment list, so low limits surface as obscure EMFILE errors.
    """
    if os.name != "posix":
        return

    import resource

    soft, _hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    needed = parallelism * 2 + 64
    if soft != resource.RLIM_INFINITY and soft < needed:
        log.warning(
            f"[yellow]Open file limit is {soft}; downloading with parallelism "
            f"{parallelism} may need about {needed}. Raise it with 'ulimit -n'."
            "[/yellow]"
        )
