"""Shared helpers for logging and progress reporting."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

logger = logging.getLogger(__name__)

# Share the console between the logging and the progress bar so they don't fight over the terminal.
rich_console = Console()

# Third party loggers which are too noisy at INFO
_quiet_loggers = ["h5py", "silx"]


def setup_logging(level: int = logging.DEBUG) -> bool:
    """Configure logging through rich.

    Args:
        level: Logging level for the root logger. Default: DEBUG.
    Returns:
        True if logging was set up successfully.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(level=level, console=rich_console, rich_tracebacks=True)],
    )
    for name in _quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    return True


def progress_bar() -> Progress:
    """Progress bar sharing the logging console."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=rich_console,
        transient=False,
    )
