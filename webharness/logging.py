"""
Loguru sink management for harness runs.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[worker_id]}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | "
    "{extra[worker_id]} | {extra[test_id]} | {message}"
)

logger.configure(extra={"worker_id": "-", "test_id": "-"})


def configure_logging(level: str = "INFO", colorize: Optional[bool] = None) -> int:
    """Replace loguru's default stderr sink with the harness console format.

    Returns:
        The id of the new sink.
    """
    logger.remove()
    return logger.add(
        sys.stderr,
        level=level.upper(),
        format=CONSOLE_FORMAT,
        colorize=colorize,
        enqueue=False,
    )


def add_file_sink(path: Path, level: str = "DEBUG") -> int:
    """Attach a per-run log file. enqueue=True keeps writes from many workers ordered."""
    path.parent.mkdir(parents=True, exist_ok=True)
    return logger.add(
        str(path),
        level=level.upper(),
        format=FILE_FORMAT,
        enqueue=True,
        encoding="utf-8",
    )


def remove_sink(sink_id: Optional[int]) -> None:
    """Detach a sink added by add_file_sink(); flushes queued records first."""
    if sink_id is None:
        return
    try:
        logger.remove(sink_id)
    except ValueError:
        logger.debug(f"Log sink {sink_id} already removed")
