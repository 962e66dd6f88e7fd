"""Process logging setup."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal

from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

CONSOLE_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | {extra[session]} | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {extra[session]} | {message}"

_active: tuple[LogProfile, Path | None] | None = None


def configure_logging(
    *,
    profile: LogProfile = "default",
    level: str | None = None,
    log_file: Path | None = None,
) -> None:
    """Route loguru output for this process.

    ``default`` writes plain lines to stderr. ``chat`` renders through Rich so
    log lines do not tear the interactive prompt. When ``log_file`` is given a
    rotating file sink with full call-site detail is added as well. Every record
    carries the ``session`` extra, bound by the agent loop for each turn.
    """
    global _active
    if _active == (profile, log_file):
        return

    level = (level or os.getenv("TERN_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.configure(extra={"session": "-"})
    if profile == "chat":
        console_sink = RichHandler(console=get_console(), show_time=False, show_path=False, markup=False)
        logger.add(console_sink, level=level, format="{extra[session]} | {message}", backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, backtrace=False, diagnose=False)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT, rotation="10 MB", retention=5, encoding="utf-8")
    _active = (profile, log_file)
