"""Logging configuration for profilestream.

Routes the package logger through a Rich console handler, with an optional
plain-text file handler for keeping a record of long analysis runs.

Example:
    >>> from profilestream.utils.logging import setup_logging, LogContext
    >>> setup_logging(level="DEBUG")
    >>> logger = logging.getLogger(__name__)
    >>> with LogContext("Extracting frames", logger=logger):
    ...     ...
    # Logs: "Extracting frames completed in 1.84s"
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


# =============================================================================
# Constants
# =============================================================================

PACKAGE_NAME = "profilestream"

# Chatty libraries that would otherwise drown the analysis log
NOISY_LOGGERS = [
    "google",
    "google_genai",
    "google.auth",
    "urllib3",
    "httpx",
    "httpcore",
    "PIL",
    "asyncio",
]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console = Console(stderr=True)


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure logging for the profilestream package.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        quiet_third_party: If True, raise noisy third-party loggers to WARNING.

    Example:
        >>> setup_logging(level="DEBUG", log_file=Path("./profilestream.log"))
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    package_logger.handlers = []

    console_handler = RichHandler(
        console=_console,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=numeric_level == logging.DEBUG,
        markup=False,
    )
    console_handler.setLevel(numeric_level)
    package_logger.addHandler(console_handler)

    if log_file:
        package_logger.addHandler(_build_file_handler(log_file, numeric_level))

    if quiet_third_party:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    package_logger.propagate = False
    package_logger.debug(f"Logging configured: level={level}, file={log_file}")


def _build_file_handler(log_file: Path, level: int) -> logging.FileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    return handler


# =============================================================================
# Log Context Manager
# =============================================================================


class LogContext:
    """Context manager that logs an operation's start, end, and elapsed time.

    Attributes:
        message: Description of the operation.
        level: Log level for the start/completion messages.
        logger: Logger instance to use.
        elapsed: Elapsed seconds, populated on exit.
    """

    def __init__(
        self,
        message: str,
        level: int = logging.INFO,
        logger: logging.Logger | None = None,
    ) -> None:
        self.message = message
        self.level = level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.elapsed: float = 0.0
        self._start_time: float = 0.0

    def __enter__(self) -> "LogContext":
        self._start_time = time.perf_counter()
        self.logger.log(self.level, f"{self.message}...")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.elapsed = time.perf_counter() - self._start_time

        if exc_type is not None:
            self.logger.warning(f"{self.message} failed after {self.elapsed:.2f}s: {exc_val}")
        else:
            self.logger.log(self.level, f"{self.message} completed in {self.elapsed:.2f}s")
