"""Tests for logging setup and LogContext."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.logging import RichHandler

from profilestream.utils.logging import PACKAGE_NAME, LogContext, setup_logging


@pytest.fixture(autouse=True)
def restore_package_logger():
    package_logger = logging.getLogger(PACKAGE_NAME)
    saved = (package_logger.level, list(package_logger.handlers), package_logger.propagate)
    yield
    for handler in package_logger.handlers:
        handler.close()
    package_logger.setLevel(saved[0])
    package_logger.handlers = saved[1]
    package_logger.propagate = saved[2]


class TestSetupLogging:
    def test_rich_handler_at_level(self) -> None:
        setup_logging(level="WARNING")

        package_logger = logging.getLogger(PACKAGE_NAME)
        assert package_logger.level == logging.WARNING
        assert [type(h) for h in package_logger.handlers] == [RichHandler]
        assert not package_logger.propagate
        assert logging.getLogger("google_genai").level == logging.WARNING

    def test_file_handler_writes_module_logs(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level="INFO", log_file=log_file)

        logging.getLogger("profilestream.controller").info("chunk 1/4 merged")
        for handler in logging.getLogger(PACKAGE_NAME).handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "INFO" in content
        assert "profilestream.controller" in content
        assert "chunk 1/4 merged" in content

    def test_unknown_level_defaults_to_info(self) -> None:
        setup_logging(level="chatty")

        assert logging.getLogger(PACKAGE_NAME).level == logging.INFO


class TestLogContext:
    def test_logs_start_and_completion(self) -> None:
        logger = MagicMock()

        with LogContext("Extracting frames", logger=logger) as ctx:
            pass

        assert ctx.elapsed >= 0
        messages = [c.args[1] for c in logger.log.call_args_list]
        assert messages[0] == "Extracting frames..."
        assert messages[1].startswith("Extracting frames completed in")

    def test_logs_failure_and_reraises(self) -> None:
        logger = MagicMock()

        with pytest.raises(ValueError):
            with LogContext("Scoring frames", logger=logger):
                raise ValueError("bad frame")

        warning = logger.warning.call_args.args[0]
        assert warning.startswith("Scoring frames failed after")
        assert warning.endswith("bad frame")
