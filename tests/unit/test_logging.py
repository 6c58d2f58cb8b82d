"""Unit tests for logging configuration."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from expense_ledger.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root_logger = logging.getLogger()
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_file_receives_json_lines(self, tmp_path: Path) -> None:
        log_file = tmp_path / "ledger.log"
        configure_logging(level="INFO", log_format="console", log_file=str(log_file))

        structlog.get_logger("ledger").info("balance_applied", payment_method="花呗", after="800")

        [line] = log_file.read_text(encoding="utf-8").splitlines()
        event = json.loads(line)
        assert event["event"] == "balance_applied"
        assert event["payment_method"] == "花呗"
        assert event["level"] == "info"
        assert "timestamp" in event
        assert "花呗" in line

    def test_level_filters_file_output(self, tmp_path: Path) -> None:
        log_file = tmp_path / "ledger.log"
        configure_logging(level="WARNING", log_format="json", log_file=str(log_file))

        logger = structlog.get_logger("ledger")
        logger.info("bill_created")
        logger.warning("ledger_rolled_back")

        events = [json.loads(line)["event"] for line in log_file.read_text(encoding="utf-8").splitlines()]
        assert events == ["ledger_rolled_back"]

    def test_logs_go_to_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(level="INFO", log_format="json")

        structlog.get_logger("ledger").info("bill_deleted")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "bill_deleted" in captured.err

    def test_noisy_loggers_are_quieted(self) -> None:
        configure_logging()

        assert logging.getLogger("sqlalchemy").level == logging.WARNING
        assert logging.getLogger("aiosqlite").level == logging.WARNING
