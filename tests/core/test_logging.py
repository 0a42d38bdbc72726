"""Tests for structlog configuration."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from conveyor.core.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    for handler in logging.getLogger().handlers:
        handler.close()
    logging.getLogger().handlers = []
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_output_includes_thread_name(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")

        get_logger("conveyor.test").info("item_completed", external_id="42", outcome="success")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "item_completed"
        assert record["external_id"] == "42"
        assert record["level"] == "info"
        assert record["thread_name"] == "MainThread"
        assert "timestamp" in record

    def test_stdlib_loggers_share_the_chain(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")

        logging.getLogger("some.library").warning("plain %s message", "stdlib")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "plain stdlib message"
        assert record["level"] == "warning"

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")

        get_logger("conveyor.test").debug("item_started")

        assert capsys.readouterr().err == ""

    def test_http_client_chatter_is_silenced(self) -> None:
        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_stdout_is_left_for_command_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(level="INFO")

        get_logger("conveyor.test").info("run_completed", total=3)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "run_completed" in captured.err

    def test_log_file_receives_json_lines(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        log_file = tmp_path / "logs" / "run.jsonl"
        configure_logging(json_output=False, level="INFO", log_file=log_file)

        get_logger("conveyor.test").warning("csv_record_skipped", line=4, reason="empty id")
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["event"] == "csv_record_skipped"
        assert record["line"] == 4
        # Console stays human-readable
        assert "csv_record_skipped" in capsys.readouterr().err

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging(level="chatty")

    def test_bound_item_context_is_merged(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")

        with structlog.contextvars.bound_contextvars(external_id="42", target_key="webroot_a"):
            get_logger("conveyor.test").info("payload_downloaded")

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["external_id"] == "42"
        assert record["target_key"] == "webroot_a"
