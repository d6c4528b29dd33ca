"""Tests for generation_studio/logging_config.py."""

import json
import logging

import pytest
import structlog
import structlog.contextvars

import generation_studio.logging_config


def _last_json_line(captured_output: str) -> dict:
    return json.loads(captured_output.strip().splitlines()[-1])


class TestConfigureLogging:
    def setup_method(self):
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()

    def teardown_method(self):
        structlog.reset_defaults()
        structlog.contextvars.clear_contextvars()

    def test_sets_log_level(self):
        generation_studio.logging_config.configure_logging(log_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

        generation_studio.logging_config.configure_logging(log_level="INFO")
        assert logging.getLogger().level == logging.INFO

    def test_unknown_level_falls_back_to_info(self):
        generation_studio.logging_config.configure_logging(log_level="CHATTY")

        assert logging.getLogger().level == logging.INFO

    def test_installs_a_single_structlog_handler(self):
        generation_studio.logging_config.configure_logging(log_level="INFO")
        generation_studio.logging_config.configure_logging(log_level="INFO")

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_library_loggers_are_quiet_at_info(self):
        generation_studio.logging_config.configure_logging(log_level="INFO")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_library_loggers_follow_a_stricter_level(self):
        generation_studio.logging_config.configure_logging(log_level="ERROR")

        assert logging.getLogger("sqlalchemy.engine").level == logging.ERROR

    def test_unknown_format_is_rejected(self):
        with pytest.raises(ValueError):
            generation_studio.logging_config.configure_logging(log_format="xml")

    def test_console_format_is_not_json(self, capsys):
        generation_studio.logging_config.configure_logging(log_level="INFO", log_format="console")
        structlog.get_logger("test").info("generation_created", generation_id="abc")

        last_line = capsys.readouterr().out.strip().splitlines()[-1]

        assert "generation_created" in last_line
        assert "generation_id=abc" in last_line
        assert not last_line.startswith("{")

    def test_service_name_can_be_overridden(self, capsys):
        generation_studio.logging_config.configure_logging(service_name="generation-studio-worker")
        structlog.get_logger("test").info("test_event")

        parsed = _last_json_line(capsys.readouterr().out)

        assert parsed["service_name"] == "generation-studio-worker"

    def test_native_event_is_json_on_stdout(self, capsys):
        generation_studio.logging_config.configure_logging(log_level="INFO")
        structlog.get_logger("test").info("generation_created", generation_id="abc")

        parsed = _last_json_line(capsys.readouterr().out)

        assert parsed["event"] == "generation_created"
        assert parsed["generation_id"] == "abc"
        assert parsed["level"] == "INFO"
        assert parsed["service_name"] == "generation-studio-api"
        assert parsed["timestamp"].endswith("Z")

    def test_standard_library_records_share_the_format(self, capsys):
        generation_studio.logging_config.configure_logging(log_level="INFO")
        logging.getLogger("uvicorn.error").warning("plain stdlib message")

        parsed = _last_json_line(capsys.readouterr().out)

        assert parsed["event"] == "plain stdlib message"
        assert parsed["level"] == "WARNING"
        assert parsed["service_name"] == "generation-studio-api"

    def test_bound_correlation_id_is_included(self, capsys):
        generation_studio.logging_config.configure_logging(log_level="INFO")
        structlog.contextvars.bind_contextvars(correlation_id="corr-123")
        structlog.get_logger("test").info("test_event")

        parsed = _last_json_line(capsys.readouterr().out)

        assert parsed["correlation_id"] == "corr-123"
