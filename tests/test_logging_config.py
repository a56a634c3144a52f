"""Tests for structured logging and per-connection log context."""

import asyncio
import json
import logging
import sys

import pytest

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    ConnectionContext,
    get_connection_id,
    get_context_dict,
    get_user_id,
)
from src.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    get_logger,
)
from src.settings import Settings


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="src.realtime.hub",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggingConfig:
    """Tests for logging configuration dataclasses."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.include_caller is True
        assert config.service_name == "staff-notify"

    def test_log_format_enum_values(self):
        assert LogFormat.JSON.value == "json"
        assert LogFormat.CONSOLE.value == "console"


class TestConnectionContext:
    """Tests for contextvars binding."""

    def test_empty_outside_context(self):
        assert get_context_dict() == {}

    def test_binds_and_resets(self):
        with ConnectionContext(connection_id="conn_1", user_id="u-42") as ctx:
            assert get_connection_id() == "conn_1"
            assert get_user_id() == "u-42"
            ctx.bind(role="staff")
            assert get_context_dict() == {
                "connection_id": "conn_1",
                "user_id": "u-42",
                "role": "staff",
            }
        assert get_context_dict() == {}

    def test_nested_contexts_restore_outer(self):
        with ConnectionContext(connection_id="outer"):
            with ConnectionContext(connection_id="inner"):
                assert get_connection_id() == "inner"
            assert get_connection_id() == "outer"

    @pytest.mark.asyncio
    async def test_concurrent_sessions_isolated(self):
        seen = {}

        async def session(conn_id):
            with ConnectionContext(connection_id=conn_id):
                await asyncio.sleep(0)
                seen[conn_id] = get_connection_id()

        await asyncio.gather(session("a"), session("b"))
        assert seen == {"a": "a", "b": "b"}

    def test_elapsed_ms(self):
        ctx = ConnectionContext()
        assert ctx.elapsed_ms >= 0


class TestFormatters:
    def test_structured_formatter_json(self):
        formatter = StructuredFormatter(service_name="test")
        with ConnectionContext(connection_id="conn_9", user_id="u1"):
            line = formatter.format(_record(message_id="chat_abc"))
        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["service"] == "test"
        assert entry["connection_id"] == "conn_9"
        assert entry["user_id"] == "u1"
        assert entry["message_id"] == "chat_abc"
        assert entry["caller"].endswith(":10")

    def test_structured_formatter_without_caller(self):
        entry = json.loads(StructuredFormatter(include_caller=False).format(_record()))
        assert "caller" not in entry

    def test_structured_formatter_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(level=logging.ERROR)
            record.exc_info = sys.exc_info()
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "boom"

    def test_console_formatter(self):
        with ConnectionContext(connection_id="conn_2"):
            line = ConsoleFormatter().format(_record("frame received"))
        assert "frame received" in line
        assert "connection_id=conn_2" in line


class TestConfigureLogging:
    def setup_method(self):
        self.root = logging.getLogger()
        self._handlers = list(self.root.handlers)
        self._level = self.root.level

    def teardown_method(self):
        self.root.handlers[:] = self._handlers
        self.root.setLevel(self._level)

    def test_installs_json_handler(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_LOG_LEVEL", raising=False)
        monkeypatch.delenv("NOTIFY_LOG_FORMAT", raising=False)
        handler = configure_logging(LoggingConfig(level=LogLevel.WARNING))
        assert self.root.level == logging.WARNING
        assert handler in self.root.handlers
        assert isinstance(handler.formatter, StructuredFormatter)

    def test_reconfigure_replaces_only_own_handler(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_LOG_FORMAT", raising=False)
        foreign = logging.NullHandler()
        self.root.addHandler(foreign)
        first = configure_logging()
        second = configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert first not in self.root.handlers
        assert second in self.root.handlers
        assert foreign in self.root.handlers

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_LOG_LEVEL", "debug")
        monkeypatch.setenv("NOTIFY_LOG_FORMAT", "console")
        handler = configure_logging()
        assert self.root.level == logging.DEBUG
        assert isinstance(handler.formatter, ConsoleFormatter)

    def test_from_settings(self):
        config = LoggingConfig.from_settings(Settings(log_level="warning", log_format="bogus"))
        assert config.level == LogLevel.WARNING
        assert config.format == LogFormat.JSON

    def test_get_logger(self):
        assert get_logger("src.realtime").name == "src.realtime"
