"""Tests for structlog configuration helpers."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from tessera.logging import LogContext, bind_context, configure_logging, get_logger, unbind_context


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True, service="tests")
        get_logger("tessera.test").info("table.ensured", table="users")
        line = capsys.readouterr().err.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "table.ensured"
        assert payload["table"] == "users"
        assert payload["service"] == "tests"
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("tessera.test").info("quiet")
        assert "quiet" not in capsys.readouterr().err
        assert logging.getLogger("tessera").level == logging.WARNING

    def test_console_output(self, capsys):
        configure_logging(level="DEBUG", json_format=False)
        get_logger("tessera.test").debug("migration.started", old_version=0)
        assert "migration.started" in capsys.readouterr().err


class TestContextBinding:
    def test_bind_and_unbind(self):
        bind_context(request_id="r1")
        assert structlog.contextvars.get_contextvars()["request_id"] == "r1"
        unbind_context("request_id")
        assert "request_id" not in structlog.contextvars.get_contextvars()

    def test_bound_values_reach_events(self):
        bind_context(version=3)
        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})
        assert event["version"] == 3

    async def test_log_context_async(self):
        async with LogContext(version=3):
            assert structlog.contextvars.get_contextvars()["version"] == 3
        assert "version" not in structlog.contextvars.get_contextvars()

    def test_log_context_sync(self):
        with LogContext(table="users"):
            assert structlog.contextvars.get_contextvars()["table"] == "users"
        assert "table" not in structlog.contextvars.get_contextvars()
