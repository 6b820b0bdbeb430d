"""Tests for structured logging and request correlation."""

from __future__ import annotations

import json
import logging

import pytest

from filetrace.observability.logging import configure_logging, request_id_ctx


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:

    def test_json_lines_carry_request_id(self, capsys, restore_root_logging):
        configure_logging(level="INFO", json_output=True, force=True)
        token = request_id_ctx.set("req-abcdef12")
        try:
            logging.getLogger("filetrace.test").info("share created")
        finally:
            request_id_ctx.reset(token)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "share created"
        assert payload["request_id"] == "req-abcdef12"
        assert payload["level"] == "info"
        assert payload["logger"] == "filetrace.test"

    def test_level_filters(self, capsys, restore_root_logging):
        configure_logging(level="WARNING", json_output=True, force=True)
        logging.getLogger("filetrace.test").info("hidden")
        assert "hidden" not in capsys.readouterr().out

    def test_idempotent_without_force(self, restore_root_logging):
        configure_logging(level="INFO", force=True)
        handler_count = len(logging.getLogger().handlers)
        configure_logging(level="DEBUG")
        assert len(logging.getLogger().handlers) == handler_count
