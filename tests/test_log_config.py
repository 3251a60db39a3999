"""Tests for the logging setup shared by the runners."""

from __future__ import annotations

import json
import logging

import structlog

from keytracker.log_config import HANDLER_NAME, setup_logging


def _tracker_handlers() -> list[logging.Handler]:
    return [handler for handler in logging.getLogger().handlers if handler.get_name() == HANDLER_NAME]


def _last_json_line(text: str) -> dict:
    return json.loads(text.strip().splitlines()[-1])


class TestSetupLogging:
    def test_stdlib_records_rendered_as_json(self, settings, capsys):
        settings.environment = "test"
        setup_logging(settings)

        logging.getLogger("keytracker.workers.sync").warning("Sync already in progress, skipping %s trigger", "auto")
        payload = _last_json_line(capsys.readouterr().err)

        assert payload["event"] == "Sync already in progress, skipping auto trigger"
        assert payload["level"] == "warning"
        assert payload["logger"] == "keytracker.workers.sync"
        assert payload["service"] == "keytracker"
        assert payload["environment"] == "test"

    def test_structlog_events_carry_bound_context(self, settings, capsys):
        setup_logging(settings)

        with structlog.contextvars.bound_contextvars(sync_type="manual"):
            structlog.get_logger("keytracker.collector").info("character_collected", runs_added=3)
        payload = _last_json_line(capsys.readouterr().err)

        assert payload["event"] == "character_collected"
        assert payload["runs_added"] == 3
        assert payload["sync_type"] == "manual"
        assert payload["service"] == "keytracker"

    def test_repeated_setup_keeps_one_handler(self, settings):
        setup_logging(settings)
        setup_logging(settings)
        assert len(_tracker_handlers()) == 1

    def test_noisy_loggers_quieted(self, settings):
        settings.log_level = "debug"
        setup_logging(settings)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
