"""
Tests — structured logging.

Covers:
    1. JSONFormatter emits workflow context from ``extra=``
    2. ReadableFormatter appends context as key=value pairs
    3. configure_logging installs exactly one stderr handler
"""

import json
import logging
import sys

from workintake.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    configure_logging,
)


def _record(msg="Work item 7 advanced", **extra):
    record = logging.LogRecord("workintake.services.workflow_engine", logging.INFO,
                               __file__, 10, msg, None, None, func="advance")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_includes_context(self):
        payload = json.loads(JSONFormatter().format(
            _record(work_item_id=7, transition_id=3, from_stage="Draft", to_stage="Review")
        ))
        assert payload["message"] == "Work item 7 advanced"
        assert payload["level"] == "INFO"
        assert payload["work_item_id"] == 7
        assert payload["to_stage"] == "Review"
        assert "scope_id" not in payload

    def test_readable_appends_context(self):
        line = ReadableFormatter(use_color=False).format(_record(work_item_id=7, actor="system"))
        assert line.endswith("Work item 7 advanced  [work_item_id=7 actor=system]")

    def test_readable_without_context(self):
        line = ReadableFormatter(use_color=False).format(_record())
        assert line.endswith("workintake.services.workflow_engine: Work item 7 advanced")


class TestConfigureLogging:

    def test_single_stderr_handler(self, app):
        configure_logging(app)
        configure_logging(app)
        handlers = [h for h in logging.getLogger().handlers
                    if getattr(h, "stream", None) is sys.stderr]
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, ReadableFormatter)
