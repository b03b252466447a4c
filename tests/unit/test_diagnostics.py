from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from telemetry import AppendFailure, FailureTracker, TokenQueryFailure
from telemetry.diagnostics import configure_diagnostics


@pytest.fixture
def restore_telemetry_logger():
    logger = logging.getLogger("telemetry")
    saved = (logger.level, logger.propagate, list(logger.handlers))
    yield
    for handler in logger.handlers:
        handler.close()
    logger.setLevel(saved[0])
    logger.propagate = saved[1]
    logger.handlers[:] = saved[2]


def test_file_handler_writes_warnings_as_jsonl(tmp_path: Path, restore_telemetry_logger):
    log_file = tmp_path / "logs" / "diagnostics.jsonl"
    configure_diagnostics("INFO", log_file)

    logging.getLogger("telemetry.shipper").info("shipped")
    tracker = FailureTracker()
    failure = AppendFailure("append rejected", channel="api-log-stream-1")
    failure.__cause__ = RuntimeError("stale token")
    tracker.report(failure)

    for handler in logging.getLogger("telemetry").handlers:
        handler.flush()

    [line] = log_file.read_text(encoding="utf-8").splitlines()
    entry = json.loads(line)
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "telemetry.failures"
    assert entry["time"].endswith("Z")
    assert "api-log-stream-1" in entry["message"]
    assert "stale token" in entry["message"]


def test_configure_is_repeatable(restore_telemetry_logger):
    configure_diagnostics("DEBUG")
    logger = configure_diagnostics("WARNING")
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.WARNING


def test_tracker_counts_by_kind():
    tracker = FailureTracker(logger=logging.getLogger("test.tracker"))
    tracker.report(TokenQueryFailure("x"))
    tracker.report(TokenQueryFailure("y"))
    tracker.report(AppendFailure("z"))

    assert tracker.total == 3
    assert tracker.count(TokenQueryFailure) == 2
    status = tracker.degraded_status()
    assert status["failures"] == {"TokenQueryFailure": 2, "AppendFailure": 1}
    assert status["first_failure_at"] <= status["last_failure_at"]
