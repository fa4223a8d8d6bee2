"""
Tests for logging_setup module.

Verifies:
- one JSON object per log line, kwargs as top-level fields
- component tagging and session correlation
- PII fields kept apart from regular fields
- latency highlighting and the per-component debug switch
"""
import json
import logging
from datetime import datetime
from io import StringIO

import pytest

from logging_setup import (
    setup_logging,
    get_logger,
    Component,
    JSONFormatter,
)


@pytest.fixture
def capture_logs():
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = [handler]
    root.setLevel(logging.DEBUG)

    yield buffer

    root.handlers = saved_handlers
    root.setLevel(saved_level)


def _entries(buffer):
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


def test_pipeline_log_line_shape(capture_logs):
    logger = get_logger(Component.ORCHESTRATOR, session_id="support-1")
    logger.info("Pipeline run started", samples=48000, correlation_id="run-1")

    [entry] = _entries(capture_logs)
    assert entry["severity"] == "info"
    assert entry["component"] == "orchestrator"
    assert entry["session_id"] == "support-1"
    assert entry["message"] == "Pipeline run started"
    assert entry["samples"] == 48000
    assert entry["correlation_id"] == "run-1"
    assert datetime.fromisoformat(entry["timestamp"]).tzinfo is not None


def test_session_id_only_when_bound(capture_logs):
    base = get_logger(Component.ROOM)
    base.info("Connecting")
    base.with_session("support-2").info("Connected")

    first, second = _entries(capture_logs)
    assert "session_id" not in first
    assert second["session_id"] == "support-2"
    assert second["component"] == "room"


def test_plain_string_component(capture_logs):
    get_logger("custom_component").warning("Odd")
    assert _entries(capture_logs)[0]["component"] == "custom_component"


def test_levels_are_lowercase(capture_logs):
    logger = get_logger(Component.VOICE_AGENT)
    logger.debug("d")
    logger.info("i")
    logger.warning("w")
    logger.error("e")
    logger.critical("c")

    assert [e["severity"] for e in _entries(capture_logs)] == ["debug", "info", "warning", "error", "critical"]


def test_nested_and_non_json_fields(capture_logs):
    logger = get_logger(Component.CONTROL_PLANE)
    logger.info("Agent spawned", voice={"value": "nova"}, created=datetime(2026, 1, 1))

    entry = _entries(capture_logs)[0]
    assert entry["voice"] == {"value": "nova"}
    assert entry["created"].startswith("2026-01-01")


def test_transcript_goes_to_pii_field(capture_logs):
    logger = get_logger(Component.ORCHESTRATOR, session_id="support-1")
    logger.debug_pii("Transcription", transcript="my name is John")

    entry = _entries(capture_logs)[0]
    assert entry["severity"] == "debug"
    assert entry["pii"] == {"transcript": "my name is John"}
    assert "transcript" not in entry


def test_exception_is_formatted(capture_logs):
    logger = get_logger(Component.ORCHESTRATOR)
    try:
        raise ValueError("whisper returned 500")
    except ValueError:
        logger.error("Pipeline run failed", exc_info=True)

    assert "ValueError: whisper returned 500" in _entries(capture_logs)[0]["exception"]


def test_latency_is_plain_number_without_color(capture_logs, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    get_logger(Component.STT).info("STT call completed", latency_ms=412)

    assert _entries(capture_logs)[0]["latency_ms"] == 412


def test_latency_highlight_with_force_color(capture_logs, monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.setenv("FORCE_COLOR", "1")
    get_logger(Component.TTS).info("TTS call completed", latency_ms=87)

    assert "87 ms" in capture_logs.getvalue()


def test_set_debug_enables_component_debug(capture_logs):
    logging.getLogger().setLevel(logging.INFO)
    logger = get_logger(Component.ORCHESTRATOR, session_id="room-1")

    logger.debug("hidden")
    assert capture_logs.getvalue() == ""

    logger.set_debug(True)
    try:
        logger.debug("visible")
    finally:
        logger.set_debug(False)

    [entry] = _entries(capture_logs)
    assert entry["message"] == "visible"
    assert entry["session_id"] == "room-1"


def test_setup_logging_installs_single_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(level="debug")
        setup_logging(level="DEBUG")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

        setup_logging(level="WARNING", use_json=False)
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
