"""Tests for the JSONL event log."""

import json
from pathlib import Path

import pytest

from mneme.logging import JSONLLogger, LogEntry, configure_logger, get_logger


@pytest.fixture
def logger(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path)


def read_lines(logger: JSONLLogger) -> list[dict]:
    with open(logger.log_path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """LogEntry excludes None values and empty extras."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")
    data = entry.to_dict()

    assert data == {"timestamp": "2024-01-01T00:00:00Z", "event": "test"}


def test_log_writes_jsonl(logger: JSONLLogger):
    """Events are appended one JSON object per line."""
    logger.log("event1", user_id="alice")
    logger.log("event2", user_id="bob")

    entries = read_lines(logger)
    assert [e["event"] for e in entries] == ["event1", "event2"]
    assert entries[0]["user_id"] == "alice"


def test_extra_fields_nested(logger: JSONLLogger):
    """Unknown keyword arguments land under 'extra'."""
    logger.log("custom", user_id="alice", key="favoriteColor")

    entry = read_lines(logger)[0]
    assert entry["extra"] == {"key": "favoriteColor"}


def test_log_fact_stored(logger: JSONLLogger):
    """Stored facts record user, id and key."""
    logger.log_fact_stored("alice", "fact-1", "favoriteColor")

    entry = read_lines(logger)[0]
    assert entry["event"] == "fact_stored"
    assert entry["user_id"] == "alice"
    assert entry["fact_id"] == "fact-1"
    assert entry["extra"]["key"] == "favoriteColor"


def test_log_retry(logger: JSONLLogger):
    """Retries record operation, attempt and delay."""
    logger.log_retry("upsert", 2, "timed out", delay=0.5)

    entry = read_lines(logger)[0]
    assert entry["event"] == "store_retry"
    assert entry["operation"] == "upsert"
    assert entry["attempt"] == 2
    assert entry["error"] == "timed out"
    assert entry["extra"]["delay"] == 0.5


def test_log_isolation_violation(logger: JSONLLogger):
    """Isolation violations name both users."""
    logger.log_isolation_violation("search", "alice", "bob")

    entry = read_lines(logger)[0]
    assert entry["event"] == "isolation_violation"
    assert entry["user_id"] == "alice"
    assert entry["extra"]["actual_user"] == "bob"


def test_rotation(tmp_path: Path):
    """The log file is rotated once it reaches the size limit."""
    logger = JSONLLogger(log_dir=tmp_path, max_size_mb=0.0001)
    for i in range(20):
        logger.log("event", count=i)

    rotated = list(tmp_path.glob("memory_*.jsonl"))
    assert rotated
    assert logger.log_path.exists()


def test_configure_logger_replaces_global(tmp_path: Path):
    """configure_logger sets the instance returned by get_logger."""
    configured = configure_logger(tmp_path / "other")
    assert get_logger() is configured
    assert configured.log_dir == tmp_path / "other"
