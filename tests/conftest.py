"""Shared fixtures."""

import json
from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

from mneme.config import MemorySettings
from mneme.logging import JSONLLogger, configure_logger
from mneme.memory.embeddings import Embedder, HashEmbeddingProvider
from mneme.memory.store import VectorMemoryStore

DIMENSION = 64


@pytest.fixture(autouse=True)
def events(tmp_path: Path) -> JSONLLogger:
    """Route the global event log to a temporary directory."""
    return configure_logger(tmp_path / "logs")


@pytest.fixture
def settings(tmp_path: Path) -> MemorySettings:
    return MemorySettings(
        collection="test_memory",
        dimension=DIMENSION,
        retries=3,
        retry_delay=0.01,
        relevance_threshold=0.5,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Delays recorded by the store instead of sleeping."""
    return []


@pytest.fixture
def store(settings: MemorySettings, sleeps: list[float]) -> VectorMemoryStore:
    """A store backed by qdrant-client's in-process mode."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return VectorMemoryStore(
        settings, client=AsyncQdrantClient(":memory:"), sleep=fake_sleep
    )


@pytest.fixture
def embedder() -> Embedder:
    return Embedder([HashEmbeddingProvider(DIMENSION)], DIMENSION)


@pytest.fixture
def read_events(events: JSONLLogger):
    """Return a function reading every entry of the event log."""

    def _read() -> list[dict]:
        if not events.log_path.exists():
            return []
        with open(events.log_path, encoding="utf-8") as f:
            return [json.loads(line) for line in f]

    return _read
