"""JSONL event log for the memory pipeline."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    fact_id: str | None = None
    operation: str | None = None
    attempt: int | None = None
    duration_ms: float | None = None
    count: int | None = None
    reason: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes memory pipeline events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "memory.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".mneme" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        fact_id: str | None = None,
        operation: str | None = None,
        attempt: int | None = None,
        duration_ms: float | None = None,
        count: int | None = None,
        reason: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            fact_id=fact_id,
            operation=operation,
            attempt=attempt,
            duration_ms=duration_ms,
            count=count,
            reason=reason,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_fact_stored(self, user_id: str, fact_id: str, key: str) -> None:
        """Log a fact written to long-term memory."""
        self.log("fact_stored", user_id=user_id, fact_id=fact_id, key=key)

    def log_fact_rejected(self, user_id: str, key: str, reason: str) -> None:
        """Log an extraction candidate dropped before storage."""
        self.log("fact_rejected", user_id=user_id, reason=reason, key=key)

    def log_retry(
        self,
        operation: str,
        attempt: int,
        error: str,
        *,
        delay: float | None = None,
    ) -> None:
        """Log a failed vector store attempt that will be retried."""
        self.log("store_retry", operation=operation, attempt=attempt, error=error, delay=delay)

    def log_store_failed(self, operation: str, attempts: int, error: str) -> None:
        """Log a vector store operation that exhausted its retries."""
        self.log("store_failed", operation=operation, attempt=attempts, error=error)

    def log_isolation_violation(
        self, operation: str, expected_user: str, actual_user: str | None
    ) -> None:
        """Log a result dropped because it belonged to another user."""
        self.log(
            "isolation_violation",
            user_id=expected_user,
            operation=operation,
            actual_user=actual_user,
        )

    def log_context_retrieved(
        self, user_id: str, count: int, duration_ms: float
    ) -> None:
        """Log a context retrieval for a turn."""
        self.log("context_retrieved", user_id=user_id, count=count, duration_ms=duration_ms)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
