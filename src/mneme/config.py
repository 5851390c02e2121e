"""Settings for the memory pipeline.

All values come from the environment (a ``.env`` file is loaded by the
entry point) and fall back to the defaults below.
"""

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_HOME = Path.home() / ".mneme"

BACKOFF_STRATEGIES = ("linear", "exponential")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MemorySettings:
    """Configuration for the memory pipeline.

    Attributes:
        qdrant_url: Base URL of the vector database.
        qdrant_api_key: Optional API key for the vector database.
        collection: Name of the collection holding facts.
        dimension: Vector length shared by the embedder and the collection.
        retries: Attempts per vector store operation.
        timeout: Seconds allowed for a single attempt.
        retry_delay: Base delay in seconds between attempts.
        backoff: Either 'linear' or 'exponential'.
        recreate_on_mismatch: Drop and recreate a collection whose dimension
            disagrees with ``dimension`` instead of failing.
        relevance_threshold: Minimum cosine similarity for a search hit.
        max_context_facts: Default number of facts retrieved per turn.
        max_context_tokens: Token budget for the assembled context block.
        max_buffer_size: Entries kept in the short-term buffer.
        default_user_id: User id used when the caller supplies none.
        min_fact_length: Minimum length of a rendered "key: value" fact.
        max_fact_length: Maximum length of a fact value.
        quality_threshold: Minimum fact quality score accepted for storage.
        groq_api_key: Key for the completion service.
        model: Completion model used for extraction and replies.
        completion_timeout: Seconds allowed for a completion call.
        embedding_api_key: Key for the remote embedding provider.
        embedding_url: Endpoint of the remote embedding provider.
        embedding_model: Remote embedding model name.
        local_embedding_model: sentence-transformers model, '' disables it.
        log_dir: Directory for the JSONL event log.
    """

    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    collection: str = "mneme_memory"
    dimension: int = 1024
    retries: int = 3
    timeout: float = 10.0
    retry_delay: float = 1.0
    backoff: str = "linear"
    recreate_on_mismatch: bool = False
    relevance_threshold: float = 0.7
    max_context_facts: int = 10
    max_context_tokens: int = 8000
    max_buffer_size: int = 5
    default_user_id: str = "default"
    min_fact_length: int = 5
    max_fact_length: int = 500
    quality_threshold: float = 0.3
    groq_api_key: str | None = None
    model: str = "llama-3.1-70b-versatile"
    completion_timeout: float = 30.0
    embedding_api_key: str | None = None
    embedding_url: str = "https://api.mistral.ai/v1/embeddings"
    embedding_model: str = "mistral-embed"
    local_embedding_model: str = "intfloat/multilingual-e5-large"
    log_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate settings and fill derived defaults."""
        if self.dimension < 1:
            raise ValueError("dimension must be at least 1")
        if self.retries < 1:
            raise ValueError("retries must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError(f"backoff must be one of {BACKOFF_STRATEGIES}")
        if not 0.0 <= self.relevance_threshold <= 1.0:
            raise ValueError("relevance_threshold must be between 0 and 1")
        if self.max_context_facts < 1:
            raise ValueError("max_context_facts must be at least 1")
        if self.max_context_tokens < 1:
            raise ValueError("max_context_tokens must be at least 1")
        if self.max_buffer_size < 1:
            raise ValueError("max_buffer_size must be at least 1")

        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"

    @classmethod
    def from_env(cls) -> "MemorySettings":
        """Build settings from environment variables."""
        log_dir = os.getenv("MNEME_LOG_DIR")
        return cls(
            qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            qdrant_api_key=os.getenv("QDRANT_API_KEY") or None,
            collection=os.getenv("MNEME_COLLECTION", "mneme_memory"),
            dimension=int(os.getenv("EMBEDDING_DIMENSION", "1024")),
            retries=int(os.getenv("QDRANT_RETRIES", "3")),
            timeout=float(os.getenv("QDRANT_TIMEOUT", "10")),
            retry_delay=float(os.getenv("QDRANT_RETRY_DELAY", "1.0")),
            backoff=os.getenv("QDRANT_BACKOFF", "linear"),
            recreate_on_mismatch=_env_bool("RECREATE_ON_MISMATCH", False),
            relevance_threshold=float(os.getenv("RELEVANCE_THRESHOLD", "0.7")),
            max_context_facts=int(os.getenv("MAX_CONTEXT_FACTS", "10")),
            max_context_tokens=int(os.getenv("MAX_CONTEXT_TOKENS", "8000")),
            max_buffer_size=int(os.getenv("MAX_BUFFER_SIZE", "5")),
            default_user_id=os.getenv("DEFAULT_USER_ID", "default"),
            min_fact_length=int(os.getenv("MIN_FACT_LENGTH", "5")),
            max_fact_length=int(os.getenv("MAX_FACT_LENGTH", "500")),
            quality_threshold=float(os.getenv("FACT_QUALITY_THRESHOLD", "0.3")),
            groq_api_key=os.getenv("GROQ_API_KEY") or None,
            model=os.getenv("GROQ_MODEL", "llama-3.1-70b-versatile"),
            completion_timeout=float(os.getenv("COMPLETION_TIMEOUT", "30")),
            embedding_api_key=os.getenv("MISTRAL_API_KEY") or None,
            embedding_url=os.getenv(
                "EMBEDDING_URL", "https://api.mistral.ai/v1/embeddings"
            ),
            embedding_model=os.getenv("EMBEDDING_MODEL", "mistral-embed"),
            local_embedding_model=os.getenv(
                "LOCAL_EMBEDDING_MODEL", "intfloat/multilingual-e5-large"
            ),
            log_dir=Path(log_dir) if log_dir else None,
        )

    def retry_delays(self) -> list[float]:
        """Delays slept between consecutive attempts (one fewer than retries)."""
        delays = []
        for attempt in range(1, self.retries):
            if self.backoff == "exponential":
                delays.append(self.retry_delay * (2 ** (attempt - 1)))
            else:
                delays.append(self.retry_delay * attempt)
        return delays
