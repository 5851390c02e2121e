"""Error taxonomy for the memory pipeline.

Configuration errors are fatal at startup and never retried. Transient I/O
errors are retried by the store and then reported as ``StoreUnavailable``;
other database errors are reported at once as ``StoreError``.
Malformed model output is not an exception at all (see ``ParseError`` in
``mneme.memory.models``).
"""


class MnemeError(Exception):
    """Base class for all memory pipeline errors."""


class ConfigurationError(MnemeError):
    """Deployment misconfiguration: missing credentials, bad settings."""


class DimensionMismatchError(ConfigurationError):
    """A vector's length disagrees with the configured collection dimension."""

    def __init__(self, expected: int, actual: int, source: str = "") -> None:
        self.expected = expected
        self.actual = actual
        self.source = source
        where = f" from {source}" if source else ""
        super().__init__(
            f"Vector dimension mismatch{where}: expected {expected}, got {actual}"
        )


class EmbeddingUnavailable(MnemeError):
    """No embedding could be produced for the given text."""


class StoreError(MnemeError):
    """The vector database rejected an operation; retrying will not help."""

    retryable = False

    def __init__(
        self, operation: str, cause: BaseException | None = None, message: str | None = None
    ) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(message or f"{operation} failed{detail}")


class StoreUnavailable(StoreError):
    """The vector database could not complete an operation after retries.

    Callers that need durability should treat this as retryable.
    """

    retryable = True

    def __init__(self, operation: str, attempts: int, cause: BaseException | None = None) -> None:
        self.attempts = attempts
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            operation, cause, f"{operation} failed after {attempts} attempt(s){detail}"
        )
