"""
Error taxonomy for the orchestration layer.

Every failure a caller can observe is one of these types. Components
that must not raise (executor, normalizer, consolidation facade) store
instances in their result objects instead of propagating them.
"""


class OrchestratorError(Exception):
    """Base exception for orchestration errors."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Whether the retry policy may try the same call again."""
        return False


class UnknownSourceError(OrchestratorError, KeyError):
    """Raised when a source id is not present in the registry."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0] if self.args else ""


class CatalogueError(OrchestratorError):
    """Raised when the static source catalogue is malformed."""


class SourceDisabledError(OrchestratorError):
    """The source has been toggled off by an operator. Never retried."""


class RateLimitedError(OrchestratorError):
    """The local per-source quota is exhausted. Caller may retry later."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        retry_after_seconds: float = 0.0,
    ):
        super().__init__(message, source_id=source_id)
        self.retry_after_seconds = retry_after_seconds


class TransportError(OrchestratorError):
    """Base class for failures of a single transport call."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, source_id=source_id, cause=cause)
        self.status_code = status_code


class TransientTransportError(TransportError):
    """Timeout, connection failure, 429 or 5xx. Retried with backoff."""

    @property
    def retryable(self) -> bool:
        return True


class RetriesExhaustedError(TransientTransportError):
    """Terminal failure after the retry budget ran out."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        status_code: int | None = None,
        cause: BaseException | None = None,
        attempts: int = 0,
    ):
        super().__init__(
            message, source_id=source_id, status_code=status_code, cause=cause
        )
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return False


class PermanentTransportError(TransportError):
    """4xx other than 429, or a malformed request. Never retried."""


class NormalizationError(OrchestratorError):
    """Payload is structurally unparsable or yields zero usable rows."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        cause: BaseException | None = None,
        warnings: list[str] | None = None,
    ):
        super().__init__(message, source_id=source_id, cause=cause)
        self.warnings = warnings or []
