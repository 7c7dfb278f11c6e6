"""Error taxonomy for the generation pipeline.

Components raise :class:`PipelineError` subclasses. The orchestrator maps
every failure to a :class:`GenerationError` value before it reaches the
caller, so no stack trace or backend-specific shape leaks out.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    OWNERSHIP_MISMATCH = "ownership_mismatch"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    PROVIDER_ERROR = "provider_error"
    MALFORMED_OUTPUT = "malformed_output"
    PERSISTENCE_ERROR = "persistence_error"
    CANCELLED = "cancelled"


_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.BACKEND_UNAVAILABLE,
        ErrorKind.MALFORMED_OUTPUT,
        ErrorKind.PERSISTENCE_ERROR,
        ErrorKind.CANCELLED,
    }
)


@dataclass(frozen=True)
class GenerationError:
    """Structured, caller-facing failure."""

    kind: ErrorKind
    message: str
    retryable: bool = False
    retry_after: int | None = None

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class PipelineError(Exception):
    """Base class for failures raised inside the pipeline."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = (
            self.kind in _RETRYABLE_KINDS if retryable is None else retryable
        )

    def to_error(self) -> GenerationError:
        return GenerationError(
            kind=self.kind,
            message=self.message,
            retryable=self.retryable,
        )


class InvalidRequestError(PipelineError):
    kind = ErrorKind.INVALID_REQUEST


class RateLimitedError(PipelineError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_error(self) -> GenerationError:
        return GenerationError(
            kind=self.kind,
            message=self.message,
            retryable=True,
            retry_after=self.retry_after,
        )


class NotFoundError(PipelineError):
    kind = ErrorKind.NOT_FOUND


class OwnershipMismatchError(PipelineError):
    kind = ErrorKind.OWNERSHIP_MISMATCH


class BackendUnavailableError(PipelineError):
    kind = ErrorKind.BACKEND_UNAVAILABLE


class ProviderError(PipelineError):
    """Generation backend failure.

    ``retryable`` is True when transient failures exhausted the retry
    budget and False for non-transient failures (4xx, malformed request).
    """

    kind = ErrorKind.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code
        self.attempts = attempts


class MalformedOutputError(PipelineError):
    kind = ErrorKind.MALFORMED_OUTPUT

    def __init__(self, message: str, preview: str = "") -> None:
        super().__init__(message)
        self.preview = preview


class PersistenceError(PipelineError):
    kind = ErrorKind.PERSISTENCE_ERROR


class GenerationCancelledError(PipelineError):
    kind = ErrorKind.CANCELLED
