"""Custom exceptions for BatchForge."""
from typing import Optional
from batchforge.core.enums import FailureKind


class BatchForgeException(Exception):
    """Base exception for all BatchForge-specific exceptions."""

    pass


class InvalidStateTransitionError(BatchForgeException):
    """Raised when attempting an invalid execution state transition."""

    pass


class ExecutionNotFoundError(BatchForgeException):
    """Raised when an execution is not found in the database."""

    pass


class CredentialError(BatchForgeException):
    """Raised when the encrypted credential is absent, malformed or fails decryption."""

    pass


class InvalidBatchError(BatchForgeException):
    """Raised when a batch has no items or its input cannot be read."""

    pass


class JobCancelled(BatchForgeException):
    """Raised when a user-requested cancellation stops an execution."""

    pass


class ArtifactStoreError(BatchForgeException):
    """Raised when a generated artifact cannot be stored."""

    pass


class GenerationError(BatchForgeException):
    """
    A classified failure of one generation attempt.

    The message is safe to show to users; raw provider output is never included.
    """

    def __init__(
        self,
        message: str,
        kind: FailureKind,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retriable(self) -> bool:
        """Whether the failed attempt may be retried."""
        return self.kind.is_retriable


class ItemTransientError(GenerationError):
    """Retriable item failure (network, 5xx, rate limit, ambiguous response)."""

    pass


class ItemClientError(GenerationError):
    """Non-retriable item failure (authentication or invalid input)."""

    pass


def generation_error(
    message: str,
    kind: FailureKind,
    status_code: Optional[int] = None,
    retry_after: Optional[float] = None,
) -> GenerationError:
    """
    Build the exception class matching a failure kind.

    Args:
        message: User-facing error message
        kind: Failure classification
        status_code: HTTP status returned by the provider, if any
        retry_after: Seconds the provider asked us to wait, if any

    Returns:
        GenerationError: ItemTransientError or ItemClientError
    """
    error_class = ItemTransientError if kind.is_retriable else ItemClientError
    return error_class(message, kind, status_code=status_code, retry_after=retry_after)
