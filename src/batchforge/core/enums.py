"""Core enumerations for the BatchForge batch execution engine."""
from enum import Enum


class ExecutionStatus(str, Enum):
    """
    Execution state machine states.

    State flow:
        PENDING → PROCESSING → COMPLETED/FAILED

    COMPLETED and FAILED are absorbing. A batch whose items partly failed
    is still COMPLETED; FAILED is reserved for job-level faults.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        """Return string representation of the enum value."""
        return self.value


class ItemStatus(str, Enum):
    """Outcome of a single batch item."""

    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        """Return string representation of the enum value."""
        return self.value


class FailureKind(str, Enum):
    """
    Classification of a failed generation attempt.

    - AUTH_ERROR: Credential rejected by the provider (401/403)
    - RATE_LIMITED: Provider quota exceeded (429)
    - TRANSIENT_NETWORK: Timeout, connection error or 5xx
    - MALFORMED_RESPONSE: 2xx without a usable artifact
    - CLIENT_ERROR: Invalid input (other 4xx or local validation)
    """

    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_NETWORK = "transient_network"
    MALFORMED_RESPONSE = "malformed_response"
    CLIENT_ERROR = "client_error"

    @property
    def is_retriable(self) -> bool:
        """Whether an attempt failing this way may be retried."""
        return self in (
            FailureKind.RATE_LIMITED,
            FailureKind.TRANSIENT_NETWORK,
            FailureKind.MALFORMED_RESPONSE,
        )

    def __str__(self) -> str:
        """Return string representation of the enum value."""
        return self.value


class BackoffStrategy(str, Enum):
    """
    Backoff strategies between item attempts.

    - FIXED: Retry with fixed delay
    - EXPONENTIAL: Retry with exponentially increasing delay
    - JITTER: Retry with exponential delay plus random jitter
    """

    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    JITTER = "jitter"

    def __str__(self) -> str:
        """Return string representation of the enum value."""
        return self.value
