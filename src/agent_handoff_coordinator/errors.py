"""Error taxonomy for the session coordinator.

Every error raised across a public boundary derives from
``CoordinatorError`` so that callers can catch the whole family at once and
inspect ``error_code`` / ``retryable`` to decide how to react.

Classes
-------
- CoordinatorError              — common base
- SessionNotFoundError          — session missing or expired
- SessionExistsError            — duplicate create
- HandoffValidationError        — handoff payload incomplete
- BudgetExhaustedError          — budget ceiling reached
- ConcurrentModificationError   — lost-update race detected
- SerializationError            — payload cannot be encoded/decoded
- HandoffFailedError            — transactional failure during transition
- TransientError                — timeout or retryable I/O failure
- RateLimitExceededError        — per-session request window exhausted
- GenerationFailedError         — permanent AI service failure
- TopicRegressionError          — attempted backward topic transition
- ConfigError                   — invalid configuration value
- InvalidStateError             — operation not allowed in the session's current state
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agent_handoff_coordinator.handoff.audit import HandoffAuditRecord


class CoordinatorError(Exception):
    """Base class for all coordinator errors."""

    error_code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly description for API layers."""
        return {
            "code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class SessionNotFoundError(CoordinatorError, KeyError):
    """Raised when a session does not exist or has expired.

    Expired and missing sessions are deliberately indistinguishable.
    """

    error_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id!r} not found.", {"session_id": session_id})

    def __str__(self) -> str:
        return self.message


class SessionExistsError(CoordinatorError):
    """Raised when ``create`` is called with a session ID already in use."""

    error_code = "SESSION_EXISTS"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id!r} already exists.", {"session_id": session_id})


class HandoffValidationError(CoordinatorError):
    """Raised when a handoff is rejected by validation.

    Parameters
    ----------
    errors:
        The blocking validation errors.
    record:
        The ``Failed`` audit record written for the attempt, if any.
    """

    error_code = "HANDOFF_VALIDATION_FAILED"

    def __init__(
        self,
        errors: list[str],
        record: HandoffAuditRecord | None = None,
    ) -> None:
        self.errors = list(errors)
        self.record = record
        super().__init__(
            "Handoff validation failed: " + "; ".join(self.errors),
            {"errors": self.errors},
        )


class BudgetExhaustedError(CoordinatorError):
    """Raised when an operation would push spend beyond the budget ceiling."""

    error_code = "BUDGET_EXHAUSTED"

    def __init__(self, remaining: float, estimated_cost: float, reason: str = "") -> None:
        self.remaining = remaining
        self.estimated_cost = estimated_cost
        message = reason or (
            f"Insufficient budget. Estimated cost: ${estimated_cost:.4f}, "
            f"remaining: ${remaining:.4f}"
        )
        super().__init__(
            message,
            {"remaining": remaining, "estimated_cost": estimated_cost},
        )


class ConcurrentModificationError(CoordinatorError):
    """Raised when an optimistic write loses a race against another writer."""

    error_code = "CONCURRENT_MODIFICATION"
    retryable = True

    def __init__(self, session_id: str, expected_revision: int | None = None) -> None:
        self.session_id = session_id
        self.expected_revision = expected_revision
        super().__init__(
            f"Session {session_id!r} was modified concurrently "
            f"(expected revision {expected_revision!r}).",
            {"session_id": session_id, "expected_revision": expected_revision},
        )


class SerializationError(CoordinatorError, ValueError):
    """Raised when a record cannot be encoded or decoded."""

    error_code = "SERIALIZATION_ERROR"


class HandoffFailedError(CoordinatorError):
    """Raised when a validated handoff could not be committed."""

    error_code = "HANDOFF_FAILED"


class TransientError(CoordinatorError):
    """Raised for timeouts and other retryable store or AI failures."""

    error_code = "TRANSIENT"
    retryable = True


class RateLimitExceededError(CoordinatorError):
    """Raised when the per-session request window is exhausted."""

    error_code = "RATE_LIMITED"
    retryable = True

    def __init__(self, session_id: str, reset_at: datetime) -> None:
        self.session_id = session_id
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded for session {session_id!r}; resets at {reset_at.isoformat()}.",
            {"session_id": session_id, "reset_at": reset_at.isoformat()},
        )


class GenerationFailedError(CoordinatorError):
    """Raised when the generative AI service fails permanently."""

    error_code = "GENERATION_FAILED"


class TopicRegressionError(CoordinatorError, ValueError):
    """Raised when a write would move a topic status backwards."""

    error_code = "TOPIC_REGRESSION"


class ConfigError(CoordinatorError, ValueError):
    """Raised when configuration values are missing or invalid."""

    error_code = "CONFIG_ERROR"


class InvalidStateError(CoordinatorError):
    """Raised when an operation does not apply to the session's current state."""

    error_code = "INVALID_STATE"


__all__ = [
    "BudgetExhaustedError",
    "ConcurrentModificationError",
    "ConfigError",
    "CoordinatorError",
    "GenerationFailedError",
    "HandoffFailedError",
    "HandoffValidationError",
    "InvalidStateError",
    "RateLimitExceededError",
    "SerializationError",
    "SessionExistsError",
    "SessionNotFoundError",
    "TopicRegressionError",
    "TransientError",
]
