"""Immutable records of handoff attempts.

Classes
-------
- ValidationResult        — outcome of handoff validation
- HandoffAuditMetadata    — size, timing and confidence of an attempt
- HandoffAuditRecord      — one agent-to-agent transition attempt
"""
from __future__ import annotations

from uuid import uuid4

from pydantic import ConfigDict, Field

from agent_handoff_coordinator.session.state import (
    AgentRole,
    Document,
    HandoffStatus,
    Timestamp,
)
from agent_handoff_coordinator.session.timestamps import utc_now


class ValidationResult(Document):
    """Structured validation outcome.

    ``is_valid`` is false whenever ``errors`` is non-empty.  ``warnings``
    never block a handoff.
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class HandoffAuditMetadata(Document):
    model_config = ConfigDict(frozen=True)

    data_size: int = Field(default=0, ge=0)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    confidence: float | None = None


class HandoffAuditRecord(Document):
    """Immutable audit record of one handoff attempt.

    Parameters
    ----------
    record_id:
        Unique identifier; referenced by ``Session.handoff.serialized_context_ref``
        after a successful handoff.
    session_id:
        The session that attempted the handoff.
    from_agent:
        The agent that owned the conversation at the time of the attempt.
    to_agent:
        The requested receiving agent, or ``None`` when the pipeline has no
        further agent.
    timestamp:
        When the attempt finished (UTC).
    serialized_data:
        The JSON-encoded ``HandoffPayload``; empty when serialization failed.
    validation_results:
        Errors and warnings produced for the attempt.
    status:
        ``completed`` or ``failed``.
    metadata:
        Payload size, processing time and analysis confidence.
    """

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: f"handoff-{uuid4()}")
    session_id: str
    from_agent: AgentRole
    to_agent: AgentRole | None = None
    timestamp: Timestamp = Field(default_factory=utc_now)
    serialized_data: str = ""
    validation_results: ValidationResult
    status: HandoffStatus
    metadata: HandoffAuditMetadata = Field(default_factory=HandoffAuditMetadata)

    @property
    def succeeded(self) -> bool:
        return self.status is HandoffStatus.COMPLETED


__all__ = ["HandoffAuditMetadata", "HandoffAuditRecord", "ValidationResult"]
