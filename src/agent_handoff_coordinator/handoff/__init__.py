"""Agent-to-agent handoff: readiness, payload, audit and execution."""
from __future__ import annotations

from agent_handoff_coordinator.handoff.audit import (
    HandoffAuditMetadata,
    HandoffAuditRecord,
    ValidationResult,
)
from agent_handoff_coordinator.handoff.evaluator import HandoffReadinessEvaluator
from agent_handoff_coordinator.handoff.payload import (
    HandoffPayload,
    HandoffPayloadBuilder,
    PayloadConfig,
)
from agent_handoff_coordinator.handoff.protocol import HandoffProtocol, HandoffResult

__all__ = [
    "HandoffAuditMetadata",
    "HandoffAuditRecord",
    "HandoffPayload",
    "HandoffPayloadBuilder",
    "HandoffProtocol",
    "HandoffReadinessEvaluator",
    "HandoffResult",
    "PayloadConfig",
    "ValidationResult",
]
