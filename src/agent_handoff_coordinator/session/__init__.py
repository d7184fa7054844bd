"""Session data model, serialization and timestamp conversion.

``SessionStore`` is imported from ``agent_handoff_coordinator.session.store``.
"""
from __future__ import annotations

from agent_handoff_coordinator.session.serializer import SchemaVersionError, SessionSerializer
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    CostCategory,
    CostLedger,
    HandoffStatus,
    MessageType,
    ProcessingStatus,
    ProductAnalysis,
    Session,
    SessionStatus,
    Topic,
    TopicStatus,
)
from agent_handoff_coordinator.session.timestamps import from_epoch_ms, to_epoch_ms, utc_now

__all__ = [
    "AgentRole",
    "ChatMessage",
    "CostCategory",
    "CostLedger",
    "HandoffStatus",
    "MessageType",
    "ProcessingStatus",
    "ProductAnalysis",
    "SchemaVersionError",
    "Session",
    "SessionSerializer",
    "SessionStatus",
    "Topic",
    "TopicStatus",
    "from_epoch_ms",
    "to_epoch_ms",
    "utc_now",
]
