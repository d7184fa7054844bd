"""agent-handoff-coordinator — Multi-agent session and handoff coordination.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import agent_handoff_coordinator
>>> agent_handoff_coordinator.__version__
'0.1.0'
"""
from __future__ import annotations

# Configuration and errors
from agent_handoff_coordinator.config import (
    BudgetConfig,
    CoordinatorConfig,
    HandoffConfig,
    PricingConfig,
    RateLimitConfig,
    TimeoutConfig,
    load_config,
)
from agent_handoff_coordinator.errors import (
    BudgetExhaustedError,
    ConcurrentModificationError,
    ConfigError,
    CoordinatorError,
    GenerationFailedError,
    HandoffFailedError,
    HandoffValidationError,
    InvalidStateError,
    RateLimitExceededError,
    SerializationError,
    SessionExistsError,
    SessionNotFoundError,
    TopicRegressionError,
    TransientError,
)

# Session core
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    CostCategory,
    CostLedger,
    HandoffStatus,
    MessageType,
    ProductAnalysis,
    Session,
    SessionStatus,
    Topic,
    TopicStatus,
)
from agent_handoff_coordinator.session.serializer import SchemaVersionError, SessionSerializer
from agent_handoff_coordinator.session.store import SessionStore

# Storage backends
from agent_handoff_coordinator.storage.base import AsyncDocumentBackend, DocumentConflictError
from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend
from agent_handoff_coordinator.storage.sqlite import AsyncSQLiteBackend

# Coordination components
from agent_handoff_coordinator.budget.guard import BudgetAlertLevel, BudgetDecision, BudgetGuard
from agent_handoff_coordinator.topics.tracker import TopicProgressTracker
from agent_handoff_coordinator.handoff.audit import HandoffAuditRecord, ValidationResult
from agent_handoff_coordinator.handoff.evaluator import HandoffReadinessEvaluator
from agent_handoff_coordinator.handoff.payload import (
    HandoffPayload,
    HandoffPayloadBuilder,
    PayloadConfig,
)
from agent_handoff_coordinator.handoff.protocol import HandoffProtocol, HandoffResult
from agent_handoff_coordinator.health import HealthMonitor, RateLimiter

# Generation
from agent_handoff_coordinator.generation.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
    TokenUsage,
)
from agent_handoff_coordinator.generation.cost import CostCalculator
from agent_handoff_coordinator.generation.live import LiveGenerationBackend
from agent_handoff_coordinator.generation.simulated import SimulatedGenerationBackend

# Façade
from agent_handoff_coordinator.coordinator import (
    SessionCoordinator,
    SessionStatusResponse,
    TurnOutcome,
)

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Configuration
    "BudgetConfig",
    "CoordinatorConfig",
    "HandoffConfig",
    "PricingConfig",
    "RateLimitConfig",
    "TimeoutConfig",
    "load_config",
    # Errors
    "BudgetExhaustedError",
    "ConcurrentModificationError",
    "ConfigError",
    "CoordinatorError",
    "GenerationFailedError",
    "HandoffFailedError",
    "HandoffValidationError",
    "InvalidStateError",
    "RateLimitExceededError",
    "SchemaVersionError",
    "SerializationError",
    "SessionExistsError",
    "SessionNotFoundError",
    "TopicRegressionError",
    "TransientError",
    # Session
    "AgentRole",
    "ChatMessage",
    "CostCategory",
    "CostLedger",
    "HandoffStatus",
    "MessageType",
    "ProductAnalysis",
    "Session",
    "SessionSerializer",
    "SessionStatus",
    "SessionStore",
    "Topic",
    "TopicStatus",
    # Storage
    "AsyncDocumentBackend",
    "AsyncInMemoryBackend",
    "AsyncSQLiteBackend",
    "DocumentConflictError",
    # Components
    "BudgetAlertLevel",
    "BudgetDecision",
    "BudgetGuard",
    "HandoffAuditRecord",
    "HandoffPayload",
    "HandoffPayloadBuilder",
    "HandoffProtocol",
    "HandoffReadinessEvaluator",
    "HandoffResult",
    "HealthMonitor",
    "PayloadConfig",
    "RateLimiter",
    "TopicProgressTracker",
    "ValidationResult",
    # Generation
    "CostCalculator",
    "GenerationBackend",
    "GenerationRequest",
    "GenerationResult",
    "LiveGenerationBackend",
    "SimulatedGenerationBackend",
    "TokenUsage",
    # Façade
    "SessionCoordinator",
    "SessionStatusResponse",
    "TurnOutcome",
]
