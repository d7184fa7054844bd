"""Session state domain models.

All types are Pydantic BaseModel subclasses to enable runtime validation,
JSON serialisation, and schema versioning.  Attributes are snake_case in
Python and camelCase in the persisted document; timestamps are persisted as
epoch milliseconds (see ``session.timestamps``).

Classes
-------
- SessionStatus     — session lifecycle states
- AgentRole         — ordered agent pipeline
- Topic             — fixed conversational topics, in canonical order
- TopicStatus       — three-state topic completion lifecycle
- HandoffStatus     — per-attempt handoff state
- MessageType       — chat message author kind
- CostCategory      — cost breakdown buckets
- ProcessingStatus  — product asset processing state
- ProductAnalysis   — structured analysis result (opaque sections)
- ChatMessage       — immutable chat log entry
- Session           — the aggregate root
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, assert_never
from uuid import uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from agent_handoff_coordinator.session.timestamps import from_epoch_ms, to_epoch_ms, utc_now


def _coerce_timestamp(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_ms(value)
    return value


Timestamp = Annotated[
    datetime,
    BeforeValidator(_coerce_timestamp),
    PlainSerializer(to_epoch_ms, return_type=int, when_used="json"),
]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionStatus(str, Enum):
    """Session progression through the agent workflow."""

    INITIALIZING = "initializing"
    ACTIVE = "active"
    ANALYZING = "analyzing"
    CHATTING = "chatting"
    READY_FOR_HANDOFF = "ready_for_handoff"
    COMPLETED = "completed"
    ERROR = "error"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.EXPIRED)


class AgentRole(str, Enum):
    """Agents in the pipeline, declared in pipeline order."""

    PRODUCT_INTELLIGENCE = "product-intelligence"
    CREATIVE_DIRECTOR = "creative-director"
    VIDEO_PRODUCER = "video-producer"

    @classmethod
    def first(cls) -> AgentRole:
        return cls.PRODUCT_INTELLIGENCE

    @property
    def successor(self) -> AgentRole | None:
        """The agent that receives the conversation after this one."""
        match self:
            case AgentRole.PRODUCT_INTELLIGENCE:
                return AgentRole.CREATIVE_DIRECTOR
            case AgentRole.CREATIVE_DIRECTOR:
                return AgentRole.VIDEO_PRODUCER
            case AgentRole.VIDEO_PRODUCER:
                return None
            case _:
                assert_never(self)

    @property
    def display_name(self) -> str:
        match self:
            case AgentRole.PRODUCT_INTELLIGENCE:
                return "Product Intelligence"
            case AgentRole.CREATIVE_DIRECTOR:
                return "Creative Director"
            case AgentRole.VIDEO_PRODUCER:
                return "Video Producer"
            case _:
                assert_never(self)


class Topic(str, Enum):
    """Conversational topics tracked to completion, in canonical order."""

    PRODUCT_FEATURES = "productFeatures"
    TARGET_AUDIENCE = "targetAudience"
    BRAND_POSITIONING = "brandPositioning"
    VISUAL_PREFERENCES = "visualPreferences"


class TopicStatus(str, Enum):
    """Forward-only topic lifecycle."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        match self:
            case TopicStatus.PENDING:
                return 0
            case TopicStatus.IN_PROGRESS:
                return 1
            case TopicStatus.COMPLETED:
                return 2
            case _:
                assert_never(self)


class HandoffStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageType(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class CostCategory(str, Enum):
    """Buckets of the per-session cost breakdown."""

    IMAGE_UPLOAD = "imageUpload"
    IMAGE_ANALYSIS = "imageAnalysis"
    CHAT_INTERACTIONS = "chatInteractions"
    DATA_STORAGE = "dataStorage"
    API_CALLS = "apiCalls"


class ProcessingStatus(str, Enum):
    UPLOADED = "uploaded"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Base document
# ---------------------------------------------------------------------------


class Document(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Records stored outside the session document
# ---------------------------------------------------------------------------


class ProductAnalysis(Document):
    """Structured product analysis produced by the analysis agent.

    The contents of ``sections`` (``targetAudience``, ``positioning``,
    ``visualPreferences``, ``commercialStrategy`` ...) are opaque to the
    coordinator; only their presence is checked at handoff time.

    Parameters
    ----------
    product_name:
        Name detected for the product.
    category:
        Product category label.
    confidence:
        Overall analysis confidence in the range [0.0, 1.0].
    summary:
        Short free-text summary.
    sections:
        Named analysis sections.
    """

    product_name: str = ""
    category: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    summary: str = ""
    sections: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(Document):
    """A single chat log entry.  Immutable once created.

    Parameters
    ----------
    id:
        Unique message identifier.
    session_id:
        The session the message belongs to.
    type:
        Author kind: user, agent, or system.
    content:
        Message text.
    timestamp:
        When the message was created (UTC).
    agent_name:
        The agent that authored an ``agent`` message.
    metadata:
        Processing time, cost, confidence and similar annotations.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"msg-{uuid4()}")
    session_id: str
    type: MessageType
    content: str
    timestamp: Timestamp = Field(default_factory=utc_now)
    agent_name: str | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Session sub-records
# ---------------------------------------------------------------------------


class UserPreferences(Document):
    language: Literal["en", "ja"] = "en"
    communication_style: Literal["formal", "casual"] = "casual"
    detail_level: Literal["brief", "detailed"] = "detailed"
    visual_feedback: bool = True
    notifications: bool = True


class UserProfile(Document):
    locale: Literal["en", "ja"] = "en"
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    joined_at: Timestamp = Field(default_factory=utc_now)
    last_activity: Timestamp = Field(default_factory=utc_now)


class ProductInfo(Document):
    image_url: str = ""
    original_filename: str = ""
    mime_type: str = ""
    file_size: int = Field(default=0, ge=0)
    uploaded_at: Timestamp = Field(default_factory=utc_now)
    initial_description: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.UPLOADED
    analysis: ProductAnalysis | None = None


def _default_topics() -> dict[Topic, TopicStatus]:
    return {topic: TopicStatus.PENDING for topic in Topic}


class ConversationState(Document):
    """Topic map and running conversation facts.

    ``topics`` always contains every ``Topic`` in canonical order.
    """

    topics: dict[Topic, TopicStatus] = Field(default_factory=_default_topics)
    current_topic: Topic | None = None
    message_count: int = Field(default=0, ge=0)
    last_message_timestamp: Timestamp | None = None
    key_insights: list[str] = Field(default_factory=list)
    uncertainties: list[str] = Field(default_factory=list)

    @field_validator("topics")
    @classmethod
    def _canonical_topics(cls, value: dict[Topic, TopicStatus]) -> dict[Topic, TopicStatus]:
        return {topic: value.get(topic, TopicStatus.PENDING) for topic in Topic}

    def completed_topics(self) -> list[Topic]:
        return [t for t, s in self.topics.items() if s is TopicStatus.COMPLETED]


class ProgressInfo(Document):
    """Derived progress hints.  Never authoritative."""

    step: int = Field(default=0, ge=0)
    total_steps: int = 5
    completion_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    next_actions: list[str] = Field(default_factory=list)


def _default_breakdown() -> dict[CostCategory, float]:
    return {category: 0.0 for category in CostCategory}


class CostLedger(Document):
    """Per-session spend against a fixed ceiling.

    ``current + remaining == total`` holds after every BudgetGuard write.
    """

    current: float = Field(default=0.0, ge=0.0)
    total: float = Field(default=300.0, gt=0.0)
    breakdown: dict[CostCategory, float] = Field(default_factory=_default_breakdown)
    remaining: float = 300.0
    budget_alert: bool = False

    @field_validator("breakdown")
    @classmethod
    def _all_categories(cls, value: dict[CostCategory, float]) -> dict[CostCategory, float]:
        return {category: value.get(category, 0.0) for category in CostCategory}


class HandoffState(Document):
    ready_for_next: bool = False
    next_agent: AgentRole | None = None
    serialized_context_ref: str | None = None
    handoff_timestamp: Timestamp | None = None
    status: HandoffStatus = HandoffStatus.PENDING
    validation_errors: list[str] = Field(default_factory=list)


class RateLimitInfo(Document):
    request_count: int = Field(default=0, ge=0)
    window_started_at: Timestamp | None = None
    reset_at: Timestamp | None = None
    limit_reached: bool = False
    remaining_requests: int = Field(default=60, ge=0)


class HealthInfo(Document):
    is_active: bool = True
    last_heartbeat: Timestamp = Field(default_factory=utc_now)
    request_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    average_latency_ms: float = Field(default=0.0, ge=0.0)
    performance_score: float = Field(default=1.0, ge=0.0, le=1.0)


class SessionMetadata(Document):
    """Store-managed bookkeeping.

    ``created_at``, ``updated_at`` and ``expires_at`` are assigned by the
    SessionStore; ``revision`` is the optimistic-concurrency counter.
    """

    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None
    expires_at: Timestamp | None = None
    schema_version: str = "1.0"
    revision: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


class Session(Document):
    """Complete durable record of one user's multi-agent conversation.

    Parameters
    ----------
    session_id:
        Globally unique session identifier.
    status:
        Lifecycle status.
    current_agent:
        The agent that currently owns the conversation.
    user, product, conversation, progress, costs, handoff, rate_limit,
    health, metadata:
        Sub-records; see the individual classes.
    """

    SCHEMA_VERSION: ClassVar[str] = "1.0"

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    status: SessionStatus = SessionStatus.INITIALIZING
    current_agent: AgentRole = AgentRole.PRODUCT_INTELLIGENCE
    user: UserProfile = Field(default_factory=UserProfile)
    product: ProductInfo = Field(default_factory=ProductInfo)
    conversation: ConversationState = Field(default_factory=ConversationState)
    progress: ProgressInfo = Field(default_factory=ProgressInfo)
    costs: CostLedger = Field(default_factory=CostLedger)
    handoff: HandoffState = Field(default_factory=HandoffState)
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)
    health: HealthInfo = Field(default_factory=HealthInfo)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    def has_analysis(self) -> bool:
        return self.product.analysis is not None

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-compatible persisted form (camelCase, epoch ms)."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Session:
        return cls.model_validate(data)
