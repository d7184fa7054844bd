"""Portable handoff context.

Design
------
:class:`HandoffPayload` is a frozen snapshot of the context transferred to
the receiving agent.  It is serialisable to JSON and stored verbatim in
the handoff audit record.

:class:`HandoffPayloadBuilder` constructs a payload from a :class:`Session`
and its recent chat messages, applying the filters in
:class:`PayloadConfig`.

Usage
-----
::

    from agent_handoff_coordinator.handoff.payload import HandoffPayloadBuilder

    builder = HandoffPayloadBuilder()
    payload = builder.build(session, AgentRole.CREATIVE_DIRECTOR, messages=history)
    json_str = payload.to_json()
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence
from uuid import uuid4

from pydantic import ConfigDict, Field, ValidationError

from agent_handoff_coordinator.errors import SerializationError
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    Document,
    ProductAnalysis,
    Session,
    Timestamp,
    Topic,
    TopicStatus,
    UserPreferences,
)
from agent_handoff_coordinator.session.timestamps import utc_now


# ---------------------------------------------------------------------------
# PayloadConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayloadConfig:
    """Controls what context is included in a handoff payload.

    Parameters
    ----------
    max_messages:
        Maximum number of recent chat messages to include.  The most recent
        messages are preferred.  ``None`` means include all.
    include_insights:
        Whether to include key insights and uncertainties.  Default True.
    include_preferences:
        Whether to copy the user's preferences.  Default True.
    """

    max_messages: int | None = 10
    include_insights: bool = True
    include_preferences: bool = True

    def __post_init__(self) -> None:
        if self.max_messages is not None and self.max_messages < 0:
            raise ValueError(
                f"max_messages must be non-negative or None, got {self.max_messages!r}."
            )


# ---------------------------------------------------------------------------
# HandoffPayload
# ---------------------------------------------------------------------------


class HandoffPayload(Document):
    """Immutable snapshot of context prepared for the receiving agent.

    Parameters
    ----------
    handoff_id:
        Unique identifier for this payload.
    session_id:
        The session being handed off.
    source_agent:
        The agent handing off.
    target_agent:
        The agent that will receive the context.
    handoff_reason:
        Human-readable reason for the handoff.
    locale:
        The user's locale.
    preferences:
        The user's preferences, if included.
    analysis:
        The structured product analysis, if any.
    topics:
        Topic completion map at the time of handoff.
    key_insights, uncertainties:
        Running conversation notes, if included.
    recent_messages:
        The most recent chat messages, oldest first.
    created_at:
        UTC timestamp when the payload was built.
    """

    model_config = ConfigDict(frozen=True)

    handoff_id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    source_agent: AgentRole
    target_agent: AgentRole | None
    handoff_reason: str = ""
    locale: str = "en"
    preferences: UserPreferences | None = None
    analysis: ProductAnalysis | None = None
    topics: dict[Topic, TopicStatus] = Field(default_factory=dict)
    key_insights: list[str] = Field(default_factory=list)
    uncertainties: list[str] = Field(default_factory=list)
    recent_messages: list[ChatMessage] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utc_now)

    @property
    def message_count(self) -> int:
        return len(self.recent_messages)

    def to_json(self) -> str:
        """Serialise the payload to a JSON string (camelCase keys)."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, json_str: str) -> HandoffPayload:
        """Deserialise from a JSON string produced by :meth:`to_json`.

        Raises
        ------
        SerializationError
            If ``json_str`` is not a valid payload.
        """
        try:
            return cls.model_validate_json(json_str)
        except ValidationError as exc:
            raise SerializationError(f"Invalid handoff payload: {exc}") from exc

    def summary_line(self) -> str:
        """Return a one-line human-readable description."""
        target = self.target_agent.value if self.target_agent else "-"
        completed = sum(1 for s in self.topics.values() if s is TopicStatus.COMPLETED)
        return (
            f"HandoffPayload {self.handoff_id[:8]} | "
            f"{self.source_agent.value} -> {target} | "
            f"{completed}/{len(self.topics)} topics, {self.message_count} messages | "
            f"reason={self.handoff_reason!r}"
        )


# ---------------------------------------------------------------------------
# HandoffPayloadBuilder
# ---------------------------------------------------------------------------


class HandoffPayloadBuilder:
    """Build a :class:`HandoffPayload` from a :class:`Session`.

    Parameters
    ----------
    config:
        Optional :class:`PayloadConfig`.  Defaults to the last ten messages
        plus insights and preferences.
    """

    def __init__(self, config: PayloadConfig | None = None) -> None:
        self._config = config or PayloadConfig()

    @property
    def config(self) -> PayloadConfig:
        return self._config

    def build(
        self,
        session: Session,
        target_agent: AgentRole | None,
        *,
        messages: Sequence[ChatMessage] = (),
        handoff_reason: str = "",
    ) -> HandoffPayload:
        """Construct a :class:`HandoffPayload` from ``session``.

        Raises
        ------
        SerializationError
            If the session context cannot be captured as a valid payload.
        """
        cfg = self._config

        recent = list(messages)
        if cfg.max_messages is not None:
            recent = recent[-cfg.max_messages:] if cfg.max_messages else []

        fields: dict[str, Any] = {
            "session_id": session.session_id,
            "source_agent": session.current_agent,
            "target_agent": target_agent,
            "handoff_reason": handoff_reason,
            "locale": session.user.locale,
            "analysis": session.product.analysis,
            "topics": dict(session.conversation.topics),
            "recent_messages": recent,
        }
        if cfg.include_preferences:
            fields["preferences"] = session.user.preferences
        if cfg.include_insights:
            fields["key_insights"] = list(session.conversation.key_insights)
            fields["uncertainties"] = list(session.conversation.uncertainties)

        try:
            return HandoffPayload(**fields)
        except ValidationError as exc:
            raise SerializationError(
                f"Session {session.session_id!r} could not be packaged for handoff: {exc}"
            ) from exc


__all__ = ["HandoffPayload", "HandoffPayloadBuilder", "PayloadConfig"]
