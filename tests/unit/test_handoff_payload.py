"""Unit tests for agent_handoff_coordinator.handoff.payload."""
from __future__ import annotations

import json
from datetime import timedelta

import pytest

from agent_handoff_coordinator.errors import SerializationError
from agent_handoff_coordinator.handoff.payload import (
    HandoffPayload,
    HandoffPayloadBuilder,
    PayloadConfig,
)
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    MessageType,
    Topic,
    TopicStatus,
)

from tests.support import FakeClock, make_analysis, make_session


def _history(count: int, clock: FakeClock) -> list[ChatMessage]:
    messages = []
    for i in range(count):
        messages.append(
            ChatMessage(
                session_id="sess-1",
                type=MessageType.USER if i % 2 == 0 else MessageType.AGENT,
                content=f"message {i}",
                timestamp=clock() + timedelta(seconds=i),
            )
        )
    return messages


class TestPayloadConfig:
    def test_negative_max_messages_rejected(self) -> None:
        with pytest.raises(ValueError):
            PayloadConfig(max_messages=-1)


class TestBuilder:
    def test_captures_session_context(self, clock: FakeClock) -> None:
        session = make_session(3, analysis=make_analysis())
        session.user.locale = "ja"
        session.conversation.key_insights.append("productFeatures: grippy sole")
        payload = HandoffPayloadBuilder().build(
            session,
            AgentRole.CREATIVE_DIRECTOR,
            messages=_history(3, clock),
            handoff_reason="ready",
        )
        assert payload.session_id == "sess-1"
        assert payload.source_agent is AgentRole.PRODUCT_INTELLIGENCE
        assert payload.target_agent is AgentRole.CREATIVE_DIRECTOR
        assert payload.locale == "ja"
        assert payload.analysis == session.product.analysis
        assert payload.topics == session.conversation.topics
        assert payload.key_insights == ["productFeatures: grippy sole"]
        assert payload.preferences == session.user.preferences
        assert payload.message_count == 3

    def test_keeps_most_recent_messages(self, clock: FakeClock) -> None:
        builder = HandoffPayloadBuilder(PayloadConfig(max_messages=2))
        payload = builder.build(make_session(), None, messages=_history(5, clock))
        assert [m.content for m in payload.recent_messages] == ["message 3", "message 4"]

    def test_zero_max_messages(self, clock: FakeClock) -> None:
        builder = HandoffPayloadBuilder(PayloadConfig(max_messages=0))
        assert builder.build(make_session(), None, messages=_history(3, clock)).message_count == 0

    def test_unlimited_messages(self, clock: FakeClock) -> None:
        builder = HandoffPayloadBuilder(PayloadConfig(max_messages=None))
        payload = builder.build(make_session(), None, messages=_history(25, clock))
        assert payload.message_count == 25

    def test_excluding_insights_and_preferences(self) -> None:
        session = make_session()
        session.conversation.key_insights.append("secret")
        builder = HandoffPayloadBuilder(
            PayloadConfig(include_insights=False, include_preferences=False)
        )
        payload = builder.build(session, AgentRole.CREATIVE_DIRECTOR)
        assert payload.key_insights == []
        assert payload.preferences is None

    def test_payload_is_a_snapshot(self) -> None:
        session = make_session()
        payload = HandoffPayloadBuilder().build(session, AgentRole.CREATIVE_DIRECTOR)
        session.conversation.topics[Topic.PRODUCT_FEATURES] = TopicStatus.COMPLETED
        assert payload.topics[Topic.PRODUCT_FEATURES] is TopicStatus.PENDING


class TestSerialization:
    def test_json_round_trip(self, clock: FakeClock) -> None:
        payload = HandoffPayloadBuilder().build(
            make_session(2, analysis=make_analysis()),
            AgentRole.CREATIVE_DIRECTOR,
            messages=_history(2, clock),
        )
        restored = HandoffPayload.from_json(payload.to_json())
        assert restored.model_dump(exclude={"created_at"}) == payload.model_dump(
            exclude={"created_at"}
        )
        assert abs(restored.created_at - payload.created_at) < timedelta(milliseconds=1)

    def test_json_uses_camel_case_and_epoch_ms(self) -> None:
        payload = HandoffPayloadBuilder().build(make_session(), AgentRole.CREATIVE_DIRECTOR)
        data = json.loads(payload.to_json())
        assert data["sourceAgent"] == "product-intelligence"
        assert isinstance(data["createdAt"], int)

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(SerializationError):
            HandoffPayload.from_json('{"sessionId": "x"}')

    def test_summary_line(self) -> None:
        payload = HandoffPayloadBuilder().build(
            make_session(2), AgentRole.CREATIVE_DIRECTOR, handoff_reason="ready"
        )
        line = payload.summary_line()
        assert "product-intelligence -> creative-director" in line
        assert "2/4 topics" in line
        assert "reason='ready'" in line
