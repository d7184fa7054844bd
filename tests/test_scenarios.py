"""End-to-end checks of the documented coordinator scenarios."""
from __future__ import annotations

from datetime import timedelta

import pytest

from agent_handoff_coordinator.budget.guard import BudgetGuard
from agent_handoff_coordinator.config import CoordinatorConfig
from agent_handoff_coordinator.coordinator import SessionCoordinator
from agent_handoff_coordinator.errors import SessionNotFoundError
from agent_handoff_coordinator.generation.simulated import SimulatedGenerationBackend
from agent_handoff_coordinator.handoff.evaluator import HandoffReadinessEvaluator
from agent_handoff_coordinator.handoff.protocol import HandoffProtocol
from agent_handoff_coordinator.session.state import (
    AgentRole,
    CostCategory,
    HandoffStatus,
    Session,
)
from agent_handoff_coordinator.session.store import SessionStore
from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend

from tests.support import FakeClock, make_analysis, make_session


class TestReadinessScenarios:
    def test_fresh_session_is_not_ready(self) -> None:
        session = Session()
        assert all(status.value == "pending" for status in session.conversation.topics.values())
        assert HandoffReadinessEvaluator().is_ready(session) is False

    def test_three_of_four_topics_with_analysis_is_ready(self) -> None:
        assert HandoffReadinessEvaluator().is_ready(make_session(3, analysis=make_analysis()))

    def test_two_of_four_topics_is_not_ready(self) -> None:
        session = make_session(2, analysis=make_analysis())
        assert HandoffReadinessEvaluator().is_ready(session) is False


class TestBudgetScenario:
    def test_warning_flag_at_seventy_five_percent(self) -> None:
        session = Session()
        guard = BudgetGuard.for_session(session)
        for amount in (100.0, 100.0, 24.0):
            guard.record(CostCategory.IMAGE_ANALYSIS, amount)
        assert session.costs.current == 224.0
        assert session.costs.budget_alert is False

        guard.record(CostCategory.CHAT_INTERACTIONS, 1.0)
        assert session.costs.current == 225.0
        assert session.costs.budget_alert is True

        guard.record(CostCategory.CHAT_INTERACTIONS, 1.0)
        assert session.costs.current == 226.0
        assert session.costs.budget_alert is True
        assert session.costs.current + session.costs.remaining == session.costs.total


class TestHandoffScenario:
    @pytest.mark.asyncio
    async def test_handoff_without_analysis_fails(self, store: SessionStore) -> None:
        await store.create(make_session(3))
        session = await store.get("sess-1")
        result = await HandoffProtocol(store).execute(session)
        assert result.record.status is HandoffStatus.FAILED
        assert result.record.validation_results.errors
        assert (await store.get("sess-1")).current_agent is AgentRole.PRODUCT_INTELLIGENCE


class TestExpiryScenario:
    @pytest.mark.asyncio
    async def test_expired_session_reads_as_not_found(self, clock: FakeClock) -> None:
        config = CoordinatorConfig(
            session_ttl=timedelta(seconds=1), analysis_ttl=timedelta(seconds=1)
        )
        store = SessionStore(AsyncInMemoryBackend(), config, clock=clock)
        await store.create(Session(session_id="short-lived"))
        clock.advance(seconds=2)
        with pytest.raises(SessionNotFoundError):
            await store.get("short-lived")

    @pytest.mark.asyncio
    async def test_expired_id_starts_over_with_empty_history(self, clock: FakeClock) -> None:
        config = CoordinatorConfig(
            session_ttl=timedelta(seconds=1), analysis_ttl=timedelta(seconds=1)
        )
        coordinator = SessionCoordinator(
            SessionStore(AsyncInMemoryBackend(), config, clock=clock),
            SimulatedGenerationBackend(),
            config,
        )
        await coordinator.start_session(session_id="short-lived")
        await coordinator.handle_turn("short-lived", "Our customers are commuters.")
        clock.advance(seconds=5)
        with pytest.raises(SessionNotFoundError):
            await coordinator.history("short-lived")

        restarted = await coordinator.start_session(session_id="short-lived")
        assert restarted.conversation.message_count == 0
        assert await coordinator.history("short-lived") == []
