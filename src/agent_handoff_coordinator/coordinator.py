"""Session coordinator façade.

:class:`SessionCoordinator` composes the store, budget guard, topic
tracker, readiness evaluator, handoff protocol, rate limiter and health
monitor in response to each user action.  Every collaborator is injected;
the coordinator does not know whether its generation backend is simulated
or live.

A turn either commits in full (cost, topic advance, session update and
both chat messages in one store transaction) or not at all.

Classes
-------
- TurnOutcome            — result of one conversational turn
- SessionStatusResponse  — status view consumed by UI/API layers
- SessionCoordinator     — the façade
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from agent_handoff_coordinator.budget.guard import BudgetAlertLevel, BudgetGuard
from agent_handoff_coordinator.config import CoordinatorConfig
from agent_handoff_coordinator.errors import (
    ConcurrentModificationError,
    CoordinatorError,
    GenerationFailedError,
    HandoffValidationError,
    InvalidStateError,
    TransientError,
)
from agent_handoff_coordinator.generation.base import (
    GenerationBackend,
    GenerationRequest,
    GenerationResult,
)
from agent_handoff_coordinator.generation.cost import CostCalculator
from agent_handoff_coordinator.handoff.evaluator import HandoffReadinessEvaluator
from agent_handoff_coordinator.handoff.protocol import HandoffProtocol, HandoffResult
from agent_handoff_coordinator.health import HealthMonitor, RateLimiter
from agent_handoff_coordinator.prompts import (
    HISTORY_WINDOW,
    build_analysis_prompt,
    build_turn_prompt,
)
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    CostCategory,
    CostLedger,
    Document,
    HealthInfo,
    MessageType,
    ProcessingStatus,
    ProductAnalysis,
    ProductInfo,
    ProgressInfo,
    Session,
    SessionStatus,
    Timestamp,
    Topic,
    TopicStatus,
    UserPreferences,
    UserProfile,
)
from agent_handoff_coordinator.session.store import DEFAULT_MESSAGE_LIMIT, SessionStore
from agent_handoff_coordinator.topics.tracker import TopicProgressTracker

logger = logging.getLogger(__name__)

_ANALYSIS_MAX_OUTPUT_TOKENS = 2048
_TURN_MAX_OUTPUT_TOKENS = 512
_INSIGHT_CHARS = 160


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TurnOutcome:
    """Result of :meth:`SessionCoordinator.handle_turn`.

    Parameters
    ----------
    session:
        The session as stored after the turn (and after any automatic
        handoff).
    user_message, agent_message:
        The chat messages appended for the turn.
    topic:
        The topic the user's message was attributed to.
    topic_status:
        That topic's status after the turn.
    cost:
        USD recorded for the turn.
    ready_for_handoff:
        Readiness after the turn.
    handoff:
        The automatic handoff attempt, when one was triggered.
    follow_up_questions:
        Suggestions for the next pending topic.
    """

    session: Session
    user_message: ChatMessage
    agent_message: ChatMessage
    topic: Topic
    topic_status: TopicStatus
    cost: float
    ready_for_handoff: bool
    handoff: HandoffResult | None = None
    follow_up_questions: tuple[str, ...] = ()


class SessionStatusResponse(Document):
    session_id: str
    status: SessionStatus
    current_agent: AgentRole
    progress: ProgressInfo
    costs: CostLedger
    health: HealthInfo
    budget_alert_level: BudgetAlertLevel
    ready_for_handoff: bool
    next_agent: AgentRole | None = None
    expires_at: Timestamp | None = None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class SessionCoordinator:
    """Drive sessions through analysis, conversation and handoff.

    Parameters
    ----------
    store:
        Session persistence.
    generator:
        The generative AI backend.
    config:
        Coordinator settings.  Defaults to ``CoordinatorConfig()``.
    tracker, evaluator, protocol, rate_limiter, health_monitor, cost_calculator:
        Optional collaborator overrides.  Defaults are built from ``config``.

    Example
    -------
    ::

        store = SessionStore(AsyncInMemoryBackend())
        coordinator = SessionCoordinator(store, SimulatedGenerationBackend())
        session = await coordinator.start_session(image_url="gs://bucket/p.png")
        await coordinator.analyze_product(session.session_id)
        outcome = await coordinator.handle_turn(session.session_id, "Our customers are runners")
    """

    def __init__(
        self,
        store: SessionStore,
        generator: GenerationBackend,
        config: CoordinatorConfig | None = None,
        *,
        tracker: TopicProgressTracker | None = None,
        evaluator: HandoffReadinessEvaluator | None = None,
        protocol: HandoffProtocol | None = None,
        rate_limiter: RateLimiter | None = None,
        health_monitor: HealthMonitor | None = None,
        cost_calculator: CostCalculator | None = None,
    ) -> None:
        self._config = config or CoordinatorConfig()
        self._store = store
        self._generator = generator
        self._tracker = tracker or TopicProgressTracker()
        self._evaluator = evaluator or HandoffReadinessEvaluator(self._config.handoff)
        self._protocol = protocol or HandoffProtocol(store, self._evaluator)
        self._rate_limiter = rate_limiter or RateLimiter(self._config.rate_limit)
        self._health = health_monitor or HealthMonitor()
        self._costs = cost_calculator or CostCalculator(self._config.pricing)

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _guard(self, session: Session) -> BudgetGuard:
        return BudgetGuard.for_session(session, self._config.budget)

    @staticmethod
    def _ensure_open(session: Session) -> None:
        if session.status.is_terminal:
            raise InvalidStateError(
                f"Session {session.session_id!r} is {session.status.value}.",
                {"session_id": session.session_id, "status": session.status.value},
            )

    async def _generate(self, session: Session, request: GenerationRequest) -> GenerationResult:
        """Run ``request`` with the generation timeout.

        On failure the health counters are persisted on their own and the
        original error is re-raised; nothing else about the session changes.
        """
        timeout = self._config.timeouts.generation_seconds
        try:
            return await asyncio.wait_for(self._generator.generate(request), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self._record_failure(session)
            raise TransientError(
                f"Generation timed out after {timeout}s.", {"timeout": timeout}
            ) from exc
        except CoordinatorError:
            await self._record_failure(session)
            raise

    async def _record_failure(self, session: Session) -> None:
        """Persist a failure count plus any spend already settled on ``session``."""
        failed = session.model_copy(deep=True)
        self._health.record_failure(failed, self._store.now())
        try:
            await self._store.update(
                session.session_id,
                {"health": failed.health.model_dump(), "costs": failed.costs.model_dump()},
                expected_revision=session.metadata.revision,
            )
        except (ConcurrentModificationError, TransientError) as exc:
            logger.warning(
                "SessionCoordinator: could not record failure for session %s: %s",
                session.session_id,
                exc,
            )

    def _refresh_progress(self, session: Session) -> None:
        """Recompute the derived progress hints."""
        progress = session.progress
        ratio = self._evaluator.completed_ratio(session)
        ready = self._evaluator.is_ready(session)

        if session.status is SessionStatus.COMPLETED:
            step = progress.total_steps
        elif session.current_agent is not AgentRole.first():
            step = 5
        elif ready:
            step = 4
        elif any(s is not TopicStatus.PENDING for s in session.conversation.topics.values()):
            step = 3
        elif session.has_analysis():
            step = 2
        else:
            step = 1
        progress.step = min(step, progress.total_steps)

        if session.status is SessionStatus.COMPLETED:
            progress.completion_percentage = 100.0
        else:
            percentage = (25.0 if session.has_analysis() else 0.0) + 75.0 * ratio
            progress.completion_percentage = round(min(percentage, 100.0), 1)

        actions: list[str] = []
        if session.status is SessionStatus.COMPLETED:
            pass
        elif not session.has_analysis():
            actions.append("Run product analysis")
        else:
            actions.extend(self._tracker.suggestions(session))
            successor = session.current_agent.successor
            if ready and successor is not None:
                actions.append(f"Hand off to {successor.display_name}")
            elif successor is None:
                actions.append("Complete the session")
        progress.next_actions = actions

    def _refresh_readiness(self, session: Session) -> bool:
        ready = self._evaluator.is_ready(session)
        session.handoff.ready_for_next = ready
        session.handoff.next_agent = session.current_agent.successor
        return ready

    async def _run_handoff(
        self,
        session: Session,
        target: AgentRole | None,
        reason: str,
    ) -> HandoffResult:
        limit = self._protocol.builder.config.max_messages
        messages = await self._store.list_messages(
            session.session_id,
            limit=limit if limit is not None else DEFAULT_MESSAGE_LIMIT,
        )
        result = await self._protocol.execute(session, target, messages=messages, reason=reason)
        if not result.succeeded:
            return result

        refreshed = result.session.model_copy(deep=True)
        self._refresh_progress(refreshed)
        if refreshed.progress == result.session.progress:
            return result
        stored = await self._store.save(refreshed)
        return HandoffResult(record=result.record, session=stored, payload=result.payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        *,
        session_id: str | None = None,
        locale: str = "en",
        preferences: UserPreferences | None = None,
        image_url: str = "",
        original_filename: str = "",
        mime_type: str = "",
        file_size: int = 0,
        description: str | None = None,
    ) -> Session:
        """Create and persist a new session for an uploaded product.

        Raises
        ------
        SessionExistsError
            If ``session_id`` is already in use.
        """
        now = self._store.now()
        total = self._config.budget.total
        try:
            session = Session(
                session_id=session_id or str(uuid4()),
                status=SessionStatus.INITIALIZING,
                current_agent=AgentRole.first(),
                user=UserProfile(
                    locale=locale,
                    preferences=preferences or UserPreferences(language=locale),
                    joined_at=now,
                    last_activity=now,
                ),
                product=ProductInfo(
                    image_url=image_url,
                    original_filename=original_filename,
                    mime_type=mime_type,
                    file_size=file_size,
                    uploaded_at=now,
                    initial_description=description,
                ),
                costs=CostLedger(total=total, remaining=total),
            )
        except ValidationError as exc:
            raise InvalidStateError(f"Invalid session parameters: {exc}") from exc
        session.rate_limit.remaining_requests = self._config.rate_limit.requests_per_window
        session.health.last_heartbeat = now
        self._refresh_readiness(session)
        self._refresh_progress(session)
        created = await self._store.create(session)
        logger.info("SessionCoordinator: started session %s", created.session_id)
        return created

    async def analyze_product(self, session_id: str) -> Session:
        """Run the structured product analysis for ``session_id``.

        Raises
        ------
        BudgetExhaustedError
            If the analysis does not fit the remaining budget.
        RateLimitExceededError
            If the session's request window is exhausted.
        TransientError, GenerationFailedError
            If the generation backend fails.  Only health counters are
            written, plus the spend when a reply arrived but was malformed.
        """
        session = await self._store.get(session_id)
        self._ensure_open(session)
        now = self._store.now()

        self._rate_limiter.hit(session, now)
        request = GenerationRequest(
            prompt=build_analysis_prompt(session),
            kind="analysis",
            image_url=session.product.image_url or None,
            mime_type=session.product.mime_type or None,
            temperature=0.4,
            max_output_tokens=_ANALYSIS_MAX_OUTPUT_TOKENS,
        )
        guard = self._guard(session)
        guard.require(self._costs.estimate_request(request, include_image=True))
        session.status = SessionStatus.ANALYZING
        session.product.processing_status = ProcessingStatus.ANALYZING
        started = time.perf_counter()
        result = await self._generate(session, request)
        latency_ms = (time.perf_counter() - started) * 1000

        cost = guard.settle(
            CostCategory.IMAGE_ANALYSIS, self._costs.cost(result.usage, include_image=True)
        )
        try:
            analysis = ProductAnalysis.model_validate(result.structured or {})
        except ValidationError as exc:
            await self._record_failure(session)
            raise GenerationFailedError(f"Analysis result is malformed: {exc}") from exc


        session.product.analysis = analysis
        session.product.processing_status = ProcessingStatus.COMPLETE
        session.status = SessionStatus.CHATTING
        session.user.last_activity = now
        if analysis.summary:
            session.conversation.key_insights.append(analysis.summary)
        self._health.record_success(session, latency_ms, now)
        self._refresh_readiness(session)
        self._refresh_progress(session)

        message = ChatMessage(
            session_id=session_id,
            type=MessageType.AGENT,
            content=(
                f"I analyzed your product: {analysis.product_name or 'unnamed product'}"
                f" ({analysis.category or 'uncategorized'}). {analysis.summary}"
            ).strip(),
            timestamp=now,
            agent_name=session.current_agent.value,
            metadata={"cost": cost, "confidence": analysis.confidence, "kind": "analysis"},
        )
        saved = await self._store.save_turn(session, [message])
        await self._store.store_analysis_snapshot(
            session_id, analysis, not_after=saved.metadata.expires_at
        )
        logger.info(
            "SessionCoordinator: analyzed product for session %s (confidence %.2f, cost $%.6f)",
            session_id,
            analysis.confidence,
            cost,
        )
        return saved

    async def handle_turn(
        self,
        session_id: str,
        message: str,
        *,
        expected_revision: int | None = None,
    ) -> TurnOutcome:
        """Process one user message.

        Parameters
        ----------
        session_id:
            The session the message belongs to.
        message:
            The user's text.
        expected_revision:
            When given, the turn is rejected unless the session is still at
            this revision.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or expired.
        ConcurrentModificationError
            If another writer modified the session during the turn.
        BudgetExhaustedError
            If the turn does not fit the remaining budget.
        RateLimitExceededError
            If the session's request window is exhausted.
        TransientError, GenerationFailedError
            If the generation backend fails.
        """
        if not message.strip():
            raise ValueError("message must not be empty.")
        session = await self._store.get(session_id)
        if expected_revision is not None and session.metadata.revision != expected_revision:
            raise ConcurrentModificationError(session_id, expected_revision)
        self._ensure_open(session)
        now = self._store.now()

        self._rate_limiter.hit(session, now)
        history = await self._store.list_messages(session_id, limit=HISTORY_WINDOW)
        request = GenerationRequest(
            prompt=build_turn_prompt(session, history, message),
            max_output_tokens=_TURN_MAX_OUTPUT_TOKENS,
        )
        guard = self._guard(session)
        guard.require(self._costs.estimate_request(request))

        started = time.perf_counter()
        result = await self._generate(session, request)
        latency_ms = (time.perf_counter() - started) * 1000

        cost = guard.settle(CostCategory.CHAT_INTERACTIONS, self._costs.cost(result.usage))

        was_ready = session.handoff.ready_for_next
        topic = self._tracker.classify(message)
        topic_status = self._tracker.advance(session, topic)
        conversation = session.conversation
        if topic_status is TopicStatus.COMPLETED:
            insight = f"{topic.value}: {message.strip()[:_INSIGHT_CHARS]}"
            if insight not in conversation.key_insights:
                conversation.key_insights.append(insight)
        conversation.message_count += 2
        conversation.last_message_timestamp = now
        session.user.last_activity = now

        ready = self._refresh_readiness(session)
        if ready and session.current_agent.successor is not None:
            session.status = SessionStatus.READY_FOR_HANDOFF
        else:
            session.status = SessionStatus.CHATTING
        self._health.record_success(session, latency_ms, now)
        self._refresh_progress(session)

        user_message = ChatMessage(
            session_id=session_id,
            type=MessageType.USER,
            content=message,
            timestamp=now,
            metadata={"topic": topic.value},
        )
        agent_message = ChatMessage(
            session_id=session_id,
            type=MessageType.AGENT,
            content=result.text,
            timestamp=now,
            agent_name=session.current_agent.value,
            metadata={
                "processingTimeMs": round(latency_ms, 3),
                "cost": cost,
                "topic": topic.value,
                "model": result.model,
            },
        )
        saved = await self._store.save_turn(session, [user_message, agent_message])
        logger.debug(
            "SessionCoordinator: session %s turn on %s (%s), cost $%.6f",
            session_id,
            topic.value,
            topic_status.value,
            cost,
        )

        handoff: HandoffResult | None = None
        if self._config.handoff.auto_handoff and ready and not was_ready:
            if saved.current_agent.successor is not None:
                try:
                    handoff = await self._run_handoff(saved, None, "readiness reached")
                except ConcurrentModificationError as exc:
                    # The turn is already committed; the handoff can be requested again.
                    logger.warning(
                        "SessionCoordinator: automatic handoff for session %s skipped: %s",
                        session_id,
                        exc,
                    )
                else:
                    saved = handoff.session

        return TurnOutcome(
            session=saved,
            user_message=user_message,
            agent_message=agent_message,
            topic=topic,
            topic_status=topic_status,
            cost=cost,
            ready_for_handoff=ready,
            handoff=handoff,
            follow_up_questions=self._tracker.suggestions(saved),
        )

    async def request_handoff(
        self,
        session_id: str,
        target: AgentRole | None = None,
        *,
        reason: str = "requested",
    ) -> HandoffResult:
        """Hand the session to ``target`` (default: the next agent).

        Raises
        ------
        HandoffValidationError
            If validation fails.  The ``failed`` audit record is attached
            and the session keeps its current agent.
        ConcurrentModificationError
            If the session changed during the attempt.
        """
        session = await self._store.get(session_id)
        session = await self._protocol.reconcile(session)
        result = await self._run_handoff(session, target, reason)
        if not result.succeeded:
            raise HandoffValidationError(result.errors, record=result.record)
        return result

    async def complete_session(self, session_id: str) -> Session:
        """Mark the session completed once the final agent has it.

        Raises
        ------
        InvalidStateError
            If the session is already closed or an earlier agent still owns it.
        """
        session = await self._store.get(session_id)
        self._ensure_open(session)
        session = await self._protocol.reconcile(session)
        if session.current_agent.successor is not None:
            raise InvalidStateError(
                f"Session {session_id!r} is still with {session.current_agent.display_name}; "
                "only the final agent can complete it.",
                {"session_id": session_id, "current_agent": session.current_agent.value},
            )
        session.status = SessionStatus.COMPLETED
        session.health.is_active = False
        session.user.last_activity = self._store.now()
        self._refresh_progress(session)
        saved = await self._store.save(session)
        logger.info("SessionCoordinator: completed session %s", session_id)
        return saved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session:
        return await self._store.get(session_id)

    async def get_status(self, session_id: str) -> SessionStatusResponse:
        """Return the status view, repairing agent drift first."""
        session = await self._store.get(session_id)
        session = await self._protocol.reconcile(session)
        guard = self._guard(session)
        return SessionStatusResponse(
            session_id=session.session_id,
            status=session.status,
            current_agent=session.current_agent,
            progress=session.progress,
            costs=session.costs,
            health=session.health,
            budget_alert_level=guard.alert_level(),
            ready_for_handoff=self._evaluator.is_ready(session),
            next_agent=session.current_agent.successor,
            expires_at=session.metadata.expires_at,
        )

    async def history(
        self, session_id: str, limit: int = DEFAULT_MESSAGE_LIMIT
    ) -> list[ChatMessage]:
        """Return the session's chat messages, oldest first."""
        return await self._store.list_messages(session_id, limit=limit)

    async def export(self, session_id: str) -> dict[str, Any]:
        """Return the persisted session document plus messages and audit records."""
        session = await self._store.get(session_id)
        messages = await self._store.list_messages(session_id, limit=DEFAULT_MESSAGE_LIMIT)
        records = await self._store.list_handoff_records(session_id)
        return {
            "session": session.to_document(),
            "messages": [m.model_dump(mode="json", by_alias=True) for m in messages],
            "handoffs": [r.model_dump(mode="json", by_alias=True) for r in records],
        }

    async def aclose(self) -> None:
        await self._generator.close()
        await self._store.backend.close()


__all__ = ["SessionCoordinator", "SessionStatusResponse", "TurnOutcome"]
