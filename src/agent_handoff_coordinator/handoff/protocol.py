"""Agent-to-agent handoff execution.

One call to :meth:`HandoffProtocol.execute` is one handoff attempt:
``pending -> in_progress -> completed | failed``.  The attempt serializes
the session context, validates it, and then commits the audit record
together with the session update in a single store transaction, so a
session can never be observed as handed off without a ``completed``
audit record.

:meth:`HandoffProtocol.reconcile` is the read-side check for stores that
were written by other means: the session's current agent must match the
latest ``completed`` audit record.

Classes
-------
- HandoffResult    — outcome of one attempt
- HandoffProtocol  — execute and reconcile handoffs
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from agent_handoff_coordinator.errors import HandoffFailedError, SerializationError
from agent_handoff_coordinator.handoff.audit import (
    HandoffAuditMetadata,
    HandoffAuditRecord,
    ValidationResult,
)
from agent_handoff_coordinator.handoff.evaluator import HandoffReadinessEvaluator
from agent_handoff_coordinator.handoff.payload import HandoffPayload, HandoffPayloadBuilder
from agent_handoff_coordinator.session.state import (
    AgentRole,
    ChatMessage,
    HandoffStatus,
    Session,
    SessionStatus,
)

if TYPE_CHECKING:
    from agent_handoff_coordinator.session.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandoffResult:
    """Outcome of a handoff attempt.

    Parameters
    ----------
    record:
        The audit record committed for the attempt.
    session:
        The session as stored after the attempt.
    payload:
        The transferred context, or ``None`` when it could not be built.
    """

    record: HandoffAuditRecord
    session: Session
    payload: HandoffPayload | None = None

    @property
    def succeeded(self) -> bool:
        return self.record.succeeded

    @property
    def errors(self) -> list[str]:
        return list(self.record.validation_results.errors)

    @property
    def warnings(self) -> list[str]:
        return list(self.record.validation_results.warnings)


class HandoffProtocol:
    """Transfer conversation ownership from one agent to the next.

    Parameters
    ----------
    store:
        Persists the audit record and the session update atomically.
    evaluator:
        Validates the session at the moment of handoff.
    builder:
        Packages the session context into a :class:`HandoffPayload`.
    """

    def __init__(
        self,
        store: SessionStore,
        evaluator: HandoffReadinessEvaluator | None = None,
        builder: HandoffPayloadBuilder | None = None,
    ) -> None:
        self._store = store
        self._evaluator = evaluator or HandoffReadinessEvaluator()
        self._builder = builder or HandoffPayloadBuilder()

    @property
    def builder(self) -> HandoffPayloadBuilder:
        return self._builder

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute(
        self,
        session: Session,
        target: AgentRole | None = None,
        *,
        messages: Sequence[ChatMessage] = (),
        reason: str = "",
    ) -> HandoffResult:
        """Attempt to hand ``session`` to ``target``.

        Validation failures do not raise: the attempt is committed as a
        ``failed`` audit record, ``session.current_agent`` is left unchanged
        and the errors are copied to ``session.handoff.validation_errors``.

        Parameters
        ----------
        session:
            The session as last read from the store.
        target:
            The receiving agent.  Defaults to the pipeline successor.
        messages:
            Recent chat messages to include in the payload.
        reason:
            Free-text reason stored in the payload.

        Raises
        ------
        ConcurrentModificationError
            If the session changed since it was read.  Nothing is written.
        HandoffFailedError
            If the attempt could not be committed.
        """
        started = time.perf_counter()
        if target is None:
            target = session.current_agent.successor
        working = session.model_copy(deep=True)
        working.handoff.status = HandoffStatus.IN_PROGRESS
        logger.debug(
            "HandoffProtocol: session %s attempting %s -> %s",
            session.session_id,
            session.current_agent.value,
            target.value if target else None,
        )

        payload: HandoffPayload | None = None
        serialized = ""
        serialization_error: str | None = None
        try:
            payload = self._builder.build(
                working, target, messages=messages, handoff_reason=reason
            )
            serialized = payload.to_json()
        except SerializationError as exc:
            serialization_error = f"Context serialization failed: {exc.message}"

        validation = self._evaluator.validate(working, target)
        if serialization_error is not None:
            validation = ValidationResult(
                is_valid=False,
                errors=[serialization_error, *validation.errors],
                warnings=validation.warnings,
            )

        now = self._store.now()
        analysis = working.product.analysis
        record = HandoffAuditRecord(
            session_id=working.session_id,
            from_agent=working.current_agent,
            to_agent=target,
            timestamp=now,
            serialized_data=serialized,
            validation_results=validation,
            status=HandoffStatus.COMPLETED if validation.is_valid else HandoffStatus.FAILED,
            metadata=HandoffAuditMetadata(
                data_size=len(serialized.encode("utf-8")),
                processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
                confidence=analysis.confidence if analysis else None,
            ),
        )

        if validation.is_valid and target is not None:
            working.current_agent = target
            working.status = SessionStatus.ACTIVE
            working.handoff.status = HandoffStatus.COMPLETED
            working.handoff.next_agent = target.successor
            working.handoff.serialized_context_ref = record.record_id
            working.handoff.handoff_timestamp = now
            working.handoff.validation_errors = []
        else:
            working.handoff.status = HandoffStatus.FAILED
            working.handoff.validation_errors = list(validation.errors)
        working.handoff.ready_for_next = self._evaluator.is_ready(working)

        try:
            stored = await self._store.commit_handoff(working, record)
        except SerializationError as exc:
            raise HandoffFailedError(
                f"Handoff for session {session.session_id!r} could not be committed: {exc.message}",
                {"session_id": session.session_id, "record_id": record.record_id},
            ) from exc

        if record.succeeded:
            logger.info(
                "HandoffProtocol: session %s handed off %s -> %s (record %s)",
                session.session_id,
                record.from_agent.value,
                target.value if target else None,
                record.record_id,
            )
        else:
            logger.warning(
                "HandoffProtocol: session %s handoff rejected: %s",
                session.session_id,
                "; ".join(validation.errors),
            )
        return HandoffResult(record=record, session=stored, payload=payload)

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    async def expected_agent(
        self, session_id: str
    ) -> tuple[AgentRole, HandoffAuditRecord | None]:
        """Return the agent the audit log says owns ``session_id``.

        The owner is the ``to_agent`` of the latest completed record, or the
        first pipeline agent when no handoff has completed.
        """
        records = await self._store.list_handoff_records(session_id)
        for record in reversed(records):
            if record.succeeded and record.to_agent is not None:
                return record.to_agent, record
        return AgentRole.first(), None

    async def reconcile(self, session: Session) -> Session:
        """Repair ``session.current_agent`` if it disagrees with the audit log.

        Returns the session unchanged when consistent, otherwise the
        repaired session as stored.
        """
        expected, record = await self.expected_agent(session.session_id)
        if session.current_agent is expected:
            return session

        logger.warning(
            "HandoffProtocol: session %s claims agent %s but audit log says %s; repairing",
            session.session_id,
            session.current_agent.value,
            expected.value,
        )
        repaired = session.model_copy(deep=True)
        repaired.current_agent = expected
        repaired.handoff.next_agent = expected.successor
        repaired.handoff.serialized_context_ref = record.record_id if record else None
        repaired.handoff.handoff_timestamp = record.timestamp if record else None
        return await self._store.save(repaired)

    async def latest_payload(self, session_id: str) -> HandoffPayload | None:
        """Return the context transferred by the latest completed handoff."""
        _, record = await self.expected_agent(session_id)
        if record is None:
            return None
        return HandoffPayload.from_json(record.serialized_data)


__all__ = ["HandoffProtocol", "HandoffResult"]
