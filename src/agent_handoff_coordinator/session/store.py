"""Session persistence over an async document backend.

``SessionStore`` owns the session document, the append-only chat log, the
per-session analysis snapshot and the handoff audit log.  It assigns all
bookkeeping timestamps itself, enforces passive TTL expiry on read, and
guards every session write with a revision compare-and-swap.  Log entries
expire with their session; an expired session's logs read as missing and
are dropped when its id is reused.

Classes
-------
- AnalysisSnapshot  — analysis copy stored outside the session document
- SessionStore      — TTL-aware, optimistic-concurrency session persistence
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from pydantic import Field, ValidationError

from agent_handoff_coordinator.config import CoordinatorConfig
from agent_handoff_coordinator.errors import (
    ConcurrentModificationError,
    SerializationError,
    SessionExistsError,
    SessionNotFoundError,
    TopicRegressionError,
    TransientError,
)
from agent_handoff_coordinator.handoff.audit import HandoffAuditRecord
from agent_handoff_coordinator.session.serializer import SessionSerializer
from agent_handoff_coordinator.session.state import (
    ChatMessage,
    Document,
    ProductAnalysis,
    Session,
    Timestamp,
)
from agent_handoff_coordinator.session.timestamps import utc_now
from agent_handoff_coordinator.storage.base import (
    AppendEntry,
    AsyncDocumentBackend,
    ClearLog,
    DocumentConflictError,
    InsertDocument,
    ReplaceDocument,
    WriteOperation,
)

logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "productIntelligenceSessions"
MESSAGES_COLLECTION = "productIntelligenceChats"
ANALYSES_COLLECTION = "productAnalyses"
HANDOFFS_COLLECTION = "agentHandoffs"

DEFAULT_MESSAGE_LIMIT = 100

_T = TypeVar("_T")


class AnalysisSnapshot(Document):
    session_id: str
    analysis: ProductAnalysis
    stored_at: Timestamp = Field(default_factory=utc_now)
    expires_at: Timestamp


def _deep_merge(base: dict[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _check_topic_progression(previous: Session, updated: Session) -> None:
    for topic, before in previous.conversation.topics.items():
        after = updated.conversation.topics[topic]
        if after.rank < before.rank:
            raise TopicRegressionError(
                f"Topic {topic.value!r} cannot move from {before.value!r} to {after.value!r}.",
                {"session_id": previous.session_id, "topic": topic.value},
            )


class SessionStore:
    """Persist sessions, chat messages, analysis snapshots and audit records.

    Parameters
    ----------
    backend:
        The document backend to persist into.
    config:
        Supplies the session and analysis TTLs and the store timeout.
        Defaults to ``CoordinatorConfig()``.
    clock:
        Zero-argument callable returning the current aware UTC datetime.
        Every timestamp the store assigns and every expiry check uses it.
    serializer:
        Optional custom serializer.
    """

    def __init__(
        self,
        backend: AsyncDocumentBackend,
        config: CoordinatorConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        serializer: SessionSerializer | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or CoordinatorConfig()
        self._clock = clock
        self._serializer = serializer or SessionSerializer()

    @property
    def backend(self) -> AsyncDocumentBackend:
        return self._backend

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call(self, operation: Awaitable[_T]) -> _T:
        timeout = self._config.timeouts.store_seconds
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransientError(
                f"Store operation timed out after {timeout}s.", {"timeout": timeout}
            ) from exc

    def _prepare_replace(
        self, current: Session, updated: Session
    ) -> tuple[Session, ReplaceDocument]:
        """Stamp ``updated`` against the stored ``current`` and build the CAS write."""
        _check_topic_progression(current, updated)
        stored = updated.model_copy(deep=True)
        stored.session_id = current.session_id
        stored.metadata.created_at = current.metadata.created_at
        stored.metadata.expires_at = current.metadata.expires_at
        stored.metadata.updated_at = self._clock()
        stored.metadata.schema_version = Session.SCHEMA_VERSION
        stored.metadata.revision = current.metadata.revision + 1
        op = ReplaceDocument(
            collection=SESSIONS_COLLECTION,
            key=current.session_id,
            payload=self._serializer.to_json(stored),
            expected_revision=current.metadata.revision,
            expires_at=current.metadata.expires_at,
        )
        return stored, op

    async def _commit_session(self, session_id: str, operations: list[WriteOperation]) -> None:
        try:
            await self._call(self._backend.commit(operations))
        except DocumentConflictError as exc:
            raise ConcurrentModificationError(session_id, exc.expected_revision) from exc
        except KeyError as exc:
            raise SessionNotFoundError(session_id) from exc

    async def _load_current(self, session_id: str, expected_revision: int | None) -> Session:
        current = await self.get(session_id)
        if expected_revision is not None and current.metadata.revision != expected_revision:
            raise ConcurrentModificationError(session_id, expected_revision)
        return current

    # ------------------------------------------------------------------
    # Session document
    # ------------------------------------------------------------------

    async def create(self, session: Session) -> Session:
        """Persist a new session and return it with store-assigned metadata.

        ``created_at`` and ``updated_at`` are set to the store clock,
        ``expires_at`` to ``created_at + session_ttl`` and ``revision`` to 1.

        An expired session stored under the same id counts as missing: it is
        overwritten and its chat and handoff logs are dropped in the same
        transaction.

        Raises
        ------
        SessionExistsError
            If ``session.session_id`` is held by a live session.
        """
        now = self._clock()
        stored = session.model_copy(deep=True)
        stored.metadata.created_at = now
        stored.metadata.updated_at = now
        stored.metadata.expires_at = now + self._config.session_ttl
        stored.metadata.schema_version = Session.SCHEMA_VERSION
        stored.metadata.revision = 1
        payload = self._serializer.to_json(stored)
        try:
            await self._call(
                self._backend.insert(
                    SESSIONS_COLLECTION,
                    stored.session_id,
                    payload,
                    stored.metadata.expires_at,
                )
            )
        except DocumentConflictError as exc:
            if not await self._reclaim_expired(stored):
                raise SessionExistsError(stored.session_id) from exc
        logger.info("SessionStore: created session %s", stored.session_id)
        return stored

    async def _reclaim_expired(self, stored: Session) -> bool:
        """Write ``stored`` over an expired session with the same id.

        Returns False when the existing session is still live.  On success
        ``stored.metadata.revision`` is set to the revision the overwrite
        produced.

        Raises
        ------
        SessionExistsError
            If another writer claimed the id first.
        """
        session_id = stored.session_id
        operations: list[WriteOperation]
        try:
            document = await self._call(self._backend.get(SESSIONS_COLLECTION, session_id))
        except KeyError:
            # Evicted natively between the insert and this read.
            stored.metadata.revision = 1
            operations = [
                InsertDocument(
                    SESSIONS_COLLECTION,
                    session_id,
                    self._serializer.to_json(stored),
                    stored.metadata.expires_at,
                )
            ]
        else:
            previous = self._serializer.from_json(document.payload)
            expires_at = previous.metadata.expires_at
            if expires_at is None or self._clock() <= expires_at:
                return False
            stored.metadata.revision = document.revision + 1
            operations = [
                ClearLog(MESSAGES_COLLECTION, session_id),
                ClearLog(HANDOFFS_COLLECTION, session_id),
                ReplaceDocument(
                    SESSIONS_COLLECTION,
                    session_id,
                    self._serializer.to_json(stored),
                    expected_revision=document.revision,
                    expires_at=stored.metadata.expires_at,
                ),
            ]
        try:
            await self._call(self._backend.commit(operations))
        except (DocumentConflictError, KeyError) as exc:
            raise SessionExistsError(session_id) from exc
        logger.info("SessionStore: reclaimed expired session id %s", session_id)
        return True

    async def get(self, session_id: str) -> Session:
        """Return the stored session.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or its ``expires_at`` has passed.
        """
        try:
            document = await self._call(self._backend.get(SESSIONS_COLLECTION, session_id))
        except KeyError:
            raise SessionNotFoundError(session_id) from None

        session = self._serializer.from_json(document.payload)
        session.metadata.revision = document.revision
        expires_at = session.metadata.expires_at
        if expires_at is not None and self._clock() > expires_at:
            logger.debug("SessionStore: session %s expired at %s", session_id, expires_at)
            raise SessionNotFoundError(session_id)
        return session

    async def exists(self, session_id: str) -> bool:
        try:
            await self.get(session_id)
        except SessionNotFoundError:
            return False
        return True

    async def update(
        self,
        session_id: str,
        changes: Mapping[str, Any],
        *,
        expected_revision: int | None = None,
    ) -> Session:
        """Deep-merge ``changes`` (snake_case field names) into the stored session.

        ``metadata.created_at`` and ``metadata.expires_at`` are never taken
        from ``changes``; ``metadata.updated_at`` is always rewritten.

        Parameters
        ----------
        session_id:
            The session to update.
        changes:
            Partial session in Python attribute names, e.g.
            ``{"conversation": {"current_topic": Topic.TARGET_AUDIENCE}}``.
        expected_revision:
            When given, the update is rejected unless the stored revision
            still matches.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or expired.
        ConcurrentModificationError
            If another writer got there first.
        TopicRegressionError
            If the merge would move a topic status backwards.
        SerializationError
            If the merged document is not a valid session.
        """
        current = await self._load_current(session_id, expected_revision)
        merged = _deep_merge(current.model_dump(), changes)
        try:
            updated = Session.model_validate(merged)
        except ValidationError as exc:
            raise SerializationError(f"Invalid session update: {exc}") from exc
        stored, op = self._prepare_replace(current, updated)
        await self._commit_session(session_id, [op])
        logger.debug(
            "SessionStore: updated session %s to revision %d",
            session_id,
            stored.metadata.revision,
        )
        return stored

    async def save(self, session: Session) -> Session:
        """Write back a session previously read from the store.

        The write succeeds only if the stored revision still equals
        ``session.metadata.revision``.

        Raises
        ------
        ConcurrentModificationError
            If the session was modified since it was read.
        """
        current = await self._load_current(session.session_id, session.metadata.revision)
        stored, op = self._prepare_replace(current, session)
        await self._commit_session(session.session_id, [op])
        logger.debug(
            "SessionStore: saved session %s at revision %d",
            session.session_id,
            stored.metadata.revision,
        )
        return stored

    async def save_turn(
        self,
        session: Session,
        messages: Sequence[ChatMessage],
    ) -> Session:
        """Write back ``session`` and append ``messages`` in one transaction.

        Raises
        ------
        ConcurrentModificationError
            If the session was modified since it was read.  No message is
            appended in that case.
        """
        for message in messages:
            self._check_owner(session.session_id, message)
        current = await self._load_current(session.session_id, session.metadata.revision)
        stored, replace_op = self._prepare_replace(current, session)
        operations: list[WriteOperation] = [
            AppendEntry(
                collection=MESSAGES_COLLECTION,
                partition=session.session_id,
                payload=message.model_dump_json(by_alias=True),
                expires_at=current.metadata.expires_at,
            )
            for message in messages
        ]
        operations.append(replace_op)
        await self._commit_session(session.session_id, operations)
        logger.debug(
            "SessionStore: saved turn for session %s with %d messages",
            session.session_id,
            len(messages),
        )
        return stored

    # ------------------------------------------------------------------
    # Chat log
    # ------------------------------------------------------------------

    @staticmethod
    def _check_owner(session_id: str, message: ChatMessage) -> None:
        if message.session_id != session_id:
            raise ValueError(
                f"Message {message.id!r} belongs to session {message.session_id!r}, "
                f"not {session_id!r}."
            )

    async def append_message(self, session_id: str, message: ChatMessage) -> ChatMessage:
        """Append ``message`` to the session's chat log.

        The log is insert-only and does not touch the session document; the
        entry expires with the session.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or expired.
        """
        self._check_owner(session_id, message)
        session = await self.get(session_id)
        payload = message.model_dump_json(by_alias=True)
        await self._call(
            self._backend.append(
                MESSAGES_COLLECTION, session_id, payload, session.metadata.expires_at
            )
        )
        return message

    async def list_messages(
        self,
        session_id: str,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> list[ChatMessage]:
        """Return up to ``limit`` most recent messages, oldest first.

        Messages are ordered by timestamp; messages with equal timestamps
        keep their insertion order.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or expired.
        """
        await self.get(session_id)
        raw_entries = await self._call(self._backend.read_log(MESSAGES_COLLECTION, session_id))
        try:
            messages = [ChatMessage.model_validate_json(raw) for raw in raw_entries]
        except ValidationError as exc:
            raise SerializationError(f"Corrupt chat log for session {session_id!r}: {exc}") from exc
        messages.sort(key=lambda m: m.timestamp)
        if limit <= 0:
            return []
        return messages[-limit:]

    # ------------------------------------------------------------------
    # Analysis snapshot
    # ------------------------------------------------------------------

    async def store_analysis_snapshot(
        self,
        session_id: str,
        analysis: ProductAnalysis,
        *,
        not_after: datetime | None = None,
    ) -> AnalysisSnapshot:
        """Store ``analysis`` outside the session document with its own TTL.

        The snapshot expires after ``analysis_ttl``, or at ``not_after``
        (normally the session's own expiry) if that comes first.
        """
        now = self._clock()
        expires_at = now + self._config.analysis_ttl
        if not_after is not None and not_after < expires_at:
            expires_at = not_after
        snapshot = AnalysisSnapshot(
            session_id=session_id,
            analysis=analysis,
            stored_at=now,
            expires_at=expires_at,
        )
        await self._call(
            self._backend.put(
                ANALYSES_COLLECTION,
                session_id,
                snapshot.model_dump_json(by_alias=True),
                expires_at,
            )
        )
        logger.debug("SessionStore: stored analysis snapshot for %s", session_id)
        return snapshot

    async def get_analysis_snapshot(self, session_id: str) -> ProductAnalysis | None:
        """Return the stored analysis, or ``None`` when missing or expired."""
        try:
            document = await self._call(self._backend.get(ANALYSES_COLLECTION, session_id))
        except KeyError:
            return None
        try:
            snapshot = AnalysisSnapshot.model_validate_json(document.payload)
        except ValidationError as exc:
            raise SerializationError(
                f"Corrupt analysis snapshot for session {session_id!r}: {exc}"
            ) from exc
        if self._clock() > snapshot.expires_at:
            return None
        return snapshot.analysis

    # ------------------------------------------------------------------
    # Handoff audit log
    # ------------------------------------------------------------------

    async def commit_handoff(
        self,
        session: Session,
        record: HandoffAuditRecord,
    ) -> Session:
        """Atomically append ``record`` and write back ``session``.

        Either both the audit record and the session update become visible
        or neither does.

        Raises
        ------
        ConcurrentModificationError
            If the session changed since ``session`` was read.
        """
        current = await self._load_current(session.session_id, session.metadata.revision)
        stored, replace_op = self._prepare_replace(current, session)
        append_op = AppendEntry(
            collection=HANDOFFS_COLLECTION,
            partition=session.session_id,
            payload=record.model_dump_json(by_alias=True),
            expires_at=current.metadata.expires_at,
        )
        await self._commit_session(session.session_id, [append_op, replace_op])
        logger.debug(
            "SessionStore: committed handoff record %s for session %s",
            record.record_id,
            session.session_id,
        )
        return stored

    async def append_handoff_record(self, record: HandoffAuditRecord) -> None:
        """Append an audit record without touching the session document."""
        session = await self.get(record.session_id)
        await self._call(
            self._backend.append(
                HANDOFFS_COLLECTION,
                record.session_id,
                record.model_dump_json(by_alias=True),
                session.metadata.expires_at,
            )
        )

    async def list_handoff_records(self, session_id: str) -> list[HandoffAuditRecord]:
        """Return every audit record for ``session_id`` in commit order.

        Raises
        ------
        SessionNotFoundError
            If the session is missing or expired.
        """
        await self.get(session_id)
        raw_entries = await self._call(self._backend.read_log(HANDOFFS_COLLECTION, session_id))
        try:
            return [HandoffAuditRecord.model_validate_json(raw) for raw in raw_entries]
        except ValidationError as exc:
            raise SerializationError(
                f"Corrupt handoff log for session {session_id!r}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def purge_expired(self) -> int:
        """Physically remove expired documents and log entries from the backend.

        Expiry is already enforced on every read; this only reclaims space.
        Nothing calls it automatically.
        """
        removed = await self._call(self._backend.purge_expired(self._clock()))
        logger.info("SessionStore: purged %d expired items", removed)
        return removed

    def __repr__(self) -> str:
        return f"SessionStore(backend={self._backend!r})"


__all__ = [
    "ANALYSES_COLLECTION",
    "AnalysisSnapshot",
    "HANDOFFS_COLLECTION",
    "MESSAGES_COLLECTION",
    "SESSIONS_COLLECTION",
    "SessionStore",
]
