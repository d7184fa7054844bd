"""Async in-memory document backend.

Stores documents and logs in plain Python dicts guarded by ``asyncio.Lock``.
All data is lost when the process exits.  This backend is primarily
useful for tests and local prototyping.

Classes
-------
- AsyncInMemoryBackend  — dict-backed ephemeral async storage
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Sequence

from agent_handoff_coordinator.storage.base import (
    AppendEntry,
    AsyncDocumentBackend,
    ClearLog,
    DocumentConflictError,
    InsertDocument,
    ReplaceDocument,
    StoredDocument,
    WriteOperation,
)


class AsyncInMemoryBackend(AsyncDocumentBackend):
    """Ephemeral async in-process backend.

    An ``asyncio.Lock`` guards all reads and mutations so that a commit
    batch is validated and applied without interleaving.  Expired documents
    and log entries are kept until :meth:`purge_expired` runs; until then
    expiry is interpreted by the caller.
    """

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], StoredDocument] = {}
        self._logs: dict[tuple[str, str], list[tuple[str, datetime | None]]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # AsyncDocumentBackend interface
    # ------------------------------------------------------------------

    async def get(self, collection: str, key: str) -> StoredDocument:
        async with self._lock:
            try:
                return self._documents[(collection, key)]
            except KeyError:
                raise KeyError(
                    f"Document {collection}/{key} not found in AsyncInMemoryBackend."
                ) from None

    async def put(
        self,
        collection: str,
        key: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> int:
        async with self._lock:
            existing = self._documents.get((collection, key))
            revision = existing.revision + 1 if existing else 1
            self._documents[(collection, key)] = StoredDocument(payload, revision, expires_at)
            return revision

    async def commit(self, operations: Sequence[WriteOperation]) -> None:
        async with self._lock:
            # Validate the whole batch before touching anything.
            for op in operations:
                if isinstance(op, InsertDocument):
                    if (op.collection, op.key) in self._documents:
                        raise DocumentConflictError(op.collection, op.key)
                elif isinstance(op, ReplaceDocument):
                    existing = self._documents.get((op.collection, op.key))
                    if existing is None:
                        raise KeyError(
                            f"Document {op.collection}/{op.key} not found in AsyncInMemoryBackend."
                        )
                    if existing.revision != op.expected_revision:
                        raise DocumentConflictError(op.collection, op.key, op.expected_revision)

            for op in operations:
                if isinstance(op, InsertDocument):
                    self._documents[(op.collection, op.key)] = StoredDocument(
                        op.payload, 1, op.expires_at
                    )
                elif isinstance(op, ReplaceDocument):
                    self._documents[(op.collection, op.key)] = StoredDocument(
                        op.payload, op.expected_revision + 1, op.expires_at
                    )
                elif isinstance(op, AppendEntry):
                    self._logs.setdefault((op.collection, op.partition), []).append(
                        (op.payload, op.expires_at)
                    )
                elif isinstance(op, ClearLog):
                    self._logs.pop((op.collection, op.partition), None)

    async def read_log(
        self,
        collection: str,
        partition: str,
        limit: int | None = None,
    ) -> list[str]:
        async with self._lock:
            entries = [payload for payload, _ in self._logs.get((collection, partition), [])]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    async def purge_expired(self, now: datetime) -> int:
        removed = 0
        async with self._lock:
            for doc_key, document in list(self._documents.items()):
                if document.expires_at is not None and document.expires_at < now:
                    del self._documents[doc_key]
                    removed += 1
            for log_key, entries in list(self._logs.items()):
                kept = [(p, exp) for p, exp in entries if exp is None or exp >= now]
                removed += len(entries) - len(kept)
                if kept:
                    self._logs[log_key] = kept
                else:
                    del self._logs[log_key]
        return removed

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        """Remove all documents and logs."""
        async with self._lock:
            self._documents.clear()
            self._logs.clear()

    def __len__(self) -> int:
        return len(self._documents)

    def __repr__(self) -> str:
        return f"AsyncInMemoryBackend(documents={len(self._documents)}, logs={len(self._logs)})"


__all__ = ["AsyncInMemoryBackend"]
