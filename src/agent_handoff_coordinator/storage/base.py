"""Abstract base class for async document storage backends.

A backend stores two kinds of data:

- **Documents** — keyed payloads inside named collections, each carrying an
  integer revision (1 on insert, incremented on every replace) and an
  optional absolute expiry.
- **Logs** — append-only, insertion-ordered payload sequences partitioned
  by key (e.g. the chat messages of one session).  Each entry may carry an
  absolute expiry; a partition can be cleared as a whole.

Payloads are always UTF-8 strings (JSON-encoded records).  Writes that must
succeed or fail together are submitted as a single ``commit`` batch.

Classes
-------
- DocumentConflictError  — duplicate insert or revision mismatch
- StoredDocument         — a document as read back from the backend
- InsertDocument         — write op: create a new document
- ReplaceDocument        — write op: compare-and-swap an existing document
- AppendEntry            — write op: append to a log partition
- ClearLog               — write op: drop every entry of a log partition
- AsyncDocumentBackend   — abstract base for all backends
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, Union


class DocumentConflictError(Exception):
    """Raised when a write conflicts with the stored state.

    Parameters
    ----------
    collection:
        Collection of the conflicting document.
    key:
        Key of the conflicting document.
    expected_revision:
        The revision the writer expected, or ``None`` for an insert.
    """

    def __init__(self, collection: str, key: str, expected_revision: int | None = None) -> None:
        self.collection = collection
        self.key = key
        self.expected_revision = expected_revision
        if expected_revision is None:
            message = f"Document {collection}/{key} already exists."
        else:
            message = f"Document {collection}/{key} is not at revision {expected_revision}."
        super().__init__(message)


@dataclass(frozen=True)
class StoredDocument:
    payload: str
    revision: int
    expires_at: datetime | None = None


@dataclass(frozen=True)
class InsertDocument:
    collection: str
    key: str
    payload: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ReplaceDocument:
    collection: str
    key: str
    payload: str
    expected_revision: int
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AppendEntry:
    collection: str
    partition: str
    payload: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ClearLog:
    collection: str
    partition: str


WriteOperation = Union[InsertDocument, ReplaceDocument, AppendEntry, ClearLog]


class AsyncDocumentBackend(ABC):
    """Protocol for async document and log persistence.

    All methods are coroutines.  Implementations must apply a ``commit``
    batch atomically: either every operation is visible afterwards or none
    is.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> StoredDocument:
        """Return the document stored under ``collection``/``key``.

        Raises
        ------
        KeyError
            If no such document exists.
        """

    @abstractmethod
    async def put(
        self,
        collection: str,
        key: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> int:
        """Unconditionally write a document, returning its new revision."""

    @abstractmethod
    async def commit(self, operations: Sequence[WriteOperation]) -> None:
        """Apply ``operations`` atomically.

        Raises
        ------
        KeyError
            If a ``ReplaceDocument`` targets a missing document.
        DocumentConflictError
            If an insert targets an existing document or a replace finds a
            different revision.  Nothing is written in either case.
        """

    @abstractmethod
    async def read_log(
        self,
        collection: str,
        partition: str,
        limit: int | None = None,
    ) -> list[str]:
        """Return log payloads for ``partition`` in insertion order.

        When ``limit`` is given only the most recent ``limit`` entries are
        returned (still oldest first).  Entry expiry is not applied here;
        callers interpret it against their own clock.
        """

    async def purge_expired(self, now: datetime) -> int:
        """Delete documents and log entries whose expiry lies before ``now``.

        Returns the number of removed items.  Backends that expire data
        natively keep this default and report nothing removed.
        """
        return 0

    async def close(self) -> None:
        """Release connections held by the backend."""

    # ------------------------------------------------------------------
    # Convenience wrappers over commit
    # ------------------------------------------------------------------

    async def insert(
        self,
        collection: str,
        key: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> int:
        await self.commit([InsertDocument(collection, key, payload, expires_at)])
        return 1

    async def replace(
        self,
        collection: str,
        key: str,
        payload: str,
        expected_revision: int,
        expires_at: datetime | None = None,
    ) -> int:
        await self.commit(
            [ReplaceDocument(collection, key, payload, expected_revision, expires_at)]
        )
        return expected_revision + 1

    async def append(
        self,
        collection: str,
        partition: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> None:
        await self.commit([AppendEntry(collection, partition, payload, expires_at)])


__all__ = [
    "AppendEntry",
    "AsyncDocumentBackend",
    "ClearLog",
    "DocumentConflictError",
    "InsertDocument",
    "ReplaceDocument",
    "StoredDocument",
    "WriteOperation",
]
