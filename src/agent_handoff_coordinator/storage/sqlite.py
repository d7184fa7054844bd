"""Async SQLite document backend — requires aiosqlite (guarded import).

Documents live in one table keyed by ``(collection, key)``; logs live in a
second table whose autoincrement ``seq`` column preserves insertion order.
Both tables carry an optional ``expires_at_ms`` column that
:meth:`AsyncSQLiteBackend.purge_expired` deletes by.
A ``commit`` batch runs inside ``BEGIN IMMEDIATE`` so concurrent writers
on the same database file are serialised.

Classes
-------
- AsyncSQLiteBackend  — aiosqlite-backed document storage
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from agent_handoff_coordinator.session.timestamps import from_epoch_ms, to_epoch_ms
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

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

_AIOSQLITE_IMPORT_ERROR = (
    "AsyncSQLiteBackend requires the 'aiosqlite' package. "
    "Install it with: pip install aiosqlite"
)

_DEFAULT_DB_PATH: Path = Path.home() / ".agent-handoff" / "coordinator.db"

_CREATE_DOCUMENTS_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection    TEXT    NOT NULL,
    key           TEXT    NOT NULL,
    payload       TEXT    NOT NULL,
    revision      INTEGER NOT NULL,
    expires_at_ms INTEGER,
    PRIMARY KEY (collection, key)
)
"""

_CREATE_LOG_SQL = """
CREATE TABLE IF NOT EXISTS log_entries (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    collection    TEXT    NOT NULL,
    log_key       TEXT    NOT NULL,
    payload       TEXT    NOT NULL,
    expires_at_ms INTEGER
)
"""

_CREATE_LOG_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_log_partition
ON log_entries (collection, log_key, seq)
"""

_UPSERT_SQL = """
INSERT INTO documents (collection, key, payload, revision, expires_at_ms)
VALUES (?, ?, ?, 1, ?)
ON CONFLICT(collection, key) DO UPDATE SET
    payload       = excluded.payload,
    revision      = documents.revision + 1,
    expires_at_ms = excluded.expires_at_ms
"""


def _expiry_ms(expires_at: datetime | None) -> int | None:
    return to_epoch_ms(expires_at) if expires_at is not None else None


class AsyncSQLiteBackend(AsyncDocumentBackend):
    """Persists documents and logs in a local SQLite database.

    Parameters
    ----------
    db_path:
        Path to the SQLite file.  Defaults to
        ``~/.agent-handoff/coordinator.db``.  The parent directory and tables
        are created automatically on first use.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        try:
            import aiosqlite as _aiosqlite  # noqa: F401
        except ImportError as exc:
            raise ImportError(_AIOSQLITE_IMPORT_ERROR) from exc

        self._db_path: Path = Path(db_path) if db_path is not None else _DEFAULT_DB_PATH
        self._schema_initialised = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_schema(self) -> None:
        """Create the tables on first use."""
        if self._schema_initialised:
            return
        import aiosqlite

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(_CREATE_DOCUMENTS_SQL)
            await conn.execute(_CREATE_LOG_SQL)
            await conn.execute(_CREATE_LOG_INDEX_SQL)
            async with conn.execute("PRAGMA table_info(log_entries)") as cursor:
                columns = {row[1] for row in await cursor.fetchall()}
            if "expires_at_ms" not in columns:
                # Databases created before log entries carried an expiry.
                await conn.execute("ALTER TABLE log_entries ADD COLUMN expires_at_ms INTEGER")
            await conn.commit()
        self._schema_initialised = True
        logger.debug("AsyncSQLiteBackend: initialised schema at %s", self._db_path)

    # ------------------------------------------------------------------
    # AsyncDocumentBackend interface
    # ------------------------------------------------------------------

    async def get(self, collection: str, key: str) -> StoredDocument:
        """Return the stored row for ``collection``/``key``.

        Raises
        ------
        KeyError
            If no row exists.
        """
        import aiosqlite

        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path)) as conn:
            conn.row_factory = aiosqlite.Row
            async with conn.execute(
                "SELECT payload, revision, expires_at_ms FROM documents "
                "WHERE collection = ? AND key = ?",
                (collection, key),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            raise KeyError(f"Document {collection}/{key} not found in AsyncSQLiteBackend.")
        expires_ms = row["expires_at_ms"]
        return StoredDocument(
            payload=str(row["payload"]),
            revision=int(row["revision"]),
            expires_at=from_epoch_ms(expires_ms) if expires_ms is not None else None,
        )

    async def put(
        self,
        collection: str,
        key: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> int:
        import aiosqlite

        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path), isolation_level=None) as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                await conn.execute(_UPSERT_SQL, (collection, key, payload, _expiry_ms(expires_at)))
                async with conn.execute(
                    "SELECT revision FROM documents WHERE collection = ? AND key = ?",
                    (collection, key),
                ) as cursor:
                    row = await cursor.fetchone()
                await conn.execute("COMMIT")
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
        return int(row[0])

    async def commit(self, operations: Sequence[WriteOperation]) -> None:
        import aiosqlite

        await self._ensure_schema()
        async with aiosqlite.connect(str(self._db_path), isolation_level=None) as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                for op in operations:
                    await self._apply(conn, op)
                await conn.execute("COMMIT")
            except BaseException:
                await conn.execute("ROLLBACK")
                raise

    async def read_log(
        self,
        collection: str,
        partition: str,
        limit: int | None = None,
    ) -> list[str]:
        import aiosqlite

        await self._ensure_schema()
        if limit is not None and limit <= 0:
            return []
        async with aiosqlite.connect(str(self._db_path)) as conn:
            if limit is None:
                query = (
                    "SELECT payload FROM log_entries WHERE collection = ? AND log_key = ? "
                    "ORDER BY seq ASC"
                )
                params: tuple[object, ...] = (collection, partition)
            else:
                query = (
                    "SELECT payload FROM (SELECT seq, payload FROM log_entries "
                    "WHERE collection = ? AND log_key = ? ORDER BY seq DESC LIMIT ?) "
                    "ORDER BY seq ASC"
                )
                params = (collection, partition, limit)
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def purge_expired(self, now: datetime) -> int:
        import aiosqlite

        await self._ensure_schema()
        cutoff = to_epoch_ms(now)
        async with aiosqlite.connect(str(self._db_path)) as conn:
            documents = await conn.execute(
                "DELETE FROM documents WHERE expires_at_ms IS NOT NULL AND expires_at_ms < ?",
                (cutoff,),
            )
            entries = await conn.execute(
                "DELETE FROM log_entries WHERE expires_at_ms IS NOT NULL AND expires_at_ms < ?",
                (cutoff,),
            )
            await conn.commit()
        removed = documents.rowcount + entries.rowcount
        logger.debug("AsyncSQLiteBackend: purged %d expired rows", removed)
        return removed

    # ------------------------------------------------------------------
    # Batch application
    # ------------------------------------------------------------------

    @staticmethod
    async def _apply(conn: aiosqlite.Connection, op: WriteOperation) -> None:
        if isinstance(op, InsertDocument):
            try:
                await conn.execute(
                    "INSERT INTO documents (collection, key, payload, revision, expires_at_ms) "
                    "VALUES (?, ?, ?, 1, ?)",
                    (op.collection, op.key, op.payload, _expiry_ms(op.expires_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise DocumentConflictError(op.collection, op.key) from exc
        elif isinstance(op, ReplaceDocument):
            cursor = await conn.execute(
                "UPDATE documents SET payload = ?, revision = revision + 1, expires_at_ms = ? "
                "WHERE collection = ? AND key = ? AND revision = ?",
                (
                    op.payload,
                    _expiry_ms(op.expires_at),
                    op.collection,
                    op.key,
                    op.expected_revision,
                ),
            )
            if cursor.rowcount == 0:
                async with conn.execute(
                    "SELECT 1 FROM documents WHERE collection = ? AND key = ?",
                    (op.collection, op.key),
                ) as check:
                    exists = await check.fetchone() is not None
                if not exists:
                    raise KeyError(
                        f"Document {op.collection}/{op.key} not found in AsyncSQLiteBackend."
                    )
                raise DocumentConflictError(op.collection, op.key, op.expected_revision)
        elif isinstance(op, AppendEntry):
            await conn.execute(
                "INSERT INTO log_entries (collection, log_key, payload, expires_at_ms) "
                "VALUES (?, ?, ?, ?)",
                (op.collection, op.partition, op.payload, _expiry_ms(op.expires_at)),
            )
        elif isinstance(op, ClearLog):
            await conn.execute(
                "DELETE FROM log_entries WHERE collection = ? AND log_key = ?",
                (op.collection, op.partition),
            )

    def __repr__(self) -> str:
        return f"AsyncSQLiteBackend(db_path={str(self._db_path)!r})"


__all__ = ["AsyncSQLiteBackend"]
