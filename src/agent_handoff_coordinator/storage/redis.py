"""Async Redis document backend — requires redis[asyncio] (guarded import).

Each document is a Redis hash under ``<prefix>doc:<collection>:<key>`` with
``payload``, ``revision`` and ``expires_at_ms`` fields; document expiry is
also applied natively with ``PEXPIREAT``.  Logs are Redis lists under
``<prefix>log:<collection>:<partition>``; appending an entry with an expiry
moves the whole list's ``PEXPIREAT`` to that instant.

A ``commit`` batch WATCHes every document it touches, checks revisions,
and then queues all writes in a single MULTI/EXEC transaction.

Classes
-------
- AsyncRedisBackend  — redis.asyncio-backed document storage
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

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

logger = logging.getLogger(__name__)

_REDIS_IMPORT_ERROR = (
    "AsyncRedisBackend requires the 'redis' package with asyncio support. "
    "Install it with: pip install redis  or  "
    "pip install 'agent-handoff-coordinator[redis]'"
)


class AsyncRedisBackend(AsyncDocumentBackend):
    """Persists documents and logs in a Redis instance using ``redis.asyncio``.

    Parameters
    ----------
    host:
        Redis server hostname.  Defaults to ``"localhost"``.
    port:
        Redis server port.  Defaults to ``6379``.
    db:
        Redis logical database index.  Defaults to ``0``.
    password:
        Optional authentication password.
    key_prefix:
        String prepended to all keys.  Defaults to ``"handoff:"``.
    url:
        If supplied, overrides host/port/db/password and is used as a
        Redis connection URL (e.g. ``"redis://localhost:6379/0"``).
    client:
        A pre-built ``redis.asyncio.Redis`` client created with
        ``decode_responses=True``.  Takes precedence over every connection
        argument.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        key_prefix: str = "handoff:",
        url: str | None = None,
        client: Any | None = None,
    ) -> None:
        try:
            import redis.asyncio as redis_asyncio
            from redis.exceptions import WatchError
        except ImportError as exc:
            raise ImportError(_REDIS_IMPORT_ERROR) from exc

        self._watch_error: type[Exception] = WatchError
        if client is not None:
            self._client = client
        elif url is not None:
            self._client = redis_asyncio.Redis.from_url(url, decode_responses=True)
        else:
            self._client = redis_asyncio.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
            )
        self._key_prefix = key_prefix

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _doc_key(self, collection: str, key: str) -> str:
        return f"{self._key_prefix}doc:{collection}:{key}"

    def _log_key(self, collection: str, partition: str) -> str:
        return f"{self._key_prefix}log:{collection}:{partition}"

    @staticmethod
    def _queue_write(
        pipe: Any,
        redis_key: str,
        payload: str,
        revision: int,
        expires_at: datetime | None,
    ) -> None:
        mapping: dict[str, Any] = {"payload": payload, "revision": revision}
        if expires_at is not None:
            expires_ms = to_epoch_ms(expires_at)
            mapping["expires_at_ms"] = expires_ms
            pipe.hset(redis_key, mapping=mapping)
            pipe.pexpireat(redis_key, expires_ms)
        else:
            pipe.hset(redis_key, mapping=mapping)
            pipe.hdel(redis_key, "expires_at_ms")
            pipe.persist(redis_key)

    # ------------------------------------------------------------------
    # AsyncDocumentBackend interface
    # ------------------------------------------------------------------

    async def get(self, collection: str, key: str) -> StoredDocument:
        """Return the hash stored for ``collection``/``key``.

        Raises
        ------
        KeyError
            If the key does not exist (or Redis has already expired it).
        """
        fields: dict[str, str] = await self._client.hgetall(self._doc_key(collection, key))
        if not fields:
            raise KeyError(f"Document {collection}/{key} not found in AsyncRedisBackend.")
        expires_raw = fields.get("expires_at_ms")
        return StoredDocument(
            payload=str(fields["payload"]),
            revision=int(fields["revision"]),
            expires_at=from_epoch_ms(int(expires_raw)) if expires_raw else None,
        )

    async def put(
        self,
        collection: str,
        key: str,
        payload: str,
        expires_at: datetime | None = None,
    ) -> int:
        redis_key = self._doc_key(collection, key)
        async with self._client.pipeline(transaction=True) as pipe:
            await pipe.watch(redis_key)
            current = await pipe.hget(redis_key, "revision")
            revision = int(current) + 1 if current is not None else 1
            pipe.multi()
            self._queue_write(pipe, redis_key, payload, revision, expires_at)
            try:
                await pipe.execute()
            except self._watch_error as exc:
                raise DocumentConflictError(collection, key, revision - 1) from exc
        return revision

    async def commit(self, operations: Sequence[WriteOperation]) -> None:
        documents = [
            op for op in operations if isinstance(op, (InsertDocument, ReplaceDocument))
        ]
        async with self._client.pipeline(transaction=True) as pipe:
            if documents:
                await pipe.watch(*(self._doc_key(op.collection, op.key) for op in documents))
            for op in documents:
                current = await pipe.hget(self._doc_key(op.collection, op.key), "revision")
                if isinstance(op, InsertDocument) and current is not None:
                    raise DocumentConflictError(op.collection, op.key)
                if isinstance(op, ReplaceDocument):
                    if current is None:
                        raise KeyError(
                            f"Document {op.collection}/{op.key} not found in AsyncRedisBackend."
                        )
                    if int(current) != op.expected_revision:
                        raise DocumentConflictError(op.collection, op.key, op.expected_revision)

            pipe.multi()
            for op in operations:
                if isinstance(op, InsertDocument):
                    self._queue_write(
                        pipe, self._doc_key(op.collection, op.key), op.payload, 1, op.expires_at
                    )
                elif isinstance(op, ReplaceDocument):
                    self._queue_write(
                        pipe,
                        self._doc_key(op.collection, op.key),
                        op.payload,
                        op.expected_revision + 1,
                        op.expires_at,
                    )
                elif isinstance(op, AppendEntry):
                    log_key = self._log_key(op.collection, op.partition)
                    pipe.rpush(log_key, op.payload)
                    if op.expires_at is not None:
                        pipe.pexpireat(log_key, to_epoch_ms(op.expires_at))
                elif isinstance(op, ClearLog):
                    pipe.delete(self._log_key(op.collection, op.partition))
            try:
                await pipe.execute()
            except self._watch_error as exc:
                first = documents[0] if documents else None
                logger.debug("AsyncRedisBackend: commit aborted by concurrent write")
                raise DocumentConflictError(
                    first.collection if first else "",
                    first.key if first else "",
                    getattr(first, "expected_revision", None),
                ) from exc

    async def read_log(
        self,
        collection: str,
        partition: str,
        limit: int | None = None,
    ) -> list[str]:
        if limit is not None and limit <= 0:
            return []
        start = 0 if limit is None else -limit
        entries = await self._client.lrange(self._log_key(collection, partition), start, -1)
        return [str(entry) for entry in entries]

    async def close(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"AsyncRedisBackend(key_prefix={self._key_prefix!r})"


__all__ = ["AsyncRedisBackend"]
