"""Document storage backends."""
from __future__ import annotations

from agent_handoff_coordinator.storage.base import (
    AppendEntry,
    AsyncDocumentBackend,
    DocumentConflictError,
    InsertDocument,
    ReplaceDocument,
    StoredDocument,
)
from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend
from agent_handoff_coordinator.storage.sqlite import AsyncSQLiteBackend

__all__ = [
    "AppendEntry",
    "AsyncDocumentBackend",
    "AsyncInMemoryBackend",
    "AsyncSQLiteBackend",
    "DocumentConflictError",
    "InsertDocument",
    "ReplaceDocument",
    "StoredDocument",
]
