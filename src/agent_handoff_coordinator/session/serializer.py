"""Session serialization with schema versioning.

Supports JSON and YAML round-trips of the persisted (camelCase, epoch-ms)
document form.  Schema version is embedded in every serialised document so
that future readers can perform migrations.

Classes
-------
- SchemaVersionError  — unsupported schemaVersion on load
- SessionSerializer   — serialize/deserialize Session to JSON or YAML
"""
from __future__ import annotations

import json
from typing import Any, Literal

import yaml
from pydantic import ValidationError

from agent_handoff_coordinator.errors import SerializationError
from agent_handoff_coordinator.session.state import Session

_SUPPORTED_SCHEMA_VERSIONS: frozenset[str] = frozenset({"1.0"})


class SchemaVersionError(SerializationError):
    """Raised when a serialised document uses an unsupported schema version."""

    def __init__(self, version: str) -> None:
        self.version = version
        supported = ", ".join(sorted(_SUPPORTED_SCHEMA_VERSIONS))
        super().__init__(
            f"Unsupported schema version {version!r}. "
            f"Supported versions: {supported}"
        )


class SessionSerializer:
    """Serialize and deserialize ``Session`` objects.

    All output documents embed ``metadata.schemaVersion``.  On load, the
    version is checked against the set of supported versions before
    validation proceeds.  Decode and validation failures surface as
    ``SerializationError``.
    """

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_json(self, session: Session, *, indent: int | None = None) -> str:
        """Serialise a ``Session`` to a JSON string.

        Parameters
        ----------
        session:
            The session to serialise.
        indent:
            Optional JSON indentation level.  Compact output by default.

        Returns
        -------
        str
            JSON-encoded persisted document.
        """
        try:
            return json.dumps(session.to_document(), indent=indent, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise SerializationError(
                f"Session {session.session_id!r} could not be encoded: {exc}"
            ) from exc

    def from_json(self, raw: str) -> Session:
        """Deserialize a ``Session`` from a JSON string.

        Raises
        ------
        SchemaVersionError
            If ``metadata.schemaVersion`` is not in the supported set.
        SerializationError
            If ``raw`` is not valid JSON or does not describe a session.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Invalid session JSON: {exc}") from exc
        return self._deserialize(data)

    # ------------------------------------------------------------------
    # YAML
    # ------------------------------------------------------------------

    def to_yaml(self, session: Session) -> str:
        """Serialise a ``Session`` to a YAML string."""
        return yaml.dump(
            session.to_document(),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=True,
        )

    def from_yaml(self, raw: str) -> Session:
        """Deserialize a ``Session`` from a YAML string."""
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise SerializationError(f"Invalid session YAML: {exc}") from exc
        return self._deserialize(data)

    # ------------------------------------------------------------------
    # Format dispatch
    # ------------------------------------------------------------------

    def serialize(self, session: Session, format: Literal["json", "yaml"] = "json") -> str:
        if format == "yaml":
            return self.to_yaml(session)
        return self.to_json(session, indent=2)

    def deserialize(self, raw: str, format: Literal["json", "yaml"] = "json") -> Session:
        if format == "yaml":
            return self.from_yaml(raw)
        return self.from_json(raw)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _deserialize(self, data: Any) -> Session:
        if not isinstance(data, dict):
            raise SerializationError(
                f"Session document must be a mapping, got {type(data).__name__}."
            )
        metadata = data.get("metadata") or {}
        version = str(metadata.get("schemaVersion", "")) if isinstance(metadata, dict) else ""
        if version not in _SUPPORTED_SCHEMA_VERSIONS:
            raise SchemaVersionError(version)

        try:
            return Session.from_document(data)
        except ValidationError as exc:
            raise SerializationError(f"Invalid session document: {exc}") from exc
