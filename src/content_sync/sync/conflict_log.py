"""Append-only audit log of detected conflicts.

Entries live in ``conflict_log.json`` next to the sync state document and
are written with the same atomic temp-file + ``os.replace()`` scheme.  An
entry is created the moment a diff yields conflicts and is later updated in
place (never replaced or deleted) when a resolution is applied.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pydantic

from content_sync.errors import NotFoundError, PersistenceError, ValidationError

from .models import ConflictLogEntry
from .state import read_json_document, write_json_document

logger = logging.getLogger(__name__)

LOG_FILENAME = "conflict_log.json"

ENTRY_STATUSES = ("pending", "resolved")


class ConflictLog:
    """Persisted conflict audit trail.

    Args:
        state_dir: Directory holding ``conflict_log.json``.
    """

    def __init__(self, state_dir: Path | str) -> None:
        self._path = Path(state_dir) / LOG_FILENAME
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_raw(self) -> list[dict[str, Any]]:
        document = read_json_document(self._path, {"version": 1, "entries": []})
        return list(document.get("entries", []))

    def _save_raw(self, entries: list[dict[str, Any]]) -> None:
        write_json_document(self._path, {"version": 1, "entries": entries})

    @staticmethod
    def _parse(raw: dict[str, Any]) -> ConflictLogEntry:
        try:
            return ConflictLogEntry.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise PersistenceError(f"Corrupt conflict log entry: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        type_key: str,
        *,
        local_hash: str | None,
        remote_hash: str | None,
        ancestor_hash: str | None = None,
        conflict_type: str,
        conflict_details: dict[str, Any] | None = None,
    ) -> ConflictLogEntry:
        """Durably record a newly detected conflict.

        Raises:
            ValidationError: If *type_key* or *conflict_type* is empty.
            PersistenceError: If the log cannot be written.
        """
        if not type_key:
            raise ValidationError("type_key is required")
        if not conflict_type:
            raise ValidationError("conflict_type is required")

        entry = ConflictLogEntry(
            id=uuid.uuid4().hex,
            type_key=type_key,
            local_hash=local_hash,
            remote_hash=remote_hash,
            ancestor_hash=ancestor_hash,
            conflict_type=conflict_type,
            conflict_details=conflict_details or {},
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            entries = self._load_raw()
            entries.append(entry.model_dump(mode="json"))
            self._save_raw(entries)

        logger.info(
            "Logged %s conflict %s for %s", conflict_type, entry.id, type_key
        )
        return entry

    def record_resolution(
        self, entry_id: str, resolution: str, resolved_by: str
    ) -> ConflictLogEntry:
        """Attach a resolution to an open entry.

        Raises:
            NotFoundError: If no entry has *entry_id*.
            ValidationError: If the entry is already resolved.
        """
        with self._lock:
            entries = self._load_raw()
            for index, raw in enumerate(entries):
                if raw.get("id") != entry_id:
                    continue
                entry = self._parse(raw)
                if entry.resolution is not None:
                    raise ValidationError(
                        f"Conflict {entry_id} was already resolved by {entry.resolved_by}"
                    )
                entry = entry.model_copy(
                    update={
                        "resolution": resolution,
                        "resolved_by": resolved_by,
                        "resolved_at": datetime.now(timezone.utc),
                    }
                )
                entries[index] = entry.model_dump(mode="json")
                self._save_raw(entries)
                logger.info("Conflict %s resolved by %s", entry_id, resolved_by)
                return entry

        raise NotFoundError("Conflict", entry_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> ConflictLogEntry | None:
        with self._lock:
            for raw in self._load_raw():
                if raw.get("id") == entry_id:
                    return self._parse(raw)
        return None

    def require(self, entry_id: str) -> ConflictLogEntry:
        """Return the entry with *entry_id*.

        Raises:
            NotFoundError: If there is no such entry.
        """
        entry = self.get(entry_id)
        if entry is None:
            raise NotFoundError("Conflict", entry_id)
        return entry

    def _filtered(
        self,
        type_key: str | None,
        status: str | None,
        resolved_by: str | None = None,
    ) -> list[ConflictLogEntry]:
        if status is not None and status not in ENTRY_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Valid statuses: {list(ENTRY_STATUSES)}"
            )
        with self._lock:
            entries = [self._parse(raw) for raw in self._load_raw()]
        # Newest first; stored order breaks timestamp ties.
        entries.reverse()
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return [
            e
            for e in entries
            if (type_key is None or e.type_key == type_key)
            and (status is None or e.status == status)
            and (resolved_by is None or e.resolved_by == resolved_by)
        ]

    def list_entries(
        self,
        type_key: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
        resolved_by: str | None = None,
    ) -> list[ConflictLogEntry]:
        """List entries newest first, optionally filtered.

        Args:
            type_key: Only entries for this content type.
            status: ``"pending"`` or ``"resolved"``.
            limit: Maximum number of entries.
            offset: Number of matching entries to skip.
            resolved_by: Only entries resolved by this actor (``"system"``
                for automatic resolutions).

        Raises:
            ValidationError: On an unknown status or negative paging values.
        """
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")
        return self._filtered(type_key, status, resolved_by)[offset : offset + limit]

    def count(
        self,
        type_key: str | None = None,
        status: str | None = None,
        resolved_by: str | None = None,
    ) -> int:
        return len(self._filtered(type_key, status, resolved_by))

    def latest_open(self, type_key: str) -> ConflictLogEntry | None:
        """The newest unresolved entry for *type_key*, if any."""
        pending = self._filtered(type_key, "pending")
        return pending[0] if pending else None
