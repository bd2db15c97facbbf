"""Sync state persistence layer.

Manages the JSON document (``sync_state.json``) that tracks one
``SyncState`` per content type, plus the last known-good checkpoint of each
type so a failed attempt can be rolled back.

Key design choices:

* **Atomic writes** -- every mutation reads the document, applies the
  change and writes a temp file that is fsynced and then ``os.replace()``-d
  over the target, so readers never see partial data.
* **Enforced lifecycle** -- ``sync_status`` changes must follow the state
  machine in ``ALLOWED_TRANSITIONS``; both record invariants are checked
  before any write.
* **Per-key locking** -- ``lock(type_key)`` serializes whole
  delta/diff/resolve/persist sequences for one content type.  Individual
  store operations additionally serialize on a document-wide lock.
* **Content hashing** -- ``content_hash()`` fingerprints snapshot data as
  SHA-256 over canonical JSON, so key order never changes the hash.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pydantic

from content_sync.errors import NotFoundError, PersistenceError, ValidationError

from .models import ConflictStatus, SyncState, SyncStatus

logger = logging.getLogger(__name__)

STATE_FILENAME = "sync_state.json"
DOCUMENT_VERSION = 1

ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.NEW: frozenset({SyncStatus.PENDING}),
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset(
        {SyncStatus.IN_SYNC, SyncStatus.FAILED, SyncStatus.MODIFIED}
    ),
    SyncStatus.IN_SYNC: frozenset({SyncStatus.MODIFIED}),
    SyncStatus.FAILED: frozenset({SyncStatus.SYNCING}),
    SyncStatus.MODIFIED: frozenset({SyncStatus.SYNCING}),
}

PENDING_STATUSES = frozenset(
    {SyncStatus.PENDING, SyncStatus.NEW, SyncStatus.MODIFIED}
)

# Fields callers may set through update_sync_state().
_UPDATABLE_FIELDS = frozenset(SyncState.model_fields) - {
    "type_key",
    "created_at",
    "updated_at",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def content_hash(data: Any) -> str:
    """Compute a SHA-256 hex digest of *data* serialized as canonical JSON.

    Object keys are sorted and whitespace is fixed, so two structurally
    equal values always hash the same.
    """
    canonical = json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JSON document helpers
# ---------------------------------------------------------------------------


def read_json_document(path: Path, default: dict[str, Any]) -> dict[str, Any]:
    """Read a JSON object from *path*, or return *default* if it is absent.

    Raises:
        PersistenceError: If the file cannot be read or is not a JSON object.
    """
    if not path.exists():
        return default
    try:
        with open(path, encoding="utf-8") as fh:
            document = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise PersistenceError(f"Cannot read {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise PersistenceError(f"Cannot read {path}: not a JSON object")
    return document


def write_json_document(path: Path, document: dict[str, Any]) -> None:
    """Persist *document* to *path* atomically.

    Writes to a temporary file in the same directory, fsyncs it, then
    atomically replaces the target.  Creates the parent directory if it
    does not exist.

    Raises:
        PersistenceError: If the write fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    except OSError as exc:
        raise PersistenceError(f"Cannot write {path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(document, fh, indent=2, default=str)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException as exc:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if isinstance(exc, (OSError, TypeError, ValueError)):
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc
        raise


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SyncStateStore:
    """Load, mutate and query persisted sync state.

    Args:
        state_dir: Directory holding ``sync_state.json`` (created on first
            write).
    """

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)
        self._path = self._state_dir / STATE_FILENAME
        self._io_lock = threading.RLock()
        self._registry_lock = threading.Lock()
        self._key_locks: dict[str, threading.RLock] = {}

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def lock(self, type_key: str) -> Iterator[None]:
        """Hold the per-key mutex for *type_key* for the ``with`` block."""
        with self._registry_lock:
            key_lock = self._key_locks.setdefault(type_key, threading.RLock())
        with key_lock:
            yield

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        document = read_json_document(
            self._path,
            {"version": DOCUMENT_VERSION, "states": {}, "checkpoints": {}},
        )
        document.setdefault("states", {})
        document.setdefault("checkpoints", {})
        return document

    def _save(self, document: dict[str, Any]) -> None:
        document["version"] = DOCUMENT_VERSION
        write_json_document(self._path, document)

    @staticmethod
    def _parse(raw: dict[str, Any]) -> SyncState:
        try:
            return SyncState.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise PersistenceError(f"Corrupt sync state record: {exc}") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_sync_state(self, type_key: str) -> SyncState | None:
        """Return the state for *type_key*, or ``None`` if never recorded."""
        with self._io_lock:
            raw = self._load()["states"].get(type_key)
        return self._parse(raw) if raw is not None else None

    def require_sync_state(self, type_key: str) -> SyncState:
        """Return the state for *type_key*.

        Raises:
            NotFoundError: If no state has been recorded.
        """
        state = self.get_sync_state(type_key)
        if state is None:
            raise NotFoundError("Sync state", type_key)
        return state

    def get_all_sync_states(self) -> list[SyncState]:
        """Return every recorded state, ordered by type key."""
        with self._io_lock:
            states = self._load()["states"]
        return [self._parse(states[key]) for key in sorted(states)]

    def get_content_types_since(self, timestamp: datetime) -> list[str]:
        """Type keys whose record was updated strictly after *timestamp*."""
        cutoff = _aware(timestamp)
        return [
            s.type_key for s in self.get_all_sync_states() if s.updated_at > cutoff
        ]

    def get_conflicted_types(self) -> list[str]:
        """Type keys with an unresolved (``detected``) conflict."""
        return [
            s.type_key
            for s in self.get_all_sync_states()
            if s.conflict_status is ConflictStatus.DETECTED
        ]

    def get_pending_sync_types(self) -> list[str]:
        """Type keys in ``pending``, ``new`` or ``modified`` status."""
        return [
            s.type_key
            for s in self.get_all_sync_states()
            if s.sync_status in PENDING_STATUSES
        ]

    def detect_interrupted_sync(
        self,
        stale_after: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Type keys stuck in ``syncing``.

        Args:
            stale_after: Only report records not updated for at least this
                long.  ``None`` reports every ``syncing`` record.
            now: Reference time (defaults to the current UTC time).
        """
        reference = _aware(now) if now is not None else _utcnow()
        interrupted = []
        for state in self.get_all_sync_states():
            if state.sync_status is not SyncStatus.SYNCING:
                continue
            if stale_after is not None and reference - state.updated_at < stale_after:
                continue
            interrupted.append(state.type_key)
        return interrupted

    def get_sync_progress(self, type_key: str) -> Any:
        """Return the stored progress payload (``None`` if absent)."""
        state = self.get_sync_state(type_key)
        return state.sync_progress if state is not None else None

    def resume_sync(self, type_key: str) -> Any:
        """Return the progress payload of an interrupted sync, if any."""
        state = self.get_sync_state(type_key)
        if state is None or state.sync_status is not SyncStatus.SYNCING:
            return None
        return state.sync_progress

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @staticmethod
    def _check_transition(current: SyncStatus, target: SyncStatus) -> None:
        if current is target:
            return
        if target not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(
                f"Illegal sync status transition: {current.value} -> {target.value}"
            )

    @staticmethod
    def _check_invariants(state: SyncState) -> None:
        if (
            state.conflict_status is ConflictStatus.DETECTED
            and state.sync_status is not SyncStatus.MODIFIED
        ):
            raise ValidationError(
                f"{state.type_key}: a detected conflict requires status 'modified', "
                f"got '{state.sync_status.value}'"
            )
        if state.sync_status is SyncStatus.IN_SYNC and not (
            state.local_hash == state.remote_hash == state.last_synced_hash
        ):
            raise ValidationError(
                f"{state.type_key}: status 'in_sync' requires equal local, remote "
                "and last synced hashes"
            )

    def _write(
        self,
        type_key: str,
        changes: dict[str, Any],
        *,
        enforce_transition: bool = True,
        checkpoint: bool = False,
    ) -> SyncState:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown sync state field(s): {', '.join(sorted(unknown))}"
            )

        with self._io_lock:
            document = self._load()
            now = _utcnow()
            raw = document["states"].get(type_key)
            if raw is None:
                current = SyncState(type_key=type_key, created_at=now, updated_at=now)
            else:
                current = self._parse(raw)

            merged = {**current.model_dump(), **changes, "updated_at": now}
            try:
                updated = SyncState.model_validate(merged)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"Invalid sync state for {type_key}: {exc}") from exc

            if enforce_transition:
                self._check_transition(current.sync_status, updated.sync_status)
            self._check_invariants(updated)

            document["states"][type_key] = updated.model_dump(mode="json")
            if checkpoint:
                document["checkpoints"][type_key] = {
                    "local_hash": updated.local_hash,
                    "remote_hash": updated.remote_hash,
                    "last_synced_hash": updated.last_synced_hash,
                    "last_sync_at": updated.model_dump(mode="json")["last_sync_at"],
                    "conflict_status": updated.conflict_status.value,
                }
            self._save(document)

        logger.debug(
            "Sync state %s: %s -> %s",
            type_key,
            current.sync_status.value,
            updated.sync_status.value,
        )
        return updated

    def update_sync_state(self, type_key: str, **partial: Any) -> SyncState:
        """Apply a partial update, creating the record if needed.

        Raises:
            ValidationError: On unknown fields, an illegal status transition
                or a violated invariant.
            PersistenceError: If the document cannot be read or written.
        """
        return self._write(type_key, partial)

    def begin_sync(self, type_key: str) -> SyncState:
        """Move *type_key* into ``syncing``.

        Walks ``in_sync -> modified`` first when the record is in sync.
        """
        state = self.get_sync_state(type_key)
        if state is None or state.sync_status is SyncStatus.NEW:
            self._write(type_key, {"sync_status": SyncStatus.PENDING})
        elif state.sync_status is SyncStatus.IN_SYNC:
            self._write(type_key, {"sync_status": SyncStatus.MODIFIED})
        return self._write(type_key, {"sync_status": SyncStatus.SYNCING})

    def mark_as_synced(
        self, type_key: str, local_hash: str, remote_hash: str
    ) -> SyncState:
        """Record a successful sync; also becomes the rollback checkpoint."""
        state = self._write(
            type_key,
            {
                "local_hash": local_hash,
                "remote_hash": remote_hash,
                "last_synced_hash": local_hash,
                "last_sync_at": _utcnow(),
                "sync_status": SyncStatus.IN_SYNC,
                "conflict_status": ConflictStatus.NONE,
                "sync_progress": None,
            },
            checkpoint=True,
        )
        logger.info("Marked %s as in sync (%s)", type_key, local_hash)
        return state

    def mark_as_conflicted(
        self, type_key: str, local_hash: str, remote_hash: str
    ) -> SyncState:
        """Record a detected conflict; status becomes ``modified``."""
        state = self._write(
            type_key,
            {
                "local_hash": local_hash,
                "remote_hash": remote_hash,
                "sync_status": SyncStatus.MODIFIED,
                "conflict_status": ConflictStatus.DETECTED,
                "last_conflict_at": _utcnow(),
            },
        )
        logger.warning("Conflict detected for %s", type_key)
        return state

    def resolve_conflict(self, type_key: str, resolved_hash: str) -> SyncState:
        """Clear the conflict and adopt *resolved_hash* on both sides.

        Status stays ``modified``; a successful re-sync
        (``begin_sync`` then ``mark_as_synced``) moves it to ``in_sync``.

        Raises:
            NotFoundError: If no state has been recorded.
        """
        self.require_sync_state(type_key)
        return self._write(
            type_key,
            {
                "local_hash": resolved_hash,
                "remote_hash": resolved_hash,
                "last_synced_hash": resolved_hash,
                "sync_status": SyncStatus.MODIFIED,
                "conflict_status": ConflictStatus.RESOLVED,
            },
            enforce_transition=False,
        )

    def set_sync_progress(self, type_key: str, progress: Any) -> SyncState:
        """Store *progress* verbatim and mark the type ``syncing``.

        Raises:
            ValidationError: If *progress* is not JSON-serializable.
        """
        try:
            json.dumps(progress)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid sync progress payload: {exc}") from exc
        return self._write(
            type_key,
            {"sync_status": SyncStatus.SYNCING, "sync_progress": progress},
        )

    def rollback_partial_sync(self, type_key: str) -> SyncState | None:
        """Revert *type_key* to its last known-good hashes and mark it failed.

        Hashes and conflict status come from the checkpoint written by the
        last ``mark_as_synced`` (all ``None`` when the type never synced).
        Progress is cleared.

        Returns:
            The state as it was before the rollback, or ``None`` if no state
            had been recorded.
        """
        with self._io_lock:
            document = self._load()
            raw = document["states"].get(type_key)
            if raw is None:
                return None
            previous = self._parse(raw)
            checkpoint = document["checkpoints"].get(type_key, {})
            self._write(
                type_key,
                {
                    "local_hash": checkpoint.get("local_hash"),
                    "remote_hash": checkpoint.get("remote_hash"),
                    "last_synced_hash": checkpoint.get("last_synced_hash"),
                    "last_sync_at": checkpoint.get("last_sync_at"),
                    "conflict_status": checkpoint.get(
                        "conflict_status", ConflictStatus.NONE
                    ),
                    "sync_status": SyncStatus.FAILED,
                    "sync_progress": None,
                },
                enforce_transition=False,
            )
        logger.warning(
            "Rolled back partial sync of %s (was %s)",
            type_key,
            previous.sync_status.value,
        )
        return previous

    def clear_sync_state(self, type_key: str) -> None:
        """Delete the record and checkpoint for *type_key*.

        Raises:
            NotFoundError: If no state has been recorded.
        """
        with self._io_lock:
            document = self._load()
            if type_key not in document["states"]:
                raise NotFoundError("Sync state", type_key)
            del document["states"][type_key]
            document["checkpoints"].pop(type_key, None)
            self._save(document)

    def reset_all_sync_states(self) -> int:
        """Force every record back to ``pending`` and forget checkpoints.

        Returns:
            Number of records reset.
        """
        with self._io_lock:
            document = self._load()
            now = _utcnow()
            for type_key, raw in document["states"].items():
                state = self._parse(raw).model_copy(
                    update={
                        "sync_status": SyncStatus.PENDING,
                        "conflict_status": ConflictStatus.NONE,
                        "sync_progress": None,
                        "last_sync_at": None,
                        "last_synced_hash": None,
                        "updated_at": now,
                    }
                )
                document["states"][type_key] = state.model_dump(mode="json")
            document["checkpoints"] = {}
            self._save(document)
            return len(document["states"])
