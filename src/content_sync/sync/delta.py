"""Decide a sync action from current hashes and stored sync state.

Each side is compared against its own archived hash in the stored
``SyncState``; local and remote fingerprints are never compared with each
other here.  The function is pure so it can be exercised without any
persistence layer.
"""

from __future__ import annotations

from .models import Delta, SyncAction, SyncState

RECOMMENDATIONS: dict[SyncAction, str] = {
    SyncAction.INITIAL_SYNC: "perform initial synchronization of this content type",
    SyncAction.PUSH: "push local changes to remote system",
    SyncAction.PULL: "pull remote changes to local store",
    SyncAction.CONFLICT: "resolve conflict between local and remote changes",
    SyncAction.NO_CHANGE: "no action needed, content is in sync",
}


def recommendation_for(action: SyncAction) -> str:
    """Return the display recommendation for *action*."""
    return RECOMMENDATIONS[action]


def calculate_delta(
    current_local_hash: str,
    current_remote_hash: str,
    stored_state: SyncState | None,
) -> Delta:
    """Decide which sync action the current hashes call for.

    Rules, first match wins:

    1. No stored state -> ``INITIAL_SYNC``.
    2. Both hashes match the stored ones -> ``NO_CHANGE``.
    3. Only the local hash differs -> ``PUSH``.
    4. Only the remote hash differs -> ``PULL``.
    5. Both differ -> ``CONFLICT``.

    Args:
        current_local_hash: Fingerprint of the current local content.
        current_remote_hash: Fingerprint of the current remote content.
        stored_state: Persisted state for the content type, or ``None``.

    Returns:
        The chosen ``Delta`` with a short rationale.
    """
    if stored_state is None:
        return Delta(
            action=SyncAction.INITIAL_SYNC,
            rationale="no sync state recorded for this content type",
        )

    local_changed = current_local_hash != stored_state.local_hash
    remote_changed = current_remote_hash != stored_state.remote_hash

    match (local_changed, remote_changed):
        case (False, False):
            return Delta(
                action=SyncAction.NO_CHANGE,
                rationale="local and remote hashes match the stored state",
            )
        case (True, False):
            return Delta(
                action=SyncAction.PUSH,
                rationale="local content changed since the last sync",
            )
        case (False, True):
            return Delta(
                action=SyncAction.PULL,
                rationale="remote content changed since the last sync",
            )
        case _:
            return Delta(
                action=SyncAction.CONFLICT,
                rationale="local and remote content both changed since the last sync",
            )
