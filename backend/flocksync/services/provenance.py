# FILE: backend/flocksync/services/provenance.py
# SYNC ENGINE - PROVENANCE TAGGER
# Every mirrored write carries an origin marker. A trigger recognises a write
# the engine itself produced in the opposite direction and does nothing.
#
# The check is advisory: it reads a data field, it is not a transactional
# fence. The tag shape (syncedFrom / syncOrigin / syncMetadata) is the one
# already stored on documents written by the client application.

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from ..models.member import (
    SYNC_METADATA,
    SYNC_ORIGIN,
    SYNCED_FROM,
    SyncDirection,
    sync_origin,
)

REVERSE_DIRECTION_LABEL = "ministry-to-normal"


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def tag(
    payload: Dict[str, Any],
    source_tenant_id: str,
    direction: SyncDirection = SyncDirection.FORWARD,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return a copy of payload stamped with where and in which direction it was produced."""
    tagged = dict(payload)
    at = _timestamp(now)
    tagged[SYNC_ORIGIN] = direction.value
    if direction is SyncDirection.FORWARD:
        tagged[SYNCED_FROM] = {"churchId": source_tenant_id, "at": at}
    else:
        tagged[SYNC_METADATA] = {
            "sourceChurchId": source_tenant_id,
            "syncedAt": at,
            "syncDirection": REVERSE_DIRECTION_LABEL,
        }
    return tagged


def _stamp(doc: Mapping[str, Any], direction: SyncDirection) -> Optional[str]:
    if direction is SyncDirection.FORWARD:
        block = doc.get(SYNCED_FROM)
        key = "at"
    else:
        block = doc.get(SYNC_METADATA)
        key = "syncedAt"
    if not isinstance(block, dict):
        return None
    value = block.get(key)
    return str(value) if value is not None else None


def produced_by(
    before: Optional[Mapping[str, Any]],
    after: Optional[Mapping[str, Any]],
    direction: SyncDirection,
) -> bool:
    """True when this particular write was stamped by the engine in `direction`.

    The marker persists on the document after the engine's write, so a later
    ordinary edit still carries it; only a fresh stamp identifies the engine's
    own write.
    """
    if after is None or sync_origin(after) is not direction:
        return False
    if before is None or sync_origin(before) is not direction:
        return True
    return _stamp(after, direction) != _stamp(before, direction)


def should_skip(
    before: Optional[Mapping[str, Any]],
    after: Optional[Mapping[str, Any]],
    executing: SyncDirection,
) -> bool:
    """Skip when the triggering write came from the engine running the other way."""
    return produced_by(before, after, executing.opposite)
