# FILE: backend/flocksync/models/member.py
# Member records are handled as raw documents (the client owns the schema);
# this module only names the fields the sync engine reads or writes.

from enum import Enum
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, Mapping, Optional

IS_ACTIVE = "isActive"
CATEGORY = "ministry"
FROZEN = "frozen"
SYNCED_FROM = "syncedFrom"
SYNC_ORIGIN = "syncOrigin"
SYNC_METADATA = "syncMetadata"

# Source-only structural references; meaningless outside the source tenant.
DETACHED_FIELDS: Dict[str, Any] = {"bacentaId": ""}


class SyncDirection(str, Enum):
    # Values are the syncOrigin markers already present on stored documents.
    FORWARD = "default"
    REVERSE = "ministry"

    @property
    def opposite(self) -> "SyncDirection":
        return SyncDirection.REVERSE if self is SyncDirection.FORWARD else SyncDirection.FORWARD


class SyncedFrom(BaseModel):
    tenant_id: str = Field(alias="churchId")
    at: str

    model_config = ConfigDict(populate_by_name=True)


def is_countable(doc: Optional[Mapping[str, Any]]) -> bool:
    """A member counts unless isActive is explicitly False."""
    return doc is not None and doc.get(IS_ACTIVE) is not False


def category_of(doc: Optional[Mapping[str, Any]]) -> str:
    if not doc:
        return ""
    value = doc.get(CATEGORY)
    return value.strip() if isinstance(value, str) else ""


def synced_from(doc: Optional[Mapping[str, Any]]) -> Optional[SyncedFrom]:
    if not doc:
        return None
    raw = doc.get(SYNCED_FROM)
    if not isinstance(raw, dict) or not raw.get("churchId"):
        return None
    return SyncedFrom.model_validate({"churchId": raw["churchId"], "at": str(raw.get("at", ""))})


def sync_origin(doc: Optional[Mapping[str, Any]]) -> Optional[SyncDirection]:
    if not doc:
        return None
    try:
        return SyncDirection(doc.get(SYNC_ORIGIN))
    except ValueError:
        return None
