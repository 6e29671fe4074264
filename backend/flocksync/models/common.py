# FILE: backend/flocksync/models/common.py
# Change events as delivered to trigger handlers. A handler only ever sees the
# before/after images of one member document; the tenant is explicit.

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional


class ChangeType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    tenant_id: str
    member_id: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    # Set by the change source; inferred from the images when absent.
    operation: Optional[ChangeType] = None
    # Opaque id from the change source; used only for log correlation.
    event_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def change_type(self) -> ChangeType:
        if self.operation is not None:
            return self.operation
        if self.before is None:
            return ChangeType.CREATE
        if self.after is None:
            return ChangeType.DELETE
        return ChangeType.UPDATE


class OperationSummary(BaseModel):
    """Returned to privileged callers of the bulk operations."""
    success: bool = True
    synced: int = 0
    removed: int = 0
    tenants: int = 0
    updated: int = 0
    deleted: int = 0
    failures: int = 0
    dry_run: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
