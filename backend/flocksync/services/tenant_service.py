# FILE: backend/flocksync/services/tenant_service.py
# SYNC ENGINE - TENANT DIRECTORY
# 1. Owner -> tenant mapping (which tenants are sources, which are mirrors).
# 2. Administrators of a tenant, re-queried per call (never cached).
# 3. Per-category mirror set, recomputed from live subscriptions per operation.

from typing import Dict, Iterator, List, Optional, Set, Tuple

import structlog
from pydantic import ValidationError
from pymongo.database import Database

from ..core import store
from ..core.config import settings
from ..models.tenant import Tenant
from ..models.user import OwnerMapping, UserProfile

logger = structlog.get_logger(__name__)


def _load_tenant(doc: Dict) -> Optional[Tenant]:
    try:
        return Tenant.from_doc(doc)
    except ValidationError as e:
        # A malformed tenant opts out until its settings are fixed.
        logger.warning("tenant.invalid_document", tenant_id=doc.get("_id"), errors=e.error_count(), error=str(e))
        return None


def get_tenant(db: Database, tenant_id: str) -> Optional[Tenant]:
    doc = db[store.TENANTS].find_one({"_id": tenant_id})
    if not doc:
        return None
    return _load_tenant(doc)


def iter_tenants(db: Database) -> Iterator[Tenant]:
    """Every valid tenant in id order. Invalid documents are logged and skipped."""
    for doc in db[store.TENANTS].find({}).sort("_id", 1):
        tenant = _load_tenant(doc)
        if tenant is not None:
            yield tenant


def iter_tenant_counts(db: Database) -> Iterator[Tuple[str, int]]:
    """(tenant id, stored memberCount) for every tenant, settings unparsed.

    Counter reconciliation must still reach tenants whose settings are invalid.
    """
    for doc in db[store.TENANTS].find({}, {"memberCount": 1}).sort("_id", 1):
        stored = doc.get("memberCount")
        yield str(doc["_id"]), stored if isinstance(stored, int) else 0


def get_user(db: Database, user_id: str) -> Optional[UserProfile]:
    doc = db[store.USERS].find_one({"_id": user_id})
    if not doc:
        return None
    try:
        return UserProfile.model_validate(doc)
    except ValidationError as e:
        logger.warning("tenant.invalid_user_document", user_id=user_id, error=str(e))
        return None


def resolve_owner_mapping(db: Database, tenant_id: str) -> Optional[OwnerMapping]:
    """Follow tenant.ownerId to the owner's profile and read its tenant pair.

    Returns None when the tenant, its owner reference or the owner's profile
    is missing; callers treat that as an opt-out, not an error.
    """
    tenant = get_tenant(db, tenant_id)
    if tenant is None or not tenant.owner_id:
        return None

    owner = get_user(db, tenant.owner_id)
    if owner is None:
        return None

    return OwnerMapping(
        owner_id=owner.id,
        # Legacy profiles only carry churchId for their default tenant.
        default_tenant_id=owner.contexts.default_church_id or (
            owner.church_id if not owner.is_ministry_account else None
        ),
        mirror_tenant_id=owner.contexts.ministry_church_id,
        is_ministry_account=owner.is_ministry_account,
    )


def is_source_tenant(db: Database, tenant_id: str) -> bool:
    mapping = resolve_owner_mapping(db, tenant_id)
    return mapping is not None and mapping.is_source(tenant_id)


def admin_filter(tenant_id: str) -> Dict:
    return {"churchId": tenant_id, "role": {"$in": list(settings.ADMIN_ROLES)}}


def get_admin_ids(db: Database, tenant_id: str) -> List[str]:
    return [doc["_id"] for doc in db[store.USERS].find(admin_filter(tenant_id), {"_id": 1})]


def resolve_mirror_set(db: Database, category: str, exclude: Optional[str] = None) -> Set[str]:
    """Tenants whose administrator subscribes to `category`.

    Backed by a live query on every call; subscriptions change independently
    of member writes.
    """
    category = (category or "").strip()
    if not category:
        return set()

    cursor = db[store.USERS].find(
        {"isMinistryAccount": True, "preferences.ministryName": category},
        {"contexts": 1, "churchId": 1},
    )
    mirror_ids: Set[str] = set()
    for doc in cursor:
        contexts = doc.get("contexts") or {}
        tenant_id = contexts.get("ministryChurchId") or doc.get("churchId")
        if tenant_id and tenant_id != exclude:
            mirror_ids.add(tenant_id)
    return mirror_ids


def subscribed_categories(db: Database) -> List[str]:
    values = db[store.USERS].distinct("preferences.ministryName", {"isMinistryAccount": True})
    return sorted({v.strip() for v in values if isinstance(v, str) and v.strip()})


def iter_source_tenant_ids(db: Database) -> Iterator[str]:
    for tenant in iter_tenants(db):
        if is_source_tenant(db, tenant.id):
            yield tenant.id
