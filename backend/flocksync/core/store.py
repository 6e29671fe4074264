# FILE: backend/flocksync/core/store.py
# Store layout. Per-tenant data lives in dotted sub-collections
# ("churches.<tenantId>.members") so a mirror copy keeps its source's _id.

from typing import Optional, Tuple

from pymongo.collection import Collection
from pymongo.database import Database

TENANTS = "churches"
USERS = "users"
JOB_LOCKS = "prayer_job_locks"

MEMBERS = "members"
PRAYERS = "prayers"
MEMBER_OVERRIDES = "memberOverrides"


def tenant_collection_name(tenant_id: str, name: str) -> str:
    return f"{TENANTS}.{tenant_id}.{name}"


def tenant_collection(db: Database, tenant_id: str, name: str) -> Collection:
    return db[tenant_collection_name(tenant_id, name)]


def members(db: Database, tenant_id: str) -> Collection:
    return tenant_collection(db, tenant_id, MEMBERS)


def prayers(db: Database, tenant_id: str) -> Collection:
    return tenant_collection(db, tenant_id, PRAYERS)


def member_overrides(db: Database, tenant_id: str) -> Collection:
    return tenant_collection(db, tenant_id, MEMBER_OVERRIDES)


def parse_tenant_collection(full_name: str) -> Optional[Tuple[str, str]]:
    """Split "churches.<tenantId>.<name>" into (tenantId, name).

    Tenant ids never contain dots; anything that does not match the layout
    returns None.
    """
    parts = full_name.split(".")
    if len(parts) != 3 or parts[0] != TENANTS or not parts[1]:
        return None
    return parts[1], parts[2]
