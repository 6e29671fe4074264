"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import mongomock
import pytest

from flocksync.core import store
from flocksync.services.batch_writer import BatchWriter

SOURCE = "src"
MIRROR_WORSHIP = "mirA"
MIRROR_USHERS = "mirB"
OTHER = "plain"

FIXED_NOW = datetime(2025, 1, 14, 11, 31, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    client = mongomock.MongoClient()
    yield client["flock"]
    client.close()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def notify():
    """Stand-in for the Redis notice publisher."""
    return MagicMock(return_value=True)


def add_tenant(db, tenant_id: str, owner_id: Optional[str] = None, member_count: int = 0,
               settings: Optional[Dict[str, Any]] = None) -> None:
    doc: Dict[str, Any] = {"_id": tenant_id, "name": tenant_id.title(), "memberCount": member_count}
    if owner_id:
        doc["ownerId"] = owner_id
    if settings is not None:
        doc["settings"] = settings
    db[store.TENANTS].insert_one(doc)


def add_user(db, user_id: str, church_id: str, role: str = "admin", **extra: Any) -> None:
    db[store.USERS].insert_one({"_id": user_id, "churchId": church_id, "role": role, "memberCount": 0, **extra})


def add_member(db, tenant_id: str, member_id: str, **fields: Any) -> Dict[str, Any]:
    doc = {"_id": member_id, "firstName": member_id.title(), "isActive": True, **fields}
    store.members(db, tenant_id).insert_one(doc)
    return doc


def seed_network(db) -> None:
    """One source tenant, two mirror tenants (Worship, Ushers) and an unrelated tenant.

    src has two administrators plus one non-admin profile.
    """
    add_tenant(db, SOURCE, owner_id="owner")
    add_tenant(db, MIRROR_WORSHIP, owner_id="worship_lead")
    add_tenant(db, MIRROR_USHERS, owner_id="usher_lead")
    add_tenant(db, OTHER, owner_id="plain_owner")

    add_user(db, "owner", SOURCE, contexts={"defaultChurchId": SOURCE, "ministryChurchId": MIRROR_WORSHIP})
    add_user(db, "co_admin", SOURCE)
    add_user(db, "viewer", SOURCE, role="member")
    add_user(db, "worship_lead", MIRROR_WORSHIP, isMinistryAccount=True,
             preferences={"ministryName": "Worship"}, contexts={"ministryChurchId": MIRROR_WORSHIP})
    add_user(db, "usher_lead", MIRROR_USHERS, isMinistryAccount=True,
             preferences={"ministryName": "Ushers"})
    add_user(db, "plain_owner", OTHER)


@pytest.fixture
def network(db):
    seed_network(db)
    return db


class RecordingWriter(BatchWriter):
    """BatchWriter that records chunk sizes and can fail a given chunk."""

    def __init__(self, db, limit: Optional[int] = None, fail_on_chunk: Optional[int] = None):
        super().__init__(db, limit=limit)
        self.fail_on_chunk = fail_on_chunk
        self.chunk_sizes: List[int] = []

    def _commit_chunk(self, chunk):
        from pymongo.errors import AutoReconnect

        if self.fail_on_chunk is not None and len(self.chunk_sizes) == self.fail_on_chunk:
            self.chunk_sizes.append(-len(chunk))
            raise AutoReconnect("connection reset")
        self.chunk_sizes.append(len(chunk))
        super()._commit_chunk(chunk)

    @property
    def operations(self) -> int:
        return sum(size for size in self.chunk_sizes if size > 0)


class GroupFailingWriter(BatchWriter):
    """BatchWriter whose bulk write to one collection stops after `fail_at` requests."""

    def __init__(self, db, collection: str, fail_at: int = 0, limit: Optional[int] = None):
        super().__init__(db, limit=limit)
        self.collection = collection
        self.fail_at = fail_at
        self.groups: List[tuple] = []

    def _commit_group(self, collection, requests):
        from pymongo.errors import AutoReconnect, BulkWriteError

        self.groups.append((collection, len(requests)))
        if collection != self.collection:
            return super()._commit_group(collection, requests)
        if self.fail_at == 0:
            raise AutoReconnect("connection reset")
        super()._commit_group(collection, requests[:self.fail_at])
        raise BulkWriteError({
            "writeErrors": [{"index": self.fail_at, "code": 11000, "errmsg": "duplicate key"}],
            "nInserted": 0, "nUpserted": 0, "nMatched": self.fail_at, "nModified": self.fail_at,
            "nRemoved": 0, "upserted": [],
        })
