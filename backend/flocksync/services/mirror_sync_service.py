# FILE: backend/flocksync/services/mirror_sync_service.py
# SYNC ENGINE - TENANT MIRROR SYNC
# 1. FORWARD: a member write in a source tenant is upserted into (or removed
#    from) every mirror tenant subscribed to the member's category.
# 2. REVERSE: an edit to a mirror copy pushes an allow-listed subset of fields
#    back to the source document. Never deletes the source.
# 3. BULK: backfill(tenant) and cross_category_sync(category) re-run the
#    forward upsert for every qualifying member.
#
# Mirror copies reuse the source document id, so every write here is an
# idempotent merge-upsert or delete by id. Mirror sets are resolved from live
# subscriptions on every call.

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..core import store
from ..core.config import settings
from ..models.common import ChangeEvent, OperationSummary
from ..models.member import (
    CATEGORY,
    DETACHED_FIELDS,
    IS_ACTIVE,
    SYNC_METADATA,
    SyncDirection,
    category_of,
    is_countable,
    synced_from,
)
from ..models.results import ErrorKind, HandlerResult
from . import provenance, tenant_service
from .batch_writer import BatchWriter, WriteOp

logger = structlog.get_logger(__name__)

FORWARD_HANDLER = "mirror.forward"
REVERSE_HANDLER = "mirror.reverse"


def build_mirror_payload(source_doc: Mapping[str, Any], source_tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Copy of a source member for a mirror tenant, detached and tagged."""
    payload = {k: v for k, v in source_doc.items() if k not in ("_id", SYNC_METADATA)}
    payload.update(DETACHED_FIELDS)
    return provenance.tag(payload, source_tenant_id, SyncDirection.FORWARD, now=now)


def upsert_ops(member_id: str, payload: Dict[str, Any], mirror_ids: Iterable[str]) -> List[WriteOp]:
    return [
        WriteOp.set_merge(store.tenant_collection_name(mirror_id, store.MEMBERS), member_id, payload)
        for mirror_id in sorted(mirror_ids)
    ]


def delete_ops(member_id: str, mirror_ids: Iterable[str]) -> List[WriteOp]:
    return [
        WriteOp.delete(store.tenant_collection_name(mirror_id, store.MEMBERS), member_id)
        for mirror_id in sorted(mirror_ids)
    ]


def plan_forward(
    db: Database,
    tenant_id: str,
    member_id: str,
    before: Optional[Mapping[str, Any]],
    after: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> List[WriteOp]:
    previous = category_of(before)
    current = category_of(after)

    if after is None or not current or not is_countable(after):
        # Deleted, category cleared or deactivated: remove everywhere it was mirrored.
        category = previous or current
        if not category:
            return []
        return delete_ops(member_id, tenant_service.resolve_mirror_set(db, category, exclude=tenant_id))

    targets = tenant_service.resolve_mirror_set(db, current, exclude=tenant_id)
    ops = upsert_ops(member_id, build_mirror_payload(after, tenant_id, now=now), targets)

    if previous and previous != current:
        stale = tenant_service.resolve_mirror_set(db, previous, exclude=tenant_id) - targets
        ops.extend(delete_ops(member_id, stale))
    return ops


def sync_forward(
    db: Database,
    event: ChangeEvent,
    writer: Optional[BatchWriter] = None,
    now: Optional[datetime] = None,
) -> HandlerResult:
    log = logger.bind(tenant_id=event.tenant_id, member_id=event.member_id, event_id=event.event_id)

    try:
        mapping = tenant_service.resolve_owner_mapping(db, event.tenant_id)
    except PyMongoError as e:
        log.error("mirror.forward.mapping_failed", error=str(e))
        return HandlerResult.failure(FORWARD_HANDLER, ErrorKind.TRANSIENT, detail=str(e))

    if mapping is None:
        return HandlerResult.skipped(FORWARD_HANDLER, detail="no owner mapping", error=ErrorKind.MISSING_CONFIG)
    if not mapping.is_source(event.tenant_id):
        return HandlerResult.skipped(FORWARD_HANDLER, detail="not a source tenant")
    if provenance.should_skip(event.before, event.after, SyncDirection.FORWARD):
        log.debug("mirror.forward.loop_suppressed")
        return HandlerResult.skipped(FORWARD_HANDLER, detail="write produced by reverse sync")

    try:
        ops = plan_forward(db, event.tenant_id, event.member_id, event.before, event.after, now=now)
    except PyMongoError as e:
        log.error("mirror.forward.plan_failed", error=str(e))
        return HandlerResult.failure(FORWARD_HANDLER, ErrorKind.TRANSIENT, detail=str(e))

    if not ops:
        return HandlerResult.skipped(FORWARD_HANDLER, detail="no mirror subscribes to this category")

    batch = (writer or BatchWriter(db)).commit(ops)
    if not batch.complete:
        log.error("mirror.forward.incomplete", committed=batch.committed, attempted=batch.attempted)
        return HandlerResult.failure(FORWARD_HANDLER, batch.error_kind() or ErrorKind.TRANSIENT, detail=batch.error or "", writes=batch.committed)

    log.info("mirror.forward.synced", writes=batch.committed)
    return HandlerResult.success(FORWARD_HANDLER, writes=batch.committed)


def changed_sync_fields(before: Optional[Mapping[str, Any]], after: Mapping[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name in settings.REVERSE_SYNC_FIELDS:
        if name not in after:
            continue
        if before is not None and before.get(name) == after.get(name):
            continue
        fields[name] = after[name]
    return fields


def sync_reverse(db: Database, event: ChangeEvent, now: Optional[datetime] = None) -> HandlerResult:
    log = logger.bind(tenant_id=event.tenant_id, member_id=event.member_id, event_id=event.event_id)

    if event.after is None:
        return HandlerResult.skipped(REVERSE_HANDLER, detail="reverse sync never deletes")

    origin = synced_from(event.after)
    if origin is None or origin.tenant_id == event.tenant_id:
        return HandlerResult.skipped(REVERSE_HANDLER, detail="not a mirror copy")
    if provenance.should_skip(event.before, event.after, SyncDirection.REVERSE):
        log.debug("mirror.reverse.loop_suppressed")
        return HandlerResult.skipped(REVERSE_HANDLER, detail="write produced by forward sync")

    fields = changed_sync_fields(event.before, event.after)
    if not fields:
        return HandlerResult.skipped(REVERSE_HANDLER, detail="no allow-listed field changed")

    stamp = now or datetime.now(timezone.utc)
    update = provenance.tag(fields, event.tenant_id, SyncDirection.REVERSE, now=stamp)
    update["lastUpdated"] = stamp.isoformat()

    try:
        result = store.members(db, origin.tenant_id).update_one({"_id": event.member_id}, {"$set": update})
    except PyMongoError as e:
        log.error("mirror.reverse.failed", source_tenant_id=origin.tenant_id, error=str(e))
        return HandlerResult.failure(REVERSE_HANDLER, ErrorKind.TRANSIENT, detail=str(e))

    if result.matched_count == 0:
        log.warning("mirror.reverse.source_missing", source_tenant_id=origin.tenant_id)
        return HandlerResult.skipped(REVERSE_HANDLER, detail="source document not found")

    log.info("mirror.reverse.synced", source_tenant_id=origin.tenant_id, fields=sorted(fields))
    return HandlerResult.success(REVERSE_HANDLER, writes=1)


def _qualifying_filter(category: Optional[str] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {IS_ACTIVE: {"$ne": False}}
    if category:
        query[CATEGORY] = category
    return query


def backfill(
    db: Database,
    tenant_id: str,
    writer: Optional[BatchWriter] = None,
    now: Optional[datetime] = None,
) -> OperationSummary:
    """Re-run the forward upsert for every qualifying member of one source tenant."""
    log = logger.bind(tenant_id=tenant_id)
    summary = OperationSummary(tenants=1)

    mapping = tenant_service.resolve_owner_mapping(db, tenant_id)
    if mapping is None or not mapping.is_source(tenant_id):
        log.warning("mirror.backfill.not_source")
        summary.success = False
        summary.tenants = 0
        summary.details["reason"] = "not a source tenant"
        return summary

    stamp = now or datetime.now(timezone.utc)
    mirror_sets: Dict[str, Set[str]] = {}
    ops: List[WriteOp] = []

    for doc in store.members(db, tenant_id).find(_qualifying_filter()):
        category = category_of(doc)
        if not category:
            continue
        if category not in mirror_sets:
            mirror_sets[category] = tenant_service.resolve_mirror_set(db, category, exclude=tenant_id)
        ops.extend(upsert_ops(doc["_id"], build_mirror_payload(doc, tenant_id, now=stamp), mirror_sets[category]))

    batch = (writer or BatchWriter(db)).commit(ops)
    summary.synced = batch.committed
    summary.success = batch.complete
    summary.failures = batch.attempted - batch.committed
    summary.details["categories"] = sorted(mirror_sets)
    log.info("mirror.backfill.complete", synced=summary.synced, attempted=batch.attempted)
    return summary


def cross_category_sync(
    db: Database,
    category: Optional[str] = None,
    writer: Optional[BatchWriter] = None,
    now: Optional[datetime] = None,
) -> OperationSummary:
    """Re-run the forward upsert for one category across every source tenant.

    Without a category, every category that has at least one subscribed
    mirror is synced.
    """
    categories = [category.strip()] if category and category.strip() else tenant_service.subscribed_categories(db)
    summary = OperationSummary()
    summary.details["categories"] = categories
    if not categories:
        return summary

    stamp = now or datetime.now(timezone.utc)
    writer = writer or BatchWriter(db)
    ops: List[WriteOp] = []

    for tenant_id in tenant_service.iter_source_tenant_ids(db):
        summary.tenants += 1
        for name in categories:
            targets = tenant_service.resolve_mirror_set(db, name, exclude=tenant_id)
            if not targets:
                continue
            for doc in store.members(db, tenant_id).find(_qualifying_filter(name)):
                ops.extend(upsert_ops(doc["_id"], build_mirror_payload(doc, tenant_id, now=stamp), targets))

    batch = writer.commit(ops)
    summary.synced = batch.committed
    summary.success = batch.complete
    summary.failures = batch.attempted - batch.committed
    logger.info("mirror.cross_category.complete", categories=categories, synced=summary.synced)
    return summary
