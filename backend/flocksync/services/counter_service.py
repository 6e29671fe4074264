# FILE: backend/flocksync/services/counter_service.py
# SYNC ENGINE - COUNTER MAINTENANCE
# 1. Signed delta per member event, applied with $inc (never read-modify-write).
# 2. Tenant counter and every administrator of that tenant move in lockstep.
# 3. recompute_all() overwrites counters from a direct count to correct drift.
# 4. purge_inactive() hard-deletes soft-deleted members, then recomputes.

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..core import store
from ..models.common import ChangeEvent, ChangeType, OperationSummary
from ..models.member import IS_ACTIVE, is_countable
from ..models.results import ErrorKind, HandlerResult
from . import tenant_service
from .batch_writer import BatchWriter, WriteOp

logger = structlog.get_logger(__name__)

HANDLER = "counter"
COUNT_FIELD = "memberCount"
ACTIVE_FILTER: Dict[str, Any] = {IS_ACTIVE: {"$ne": False}}
INACTIVE_FILTER: Dict[str, Any] = {IS_ACTIVE: False}


def compute_delta(before: Optional[Mapping[str, Any]], after: Optional[Mapping[str, Any]]) -> int:
    """+1 when a member becomes countable, -1 when it stops, 0 otherwise.

    Covers create (before is None), delete (after is None) and update; an
    update that leaves active-ness unchanged yields 0.
    """
    return int(is_countable(after)) - int(is_countable(before))


def apply_delta(db: Database, tenant_id: str, delta: int, writer: Optional[BatchWriter] = None) -> HandlerResult:
    """Increment the tenant and its administrators in one ordered batch.

    Administrators are looked up before anything is written, so a failed read
    leaves nothing applied and the handler can safely be retried. Once part of
    the batch has landed a retry would double-count; that failure is reported
    as not retryable and recompute_all() repairs the remainder.
    """
    log = logger.bind(tenant_id=tenant_id, delta=delta)
    if delta == 0:
        return HandlerResult.skipped(HANDLER, detail="no change in active-ness")

    try:
        admin_ids = tenant_service.get_admin_ids(db, tenant_id)
    except PyMongoError as e:
        log.error("counter.admin_lookup_failed", error=str(e))
        return HandlerResult.failure(HANDLER, ErrorKind.TRANSIENT, detail=str(e))

    ops = [WriteOp.increment(store.TENANTS, tenant_id, COUNT_FIELD, delta)]
    ops.extend(WriteOp.increment(store.USERS, admin_id, COUNT_FIELD, delta) for admin_id in admin_ids)
    batch = (writer or BatchWriter(db)).commit(ops)

    if not batch.complete:
        kind = batch.error_kind() or ErrorKind.TRANSIENT
        retryable = batch.committed == 0
        log.error("counter.increment_incomplete", committed=batch.committed, attempted=batch.attempted,
                  retryable=retryable)
        return HandlerResult.failure(HANDLER, kind, detail=batch.error or "", writes=batch.committed,
                                     retryable=retryable)

    log.info("counter.delta_applied", admins=len(admin_ids))
    return HandlerResult.success(HANDLER, writes=batch.committed)


def handle_member_change(db: Database, event: ChangeEvent, writer: Optional[BatchWriter] = None) -> HandlerResult:
    if event.before is None and event.change_type is not ChangeType.CREATE:
        # Without a pre-image the delta is unknowable; recompute_all() repairs it.
        logger.warning("counter.missing_pre_image", tenant_id=event.tenant_id, member_id=event.member_id)
        return HandlerResult.skipped(HANDLER, detail="no pre-image", error=ErrorKind.MISSING_CONFIG)
    delta = compute_delta(event.before, event.after)
    return apply_delta(db, event.tenant_id, delta, writer=writer)


def count_active_members(db: Database, tenant_id: str) -> int:
    return store.members(db, tenant_id).count_documents(ACTIVE_FILTER)


def recompute_all(db: Database, dry_run: bool = False, writer: Optional[BatchWriter] = None) -> OperationSummary:
    """Overwrite every tenant's and administrator's memberCount with the exact count."""
    writer = writer or BatchWriter(db)
    summary = OperationSummary(dry_run=dry_run)
    ops: List[WriteOp] = []
    counts: Dict[str, int] = {}
    now = datetime.now(timezone.utc)

    for tenant_id, stored in tenant_service.iter_tenant_counts(db):
        count = count_active_members(db, tenant_id)
        counts[tenant_id] = count
        summary.tenants += 1
        if stored != count:
            logger.info("counter.drift_detected", tenant_id=tenant_id, stored=stored, computed=count)
        ops.append(WriteOp.set_merge(store.TENANTS, tenant_id, {COUNT_FIELD: count, "memberCountUpdatedAt": now}))
        for admin_id in tenant_service.get_admin_ids(db, tenant_id):
            ops.append(WriteOp.set_merge(store.USERS, admin_id, {COUNT_FIELD: count}))

    summary.details["counts"] = counts
    if dry_run:
        summary.updated = len(ops)
        return summary

    batch = writer.commit(ops)
    summary.updated = batch.committed
    summary.success = batch.complete
    if not batch.complete:
        summary.failures = batch.attempted - batch.committed
        logger.error("counter.recompute_incomplete", committed=batch.committed, attempted=batch.attempted)
    else:
        logger.info("counter.recompute_complete", tenants=summary.tenants, updated=summary.updated)
    return summary


def purge_inactive(db: Database, dry_run: bool = False, writer: Optional[BatchWriter] = None) -> OperationSummary:
    """Hard-delete every member with isActive == False in every tenant, then recompute.

    Irreversible. Only reachable from explicit maintenance entry points.
    """
    writer = writer or BatchWriter(db)
    ops: List[WriteOp] = []
    per_tenant: Dict[str, int] = {}

    for tenant_id, _ in tenant_service.iter_tenant_counts(db):
        collection = store.members(db, tenant_id)
        ids = [doc["_id"] for doc in collection.find(INACTIVE_FILTER, {"_id": 1})]
        if ids:
            per_tenant[tenant_id] = len(ids)
            ops.extend(WriteOp.delete(collection.name, member_id) for member_id in ids)

    if dry_run:
        summary = recompute_all(db, dry_run=True, writer=writer)
        summary.deleted = len(ops)
        summary.details["purged"] = per_tenant
        return summary

    batch = writer.commit(ops)
    logger.warning("counter.purge_inactive", deleted=batch.committed, tenants=len(per_tenant))
    summary = recompute_all(db, writer=writer)
    summary.deleted = batch.committed
    summary.details["purged"] = per_tenant
    if not batch.complete:
        summary.success = False
        summary.failures += batch.attempted - batch.committed
    return summary
