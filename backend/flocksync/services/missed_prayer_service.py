# FILE: backend/flocksync/services/missed_prayer_service.py
# SYNC ENGINE - SCHEDULED MISSED-PRAYER JOB
# 1. Per tenant: local time from the tenant's own timezone, never the scheduler's.
# 2. Only inside a short window just after that weekday's session end.
# 3. Undecided members for the local date are merge-written as "Missed".
# 4. A (tenant, date) lock is written only after every chunk committed, so a
#    partial failure is simply retried on the next tick.

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

import structlog
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..core import store
from ..core.config import settings
from ..models.member import FROZEN, IS_ACTIVE
from ..models.prayer import SYSTEM_ACTOR, JobLock, PrayerRecord, PrayerStatus, job_lock_id, prayer_record_id
from ..models.results import ErrorKind, HandlerResult
from ..models.tenant import Tenant
from . import notification_service, prayer_schedule, tenant_service
from .batch_writer import BatchWriter, WriteOp

logger = structlog.get_logger(__name__)

HANDLER = "missed_prayers"

Notifier = Callable[[str, Dict], bool]


def eligible_member_ids(db: Database, tenant_id: str) -> List[str]:
    """Active, non-frozen members. Frozen may be set on the record or as an override."""
    query = {IS_ACTIVE: {"$ne": False}, FROZEN: {"$ne": True}}
    ids = [doc["_id"] for doc in store.members(db, tenant_id).find(query, {"_id": 1})]
    frozen: Set[str] = {
        doc["_id"] for doc in store.member_overrides(db, tenant_id).find({FROZEN: True}, {"_id": 1})
    }
    return [member_id for member_id in ids if member_id not in frozen]


def statuses_for_date(db: Database, tenant_id: str, day: str) -> Dict[str, str]:
    statuses: Dict[str, str] = {}
    for doc in store.prayers(db, tenant_id).find({"date": day}, {"memberId": 1, "status": 1}):
        if doc.get("memberId"):
            statuses[doc["memberId"]] = doc.get("status")
    return statuses


def undecided_members(db: Database, tenant_id: str, day: str) -> List[str]:
    statuses = statuses_for_date(db, tenant_id, day)
    return [
        member_id
        for member_id in eligible_member_ids(db, tenant_id)
        if statuses.get(member_id) != PrayerStatus.PRAYED.value
    ]


def is_locked(db: Database, tenant_id: str, day: str) -> bool:
    return db[store.JOB_LOCKS].find_one({"_id": job_lock_id(tenant_id, day)}, {"_id": 1}) is not None


def write_lock(db: Database, tenant_id: str, day: str, timezone_name: str, marked: int, now: datetime) -> None:
    lock = JobLock(
        id=job_lock_id(tenant_id, day),
        tenant_id=tenant_id,
        date=day,
        timezone=timezone_name,
        marked=marked,
        created_at=now,
        job=HANDLER,
    )
    doc = lock.model_dump(by_alias=True, exclude={"id"})
    db[store.JOB_LOCKS].update_one({"_id": lock.id}, {"$setOnInsert": doc}, upsert=True)


def process_tenant(
    db: Database,
    tenant: Tenant,
    now: datetime,
    writer: Optional[BatchWriter] = None,
    notify: Optional[Notifier] = None,
) -> HandlerResult:
    clock = prayer_schedule.local_clock(now, tenant.settings.timezone)
    log = logger.bind(tenant_id=tenant.id, local_date=clock.date, local_time=clock.time, timezone=clock.timezone)

    if not tenant.settings.features.auto_mark_missed:
        return HandlerResult.skipped(HANDLER, detail="disabled by tenant feature flag")
    if clock.weekday == prayer_schedule.EXCLUDED_WEEKDAY:
        return HandlerResult.skipped(HANDLER, detail="excluded weekday")

    session = prayer_schedule.session_info(clock.date, tenant.settings.prayer_schedules)
    if not prayer_schedule.in_missed_window(clock, session):
        return HandlerResult.skipped(HANDLER, detail="outside missed window")

    try:
        if is_locked(db, tenant.id, clock.date):
            log.debug("missed_prayers.already_processed")
            return HandlerResult.skipped(HANDLER, detail="already processed")
        member_ids = undecided_members(db, tenant.id, clock.date)
    except PyMongoError as e:
        log.error("missed_prayers.read_failed", error=str(e))
        return HandlerResult.failure(HANDLER, ErrorKind.TRANSIENT, detail=str(e))

    collection = store.tenant_collection_name(tenant.id, store.PRAYERS)
    ops = [
        WriteOp.set_merge(
            collection,
            prayer_record_id(member_id, clock.date),
            PrayerRecord(
                id=prayer_record_id(member_id, clock.date),
                member_id=member_id,
                date=clock.date,
                status=PrayerStatus.MISSED,
                recorded_at=now,
                recorded_by=SYSTEM_ACTOR,
            ).to_doc(),
        )
        for member_id in member_ids
    ]

    batch = (writer or BatchWriter(db)).commit(ops)
    if not batch.complete:
        # No lock: the next tick inside the window reprocesses this date.
        log.error("missed_prayers.batch_incomplete", committed=batch.committed, attempted=batch.attempted)
        return HandlerResult.failure(HANDLER, batch.error_kind() or ErrorKind.TRANSIENT, detail=batch.error or "", writes=batch.committed)

    try:
        write_lock(db, tenant.id, clock.date, clock.timezone, batch.committed, now)
    except PyMongoError as e:
        log.error("missed_prayers.lock_failed", error=str(e))
        return HandlerResult.failure(HANDLER, ErrorKind.TRANSIENT, detail=str(e), writes=batch.committed)

    log.info("missed_prayers.marked", marked=batch.committed)
    (notify or notification_service.publish_notice)(
        notification_service.MISSED_MARKED,
        {"tenantId": tenant.id, "date": clock.date, "marked": batch.committed},
    )
    return HandlerResult.success(HANDLER, writes=batch.committed + 1)


def run_tick(
    db: Database,
    now: Optional[datetime] = None,
    writer: Optional[BatchWriter] = None,
    notify: Optional[Notifier] = None,
) -> List[HandlerResult]:
    """Evaluate every tenant once. A failing tenant never stops the others."""
    now = now or datetime.now(timezone.utc)
    results: List[HandlerResult] = []

    try:
        tenants = list(tenant_service.iter_tenants(db))
    except PyMongoError as e:
        logger.error("missed_prayers.tenant_listing_failed", error=str(e))
        return [HandlerResult.failure(HANDLER, ErrorKind.TRANSIENT, detail=str(e))]

    for tenant in tenants:
        try:
            result = process_tenant(db, tenant, now, writer=writer, notify=notify)
        except Exception as e:
            logger.error("missed_prayers.tenant_crashed", tenant_id=tenant.id, error=str(e), exc_info=True)
            result = HandlerResult.failure(HANDLER, ErrorKind.TRANSIENT, detail=str(e))
        if not result.ok:
            logger.error("missed_prayers.tenant_failed", tenant_id=tenant.id, error=result.error, detail=result.detail)
        results.append(result)

    marked = sum(r.writes for r in results if r.ok)
    logger.info("missed_prayers.tick_complete", tenants=len(tenants), writes=marked,
                failed=sum(1 for r in results if not r.ok))
    return results


def cleanup_locks(db: Database, now: Optional[datetime] = None, retention_days: Optional[int] = None) -> int:
    """Delete locks older than the retention period. Returns the number removed."""
    now = now or datetime.now(timezone.utc)
    days = retention_days if retention_days is not None else settings.LOCK_RETENTION_DAYS
    cutoff = now - timedelta(days=days)
    result = db[store.JOB_LOCKS].delete_many({"createdAt": {"$lt": cutoff}})
    logger.info("missed_prayers.locks_cleaned", removed=result.deleted_count, cutoff=cutoff.isoformat())
    return result.deleted_count
