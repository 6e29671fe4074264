# FILE: backend/flocksync/api/endpoints/maintenance.py
# Administrative callables: counter reconciliation, purge, mirror backfill and
# cross-category sync. Every route depends on get_current_admin_user, so the
# role check completes before any write.

from fastapi import APIRouter, Body, Depends, HTTPException, status
from typing import Annotated, Optional
from pymongo.database import Database
import structlog

from .dependencies import get_current_admin_user
from ...core.db import get_db
from ...models.common import OperationSummary
from ...models.user import UserProfile
from ...services import counter_service, mirror_sync_service, notification_service

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Maintenance"])


def _administers(user: UserProfile, tenant_id: str) -> bool:
    return tenant_id in {
        user.church_id,
        user.contexts.default_church_id,
        user.contexts.ministry_church_id,
    }


@router.post("/maintenance/recompute-counts", response_model=OperationSummary)
def recompute_counts(
    admin: Annotated[UserProfile, Depends(get_current_admin_user)],
    dry_run: bool = Body(False, embed=True),
    db: Database = Depends(get_db),
):
    logger.info("maintenance.recompute_counts.requested", user_id=admin.id, dry_run=dry_run)
    summary = counter_service.recompute_all(db, dry_run=dry_run)
    if not dry_run:
        notification_service.publish_notice(
            notification_service.COUNTERS_RECOMPUTED,
            {"tenants": summary.tenants, "updated": summary.updated, "requestedBy": admin.id},
        )
    return summary


@router.post("/maintenance/purge-inactive", response_model=OperationSummary)
def purge_inactive(
    admin: Annotated[UserProfile, Depends(get_current_admin_user)],
    dry_run: bool = Body(False, embed=True),
    confirm: bool = Body(False, embed=True),
    db: Database = Depends(get_db),
):
    if not dry_run and not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Purging is irreversible. Resend with confirm=true or use dry_run=true.",
        )
    logger.warning("maintenance.purge_inactive.requested", user_id=admin.id, dry_run=dry_run)
    summary = counter_service.purge_inactive(db, dry_run=dry_run)
    if not dry_run:
        notification_service.publish_notice(
            notification_service.INACTIVE_PURGED,
            {"deleted": summary.deleted, "requestedBy": admin.id},
        )
    return summary


@router.post("/sync/backfill/{tenant_id}", response_model=OperationSummary)
def backfill(
    tenant_id: str,
    admin: Annotated[UserProfile, Depends(get_current_admin_user)],
    db: Database = Depends(get_db),
):
    if not _administers(admin, tenant_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not administer this tenant.")

    summary = mirror_sync_service.backfill(db, tenant_id)
    if not summary.success and summary.tenants == 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Tenant has no mirror relationship.")
    return summary


@router.post("/sync/categories", response_model=OperationSummary)
def cross_category_sync(
    admin: Annotated[UserProfile, Depends(get_current_admin_user)],
    category: Optional[str] = Body(None, embed=True),
    db: Database = Depends(get_db),
):
    logger.info("maintenance.cross_category_sync.requested", user_id=admin.id, category=category)
    return mirror_sync_service.cross_category_sync(db, category)
