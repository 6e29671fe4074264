# FILE: backend/flocksync/tasks/scheduled_jobs.py

import structlog
from typing import Any, Dict

from ..celery_app import celery_app
from ..core.db import get_db
from ..models.results import Outcome
from ..services import missed_prayer_service

logger = structlog.get_logger(__name__)


@celery_app.task(name="flocksync.mark_missed_prayers", bind=True)
def mark_missed_prayers(self) -> Dict[str, Any]:
    """One tick of the missed-prayer job across all tenants.

    Never retried: the next tick inside the same window is the retry, and the
    per-date lock keeps repeated ticks from writing twice.
    """
    log = logger.bind(task_id=self.request.id)
    db = next(get_db())
    results = missed_prayer_service.run_tick(db)
    summary = {
        "tenants": len(results),
        "processed": sum(1 for r in results if r.outcome is Outcome.OK),
        "failed": sum(1 for r in results if not r.ok),
        "writes": sum(r.writes for r in results),
    }
    log.info("scheduled_jobs.mark_missed_prayers.done", **summary)
    return summary


@celery_app.task(name="flocksync.cleanup_job_locks")
def cleanup_job_locks() -> int:
    db = next(get_db())
    return missed_prayer_service.cleanup_locks(db)
