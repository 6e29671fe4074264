# FILE: backend/flocksync/celery_config.py
# Task routing and the beat schedule. The missed-prayer job runs every minute
# in UTC; each tenant's local time is computed inside the job.

from celery.schedules import crontab

from .core.config import settings

task_routes = {
    'flocksync.member_changed': {'queue': 'triggers'},
    'flocksync.mark_missed_prayers': {'queue': 'scheduled'},
    'flocksync.cleanup_job_locks': {'queue': 'scheduled'},
}

beat_schedule = {
    'mark-missed-prayers': {
        'task': 'flocksync.mark_missed_prayers',
        'schedule': crontab(minute=settings.MISSED_JOB_CRON_MINUTE),
        # A tick that is still queued after a minute is stale; the next one covers it.
        'options': {'expires': 55},
    },
    'cleanup-job-locks': {
        'task': 'flocksync.cleanup_job_locks',
        'schedule': crontab(minute=0, hour=2),
    },
}
