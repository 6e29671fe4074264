# FILE: backend/flocksync/celery_app.py
# Defines the Celery application and discovers the tasks. It holds no state
# and manages no connections; workers open them lazily on first use.

from celery import Celery
import structlog

from .core.config import settings

celery_app = Celery("flocksync", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

# Load task routing and the beat schedule.
celery_app.config_from_object('flocksync.celery_config')

# Set core Celery protocol settings. Late acks give at-least-once delivery:
# handlers must tolerate re-delivery of the same event.
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Define the modules where tasks are located.
celery_app.autodiscover_tasks([
    'flocksync.tasks.member_triggers',
    'flocksync.tasks.scheduled_jobs',
], related_name=None)

structlog.get_logger(__name__).info("celery_app.configured")
