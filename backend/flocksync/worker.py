# FILE: backend/flocksync/worker.py
# Entry point for the Celery worker and beat.
#
#   celery -A flocksync.worker.celery_app worker -Q triggers,scheduled --loglevel=info
#   celery -A flocksync.worker.celery_app beat --loglevel=info

from celery.signals import setup_logging

from flocksync.celery_app import celery_app
from flocksync.core.logging_config import configure_logging


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


__all__ = ["celery_app"]
