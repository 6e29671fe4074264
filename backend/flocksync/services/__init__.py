# FILE: backend/flocksync/services/__init__.py
# SYNC ENGINE - SERVICE REGISTRY

from . import (
    batch_writer,
    provenance,
    tenant_service,
    counter_service,
    mirror_sync_service,
    prayer_schedule,
    notification_service,
    missed_prayer_service,
    trigger_dispatcher,
)
