# FILE: backend/flocksync/services/notification_service.py
# Dispatch notices. The engine only announces *what* changed on a Redis
# pub/sub channel; formatting and delivery belong to a separate dispatcher.
# Publishing is best effort and never blocks or fails the caller.

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis
import structlog

from ..core.config import settings
from ..core.db import get_redis_client

logger = structlog.get_logger(__name__)

MISSED_MARKED = "prayers.missed_marked"
COUNTERS_RECOMPUTED = "counters.recomputed"
INACTIVE_PURGED = "members.inactive_purged"


def publish_notice(kind: str, payload: Dict[str, Any], client: Optional[redis.Redis] = None) -> bool:
    """Publish a JSON notice; returns False (and logs) instead of raising."""
    message = json.dumps(
        {"kind": kind, "at": datetime.now(timezone.utc).isoformat(), **payload},
        default=str,
    )
    try:
        redis_client = client or next(get_redis_client())
        redis_client.publish(settings.NOTIFICATIONS_CHANNEL, message)
    except redis.RedisError as e:
        logger.warning("notification.publish_failed", kind=kind, error=str(e))
        return False
    logger.debug("notification.published", kind=kind, channel=settings.NOTIFICATIONS_CHANNEL)
    return True
