# FILE: backend/flocksync/listener.py
# Change-stream listener. Watches the database for writes to
# churches.<tenantId>.members and enqueues one Celery task per event.
# The resume token is stored in Redis after each enqueue, so a restart
# continues from the last dispatched event (events may repeat, never vanish).
#
#   python -m flocksync.listener

import time
from typing import Any, Dict, Optional

import redis
import structlog
from pydantic_core import to_jsonable_python
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .core import store
from .core.config import settings
from .core.db import get_db, get_redis_client
from .core.logging_config import configure_logging
from .models.common import ChangeEvent, ChangeType

logger = structlog.get_logger(__name__)

RECONNECT_DELAY_SECONDS = 5
WATCHED_OPERATIONS = ("insert", "update", "replace", "delete")
OPERATION_TYPES = {
    "insert": ChangeType.CREATE,
    "update": ChangeType.UPDATE,
    "replace": ChangeType.UPDATE,
    "delete": ChangeType.DELETE,
}

PIPELINE = [
    {"$match": {
        "operationType": {"$in": list(WATCHED_OPERATIONS)},
        "ns.coll": {"$regex": rf"^{store.TENANTS}\.[^.]+\.{store.MEMBERS}$"},
    }},
]


def to_change_event(change: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Map a raw change-stream document to a ChangeEvent, or None if not a member write."""
    op = change.get("operationType")
    if op not in WATCHED_OPERATIONS:
        return None

    parsed = store.parse_tenant_collection(change.get("ns", {}).get("coll", ""))
    if parsed is None or parsed[1] != store.MEMBERS:
        return None
    tenant_id = parsed[0]

    member_id = change.get("documentKey", {}).get("_id")
    if member_id is None:
        return None

    before = change.get("fullDocumentBeforeChange")
    after = None if op == "delete" else change.get("fullDocument")
    if op == "insert":
        before = None
    elif op != "delete" and after is None:
        # Document deleted before the post-image could be read; the delete event follows.
        return None

    token = change.get("_id")
    return ChangeEvent(
        tenant_id=tenant_id,
        member_id=str(member_id),
        before=before,
        after=after,
        operation=OPERATION_TYPES[op],
        event_id=str(token.get("_data")) if isinstance(token, dict) else None,
    )


def _load_resume_token(client: redis.Redis) -> Optional[Dict[str, Any]]:
    raw = client.get(settings.RESUME_TOKEN_KEY)
    return {"_data": raw} if raw else None


def _save_resume_token(client: redis.Redis, token: Optional[Dict[str, Any]]) -> None:
    if token and token.get("_data"):
        client.set(settings.RESUME_TOKEN_KEY, token["_data"])


def enable_pre_images(db: Database) -> int:
    """Member collections need pre-images for before/after pairs (MongoDB 6+).

    Returns the number of collections switched on. Tenants created later are
    picked up on the next listener start; until then their updates arrive
    without a pre-image and the counter skips them.
    """
    enabled = 0
    for name in db.list_collection_names():
        parsed = store.parse_tenant_collection(name)
        if parsed is None or parsed[1] != store.MEMBERS:
            continue
        try:
            db.command({"collMod": name, "changeStreamPreAndPostImages": {"enabled": True}})
            enabled += 1
        except PyMongoError as e:
            logger.warning("listener.pre_images_unavailable", collection=name, error=str(e))
    return enabled


def listen(db: Database, redis_client: redis.Redis) -> None:
    from .tasks.member_triggers import member_changed

    logger.info("listener.pre_images_enabled", collections=enable_pre_images(db))
    resume_after = _load_resume_token(redis_client)
    log = logger.bind(resumed=resume_after is not None)
    log.info("listener.starting")

    with db.watch(
        PIPELINE,
        full_document="whenAvailable",
        full_document_before_change="whenAvailable",
        resume_after=resume_after,
    ) as stream:
        for change in stream:
            event = to_change_event(change)
            if event is not None:
                member_changed.delay(to_jsonable_python(event.model_dump(), fallback=str))
                log.debug("listener.enqueued", tenant_id=event.tenant_id, member_id=event.member_id,
                          change=event.change_type.value)
            _save_resume_token(redis_client, stream.resume_token)


def main() -> None:
    configure_logging()
    db = next(get_db())
    redis_client = next(get_redis_client())
    while True:
        try:
            listen(db, redis_client)
        except PyMongoError as e:
            # Stream invalidated or connection dropped; resume from the stored token.
            logger.error("listener.stream_error", error=str(e))
            time.sleep(RECONNECT_DELAY_SECONDS)
        except KeyboardInterrupt:
            logger.info("listener.stopped")
            break


if __name__ == "__main__":
    main()
