# FILE: backend/flocksync/tasks/member_triggers.py
# Celery entry point for member change events produced by the change-stream
# listener. Delivery is at-least-once (late acks). On a transient failure only
# the handlers that failed are retried, and a handler that already applied part
# of a non-idempotent write (a counter increment) is left to reconciliation.

import structlog
from pydantic import ValidationError
from typing import Any, Dict, List, Optional

from ..celery_app import celery_app
from ..core.db import get_db
from ..models.common import ChangeEvent
from ..models.results import ErrorKind, HandlerResult
from ..services import trigger_dispatcher

logger = structlog.get_logger(__name__)

MAX_RETRIES = 3


@celery_app.task(name="flocksync.member_changed", bind=True, max_retries=MAX_RETRIES)
def member_changed(self, event: Dict[str, Any], handlers: Optional[List[str]] = None) -> Dict[str, Any]:
    try:
        change = ChangeEvent.model_validate(event)
    except ValidationError as e:
        # Malformed payloads are never retried.
        logger.error("member_triggers.task.invalid_event", error=str(e), task_id=self.request.id)
        result = HandlerResult.failure("dispatcher", ErrorKind.INVALID_INPUT, detail=str(e))
        return {result.handler: result.model_dump(mode="json")}

    log = logger.bind(tenant_id=change.tenant_id, member_id=change.member_id,
                      event_id=change.event_id, task_id=self.request.id)
    log.info("member_triggers.task.received", change=change.change_type.value)

    selected = [
        (name, handler)
        for name, handler in trigger_dispatcher.MEMBER_HANDLERS
        if handlers is None or name in handlers
    ]

    db = next(get_db())
    results = trigger_dispatcher.dispatch_member_change(db, change, handlers=selected)

    failed = trigger_dispatcher.retryable_failures(results)
    if failed:
        log.warning("member_triggers.task.retrying", handlers=failed, attempt=self.request.retries)
        raise self.retry(kwargs={"event": event, "handlers": failed}, countdown=30 * (self.request.retries + 1))

    return {r.handler: r.model_dump(mode="json") for r in results}
