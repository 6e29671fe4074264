# FILE: backend/flocksync/services/trigger_dispatcher.py
# Runs every member-change handler for one event and aggregates the results.
# Handlers are independent: each one's failure is logged and the rest still run.

from typing import Callable, List, Optional, Sequence, Tuple

import structlog
from pymongo.database import Database

from ..models.common import ChangeEvent
from ..models.results import ErrorKind, HandlerResult
from . import counter_service, mirror_sync_service

logger = structlog.get_logger(__name__)

Handler = Callable[[Database, ChangeEvent], HandlerResult]

MEMBER_HANDLERS: Tuple[Tuple[str, Handler], ...] = (
    (counter_service.HANDLER, counter_service.handle_member_change),
    (mirror_sync_service.FORWARD_HANDLER, mirror_sync_service.sync_forward),
    (mirror_sync_service.REVERSE_HANDLER, mirror_sync_service.sync_reverse),
)


def dispatch_member_change(
    db: Database,
    event: ChangeEvent,
    handlers: Optional[Sequence[Tuple[str, Handler]]] = None,
) -> List[HandlerResult]:
    log = logger.bind(
        tenant_id=event.tenant_id,
        member_id=event.member_id,
        change=event.change_type.value,
        event_id=event.event_id,
    )
    results: List[HandlerResult] = []

    for name, handler in handlers or MEMBER_HANDLERS:
        try:
            result = handler(db, event)
        except Exception as e:
            # A handler bug must not starve the remaining handlers.
            log.error("dispatcher.handler_crashed", handler=name, error=str(e), exc_info=True)
            result = HandlerResult.failure(name, ErrorKind.TRANSIENT, detail=str(e))

        if not result.ok:
            log.error("dispatcher.handler_failed", handler=name, error=result.error, detail=result.detail)
        else:
            log.debug("dispatcher.handler_done", handler=name, outcome=result.outcome.value, writes=result.writes)
        results.append(result)

    return results


RETRYABLE_ERRORS = (ErrorKind.TRANSIENT, ErrorKind.PARTIAL_BATCH)


def retryable_failures(results: Sequence[HandlerResult]) -> List[str]:
    """Handlers worth re-running: transient failures that applied nothing non-idempotent."""
    return [r.handler for r in results if not r.ok and r.retryable and r.error in RETRYABLE_ERRORS]


def has_transient_failure(results: Sequence[HandlerResult]) -> bool:
    return bool(retryable_failures(results))
