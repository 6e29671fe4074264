# FILE: backend/flocksync/models/results.py
# Explicit handler outcomes. Handlers return these instead of raising so the
# runtime can log every failure and keep processing other events and tenants.

from enum import Enum
from pydantic import BaseModel
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PARTIAL_BATCH = "partial_batch"
    MISSING_CONFIG = "missing_config"
    PERMISSION = "permission"
    INVALID_INPUT = "invalid_input"


class Outcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class HandlerResult(BaseModel):
    handler: str
    outcome: Outcome = Outcome.OK
    error: Optional[ErrorKind] = None
    writes: int = 0
    detail: str = ""
    # False once a failed handler has applied non-idempotent writes.
    retryable: bool = True

    @property
    def ok(self) -> bool:
        return self.outcome != Outcome.FAILED

    @classmethod
    def success(cls, handler: str, writes: int = 0, detail: str = "") -> "HandlerResult":
        return cls(handler=handler, outcome=Outcome.OK, writes=writes, detail=detail)

    @classmethod
    def skipped(cls, handler: str, detail: str = "", error: Optional[ErrorKind] = None) -> "HandlerResult":
        # MISSING_CONFIG is an opt-out, reported as a skip rather than a failure.
        return cls(handler=handler, outcome=Outcome.SKIPPED, error=error, detail=detail)

    @classmethod
    def failure(
        cls, handler: str, error: ErrorKind, detail: str = "", writes: int = 0, retryable: bool = True
    ) -> "HandlerResult":
        return cls(handler=handler, outcome=Outcome.FAILED, error=error, writes=writes, detail=detail,
                   retryable=retryable)


class BatchWriteResult(BaseModel):
    attempted: int = 0
    committed: int = 0
    chunks_committed: int = 0
    chunks_total: int = 0
    failed_chunk: Optional[int] = None
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.failed_chunk is None and self.committed == self.attempted

    def error_kind(self) -> Optional[ErrorKind]:
        if self.complete:
            return None
        return ErrorKind.PARTIAL_BATCH if self.committed else ErrorKind.TRANSIENT
