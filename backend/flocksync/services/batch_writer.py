# FILE: backend/flocksync/services/batch_writer.py
# SYNC ENGINE - BATCH WRITER
# 1. Splits an ordered list of writes into chunks no larger than the provider limit.
# 2. Commits chunks sequentially, one ordered bulk_write per collection in a chunk.
#    A failure stops the run; the result counts every write that was applied.
# 3. Never retries. Callers decide (lock not written, next event, reconciliation).

from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field
from pymongo import DeleteOne, UpdateOne
from pymongo.database import Database
from pymongo.errors import BulkWriteError, PyMongoError

from ..core.config import settings
from ..models.results import BatchWriteResult

logger = structlog.get_logger(__name__)


class WriteKind(str, Enum):
    SET_MERGE = "set_merge"
    DELETE = "delete"
    INCREMENT = "increment"


class WriteOp(BaseModel):
    kind: WriteKind
    collection: str
    doc_id: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def set_merge(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteOp":
        return cls(kind=WriteKind.SET_MERGE, collection=collection, doc_id=doc_id, data=data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "WriteOp":
        return cls(kind=WriteKind.DELETE, collection=collection, doc_id=doc_id)

    @classmethod
    def increment(cls, collection: str, doc_id: str, field: str, amount: int) -> "WriteOp":
        return cls(kind=WriteKind.INCREMENT, collection=collection, doc_id=doc_id, data={field: amount})

    def to_request(self):
        if self.kind is WriteKind.DELETE:
            return DeleteOne({"_id": self.doc_id})
        if self.kind is WriteKind.INCREMENT:
            return UpdateOne({"_id": self.doc_id}, {"$inc": self.data})
        return UpdateOne({"_id": self.doc_id}, {"$set": self.data}, upsert=True)


def chunked(ops: Sequence[WriteOp], size: int) -> Iterator[Sequence[WriteOp]]:
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(ops), size):
        yield ops[start:start + size]


def _group_by_collection(chunk: Iterable[WriteOp]) -> Dict[str, List[WriteOp]]:
    # Collections in first-seen order; writes keep their order within a collection.
    groups: Dict[str, List[WriteOp]] = {}
    for op in chunk:
        groups.setdefault(op.collection, []).append(op)
    return groups


def _applied_before_error(error: BulkWriteError) -> int:
    # An ordered bulk write stops at its first error; everything before it landed.
    indexes = [err.get("index", 0) for err in error.details.get("writeErrors", [])]
    return min(indexes, default=0)


class ChunkWriteError(PyMongoError):
    """A chunk stopped partway. `applied` writes from it are already durable."""

    def __init__(self, applied: int, cause: PyMongoError):
        super().__init__(str(cause))
        self.applied = applied
        self.cause = cause


class BatchWriter:
    def __init__(self, db: Database, limit: Optional[int] = None):
        self.db = db
        self.limit = limit or settings.BATCH_WRITE_LIMIT

    def _commit_group(self, collection: str, requests: List[Any]) -> None:
        self.db[collection].bulk_write(requests, ordered=True)

    def _commit_chunk(self, chunk: Sequence[WriteOp]) -> None:
        applied = 0
        for collection, group in _group_by_collection(chunk).items():
            try:
                self._commit_group(collection, [op.to_request() for op in group])
            except BulkWriteError as e:
                raise ChunkWriteError(applied + _applied_before_error(e), e) from e
            except PyMongoError as e:
                raise ChunkWriteError(applied, e) from e
            applied += len(group)

    def commit(self, ops: Sequence[WriteOp]) -> BatchWriteResult:
        ops = list(ops)
        result = BatchWriteResult(attempted=len(ops))
        if not ops:
            return result

        chunks = list(chunked(ops, self.limit))
        result.chunks_total = len(chunks)
        log = logger.bind(operations=len(ops), chunks=len(chunks), limit=self.limit)

        for index, chunk in enumerate(chunks):
            try:
                self._commit_chunk(chunk)
            except PyMongoError as e:
                result.committed += e.applied if isinstance(e, ChunkWriteError) else 0
                result.failed_chunk = index
                result.error = str(e)
                log.error(
                    "batch_writer.chunk_failed",
                    chunk=index,
                    committed=result.committed,
                    error=str(e),
                )
                return result
            result.committed += len(chunk)
            result.chunks_committed += 1

        log.debug("batch_writer.committed")
        return result
