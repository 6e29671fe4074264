"""Tests for chunked batch commits."""

import pytest

from flocksync.models.results import ErrorKind
from flocksync.services.batch_writer import BatchWriter, WriteKind, WriteOp, chunked

from conftest import GroupFailingWriter, RecordingWriter

COLLECTION = "churches.t1.members"


def _ops(n):
    return [WriteOp.set_merge(COLLECTION, f"m{i}", {"n": i}) for i in range(n)]


class TestChunking:

    def test_limit_plus_one_makes_two_chunks(self):
        sizes = [len(c) for c in chunked(_ops(451), 450)]
        assert sizes == [450, 1]

    def test_exact_multiple(self):
        assert [len(c) for c in chunked(_ops(6), 3)] == [3, 3]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked(_ops(2), 0))


class TestBatchWriter:

    def test_default_limit_commits_limit_plus_one_in_two_commits(self, db):
        writer = RecordingWriter(db)
        result = writer.commit(_ops(451))

        assert writer.chunk_sizes == [450, 1]
        assert result.complete
        assert result.committed == 451
        assert result.chunks_total == 2
        assert db[COLLECTION].count_documents({}) == 451

    def test_empty_input(self, db):
        result = BatchWriter(db).commit([])
        assert result.complete
        assert result.attempted == 0
        assert result.chunks_total == 0

    def test_set_merge_keeps_unmentioned_fields(self, db):
        db[COLLECTION].insert_one({"_id": "m1", "firstName": "Ama", "isActive": True})
        BatchWriter(db).commit([WriteOp.set_merge(COLLECTION, "m1", {"firstName": "Abena"})])
        assert db[COLLECTION].find_one({"_id": "m1"}) == {"_id": "m1", "firstName": "Abena", "isActive": True}

    def test_mixed_kinds_and_collections(self, db):
        db["users"].insert_many([{"_id": "a1", "memberCount": 4}, {"_id": "a2", "memberCount": 1}])
        db[COLLECTION].insert_one({"_id": "gone"})
        ops = [
            WriteOp.increment("users", "a1", "memberCount", 1),
            WriteOp.delete(COLLECTION, "gone"),
            WriteOp.increment("users", "a2", "memberCount", -1),
        ]
        result = BatchWriter(db, limit=2).commit(ops)

        assert result.complete
        assert db["users"].find_one({"_id": "a1"})["memberCount"] == 5
        assert db["users"].find_one({"_id": "a2"})["memberCount"] == 0
        assert db[COLLECTION].find_one({"_id": "gone"}) is None

    def test_increment_payload(self):
        op = WriteOp.increment("users", "a1", "memberCount", -1)
        assert op.kind is WriteKind.INCREMENT
        assert op.data == {"memberCount": -1}


class TestPartialFailure:

    def test_failure_after_first_chunk_leaves_prefix_committed(self, db):
        writer = RecordingWriter(db, limit=3, fail_on_chunk=1)
        result = writer.commit(_ops(7))

        assert not result.complete
        assert result.committed == 3
        assert result.chunks_committed == 1
        assert result.failed_chunk == 1
        assert result.error_kind() is ErrorKind.PARTIAL_BATCH
        # Later chunks are never attempted.
        assert writer.chunk_sizes == [3, -3]
        assert db[COLLECTION].count_documents({}) == 3

    def test_failure_on_first_chunk_is_transient(self, db):
        result = RecordingWriter(db, limit=3, fail_on_chunk=0).commit(_ops(2))
        assert result.committed == 0
        assert result.error_kind() is ErrorKind.TRANSIENT
        assert "connection reset" in result.error


def _interleaved(n):
    ops = []
    for i in range(n):
        ops.append(WriteOp.set_merge(COLLECTION, f"m{i}", {"n": i}))
        ops.append(WriteOp.set_merge("users", f"u{i}", {"n": i}))
    return ops


class TestCollectionGrouping:

    def test_interleaved_chunk_is_one_bulk_write_per_collection(self, db):
        writer = GroupFailingWriter(db, "unused")
        result = writer.commit(_interleaved(75))

        assert result.complete
        assert writer.groups == [(COLLECTION, 75), ("users", 75)]
        assert db["users"].count_documents({}) == 75

    def test_order_within_a_collection_is_kept(self, db):
        ops = [
            WriteOp.set_merge(COLLECTION, "m1", {"n": 1}),
            WriteOp.increment("users", "a1", "memberCount", 1),
            WriteOp.delete(COLLECTION, "m1"),
        ]
        db["users"].insert_one({"_id": "a1", "memberCount": 0})
        BatchWriter(db).commit(ops)
        assert db[COLLECTION].find_one({"_id": "m1"}) is None

    def test_later_group_failure_counts_earlier_groups(self, db):
        writer = GroupFailingWriter(db, "users")
        result = writer.commit(_interleaved(3))

        assert result.committed == 3
        assert result.error_kind() is ErrorKind.PARTIAL_BATCH
        assert db[COLLECTION].count_documents({}) == 3
        assert db["users"].count_documents({}) == 0

    def test_bulk_error_counts_writes_before_the_failing_index(self, db):
        writer = GroupFailingWriter(db, COLLECTION, fail_at=1)
        result = writer.commit(_interleaved(3))

        assert result.committed == 1
        assert result.failed_chunk == 0
        assert result.error_kind() is ErrorKind.PARTIAL_BATCH
        # The users group is never attempted once the first group fails.
        assert writer.groups == [(COLLECTION, 3)]
        assert db[COLLECTION].count_documents({}) == 1

