"""Tests for member counter maintenance."""

import pytest
from pymongo.errors import AutoReconnect

from flocksync.core import store
from flocksync.models.common import ChangeEvent, ChangeType
from flocksync.models.results import ErrorKind, Outcome
from flocksync.services import counter_service, tenant_service, trigger_dispatcher

from conftest import OTHER, SOURCE, GroupFailingWriter, RecordingWriter, add_member, add_tenant


def _count(db, collection, doc_id):
    return db[collection].find_one({"_id": doc_id}).get("memberCount", 0)


class TestComputeDelta:

    @pytest.mark.parametrize("before, after, expected", [
        (None, {"isActive": True}, 1),
        (None, {}, 1),
        (None, {"isActive": False}, 0),
        ({"isActive": True}, None, -1),
        ({"isActive": False}, None, 0),
        ({"isActive": True}, {"isActive": False}, -1),
        ({"isActive": False}, {"isActive": True}, 1),
        ({"isActive": True}, {"isActive": True, "firstName": "Yaw"}, 0),
        ({"isActive": False}, {"isActive": False}, 0),
        ({}, {"isActive": None}, 0),
    ])
    def test_delta_table(self, before, after, expected):
        assert counter_service.compute_delta(before, after) == expected


class TestHandleMemberChange:

    def test_create_increments_tenant_and_every_admin(self, network):
        event = ChangeEvent(tenant_id=SOURCE, member_id="m1", after={"isActive": True})
        result = counter_service.handle_member_change(network, event)

        assert result.outcome is Outcome.OK
        assert result.writes == 3
        assert _count(network, store.TENANTS, SOURCE) == 1
        assert _count(network, store.USERS, "owner") == 1
        assert _count(network, store.USERS, "co_admin") == 1
        assert _count(network, store.USERS, "viewer") == 0

    def test_deactivate_decrements(self, network):
        network[store.TENANTS].update_one({"_id": SOURCE}, {"$set": {"memberCount": 5}})
        event = ChangeEvent(tenant_id=SOURCE, member_id="m1",
                            before={"isActive": True}, after={"isActive": False})
        counter_service.handle_member_change(network, event)
        assert _count(network, store.TENANTS, SOURCE) == 4

    def test_unrelated_update_writes_nothing(self, network):
        event = ChangeEvent(tenant_id=SOURCE, member_id="m1",
                            before={"isActive": True, "firstName": "A"},
                            after={"isActive": True, "firstName": "B"})
        result = counter_service.handle_member_change(network, event)
        assert result.outcome is Outcome.SKIPPED
        assert _count(network, store.TENANTS, SOURCE) == 0

    def test_update_without_pre_image_is_skipped(self, network):
        event = ChangeEvent(tenant_id=SOURCE, member_id="m1", after={"isActive": True},
                            operation=ChangeType.UPDATE)
        result = counter_service.handle_member_change(network, event)
        assert result.outcome is Outcome.SKIPPED
        assert result.error is ErrorKind.MISSING_CONFIG
        assert _count(network, store.TENANTS, SOURCE) == 0

    def test_failure_before_any_write_is_retryable(self, network):
        writer = RecordingWriter(network, fail_on_chunk=0)
        event = ChangeEvent(tenant_id=SOURCE, member_id="m1", after={"isActive": True})
        result = counter_service.handle_member_change(network, event, writer=writer)
        assert not result.ok
        assert result.error is ErrorKind.TRANSIENT
        assert result.writes == 0
        assert result.retryable
        assert _count(network, store.TENANTS, SOURCE) == 0


class TestRetrySafety:

    EVENT = ChangeEvent(tenant_id=SOURCE, member_id="m1", after={"isActive": True})

    def test_admin_lookup_failure_writes_nothing_and_retry_counts_once(self, network, monkeypatch):
        real_lookup = tenant_service.get_admin_ids
        calls = []

        def flaky_lookup(db, tenant_id):
            calls.append(tenant_id)
            if len(calls) == 1:
                raise AutoReconnect("connection reset")
            return real_lookup(db, tenant_id)

        monkeypatch.setattr(tenant_service, "get_admin_ids", flaky_lookup)

        first = counter_service.handle_member_change(network, self.EVENT)
        assert first.error is ErrorKind.TRANSIENT
        assert first.retryable
        assert _count(network, store.TENANTS, SOURCE) == 0

        second = counter_service.handle_member_change(network, self.EVENT)
        assert second.ok
        assert _count(network, store.TENANTS, SOURCE) == 1
        assert _count(network, store.USERS, "owner") == 1

    def test_partial_increment_is_not_retried(self, network):
        writer = GroupFailingWriter(network, store.USERS, fail_at=1)
        result = counter_service.handle_member_change(network, self.EVENT, writer=writer)

        assert result.error is ErrorKind.PARTIAL_BATCH
        assert result.writes == 2
        assert not result.retryable
        assert not trigger_dispatcher.has_transient_failure([result])
        assert _count(network, store.TENANTS, SOURCE) == 1
        assert _count(network, store.USERS, "owner") == 1
        assert _count(network, store.USERS, "co_admin") == 0

    def test_tenant_and_admins_go_out_in_one_chunk(self, network):
        writer = GroupFailingWriter(network, "unused")
        counter_service.handle_member_change(network, self.EVENT, writer=writer)
        assert writer.groups == [(store.TENANTS, 1), (store.USERS, 2)]


class TestReconciliation:

    def test_recompute_matches_incremental_counts(self, network):
        for member_id, active in (("m1", True), ("m2", True), ("m3", False)):
            doc = add_member(network, SOURCE, member_id, isActive=active)
            counter_service.handle_member_change(
                network, ChangeEvent(tenant_id=SOURCE, member_id=member_id, after=doc))
        incremental = _count(network, store.TENANTS, SOURCE)

        summary = counter_service.recompute_all(network)

        assert summary.success
        assert incremental == 2
        assert _count(network, store.TENANTS, SOURCE) == incremental
        assert _count(network, store.USERS, "owner") == incremental
        assert summary.details["counts"][SOURCE] == 2

    def test_recompute_corrects_drift(self, network):
        add_member(network, OTHER, "p1")
        network[store.TENANTS].update_one({"_id": OTHER}, {"$set": {"memberCount": 40}})
        counter_service.recompute_all(network)
        assert _count(network, store.TENANTS, OTHER) == 1
        assert _count(network, store.USERS, "plain_owner") == 1
        assert network[store.TENANTS].find_one({"_id": OTHER})["memberCountUpdatedAt"] is not None

    def test_recompute_reaches_tenant_with_malformed_settings(self, network):
        add_tenant(network, "broken", member_count=9, settings={"timezone": 5})
        add_member(network, "broken", "b1")
        add_member(network, OTHER, "p1")

        summary = counter_service.recompute_all(network)

        assert summary.success
        assert _count(network, store.TENANTS, "broken") == 1
        assert _count(network, store.TENANTS, OTHER) == 1

    def test_recompute_dry_run_writes_nothing(self, network):
        add_member(network, OTHER, "p1")
        summary = counter_service.recompute_all(network, dry_run=True)
        assert summary.dry_run
        assert summary.details["counts"][OTHER] == 1
        assert _count(network, store.TENANTS, OTHER) == 0


class TestPurgeInactive:

    def test_purge_deletes_inactive_and_recomputes(self, network):
        add_member(network, SOURCE, "m1")
        add_member(network, SOURCE, "m2", isActive=False)
        add_member(network, OTHER, "p1", isActive=False)

        summary = counter_service.purge_inactive(network)

        assert summary.success
        assert summary.deleted == 2
        assert summary.details["purged"] == {SOURCE: 1, OTHER: 1}
        assert store.members(network, SOURCE).count_documents({}) == 1
        assert store.members(network, OTHER).count_documents({}) == 0
        assert _count(network, store.TENANTS, SOURCE) == 1

    def test_dry_run_keeps_members(self, network):
        add_member(network, SOURCE, "m2", isActive=False)
        summary = counter_service.purge_inactive(network, dry_run=True)
        assert summary.deleted == 1
        assert store.members(network, SOURCE).count_documents({}) == 1
