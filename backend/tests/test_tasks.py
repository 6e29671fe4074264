"""Tests for the Celery task bodies (called in-process, no broker)."""

import pytest

from flocksync.models.results import ErrorKind, HandlerResult
from flocksync.services import notification_service
from flocksync.tasks import member_triggers, scheduled_jobs
from flocksync.tasks.member_triggers import member_changed

from conftest import SOURCE


class _RetryCalled(Exception):
    def __init__(self, **kwargs):
        super().__init__("retry")
        self.kwargs = kwargs


@pytest.fixture
def task_db(network, monkeypatch):
    monkeypatch.setattr(member_triggers, "get_db", lambda: iter([network]))
    monkeypatch.setattr(scheduled_jobs, "get_db", lambda: iter([network]))
    monkeypatch.setattr(notification_service, "publish_notice", lambda *args, **kwargs: True)
    return network


class TestMemberChanged:

    def test_runs_every_handler(self, task_db):
        event = {"tenant_id": SOURCE, "member_id": "m1", "after": {"isActive": True}, "operation": "create"}
        results = member_changed(event)
        assert set(results) == {"counter", "mirror.forward", "mirror.reverse"}
        assert results["counter"]["outcome"] == "ok"

    def test_handler_selection(self, task_db):
        event = {"tenant_id": SOURCE, "member_id": "m1", "after": {"isActive": True}}
        assert list(member_changed(event, handlers=["counter"])) == ["counter"]

    def test_retries_only_failed_handlers(self, task_db, monkeypatch):
        def _dispatch(db, event, handlers=None):
            return [
                HandlerResult.success("counter", writes=3),
                HandlerResult.failure("mirror.forward", ErrorKind.PARTIAL_BATCH, writes=450),
            ]

        def _retry(**kwargs):
            raise _RetryCalled(**kwargs)

        monkeypatch.setattr(member_triggers.trigger_dispatcher, "dispatch_member_change", _dispatch)
        monkeypatch.setattr(member_changed, "retry", _retry)

        event = {"tenant_id": SOURCE, "member_id": "m1", "after": {"isActive": True}}
        with pytest.raises(_RetryCalled) as exc:
            member_changed(event)
        assert exc.value.kwargs["kwargs"]["handlers"] == ["mirror.forward"]

    def test_partial_counter_write_is_not_retried(self, task_db, monkeypatch):
        def _dispatch(db, event, handlers=None):
            return [HandlerResult.failure("counter", ErrorKind.PARTIAL_BATCH, writes=1, retryable=False)]

        def _retry(**kwargs):
            raise _RetryCalled(**kwargs)

        monkeypatch.setattr(member_triggers.trigger_dispatcher, "dispatch_member_change", _dispatch)
        monkeypatch.setattr(member_changed, "retry", _retry)

        results = member_changed({"tenant_id": SOURCE, "member_id": "m1", "after": {"isActive": True}})
        assert results["counter"]["outcome"] == "failed"
        assert results["counter"]["retryable"] is False


class TestScheduledJobs:

    def test_mark_missed_prayers_summary(self, task_db):
        summary = scheduled_jobs.mark_missed_prayers()
        assert summary["tenants"] == 4
        assert summary["failed"] == 0

    def test_cleanup_job_locks(self, task_db):
        assert scheduled_jobs.cleanup_job_locks() == 0


class TestInvalidEvent:

    def test_malformed_payload_is_not_retried(self, task_db):
        results = member_changed({"member_id": "m1"})
        assert results["dispatcher"]["error"] == "invalid_input"
