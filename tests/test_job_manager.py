"""
Tests for the run registry: lifecycle, queries, cancel and retention.
"""

from datetime import timedelta

import pytest

from jobengine.jobs.job_manager import RunRegistry, Runs
from jobengine.jobs.job_types import RunStatus, utcnow


@pytest.fixture
def registry():
    return RunRegistry(max_runs=100, ttl_seconds=3600)


class TestLifecycle:
    """Test status transitions."""

    def test_register_run_is_queued(self, registry):
        run = registry.register_run("run_1", "thumbnail", ["doc-1"])
        assert run.status == RunStatus.QUEUED
        assert run.task_identifier == "thumbnail"
        assert run.tags == ["doc-1"]
        assert run.created_at is not None
        assert registry.get_run("run_1") is run

    def test_update_status_sets_timestamps(self, registry):
        registry.register_run("run_1", "thumbnail", [])
        assert registry.update_run_status("run_1", RunStatus.EXECUTING)
        run = registry.get_run("run_1")
        assert run.started_at is not None
        assert run.completed_at is None

        registry.update_run_status("run_1", RunStatus.COMPLETED)
        assert run.completed_at is not None
        assert run.is_terminal

    def test_update_unknown_run_is_noop(self, registry):
        assert registry.update_run_status("run_missing", RunStatus.COMPLETED) is False
        assert len(registry) == 0

    def test_mark_failed_records_error(self, registry):
        registry.register_run("run_1", "sync-crm", [])
        registry.mark_failed("run_1", PermissionError("unauthorized for mailbox"), attempts=3)

        run = registry.get_run("run_1")
        assert run.status == RunStatus.FAILED
        assert run.attempts == 3
        assert run.error.error_type == "PermissionError"
        assert run.error.hint.startswith("Permission denied")

    def test_mark_unknown_run(self, registry):
        assert registry.mark_completed("run_missing", attempts=1) is False
        assert registry.mark_failed("run_missing", RuntimeError("x"), attempts=1) is False


class TestCancel:
    """Test advisory cancellation."""

    def test_cancel_marks_failed(self, registry):
        registry.register_run("run_1", "thumbnail", [])
        assert registry.cancel("run_1") is True

        run = registry.get_run("run_1")
        assert run.status == RunStatus.FAILED
        assert run.cancel_requested

    def test_cancel_unknown_does_not_create_entry(self, registry):
        assert registry.cancel("run_missing") is False
        assert registry.get_run("run_missing") is None
        assert len(registry) == 0


class TestListRuns:
    """Test filtering of runs."""

    @pytest.fixture
    def populated(self, registry):
        registry.register_run("run_1", "thumbnail", ["doc-1"])
        registry.register_run("run_2", "thumbnail", ["doc-10"])
        registry.register_run("run_3", "wire-match", ["fund-7"])
        registry.update_run_status("run_2", RunStatus.COMPLETED)
        return registry

    def test_no_filters_returns_all(self, populated):
        assert [r.id for r in populated.list_runs()] == ["run_1", "run_2", "run_3"]

    def test_filter_by_task(self, populated):
        assert [r.id for r in populated.list_runs(task_identifier="wire-match")] == ["run_3"]

    def test_filter_by_status(self, populated):
        assert [r.id for r in populated.list_runs(status=RunStatus.COMPLETED)] == ["run_2"]
        assert [r.id for r in populated.list_runs(status=["QUEUED"])] == ["run_1", "run_3"]

    def test_tag_filter_is_loose(self, populated):
        """"doc-1" also matches the superstring "doc-10"."""
        assert [r.id for r in populated.list_runs(tag="doc-1")] == ["run_1", "run_2"]
        assert [r.id for r in populated.list_runs(tag="doc-10")] == ["run_1", "run_2"]
        assert [r.id for r in populated.list_runs(tag="fund")] == ["run_3"]

    def test_filters_combine(self, populated):
        found = populated.list_runs(task_identifier="thumbnail", tag="doc", status="QUEUED")
        assert [r.id for r in found] == ["run_1"]

    def test_period_filters_by_creation_time(self, populated):
        populated.get_run("run_1").created_at = utcnow() - timedelta(days=2)
        assert [r.id for r in populated.list_runs(period="1d")] == ["run_2", "run_3"]
        assert len(populated.list_runs(period="7d")) == 3

    def test_unparseable_period_ignored(self, populated):
        assert len(populated.list_runs(period="last week")) == 3


class TestRetention:
    """Test bounded retention of terminal runs."""

    def test_ttl_evicts_old_terminal_runs(self):
        evicted = []
        registry = RunRegistry(max_runs=100, ttl_seconds=60, on_evict=evicted.append)
        registry.register_run("run_1", "t", [])
        registry.register_run("run_2", "t", [])
        registry.update_run_status("run_1", RunStatus.COMPLETED)
        registry.get_run("run_1").completed_at = utcnow() - timedelta(minutes=5)

        assert registry.prune() == ["run_1"]
        assert evicted == ["run_1"]
        assert registry.get_run("run_1") is None
        assert registry.get_run("run_2") is not None

    def test_capacity_evicts_oldest_terminal_first(self):
        registry = RunRegistry(max_runs=2, ttl_seconds=3600)
        registry.register_run("run_1", "t", [])
        registry.register_run("run_2", "t", [])
        registry.update_run_status("run_1", RunStatus.COMPLETED)
        registry.update_run_status("run_2", RunStatus.FAILED)

        registry.register_run("run_3", "t", [])
        assert registry.get_run("run_1") is None
        assert [r.id for r in registry.list_runs()] == ["run_2", "run_3"]

    def test_active_runs_never_evicted(self):
        registry = RunRegistry(max_runs=2, ttl_seconds=0)
        for i in range(4):
            registry.register_run(f"run_{i}", "t", [])
        assert len(registry) == 4


class TestRunsSurface:
    """Test the async runs.list / runs.cancel surface."""

    @pytest.mark.asyncio
    async def test_list_returns_summaries(self, registry):
        registry.register_run("run_1", "thumbnail", ["doc-1"])
        runs = Runs(registry)

        response = await runs.list(tag="doc-1")
        assert len(response.data) == 1
        summary = response.data[0]
        assert summary.id == "run_1"
        assert summary.status == RunStatus.QUEUED
        assert summary.tags == ["doc-1"]

    @pytest.mark.asyncio
    async def test_cancel_and_retrieve(self, registry):
        registry.register_run("run_1", "thumbnail", [])
        runs = Runs(lambda: registry)

        await runs.cancel("run_1")
        await runs.cancel("run_missing")

        assert (await runs.retrieve("run_1")).status == RunStatus.FAILED
        assert await runs.retrieve("run_missing") is None
