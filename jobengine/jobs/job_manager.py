"""
Run Registry

Authoritative record of every dispatched run: lifecycle status, query by
task, tag, status or period, cancellation, and bounded retention.
"""

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Callable, List, Optional, Union

from jobengine import config
from jobengine.jobs.job_types import (
    RunStatus, RunRecord, RunError, RunSummary, RunListResponse,
    ACTIVE_STATUSES, utcnow
)
from jobengine.jobs.utils import any_tag_matches, get_error_hint, parse_duration

logger = logging.getLogger(__name__)


class RunRegistry:
    """
    Tracks run lifecycle and supports query and cancel.

    Terminal runs are dropped once they are older than `ttl_seconds`, or
    oldest-first while the registry holds more than `max_runs` entries.
    Active runs are never evicted.
    """

    def __init__(
        self,
        max_runs: int = None,
        ttl_seconds: int = None,
        on_evict: Optional[Callable[[str], None]] = None
    ):
        self.max_runs = max_runs if max_runs is not None else config.JOBS_MAX_RUNS
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.JOBS_RUN_TTL_SECONDS
        self.on_evict = on_evict
        self._runs: "OrderedDict[str, RunRecord]" = OrderedDict()

    def register_run(
        self,
        job_id: str,
        task_id: str,
        tags: Optional[List[str]] = None,
        idempotency_key: Optional[str] = None,
        queue: Optional[str] = None,
        concurrency_key: Optional[str] = None
    ) -> RunRecord:
        """Create a registry entry in status QUEUED."""
        run = RunRecord(
            id=job_id,
            task_identifier=task_id,
            tags=list(tags or []),
            idempotency_key=idempotency_key,
            queue=queue,
            concurrency_key=concurrency_key,
        )
        self._runs[job_id] = run
        self.prune()
        return run

    def get_run(self, job_id: str) -> Optional[RunRecord]:
        return self._runs.get(job_id)

    def find_active_by_idempotency_key(self, task_id: str, idempotency_key: str) -> Optional[RunRecord]:
        """Find a queued or executing run of the task carrying the same idempotency key."""
        for run in self._runs.values():
            if (
                run.task_identifier == task_id
                and run.idempotency_key == idempotency_key
                and run.status in ACTIVE_STATUSES
            ):
                return run
        return None

    def update_run_status(self, job_id: str, status: RunStatus) -> bool:
        """Overwrite the status of a run. Unknown ids are ignored."""
        run = self._runs.get(job_id)
        if not run:
            logger.debug(f"Status update for unknown run {job_id} ignored")
            return False

        run.status = status
        if status == RunStatus.EXECUTING:
            run.started_at = utcnow()
        elif status not in ACTIVE_STATUSES:
            run.completed_at = utcnow()
        return True

    def mark_completed(self, job_id: str, attempts: int) -> bool:
        """Mark run as completed."""
        run = self._runs.get(job_id)
        if not run:
            return False

        run.attempts = attempts
        self.update_run_status(job_id, RunStatus.COMPLETED)
        logger.info(f"[Run {job_id}] Completed after {attempts} attempt(s)")
        return True

    def mark_failed(self, job_id: str, error: Exception, attempts: int) -> bool:
        """Mark run as failed with error details."""
        run = self._runs.get(job_id)
        if not run:
            return False

        error_type = type(error).__name__
        run.attempts = attempts
        run.error = RunError(
            error_type=error_type,
            message=str(error),
            hint=get_error_hint(error_type, str(error)),
            attempt=attempts
        )
        self.update_run_status(job_id, RunStatus.FAILED)
        return True

    def list_runs(
        self,
        task_identifier: Optional[str] = None,
        tag: Optional[str] = None,
        status: Optional[Union[RunStatus, str, List[Union[RunStatus, str]]]] = None,
        period: Optional[str] = None
    ) -> List[RunRecord]:
        """
        List runs matching every supplied filter.
        Tag filtering is loose: a filter tag matches any registered tag that
        contains it or is contained in it.
        """
        statuses = None
        if status is not None:
            if isinstance(status, (RunStatus, str)):
                status = [status]
            statuses = {RunStatus(s) for s in status}

        since = None
        if period:
            window = parse_duration(period)
            if window is None:
                logger.warning(f"Ignoring unparseable period filter {period!r}")
            else:
                since = utcnow() - window

        results = []
        for run in self._runs.values():
            if task_identifier and run.task_identifier != task_identifier:
                continue
            if tag and not any_tag_matches(tag, run.tags):
                continue
            if statuses is not None and run.status not in statuses:
                continue
            if since is not None and run.created_at < since:
                continue
            results.append(run)
        return results

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a run. The run is marked FAILED and flagged; a body that is
        already executing keeps running unless it checks the flag.
        """
        run = self._runs.get(job_id)
        if not run:
            logger.debug(f"Cancel requested for unknown run {job_id}")
            return False

        run.cancel_requested = True
        self.update_run_status(job_id, RunStatus.FAILED)
        logger.info(f"[Run {job_id}] Cancelled")
        return True

    def prune(self) -> List[str]:
        """Drop expired terminal runs, then the oldest terminal runs over capacity."""
        evicted = []

        if self.ttl_seconds is not None and self.ttl_seconds >= 0:
            cutoff = utcnow() - timedelta(seconds=self.ttl_seconds)
            for job_id, run in list(self._runs.items()):
                if run.is_terminal and run.completed_at and run.completed_at < cutoff:
                    evicted.append(job_id)

        for job_id in evicted:
            del self._runs[job_id]

        if self.max_runs is not None and len(self._runs) > self.max_runs:
            overflow = len(self._runs) - self.max_runs
            for job_id, run in list(self._runs.items()):
                if overflow <= 0:
                    break
                if run.is_terminal:
                    del self._runs[job_id]
                    evicted.append(job_id)
                    overflow -= 1

        for job_id in evicted:
            if self.on_evict:
                self.on_evict(job_id)

        if evicted:
            logger.debug(f"Pruned {len(evicted)} run(s) from registry")
        return evicted

    def __len__(self) -> int:
        return len(self._runs)


def to_summary(run: RunRecord) -> RunSummary:
    return RunSummary(
        id=run.id,
        status=run.status,
        task_identifier=run.task_identifier,
        tags=list(run.tags),
        created_at=run.created_at,
        started_at=run.started_at,
        completed_at=run.completed_at
    )


class Runs:
    """
    Query surface over a registry: runs.list, runs.retrieve and runs.cancel.
    `registry` may be a RunRegistry or a callable returning one.
    """

    def __init__(self, registry: Union[RunRegistry, Callable[[], RunRegistry]]):
        self._registry = registry

    @property
    def registry(self) -> RunRegistry:
        if isinstance(self._registry, RunRegistry):
            return self._registry
        return self._registry()

    async def list(
        self,
        task_identifier: Optional[str] = None,
        tag: Optional[str] = None,
        status=None,
        period: Optional[str] = None
    ) -> RunListResponse:
        runs = self.registry.list_runs(
            task_identifier=task_identifier,
            tag=tag,
            status=status,
            period=period
        )
        return RunListResponse(data=[to_summary(r) for r in runs])

    async def retrieve(self, run_id: str) -> Optional[RunRecord]:
        return self.registry.get_run(run_id)

    async def cancel(self, run_id: str) -> None:
        self.registry.cancel(run_id)
