"""
Task Runner

Defines tasks and executes their runs with proper lifecycle management:
- Immediate, delayed and synchronous dispatch
- Retry with exponential backoff
- Per-run context so task bodies can publish progress
- Run registry and progress store bookkeeping
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from uuid import uuid4

from jobengine.jobs.context import RunContext, current_run, enter_run, exit_run
from jobengine.jobs.job_manager import RunRegistry, Runs
from jobengine.jobs.job_types import (
    RunStatus, RetryOptions, TaskConfig, TriggerOptions, TriggerResult
)
from jobengine.jobs.progress import ProgressStore, parse_status
from jobengine.jobs.utils import resolve_delay_seconds

logger = logging.getLogger(__name__)

BASE_BACKOFF_MS = 1000

TaskBody = Callable[[Any], Any]


def backoff_seconds(attempt: int) -> float:
    """Delay after failed attempt `attempt` (1-based): 1s, 2s, 4s, ..."""
    return BASE_BACKOFF_MS * 2 ** (attempt - 1) / 1000


def new_run_id() -> str:
    return f"run_{uuid4().hex}"


def _coerce_options(options: Union[TriggerOptions, Dict[str, Any], None]) -> TriggerOptions:
    if options is None:
        return TriggerOptions()
    if isinstance(options, TriggerOptions):
        return options
    return TriggerOptions(**options)


class Task:
    """
    Handle for a defined task: trigger, trigger_and_wait, and the raw body as run.
    A handle without a scheduler dispatches through the process-wide one.
    """

    def __init__(self, config: TaskConfig, body: TaskBody, scheduler: "TaskScheduler" = None):
        self.config = config
        self._body = body
        self._scheduler = scheduler

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def scheduler(self) -> "TaskScheduler":
        return self._scheduler or get_scheduler()

    def run(self, payload: Any):
        """Invoke the task body directly, bypassing the scheduler."""
        return self._body(payload)

    async def trigger(self, payload: Any = None, options=None) -> TriggerResult:
        return await self.scheduler.trigger(self, payload, options)

    async def trigger_and_wait(self, payload: Any = None, options=None) -> Any:
        return await self.scheduler.trigger_and_wait(self, payload, options)

    def __repr__(self):
        return f"Task(id={self.id!r}, max_attempts={self.config.retry.max_attempts})"


class TaskScheduler:
    """
    Dispatches runs of tasks and executes them with retries.
    """

    def __init__(
        self,
        registry: Optional[RunRegistry] = None,
        store: Optional[ProgressStore] = None,
        sleep: Callable[[float], Awaitable[None]] = None
    ):
        self.store = store if store is not None else ProgressStore()
        self.registry = registry if registry is not None else RunRegistry()
        if self.registry.on_evict is None:
            self.registry.on_evict = self.store.clear_progress
        self._sleep = sleep or asyncio.sleep
        self._running_jobs: Dict[str, asyncio.Task] = {}

    def task(
        self,
        id: str,
        run: Optional[TaskBody] = None,
        retry: Union[RetryOptions, Dict[str, Any], None] = None,
        queue: Optional[Dict[str, Any]] = None,
        machine: Any = None
    ):
        """Define a task bound to this scheduler. Without `run`, returns a decorator."""
        return define_task(id, run, retry=retry, queue=queue, machine=machine, scheduler=self)

    async def trigger(self, task: Task, payload: Any = None, options=None) -> TriggerResult:
        """
        Register a run and schedule it in the background. Returns immediately
        with the run id; the run is QUEUED until the event loop picks it up.
        """
        options = _coerce_options(options)

        if options.idempotency_key:
            existing = self.registry.find_active_by_idempotency_key(task.id, options.idempotency_key)
            if existing:
                logger.info(f"Returning existing run {existing.id} for idempotency key {options.idempotency_key}")
                return TriggerResult(id=existing.id)

        run_id = new_run_id()
        if options.tags:
            self.store.register_job_tags(run_id, options.tags)
        self._register(task, run_id, options)

        delay = resolve_delay_seconds(options.delay)
        job = asyncio.create_task(self._run_in_background(task, run_id, payload, delay))
        self._running_jobs[run_id] = job

        def on_complete(t):
            self._running_jobs.pop(run_id, None)

        job.add_done_callback(on_complete)

        logger.info(
            f"Triggered task {task.id} as run {run_id} with tags {options.tags}"
            + (f" (delayed {delay:.0f}s)" if delay else "")
        )
        return TriggerResult(id=run_id)

    async def trigger_and_wait(self, task: Task, payload: Any = None, options=None) -> Any:
        """Run a task to completion in the caller's task. Raises the final error."""
        options = _coerce_options(options)
        run_id = new_run_id()
        self._register(task, run_id, options)

        logger.info(f"Running task {task.id} as run {run_id} with tags {options.tags} and waiting")
        return await self._execute(task, run_id, payload)

    def _register(self, task: Task, run_id: str, options: TriggerOptions):
        self.registry.register_run(
            run_id,
            task.id,
            options.tags,
            idempotency_key=options.idempotency_key,
            queue=options.queue,
            concurrency_key=options.concurrency_key
        )

    async def _run_in_background(self, task: Task, run_id: str, payload: Any, delay: float):
        """Background entry point for a triggered run."""
        if delay > 0:
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                self.registry.update_run_status(run_id, RunStatus.CANCELED)
                logger.info(f"[Run {run_id}] Cancelled while waiting for its delay")
                raise

        run = self.registry.get_run(run_id)
        if run and run.cancel_requested:
            logger.info(f"[Run {run_id}] Skipped, cancelled before it started")
            return

        try:
            await self._execute(task, run_id, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Already recorded as FAILED by _execute
            logger.debug(f"[Run {run_id}] Background run ended with {type(e).__name__}")

    async def _execute(self, task: Task, run_id: str, payload: Any) -> Any:
        """Execute the task body, retrying with exponential backoff."""
        max_attempts = task.config.retry.max_attempts
        self.registry.update_run_status(run_id, RunStatus.EXECUTING)

        attempt = 1
        while True:
            ctx = RunContext(
                run_id=run_id,
                task_id=task.id,
                attempt=attempt,
                max_attempts=max_attempts,
                _store=self.store,
                _registry=self.registry
            )
            token = enter_run(ctx)
            try:
                result = await self._invoke(task, payload)
            except asyncio.CancelledError:
                self.registry.update_run_status(run_id, RunStatus.CANCELED)
                logger.info(f"[Run {run_id}] Cancelled during attempt {attempt}")
                raise
            except Exception as e:
                logger.error(f"[Run {run_id}] Attempt {attempt}/{max_attempts} of task {task.id} failed: {e}")
                if attempt >= max_attempts:
                    self.registry.mark_failed(run_id, e, attempts=attempt)
                    self.registry.prune()
                    raise
            else:
                self.registry.mark_completed(run_id, attempts=attempt)
                self.registry.prune()
                return result
            finally:
                exit_run(token)

            try:
                await self._sleep(backoff_seconds(attempt))
            except asyncio.CancelledError:
                self.registry.update_run_status(run_id, RunStatus.CANCELED)
                logger.info(f"[Run {run_id}] Cancelled while backing off after attempt {attempt}")
                raise
            attempt += 1

    async def _invoke(self, task: Task, payload: Any) -> Any:
        if asyncio.iscoroutinefunction(task._body):
            return await task._body(payload)

        # Sync body: run in a worker thread (the thread inherits the run context)
        result = await asyncio.to_thread(task._body, payload)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def wait_for(self, run_id: str):
        """Wait for a background run to finish. Returns immediately if it is not running."""
        job = self._running_jobs.get(run_id)
        if job is not None:
            await asyncio.gather(job, return_exceptions=True)

    async def shutdown(self):
        """Cancel every outstanding background run."""
        jobs = list(self._running_jobs.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
            logger.info(f"Cancelled {len(jobs)} background run(s) on shutdown")


def define_task(
    id: str,
    run: Optional[TaskBody] = None,
    retry: Union[RetryOptions, Dict[str, Any], None] = None,
    queue: Optional[Dict[str, Any]] = None,
    machine: Any = None,
    scheduler: Optional[TaskScheduler] = None
):
    config = TaskConfig(
        id=id,
        retry=retry if retry is not None else RetryOptions(),
        queue=queue,
        machine=machine
    )

    if run is not None:
        return Task(config, run, scheduler)

    def decorator(body: TaskBody) -> Task:
        return Task(config, body, scheduler)

    return decorator


def task(
    id: str,
    run: Optional[TaskBody] = None,
    retry: Union[RetryOptions, Dict[str, Any], None] = None,
    queue: Optional[Dict[str, Any]] = None,
    machine: Any = None
):
    """
    Define a task on the process-wide scheduler.

        thumbnail = task(id="generate-thumbnail", run=generate, retry={"max_attempts": 3})
        await thumbnail.trigger({"document_id": doc_id}, {"tags": [f"doc-{doc_id}"]})

    Without `run`, returns a decorator:

        @task(id="ping")
        async def ping(payload):
            return "pong"
    """
    return define_task(id, run, retry=retry, queue=queue, machine=machine)


class Metadata:
    """Progress publication from inside a running task body."""

    def set(self, data: Any) -> bool:
        """
        Publish a progress snapshot for the current run. Accepts
        {"status": {"progress": ..., "text": ...}} or the bare snapshot.
        Returns False (and does nothing) outside a run.
        """
        ctx = current_run()
        if ctx is None:
            logger.debug("metadata.set called outside of a run, ignoring")
            return False
        ctx.update_progress(**parse_status(data).model_dump())
        return True


metadata = Metadata()


# ============================================================================
# Global scheduler instance
# ============================================================================

_scheduler: Optional[TaskScheduler] = None


def get_scheduler() -> TaskScheduler:
    """Get the process-wide scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = TaskScheduler()
    return _scheduler


def reset_scheduler(scheduler: Optional[TaskScheduler] = None) -> TaskScheduler:
    """Replace the process-wide scheduler (fresh registry and store by default)."""
    global _scheduler
    _scheduler = scheduler or TaskScheduler()
    return _scheduler


def get_registry() -> RunRegistry:
    return get_scheduler().registry


def get_progress_store() -> ProgressStore:
    return get_scheduler().store


runs = Runs(get_registry)
