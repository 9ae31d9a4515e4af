"""
Run Context

Holds the run a task body is currently executing for. The current run lives
in a ContextVar, so every asyncio task (and thread started with
asyncio.to_thread) sees only its own run.
"""

import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from jobengine.jobs.job_manager import RunRegistry
    from jobengine.jobs.progress import ProgressStore

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """
    Context for one attempt of a run.
    Task bodies reach it through current_run() or implicitly through metadata.set.
    """
    run_id: str
    task_id: str
    attempt: int
    max_attempts: int

    _store: "ProgressStore" = field(repr=False)
    _registry: "RunRegistry" = field(repr=False)

    def update_progress(self, progress: float, text: str):
        """Publish a progress snapshot for this run."""
        self._store.update_progress_for_job(self.run_id, {"progress": progress, "text": text})

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested. Returns True if the body should stop."""
        run = self._registry.get_run(self.run_id)
        return bool(run and run.cancel_requested)


_current_run: ContextVar[Optional[RunContext]] = ContextVar("jobengine_current_run", default=None)


def current_run() -> Optional[RunContext]:
    """The RunContext of the executing run, or None outside a task body."""
    return _current_run.get()


def current_run_id() -> Optional[str]:
    ctx = _current_run.get()
    return ctx.run_id if ctx else None


def enter_run(ctx: RunContext):
    """Make ctx the current run. Returns the token for exit_run."""
    return _current_run.set(ctx)


def exit_run(token):
    _current_run.reset(token)
