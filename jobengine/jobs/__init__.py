"""
Job Engine Tasks Framework

In-process task execution and progress tracking: define tasks, trigger them
now, later or synchronously, retry failures, and publish progress that
outside callers can poll by tag.

Key components:
- job_types: Run status, run records and option schemas
- job_manager: Run registry (lifecycle, queries, cancel, retention)
- progress: Progress store and tag index
- context: Per-run ambient context
- runner: Task definition, dispatch and execution
- utils: Duration parsing, tag matching, error hints, progress helpers
"""

from jobengine.jobs.job_types import (
    RunStatus,
    RunRecord,
    RunError,
    RunSummary,
    RunListResponse,
    ProgressSnapshot,
    TaggedProgress,
    RetryOptions,
    TriggerOptions,
    TriggerResult,
)

from jobengine.jobs.job_manager import (
    RunRegistry,
    Runs,
)

from jobengine.jobs.progress import (
    ProgressStore,
    parse_status,
)

from jobengine.jobs.context import (
    RunContext,
    current_run,
)

from jobengine.jobs.runner import (
    Task,
    TaskScheduler,
    task,
    metadata,
    runs,
    get_scheduler,
    get_registry,
    get_progress_store,
    reset_scheduler,
)

from jobengine.jobs.utils import ProgressTracker

__all__ = [
    # Types
    "RunStatus",
    "RunRecord",
    "RunError",
    "RunSummary",
    "RunListResponse",
    "ProgressSnapshot",
    "TaggedProgress",
    "RetryOptions",
    "TriggerOptions",
    "TriggerResult",
    # Registry
    "RunRegistry",
    "Runs",
    # Progress
    "ProgressStore",
    "parse_status",
    # Runner
    "RunContext",
    "current_run",
    "Task",
    "TaskScheduler",
    "task",
    "metadata",
    "runs",
    "get_scheduler",
    "get_registry",
    "get_progress_store",
    "reset_scheduler",
    # Helpers
    "ProgressTracker",
]
