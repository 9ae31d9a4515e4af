"""
Job Types and Schemas

Defines enums, type hints, and Pydantic models for the task engine.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone
from pydantic import AliasChoices, BaseModel, Field, field_validator


class RunStatus(str, Enum):
    """Lifecycle status of a dispatched run."""
    QUEUED = "QUEUED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CRASHED = "CRASHED"
    CANCELED = "CANCELED"
    SYSTEM_FAILURE = "SYSTEM_FAILURE"


ACTIVE_STATUSES = (RunStatus.QUEUED, RunStatus.EXECUTING)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressSnapshot(BaseModel):
    """Latest progress report for a run."""
    progress: float
    text: str


class TaggedProgress(BaseModel):
    """A snapshot found through a tag, with the run it belongs to."""
    job_id: str
    status: ProgressSnapshot


class RunError(BaseModel):
    """Structured error information for failed runs."""
    error_type: str  # exception class name, e.g. "TimeoutError"
    message: str
    hint: Optional[str] = None
    attempt: Optional[int] = None


class RunRecord(BaseModel):
    """Registry entry for one dispatched run."""
    id: str
    status: RunStatus = RunStatus.QUEUED
    task_identifier: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    idempotency_key: Optional[str] = None
    queue: Optional[str] = None
    concurrency_key: Optional[str] = None
    cancel_requested: bool = False
    error: Optional[RunError] = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in ACTIVE_STATUSES


class RunSummary(BaseModel):
    """Item in a run list response."""
    id: str
    status: RunStatus
    task_identifier: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RunListResponse(BaseModel):
    """Response for runs.list."""
    data: List[RunSummary]


class RetryOptions(BaseModel):
    """Task-level retry policy."""
    max_attempts: int = Field(default=1, ge=1, validation_alias=AliasChoices("max_attempts", "maxAttempts"))


class TaskConfig(BaseModel):
    """Definition of a task: its identifier and how it is retried."""
    id: str = Field(min_length=1)
    retry: RetryOptions = Field(default_factory=RetryOptions)
    queue: Optional[Dict[str, Any]] = None
    machine: Optional[Union[str, Dict[str, Any]]] = None


class TriggerOptions(BaseModel):
    """Options accepted by Task.trigger and Task.trigger_and_wait."""
    idempotency_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("idempotency_key", "idempotencyKey"))
    tags: List[str] = Field(default_factory=list)
    delay: Any = None  # datetime, timedelta, seconds or "30s" style string
    queue: Optional[str] = None
    concurrency_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("concurrency_key", "concurrencyKey"))

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class TriggerResult(BaseModel):
    """Handle returned by Task.trigger."""
    id: str


class TokenClaims(BaseModel):
    """Decoded scoped token."""
    tags: List[str]
    expired: bool
