"""
Shared fixtures for the job engine tests.
"""

import os

import pytest

# Set test environment before the engine reads it
os.environ["ENVIRONMENT"] = "test"
os.environ["JOBS_TOKEN_SECRET"] = "test-token-secret"

from jobengine.jobs.runner import TaskScheduler, reset_scheduler


class SleepRecorder:
    """Stands in for asyncio.sleep: records requested delays and returns at once."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def scheduler(sleeper):
    """A scheduler with its own registry and store, and no real sleeping."""
    return TaskScheduler(sleep=sleeper)


@pytest.fixture(autouse=True)
def global_scheduler(sleeper):
    """Fresh process-wide scheduler for every test."""
    return reset_scheduler(TaskScheduler(sleep=sleeper))
