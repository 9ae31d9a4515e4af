"""
Fundroom Job Engine

Self-hosted background task runtime: tasks, runs, progress, scoped progress
tokens, and a retry-aware HTTP client for task bodies.
"""

from jobengine.jobs import task, metadata, runs
from jobengine.public_tokens import auth, verify_token
from jobengine.http_retry import retry

__version__ = "1.0.0"

__all__ = [
    "task",
    "metadata",
    "runs",
    "auth",
    "verify_token",
    "retry",
]
