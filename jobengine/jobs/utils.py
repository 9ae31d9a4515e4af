"""
Job Utilities

Shared helpers for the task engine: duration parsing, tag matching,
error hints, and progress helpers for task bodies.
"""

import re
import logging
from typing import Any, List, Optional, Tuple
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}


def parse_duration(value: str) -> Optional[timedelta]:
    """Parse "30s", "5m", "2h", "7d" or "1w". Returns None when malformed."""
    if not isinstance(value, str):
        return None
    match = _DURATION_RE.match(value.strip())
    if not match:
        return None
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


def resolve_delay_seconds(delay: Any, now: Optional[datetime] = None) -> float:
    """
    Convert a trigger delay into seconds from now.

    Accepts an absolute datetime, a timedelta, a number of seconds, or a
    duration string. Past instants and unusable values resolve to 0.
    """
    if delay is None:
        return 0.0

    if isinstance(delay, datetime):
        now = now or datetime.now(timezone.utc)
        if delay.tzinfo is None:
            delay = delay.replace(tzinfo=timezone.utc)
        return max(0.0, (delay - now).total_seconds())

    if isinstance(delay, timedelta):
        return max(0.0, delay.total_seconds())

    if isinstance(delay, (int, float)) and not isinstance(delay, bool):
        return max(0.0, float(delay))

    parsed = parse_duration(delay)
    if parsed is None:
        logger.warning(f"Ignoring unparseable delay {delay!r}")
        return 0.0
    return parsed.total_seconds()


def tags_match(query: str, tag: str) -> bool:
    """Loose tag comparison: equal, or either one contains the other."""
    return query == tag or query in tag or tag in query


def any_tag_matches(query: str, tags: List[str]) -> bool:
    return any(tags_match(query, t) for t in tags)


def get_error_hint(error_type: str, message: str) -> str:
    """Get a user-friendly hint based on error type."""
    message_lower = message.lower()

    if "quota" in message_lower or "rate limit" in message_lower:
        return "An upstream service is rate limiting. Please wait a few minutes and try again."

    if "timeout" in message_lower or error_type in ("TimeoutError", "ReadTimeout", "ConnectTimeout"):
        return "The operation timed out. Try again with a smaller batch."

    if "permission" in message_lower or "unauthorized" in message_lower:
        return "Permission denied. Please ensure the task has access to the required resources."

    if "not found" in message_lower:
        return "A required resource was not found. It may have been deleted or moved."

    if error_type == "ValidationError":
        return "The task input is invalid. Please check the payload format and try again."

    if error_type in ("ConnectionError", "ConnectError"):
        return "Could not connect to a required service."

    return "An error occurred while processing. The run can be triggered again."


class ProgressTracker:
    """
    Maps progress within weighted stages onto a single 0-100 scale.

    Usage:
        tracker = ProgressTracker([
            ("download", 20),
            ("render", 70),
            ("upload", 10)
        ])

        metadata.set({"status": tracker.stage("download")})
        for i, page in enumerate(pages):
            metadata.set({"status": tracker.progress("render", i + 1, len(pages))})
    """

    def __init__(self, stages: List[Tuple[str, float]]):
        self.stages = {}
        cumulative = 0

        for name, weight in stages:
            self.stages[name] = (cumulative, weight)
            cumulative += weight

    def stage(self, name: str) -> dict:
        """Status for the start of a stage."""
        start, _ = self.stages.get(name, (0, 0))
        return {"progress": start, "text": name}

    def complete(self, name: str) -> dict:
        """Status for the end of a stage."""
        if name not in self.stages:
            return {"progress": 100, "text": name}
        start, weight = self.stages[name]
        return {"progress": start + weight, "text": name}

    def progress(self, name: str, current: int, total: int) -> dict:
        """Status for `current` of `total` items done within a stage."""
        if name not in self.stages or total <= 0:
            return {"progress": 0, "text": name}

        start, weight = self.stages[name]
        done = min(current / total, 1.0)
        return {"progress": start + weight * done, "text": f"{name} ({current}/{total})"}
