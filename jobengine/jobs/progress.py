"""
Progress Store

Keeps the latest progress snapshot per run and a two-way index between runs
and the caller-supplied tags they were triggered with.
"""

import logging
from typing import Any, Dict, List, Optional

from jobengine.jobs.context import current_run_id
from jobengine.jobs.job_types import ProgressSnapshot, TaggedProgress
from jobengine.jobs.utils import any_tag_matches

logger = logging.getLogger(__name__)


def parse_status(data: Any) -> ProgressSnapshot:
    """
    Normalize a progress payload into a ProgressSnapshot.

    Accepts either {"progress": ..., "text": ...} or the wrapped form
    {"status": {"progress": ..., "text": ...}}. Raises pydantic.ValidationError
    for anything else.
    """
    if isinstance(data, ProgressSnapshot):
        return data
    if isinstance(data, dict) and "status" in data:
        data = data["status"]
    return ProgressSnapshot.model_validate(data)


class ProgressStore:
    """
    In-memory progress snapshots, looked up by run id or by tag.
    """

    def __init__(self):
        self._progress: Dict[str, ProgressSnapshot] = {}
        self._tag_to_job: Dict[str, str] = {}
        self._job_to_tags: Dict[str, List[str]] = {}

    def register_job_tags(self, job_id: str, tags: List[str]):
        """Record the run <-> tag association in both directions."""
        if not tags:
            return

        known = self._job_to_tags.setdefault(job_id, [])
        for tag in tags:
            self._tag_to_job[tag] = job_id
            if tag not in known:
                known.append(tag)

    def update_progress(self, status: Any) -> bool:
        """Write a snapshot for the current run. No-op outside a run."""
        job_id = current_run_id()
        if not job_id:
            logger.debug("Ignoring progress update outside of a run")
            return False
        self.update_progress_for_job(job_id, status)
        return True

    def update_progress_for_job(self, job_id: str, status: Any) -> ProgressSnapshot:
        """Write (or overwrite) the snapshot for an explicit run id."""
        snapshot = parse_status(status)
        self._progress[job_id] = snapshot
        logger.debug(f"[Run {job_id}] Progress: {snapshot.progress:.0f}% - {snapshot.text}")
        return snapshot

    def get_progress(self, job_id: str) -> Optional[ProgressSnapshot]:
        return self._progress.get(job_id)

    def get_progress_by_tag(self, tag: str) -> Optional[TaggedProgress]:
        """Exact tag lookup. Returns the snapshot of the run last tagged with `tag`."""
        job_id = self._tag_to_job.get(tag)
        if job_id is None:
            return None

        snapshot = self._progress.get(job_id)
        if snapshot is None:
            return None
        return TaggedProgress(job_id=job_id, status=snapshot)

    def match_progress_by_tag(self, tag: str) -> Optional[TaggedProgress]:
        """
        Loose tag lookup.

        Tries the exact lookup first, then scans every run's tags for one that
        contains `tag` or is contained in it, returning the first run with a
        snapshot. When several runs share overlapping tags ("doc-1", "doc-10")
        the result may belong to a different run than the caller meant.
        """
        exact = self.get_progress_by_tag(tag)
        if exact is not None:
            return exact

        for job_id, tags in self._job_to_tags.items():
            snapshot = self._progress.get(job_id)
            if snapshot is not None and any_tag_matches(tag, tags):
                return TaggedProgress(job_id=job_id, status=snapshot)

        return None

    def clear_progress(self, job_id: str):
        """Remove the snapshot and every tag index entry for a run."""
        self._progress.pop(job_id, None)

        for tag in self._job_to_tags.pop(job_id, []):
            if self._tag_to_job.get(tag) == job_id:
                del self._tag_to_job[tag]

    def tags_for(self, job_id: str) -> List[str]:
        return list(self._job_to_tags.get(job_id, []))
