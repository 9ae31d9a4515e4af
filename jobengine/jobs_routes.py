"""
Job Progress API Routes

Provides endpoints for:
- Polling the latest progress of a run by tag
- Server-Sent Events (SSE) streaming of progress until the run finishes

Both endpoints take a scoped public token (see public_tokens) instead of a
user session; the token limits the caller to the tags it was issued for.
"""

import asyncio
import logging
import json
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Header
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from jobengine.jobs.job_types import ProgressSnapshot, TaggedProgress, TokenClaims
from jobengine.jobs.runner import get_progress_store, get_registry
from jobengine.public_tokens import verify_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

STREAM_CHECK_INTERVAL = 2  # seconds, same cadence as the browser poller
STREAM_MAX_NO_CHANGE = 150  # ~5 minutes


# =============================================================================
# AUTH DEPENDENCY
# =============================================================================

async def get_token_claims(authorization: Optional[str] = Header(None)) -> TokenClaims:
    """Extract and verify a scoped public token from the Authorization header."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header missing")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    claims = verify_token(parts[1])
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid token")

    if claims.expired:
        raise HTTPException(status_code=401, detail="Token expired")

    return claims


def require_tag_scope(tag: str, claims: TokenClaims):
    if tag not in claims.tags:
        logger.warning(f"Token scoped to {claims.tags} used to read tag {tag!r}")
        raise HTTPException(status_code=403, detail="Token does not grant access to this tag")


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ProgressResponse(BaseModel):
    """Latest progress for a tag."""
    model_config = ConfigDict(populate_by_name=True)

    status: ProgressSnapshot
    job_id: str = Field(alias="jobId")


def find_progress(tag: str, match: str) -> Optional[TaggedProgress]:
    store = get_progress_store()
    if match == "fuzzy":
        return store.match_progress_by_tag(tag)
    return store.get_progress_by_tag(tag)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/progress", response_model=ProgressResponse)
async def get_progress(
    tag: str = Query(..., min_length=1),
    match: str = Query(default="exact", pattern="^(exact|fuzzy)$"),
    claims: TokenClaims = Depends(get_token_claims)
):
    """
    Get the latest progress snapshot for the run tagged `tag`.

    match=fuzzy also accepts runs whose tags contain, or are contained in,
    the requested tag.
    """
    require_tag_scope(tag, claims)

    found = find_progress(tag, match)
    if not found:
        raise HTTPException(status_code=404, detail="No run found for tag")

    return ProgressResponse(status=found.status, job_id=found.job_id)


@router.get("/progress/stream")
async def stream_progress(
    tag: str = Query(..., min_length=1),
    match: str = Query(default="exact", pattern="^(exact|fuzzy)$"),
    claims: TokenClaims = Depends(get_token_claims)
):
    """
    Stream progress for a tag using Server-Sent Events (SSE).

    Connection closes when progress reaches 100, the run finishes,
    or nothing changes for 5 minutes.
    """
    require_tag_scope(tag, claims)

    if not find_progress(tag, match):
        raise HTTPException(status_code=404, detail="No run found for tag")

    async def event_generator():
        """Generate SSE events."""
        last_snapshot = None
        no_change_count = 0

        try:
            while True:
                found = find_progress(tag, match)
                if not found:
                    yield f"data: {json.dumps({'type': 'error', 'message': 'Run not found'})}\n\n"
                    break

                run = get_registry().get_run(found.job_id)
                run_status = run.status.value if run else None

                if found.status != last_snapshot:
                    event_data = {
                        "type": "status",
                        "jobId": found.job_id,
                        "status": found.status.model_dump(),
                        "runStatus": run_status,
                        "timestamp": datetime.now(timezone.utc).isoformat()
                    }
                    yield f"data: {json.dumps(event_data)}\n\n"
                    last_snapshot = found.status
                    no_change_count = 0
                else:
                    no_change_count += 1

                if found.status.progress >= 100 or (run and run.is_terminal):
                    yield f"data: {json.dumps({'type': 'complete', 'runStatus': run_status})}\n\n"
                    break

                if no_change_count >= STREAM_MAX_NO_CHANGE:
                    yield f"data: {json.dumps({'type': 'timeout', 'message': 'No updates for 5 minutes'})}\n\n"
                    break

                await asyncio.sleep(STREAM_CHECK_INTERVAL)

        except asyncio.CancelledError:
            logger.info(f"SSE connection cancelled for tag {tag}")
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )
