from datetime import datetime, timezone
from typing import Dict
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from jobengine import __version__, config
from jobengine import jobs_routes
from jobengine.jobs.runner import get_scheduler

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Fundroom Job Engine",
    description="Background task runtime with tag-scoped progress polling",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info(f"Job engine starting ({config.ENVIRONMENT})")
    logger.info(f"Run registry capacity: {config.JOBS_MAX_RUNS}, retention: {config.JOBS_RUN_TTL_SECONDS}s")
    logger.info(f"Scoped token secret: {'Configured' if config.JOBS_TOKEN_SECRET else 'NOT CONFIGURED - set JOBS_TOKEN_SECRET'}")


@app.on_event("shutdown")
async def shutdown_event():
    await get_scheduler().shutdown()


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    runs: Dict[str, int]


@app.get("/api/system/health", response_model=HealthResponse)
async def health_check():
    """Basic health check with registry counts."""
    registry = get_scheduler().registry
    counts: Dict[str, int] = {}
    for run in registry.list_runs():
        counts[run.status.value] = counts.get(run.status.value, 0) + 1

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=config.ENVIRONMENT,
        runs=counts
    )


app.include_router(jobs_routes.router)
