"""
Job Engine Configuration

Environment-driven settings and logging setup shared by every component.
"""

import os
import logging
import secrets

from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

JOBS_TOKEN_SECRET = os.environ.get("JOBS_TOKEN_SECRET")
JOBS_MAX_RUNS = int(os.environ.get("JOBS_MAX_RUNS", "1000"))
JOBS_RUN_TTL_SECONDS = int(os.environ.get("JOBS_RUN_TTL_SECONDS", "3600"))
JOBS_DEFAULT_TOKEN_TTL = os.environ.get("JOBS_DEFAULT_TOKEN_TTL", "15m")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

_generated_secret = None


def configure_logging(level: str = None):
    """Configure the root logger for the job engine."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format=LOG_FORMAT
    )


def get_token_secret() -> str:
    """
    Get the signing key for scoped tokens.
    Falls back to a per-process random key, so tokens do not survive a restart.
    """
    global _generated_secret
    if JOBS_TOKEN_SECRET:
        return JOBS_TOKEN_SECRET

    if _generated_secret is None:
        logger.warning("JOBS_TOKEN_SECRET not set. Using a random per-process secret for scoped tokens.")
        _generated_secret = secrets.token_urlsafe(32)
    return _generated_secret
