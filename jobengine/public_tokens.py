"""
Scoped Public Tokens

Time-boxed, tag-scoped tokens that let a browser poll progress for specific
subjects without access to the rest of the run registry.

Tokens are HS256 JWTs carrying {tags, exp, jti}. There is no server-side
state, so expiry is the only way a token stops working.
"""

import re
import time
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from jose import jwt, JWTError

from jobengine import config
from jobengine.jobs.job_types import TokenClaims

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_EXPIRATION_SECONDS = 15 * 60

_EXPIRATION_RE = re.compile(r"^(\d+)([smh])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def parse_expiration(expiration_time: Optional[str]) -> int:
    """
    Parse "30s", "15m" or "2h" into seconds.
    Anything else silently becomes 15 minutes.
    """
    match = _EXPIRATION_RE.match(expiration_time or "")
    if not match:
        return DEFAULT_EXPIRATION_SECONDS
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def create_public_token(
    scopes: Dict[str, Any],
    expiration_time: Optional[str] = None,
    secret: Optional[str] = None
) -> str:
    """
    Issue a token granting read access to progress for the given tags.

        create_public_token({"read": {"tags": ["doc-42"]}}, "1h")
    """
    tags: List[str] = list(scopes.get("read", {}).get("tags", []))
    claims = {
        "tags": tags,
        "exp": int(time.time()) + parse_expiration(expiration_time or config.JOBS_DEFAULT_TOKEN_TTL),
        "jti": uuid4().hex,
    }
    return jwt.encode(claims, secret or config.get_token_secret(), algorithm=ALGORITHM)


def verify_token(token: str, secret: Optional[str] = None) -> Optional[TokenClaims]:
    """
    Decode a scoped token.

    Returns the token's tags and whether it has expired, or None if the
    token is malformed, tampered with, or missing claims.
    """
    if not token:
        return None

    try:
        # Expiry is reported rather than rejected
        claims = jwt.decode(
            token,
            secret or config.get_token_secret(),
            algorithms=[ALGORITHM],
            options={"verify_exp": False}
        )
    except JWTError as e:
        logger.debug(f"Rejected scoped token: {e}")
        return None

    tags = claims.get("tags")
    exp = claims.get("exp")
    if not isinstance(tags, list) or not isinstance(exp, (int, float)):
        logger.debug("Rejected scoped token: missing tags or exp claim")
        return None

    return TokenClaims(tags=[str(t) for t in tags], expired=exp < time.time())


class Auth:
    """auth.create_public_token, as an awaitable for route handlers."""

    async def create_public_token(self, scopes: Dict[str, Any], expiration_time: Optional[str] = None) -> str:
        return create_public_token(scopes, expiration_time)


auth = Auth()
