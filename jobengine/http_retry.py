"""Async HTTP fetch with retries keyed on response status codes."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from pydantic import AliasChoices, BaseModel, Field

logger = logging.getLogger(__name__)

MAX_TOTAL_ATTEMPTS = 4
NETWORK_BACKOFF_MS = 1000


class BackoffPolicy(BaseModel):
    """Backoff for responses whose status falls in a configured range."""

    max_attempts: int = Field(default=3, ge=0, validation_alias=AliasChoices("max_attempts", "maxAttempts"))
    factor: float = 2
    min_timeout_in_ms: float = Field(
        default=1000, validation_alias=AliasChoices("min_timeout_in_ms", "minTimeoutInMs")
    )
    max_timeout_in_ms: float = Field(
        default=30000, validation_alias=AliasChoices("max_timeout_in_ms", "maxTimeoutInMs")
    )
    randomize: bool = False

    def delay_ms(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        delay = min(self.min_timeout_in_ms * self.factor**attempt, self.max_timeout_in_ms)
        if self.randomize:
            delay = delay * (0.5 + rand())
        return delay


@dataclass(slots=True)
class StatusRange:
    low: int
    high: int

    @classmethod
    def parse(cls, key: str | int) -> StatusRange:
        """Parse "429" or "500-599"."""
        text = str(key).strip()
        if "-" in text:
            low, high = text.split("-", 1)
            return cls(int(low), int(high))
        return cls(int(text), int(text))

    def __contains__(self, status: int) -> bool:
        return self.low <= status <= self.high


def parse_by_status(by_status: dict[Any, Any] | None) -> list[tuple[StatusRange, BackoffPolicy]]:
    rules = []
    for key, policy in (by_status or {}).items():
        if not isinstance(policy, BackoffPolicy):
            policy = BackoffPolicy.model_validate(policy)
        rules.append((StatusRange.parse(key), policy))
    return rules


def _retry_rules(retry: dict[str, Any] | None) -> list[tuple[StatusRange, BackoffPolicy]]:
    if not retry:
        return []
    return parse_by_status(retry.get("by_status") or retry.get("byStatus"))


class RetryFetcher:
    """HTTP client wrapper that retries by status range and on network errors."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._client = client
        self._sleep = sleep or asyncio.sleep
        self._rand = rand

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        retry: dict[str, Any] | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """
        Issue a request, retrying per `retry["by_status"]`.

        HTTP error statuses never raise: the last response is returned once no
        rule matches or the matching budget is spent. Transport errors are
        retried up to MAX_TOTAL_ATTEMPTS and then re-raised.
        """
        if self._client is not None:
            return await self._fetch(self._client, url, method, retry, request_kwargs)
        async with httpx.AsyncClient() as client:
            return await self._fetch(client, url, method, retry, request_kwargs)

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        method: str,
        retry: dict[str, Any] | None,
        request_kwargs: dict[str, Any],
    ) -> httpx.Response:
        rules = _retry_rules(retry)
        attempt = 0

        while True:
            try:
                response = await client.request(method, url, **request_kwargs)
            except httpx.TransportError as exc:
                if attempt + 1 >= MAX_TOTAL_ATTEMPTS:
                    logger.warning("Giving up on %s %s after %d attempts: %s", method, url, attempt + 1, exc)
                    raise
                delay_ms = NETWORK_BACKOFF_MS * 2**attempt
                logger.warning("Network error on %s %s (attempt %d): %s", method, url, attempt + 1, exc)
                await self._sleep(delay_ms / 1000)
                attempt += 1
                continue

            policy = next((p for r, p in rules if response.status_code in r), None)
            if policy is None or attempt >= policy.max_attempts or attempt + 1 >= MAX_TOTAL_ATTEMPTS:
                return response

            delay_ms = policy.delay_ms(attempt, self._rand)
            logger.info(
                "Retrying %s %s after HTTP %d in %.0fms (attempt %d)",
                method,
                url,
                response.status_code,
                delay_ms,
                attempt + 1,
            )
            await response.aclose()
            await self._sleep(delay_ms / 1000)
            attempt += 1


retry = RetryFetcher()
