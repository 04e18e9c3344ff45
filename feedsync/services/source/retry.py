"""Bounded retry for idempotent side-fetches (covers, transcripts).

Page fetches never go through here.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from feedsync.logging_utils import structured_log
from feedsync.services.runs.cancellation import CancellationToken
from feedsync.services.source.errors import (
    QuotaExhaustedError,
    SideFetchFailure,
    SideFetchHttpError,
    SourceBusyError,
    SourceError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: float
    honor_retry_after: bool = True
    retry_http_errors: bool = True
    max_delay_seconds: float = 30.0

    def retryable_errors(self) -> tuple[type[BaseException], ...]:
        errors: tuple[type[BaseException], ...] = (httpx.TransportError, SourceBusyError)
        if self.retry_http_errors:
            errors += (SideFetchHttpError,)
        return errors


class wait_retry_hint(wait_base):
    """Exponential backoff that defers to a server-supplied retry-after hint."""

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        if (
            self._policy.honor_retry_after
            and isinstance(error, SourceBusyError)
            and error.retry_after_seconds
        ):
            return min(error.retry_after_seconds, self._policy.max_delay_seconds)
        delay = self._policy.base_delay_seconds * (2 ** (retry_state.attempt_number - 1))
        return min(delay, self._policy.max_delay_seconds)


async def fetch_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    token: CancellationToken | None = None,
    label: str,
) -> T:
    """Run ``operation`` under ``policy``.

    Cancellation and quota exhaustion pass through untouched. Anything
    else that survives the retries surfaces as ``SideFetchFailure``.
    """

    async def _attempt() -> T:
        if token is None:
            return await operation()
        return await token.guard(operation())

    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        structured_log(
            logger,
            "info",
            "side_fetch.retry_scheduled",
            label=label,
            attempt=retry_state.attempt_number,
            delay_seconds=round(retry_state.upcoming_sleep, 3),
            error=repr(outcome.exception()) if outcome is not None and outcome.failed else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_retry_hint(policy),
        retry=retry_if_exception_type(policy.retryable_errors()),
        sleep=token.sleep if token is not None else asyncio.sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await _attempt()
    except QuotaExhaustedError:
        raise
    except (httpx.HTTPError, SourceError) as exc:
        attempts = retrying.statistics.get("attempt_number", 1)
        structured_log(
            logger,
            "warning",
            "side_fetch.failed",
            label=label,
            attempts=attempts,
            error=repr(exc),
        )
        raise SideFetchFailure(f"{label} failed: {exc}", label=label, attempts=attempts) from exc
    raise SideFetchFailure(f"{label} produced no result", label=label, attempts=0)
