from __future__ import annotations

import httpx
import pytest

from feedsync.services.runs.cancellation import CancellationToken, CancelReason, TransportAborted
from feedsync.services.source.errors import (
    QuotaExhaustedError,
    SideFetchFailure,
    SideFetchHttpError,
    SourceBusyError,
)
from feedsync.services.source.retry import RetryPolicy, fetch_with_retry


class _RecordingToken(CancellationToken):
    def __init__(self) -> None:
        super().__init__("keyword")
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def _flaky(failures: list[Exception], result: str = "ok"):
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return operation, calls


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff() -> None:
    token = _RecordingToken()
    operation, calls = _flaky([httpx.ConnectError("reset"), SideFetchHttpError("502", status_code=502)])

    result = await fetch_with_retry(
        operation,
        policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.4),
        token=token,
        label="cover",
    )

    assert result == "ok"
    assert calls["count"] == 3
    assert token.sleeps == [0.4, 0.8]


@pytest.mark.asyncio
async def test_busy_hint_overrides_backoff() -> None:
    token = _RecordingToken()
    operation, _ = _flaky([SourceBusyError("busy", retry_after_seconds=7)], result="transcript")

    result = await fetch_with_retry(
        operation,
        policy=RetryPolicy(max_attempts=2, base_delay_seconds=1.2, retry_http_errors=False),
        token=token,
        label="transcript",
    )

    assert result == "transcript"
    assert token.sleeps == [7]


@pytest.mark.asyncio
async def test_exhausted_attempts_surface_as_side_fetch_failure() -> None:
    token = _RecordingToken()
    operation, calls = _flaky([SideFetchHttpError("500", status_code=500)] * 5)

    with pytest.raises(SideFetchFailure) as exc_info:
        await fetch_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=2, base_delay_seconds=0.1),
            token=token,
            label="cover",
        )

    assert calls["count"] == 2
    assert exc_info.value.attempts == 2
    assert exc_info.value.label == "cover"


@pytest.mark.asyncio
async def test_non_retryable_http_error_fails_fast() -> None:
    operation, calls = _flaky([SideFetchHttpError("400", status_code=400)])

    with pytest.raises(SideFetchFailure):
        await fetch_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.1, retry_http_errors=False),
            token=_RecordingToken(),
            label="transcript",
        )

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_quota_exhaustion_and_cancellation_pass_through() -> None:
    quota_operation, quota_calls = _flaky([QuotaExhaustedError(remaining=0, quota=100)])
    with pytest.raises(QuotaExhaustedError):
        await fetch_with_retry(
            quota_operation,
            policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.1),
            token=_RecordingToken(),
            label="cover",
        )
    assert quota_calls["count"] == 1

    token = CancellationToken("keyword")
    token.cancel(CancelReason.USER)
    operation, calls = _flaky([])
    with pytest.raises(TransportAborted):
        await fetch_with_retry(
            operation,
            policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.1),
            token=token,
            label="cover",
        )
    assert calls["count"] == 0
