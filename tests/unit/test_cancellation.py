from __future__ import annotations

import asyncio

import pytest

from feedsync.services.runs.cancellation import (
    CancellationBroadcaster,
    CancellationToken,
    CancelReason,
    TransportAborted,
)


@pytest.mark.asyncio
async def test_guard_aborts_in_flight_call_on_cancel() -> None:
    token = CancellationToken("keyword")
    started = asyncio.Event()
    finished = {"value": False}

    async def slow_call() -> str:
        started.set()
        await asyncio.sleep(30)
        finished["value"] = True
        return "late"

    async def cancel_soon() -> None:
        await started.wait()
        token.cancel(CancelReason.USER)

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(TransportAborted) as exc_info:
        await token.guard(slow_call())
    await canceller

    assert exc_info.value.reason == CancelReason.USER
    assert finished["value"] is False


@pytest.mark.asyncio
async def test_guard_returns_result_when_not_cancelled() -> None:
    token = CancellationToken("keyword")

    async def quick() -> int:
        return 7

    assert await token.guard(quick()) == 7


@pytest.mark.asyncio
async def test_guard_refuses_to_start_after_cancel() -> None:
    token = CancellationToken("keyword")
    token.cancel(CancelReason.QUOTA_EXHAUSTED)

    async def never() -> None:
        raise AssertionError("should not run")

    with pytest.raises(TransportAborted):
        await token.guard(never())
    with pytest.raises(TransportAborted):
        await token.sleep(5)


def test_cancel_is_idempotent_and_notifies_once() -> None:
    token = CancellationToken("hashtag")
    reasons: list[CancelReason] = []
    token.on_cancel(reasons.append)

    assert token.cancel(CancelReason.USER) is True
    assert token.cancel(CancelReason.QUOTA_EXHAUSTED) is False
    assert reasons == [CancelReason.USER]
    assert token.reason == CancelReason.USER


def test_new_subscription_supersedes_previous_run_of_same_kind() -> None:
    broadcaster = CancellationBroadcaster()
    first = broadcaster.subscribe("keyword")
    second = broadcaster.subscribe("keyword")

    assert first.cancelled is True
    assert first.reason == CancelReason.SUPERSEDED
    assert second.cancelled is False

    broadcaster.release(first)
    assert broadcaster.active_kinds() == ["keyword"]
    broadcaster.release(second)
    assert broadcaster.active_kinds() == []


def test_cancel_all_reaches_every_active_kind() -> None:
    broadcaster = CancellationBroadcaster()
    tokens = {kind: broadcaster.subscribe(kind) for kind in ("keyword", "hashtag", "account_info")}

    cancelled = broadcaster.cancel_all(CancelReason.QUOTA_EXHAUSTED)

    assert sorted(cancelled) == ["account_info", "hashtag", "keyword"]
    assert all(token.reason == CancelReason.QUOTA_EXHAUSTED for token in tokens.values())
    assert broadcaster.cancel_all(CancelReason.QUOTA_EXHAUSTED) == []
    assert broadcaster.cancel("missing") is False
