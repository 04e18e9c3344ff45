from __future__ import annotations

from datetime import datetime, timezone

import pytest

from feedsync.services.quota.errors import QuotaUnavailableError
from feedsync.services.quota.governor import QuotaGovernor, build_exhausted_message, next_utc_midnight
from feedsync.services.quota.types import QuotaAvailability, QuotaReading
from feedsync.services.runs.cancellation import CancellationBroadcaster, CancelReason


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _governor(reader=None, clock=None) -> tuple[QuotaGovernor, CancellationBroadcaster]:
    broadcaster = CancellationBroadcaster()
    governor = QuotaGovernor(
        broadcaster=broadcaster,
        reader=reader,
        refresh_interval_seconds=600,
        clock=clock or _Clock(),
    )
    return governor, broadcaster


def test_next_utc_midnight_rolls_to_following_day() -> None:
    now = datetime(2026, 3, 31, 23, 59, tzinfo=timezone.utc)
    assert next_utc_midnight(now) == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert (
        build_exhausted_message(remaining=0, ceiling=500, now=now)
        == "Daily quota used up (0/500); it resets at 2026-04-01 00:00 UTC"
    )


def test_consume_is_floored_and_ignored_while_unknown() -> None:
    governor, _ = _governor()
    assert governor.consume(5) is None

    governor.observe_headers(3, 100)
    assert governor.consume(2) == 1
    assert governor.consume(10) == 0
    assert governor.state.remaining == 0
    assert governor.state.ceiling == 100


@pytest.mark.asyncio
async def test_refresh_if_stale_only_reads_after_interval() -> None:
    clock = _Clock()
    readings = [
        QuotaReading(availability=QuotaAvailability.AVAILABLE, remaining=90, ceiling=100),
        QuotaReading(availability=QuotaAvailability.AVAILABLE, remaining=40, ceiling=100),
    ]
    calls = {"count": 0}

    async def reader() -> QuotaReading:
        calls["count"] += 1
        return readings.pop(0)

    governor, _ = _governor(reader, clock)

    await governor.refresh_if_stale()
    governor.consume(5)
    clock.now += 100
    await governor.refresh_if_stale()
    assert calls["count"] == 1
    assert governor.state.remaining == 85

    clock.now += 600
    await governor.refresh_if_stale()
    assert calls["count"] == 2
    assert governor.state.remaining == 40


@pytest.mark.asyncio
async def test_unavailable_quota_blocks_new_runs() -> None:
    async def reader() -> QuotaReading:
        return QuotaReading(availability=QuotaAvailability.UNAVAILABLE, message="Quota not configured")

    governor, _ = _governor(reader)
    await governor.refresh()

    assert governor.display_enabled is False
    with pytest.raises(QuotaUnavailableError, match="Quota not configured"):
        governor.ensure_can_start()


@pytest.mark.asyncio
async def test_degraded_quota_allows_runs_but_hides_display() -> None:
    async def reader() -> QuotaReading:
        return QuotaReading(availability=QuotaAvailability.DEGRADED)

    governor, _ = _governor(reader)
    governor.observe_headers(10, 20)
    await governor.refresh()

    governor.ensure_can_start()
    assert governor.display_enabled is False
    assert governor.state.remaining is None


def test_handle_exhausted_cancels_every_run_and_builds_message() -> None:
    governor, broadcaster = _governor()
    keyword = broadcaster.subscribe("keyword")
    account = broadcaster.subscribe("account_info")
    governor.observe_headers(12, 500)
    now = datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)

    message = governor.handle_exhausted(remaining=0, now=now)

    assert message == "Daily quota used up (0/500); it resets at 2026-05-02 00:00 UTC"
    assert governor.last_message == message
    assert governor.state.remaining == 0
    assert keyword.reason == CancelReason.QUOTA_EXHAUSTED
    assert account.reason == CancelReason.QUOTA_EXHAUSTED
