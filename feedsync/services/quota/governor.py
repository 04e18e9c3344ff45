from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
import logging
import time

from feedsync.logging_utils import structured_log
from feedsync.services.quota.errors import QuotaUnavailableError
from feedsync.services.quota.types import QuotaAvailability, QuotaReading, QuotaState
from feedsync.services.runs.cancellation import CancellationBroadcaster, CancelReason

logger = logging.getLogger(__name__)

QuotaReader = Callable[[], Awaitable[QuotaReading]]

DEFAULT_REFRESH_INTERVAL_SECONDS = 600


def next_utc_midnight(now: datetime | None = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    current = current.astimezone(timezone.utc)
    return datetime.combine(current.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)


def build_exhausted_message(
    *,
    remaining: int,
    ceiling: int | None,
    now: datetime | None = None,
) -> str:
    reset_at = next_utc_midnight(now).strftime("%Y-%m-%d %H:%M UTC")
    if ceiling is not None:
        return f"Daily quota used up ({remaining}/{ceiling}); it resets at {reset_at}"
    return f"Daily quota used up; it resets at {reset_at}"


class QuotaGovernor:
    """Tracks the shared allowance all run kinds draw against.

    ``remaining`` is advisory: decremented locally after each successful
    write and corrected whenever the source reports an authoritative value.
    """

    def __init__(
        self,
        *,
        broadcaster: CancellationBroadcaster,
        reader: QuotaReader | None = None,
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._broadcaster = broadcaster
        self._reader = reader
        self._refresh_interval_seconds = refresh_interval_seconds
        self._clock = clock
        self._state = QuotaState()
        self._last_refreshed_at: float | None = None
        self.last_message: str | None = None

    @property
    def state(self) -> QuotaState:
        return self._state

    @property
    def display_enabled(self) -> bool:
        return self._state.availability == QuotaAvailability.AVAILABLE

    def _set_state(self, **changes) -> None:
        self._state = QuotaState(
            remaining=changes.get("remaining", self._state.remaining),
            ceiling=changes.get("ceiling", self._state.ceiling),
            availability=changes.get("availability", self._state.availability),
        )

    def observe_headers(self, remaining: int | None, limit: int | None) -> None:
        if remaining is None or limit is None:
            return
        self._set_state(remaining=remaining, ceiling=limit, availability=QuotaAvailability.AVAILABLE)

    def apply_reading(self, reading: QuotaReading) -> None:
        self._last_refreshed_at = self._clock()
        if reading.availability == QuotaAvailability.AVAILABLE:
            if reading.remaining is None or reading.ceiling is None:
                self._set_state(availability=QuotaAvailability.AVAILABLE)
            else:
                self._set_state(
                    remaining=reading.remaining,
                    ceiling=reading.ceiling,
                    availability=QuotaAvailability.AVAILABLE,
                )
        else:
            self._state = QuotaState(availability=reading.availability)
            self.last_message = reading.message
        structured_log(
            logger,
            "info",
            "quota.refreshed",
            availability=self._state.availability.value,
            remaining=self._state.remaining,
            ceiling=self._state.ceiling,
        )

    async def refresh(self) -> QuotaState:
        if self._reader is None:
            return self._state
        self.apply_reading(await self._reader())
        return self._state

    async def refresh_if_stale(self) -> QuotaState:
        if self._last_refreshed_at is not None:
            if self._clock() - self._last_refreshed_at < self._refresh_interval_seconds:
                return self._state
        return await self.refresh()

    def ensure_can_start(self) -> None:
        if self._state.availability == QuotaAvailability.UNAVAILABLE:
            raise QuotaUnavailableError(
                self.last_message or "Quota is not configured; collection is disabled"
            )

    def consume(self, count: int) -> int | None:
        """Apply ``count`` successfully persisted records to the local counter."""
        if count <= 0 or self._state.remaining is None:
            return self._state.remaining
        remaining = max(self._state.remaining - count, 0)
        self._set_state(remaining=remaining)
        return remaining

    def handle_exhausted(
        self,
        *,
        remaining: int | None = None,
        ceiling: int | None = None,
        message: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """React to an authoritative exhaustion signal from any run.

        Every active run sharing the pool is cancelled. The returned message
        is the one surfaced to the caller.
        """
        authoritative = remaining if remaining is not None else 0
        known_ceiling = ceiling if ceiling is not None else self._state.ceiling
        self._set_state(
            remaining=authoritative,
            ceiling=known_ceiling,
            availability=QuotaAvailability.AVAILABLE,
        )
        text = message or build_exhausted_message(
            remaining=authoritative,
            ceiling=known_ceiling,
            now=now,
        )
        cancelled_kinds = self._broadcaster.cancel_all(CancelReason.QUOTA_EXHAUSTED)
        if text != self.last_message or cancelled_kinds:
            structured_log(
                logger,
                "warning",
                "quota.exhausted",
                remaining=authoritative,
                ceiling=known_ceiling,
                cancelled_kinds=cancelled_kinds,
            )
        self.last_message = text
        return text
