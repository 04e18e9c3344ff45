"""Cooperative cancellation shared by every active run.

Each run subscribes one token per run kind. Cancelling a token flips its
flag and aborts whatever network call or delay is currently awaited
through ``guard``. Writes already committed are never rolled back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
import logging
from typing import TypeVar

from feedsync.logging_utils import structured_log

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelReason(StrEnum):
    USER = "user"
    QUOTA_EXHAUSTED = "quota_exhausted"
    SUPERSEDED = "superseded"


class TransportAborted(Exception):
    """An awaited call was abandoned because its run was cancelled."""

    def __init__(self, reason: CancelReason | None) -> None:
        super().__init__(f"aborted: {reason or 'cancelled'}")
        self.reason = reason


class CancellationToken:
    def __init__(self, run_kind: str) -> None:
        self.run_kind = run_kind
        self.reason: CancelReason | None = None
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[CancelReason], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        for callback in list(self._callbacks):
            callback(reason)
        return True

    def on_cancel(self, callback: Callable[[CancelReason], None]) -> None:
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TransportAborted(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first, then abort it."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TransportAborted(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait(
                {task, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise TransportAborted(self.reason)

    async def sleep(self, seconds: float) -> None:
        await self.guard(asyncio.sleep(max(0.0, seconds)))


class CancellationBroadcaster:
    """Owns one active token per run kind sharing a quota pool."""

    def __init__(self) -> None:
        self._active: dict[str, CancellationToken] = {}

    def subscribe(self, run_kind: str) -> CancellationToken:
        previous = self._active.get(run_kind)
        if previous is not None:
            previous.cancel(CancelReason.SUPERSEDED)
            structured_log(logger, "info", "cancellation.run_superseded", run_kind=run_kind)
        token = CancellationToken(run_kind)
        self._active[run_kind] = token
        return token

    def release(self, token: CancellationToken) -> None:
        if self._active.get(token.run_kind) is token:
            self._active.pop(token.run_kind, None)

    def active_kinds(self) -> list[str]:
        return sorted(self._active)

    def cancel(self, run_kind: str, reason: CancelReason = CancelReason.USER) -> bool:
        token = self._active.get(run_kind)
        if token is None:
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            structured_log(
                logger,
                "info",
                "cancellation.run_cancel_requested",
                run_kind=run_kind,
                reason=reason.value,
            )
        return cancelled

    def cancel_all(self, reason: CancelReason) -> list[str]:
        cancelled_kinds = [
            run_kind for run_kind, token in list(self._active.items()) if token.cancel(reason)
        ]
        if cancelled_kinds:
            structured_log(
                logger,
                "warning",
                "cancellation.all_runs_cancelled",
                reason=reason.value,
                run_kinds=cancelled_kinds,
            )
        return cancelled_kinds
