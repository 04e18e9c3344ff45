"""In-process progress feed, one channel per run kind."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
import logging
from typing import Any

from feedsync.logging_utils import structured_log

logger = logging.getLogger(__name__)

RUN_STARTED = "run.started"
RUN_PAGE_PROCESSED = "run.page_processed"
RUN_FINISHED = "run.finished"


@dataclass(frozen=True)
class RunEvent:
    run_kind: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


class RunEventPublisher:
    def __init__(self) -> None:
        self._channels: dict[str, set[asyncio.Queue[RunEvent]]] = {}

    def subscriber_count(self, run_kind: str) -> int:
        return len(self._channels.get(run_kind, ()))

    def subscribe(self, run_kind: str) -> asyncio.Queue[RunEvent]:
        queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        self._channels.setdefault(run_kind, set()).add(queue)
        return queue

    def unsubscribe(self, run_kind: str, queue: asyncio.Queue[RunEvent]) -> None:
        channel = self._channels.get(run_kind)
        if channel is None:
            return
        channel.discard(queue)
        if not channel:
            del self._channels[run_kind]

    async def publish(self, run_kind: str, event_type: str, data: dict[str, Any]) -> None:
        channel = self._channels.get(run_kind)
        if not channel:
            return
        event = RunEvent(run_kind=run_kind, type=event_type, data=data)
        for queue in list(channel):
            queue.put_nowait(event)
        structured_log(
            logger,
            "debug",
            "events.published",
            run_kind=run_kind,
            event_type=event_type,
            subscribers=len(channel),
        )

    async def listen(self, run_kind: str) -> AsyncIterator[RunEvent]:
        """Yield events for ``run_kind`` through the next ``run.finished``."""
        queue = self.subscribe(run_kind)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.type == RUN_FINISHED:
                    return
        finally:
            self.unsubscribe(run_kind, queue)
