from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
import logging

from feedsync.logging_utils import structured_log
from feedsync.services.runs.cancellation import CancellationToken, TransportAborted
from feedsync.services.source.queries import INITIAL_CURSOR
from feedsync.services.source.types import PageSource, SourcePage

logger = logging.getLogger(__name__)

# Counts pages that advanced the cursor; a stalled retry does not use up the limit.
DEFAULT_MAX_PAGES = 100
DEFAULT_PAGE_DELAY_SECONDS = 0.3

PageHandler = Callable[[SourcePage, int], Awaitable[None]]


class WalkEndReason(StrEnum):
    EXHAUSTED = "exhausted"
    STALLED_CURSOR = "stalled_cursor"
    MAX_PAGES_REACHED = "max_pages_reached"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WalkResult:
    pages_consumed: int
    end_reason: WalkEndReason
    last_cursor: str


class SourceWalker:
    """Drives one cursor walk, one page at a time.

    A page whose ``next_cursor`` is missing or equal to the cursor just used
    is retried once at the same cursor; a second stall ends the walk.
    Cancellation ends the walk quietly; any other error propagates.
    """

    def __init__(
        self,
        *,
        source: PageSource,
        token: CancellationToken,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
    ) -> None:
        self._source = source
        self._token = token
        self._max_pages = max(1, int(max_pages))
        self._page_delay_seconds = page_delay_seconds

    async def walk(self, on_page: PageHandler, *, start_cursor: str = INITIAL_CURSOR) -> WalkResult:
        cursor = start_cursor
        pages = 0
        advanced = 0
        stalled_at: str | None = None

        try:
            while True:
                if self._token.cancelled:
                    return WalkResult(pages, WalkEndReason.CANCELLED, cursor)
                if advanced >= self._max_pages:
                    structured_log(
                        logger,
                        "info",
                        "walker.max_pages_reached",
                        max_pages=self._max_pages,
                        pages=pages,
                        cursor=cursor,
                    )
                    return WalkResult(pages, WalkEndReason.MAX_PAGES_REACHED, cursor)

                page = await self._token.guard(self._source.next_page(cursor))
                pages += 1
                structured_log(
                    logger,
                    "debug",
                    "walker.page_fetched",
                    page=pages,
                    cursor=cursor,
                    item_count=len(page.items),
                    has_more=page.has_more,
                    next_cursor=page.next_cursor,
                )
                await on_page(page, pages)

                if self._token.cancelled:
                    return WalkResult(pages, WalkEndReason.CANCELLED, cursor)
                if not page.has_more:
                    return WalkResult(pages, WalkEndReason.EXHAUSTED, cursor)

                next_cursor = (page.next_cursor or "").strip()
                if not next_cursor or next_cursor == cursor:
                    if stalled_at == cursor:
                        structured_log(logger, "warning", "walker.cursor_stalled", cursor=cursor, pages=pages)
                        return WalkResult(pages, WalkEndReason.STALLED_CURSOR, cursor)
                    stalled_at = cursor
                    structured_log(logger, "info", "walker.cursor_retry", cursor=cursor)
                else:
                    stalled_at = None
                    cursor = next_cursor
                    advanced += 1

                await self._token.sleep(self._page_delay_seconds)
        except TransportAborted:
            structured_log(logger, "info", "walker.aborted", cursor=cursor, pages=pages)
            return WalkResult(pages, WalkEndReason.CANCELLED, cursor)
