from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import time
from typing import Any, Protocol

from feedsync.logging_context import set_run_id
from feedsync.logging_utils import structured_log
from feedsync.services.datastore.errors import DatastoreError, WriteFailureError
from feedsync.services.datastore.scanning import (
    EmptySlotPool,
    FieldWriters,
    collect_existing_keys,
    ensure_fields,
    find_empty_records,
)
from feedsync.services.datastore.scheduler import PersistResult, WriteScheduler
from feedsync.services.datastore.types import Datastore
from feedsync.services.quota.governor import QuotaGovernor
from feedsync.services.records.mappings import mapping_table_for
from feedsync.services.records.projector import RecordProjector
from feedsync.services.records.types import (
    WRITE_BEFORE_SIDE_FETCHES,
    MappingTable,
    ProjectedRecord,
    ProjectionContext,
    SideFetchKind,
)
from feedsync.services.runs.cancellation import (
    CancellationBroadcaster,
    CancellationToken,
    CancelReason,
    TransportAborted,
)
from feedsync.services.runs.events import (
    RUN_FINISHED,
    RUN_PAGE_PROCESSED,
    RUN_STARTED,
    RunEventPublisher,
)
from feedsync.services.runs.lifecycle import CollectionRun
from feedsync.services.runs.types import EndReason, RunConfig, RunKind, RunState, RunSummary
from feedsync.services.source.errors import (
    MalformedResponseError,
    QuotaExhaustedError,
    SideFetchFailure,
    SourceRequestError,
)
from feedsync.services.source.queries import hashtag_query
from feedsync.services.source.retry import RetryPolicy, fetch_with_retry
from feedsync.services.source.types import CoverAttachment, PageSource, SourcePage
from feedsync.services.source.walker import SourceWalker, WalkEndReason
from feedsync.settings import Settings

logger = logging.getLogger(__name__)

PageSourceFactory = Callable[[RunConfig], PageSource]
DatastoreResolver = Callable[[str], Awaitable[Datastore]]

_WALK_END_REASONS = {
    WalkEndReason.EXHAUSTED: EndReason.EXHAUSTED,
    WalkEndReason.STALLED_CURSOR: EndReason.STALLED_CURSOR,
    WalkEndReason.MAX_PAGES_REACHED: EndReason.MAX_PAGES_REACHED,
}
_CANCEL_END_REASONS = {
    CancelReason.USER: EndReason.USER_REQUEST,
    CancelReason.QUOTA_EXHAUSTED: EndReason.QUOTA_EXHAUSTED,
    CancelReason.SUPERSEDED: EndReason.SUPERSEDED,
}
_END_MESSAGES = {
    EndReason.STALLED_CURSOR: "Pagination ended early: the source stopped returning a new cursor",
    EndReason.MAX_PAGES_REACHED: "Pagination stopped at the page limit",
    EndReason.USER_REQUEST: "Collection stopped by request",
    EndReason.SUPERSEDED: "Collection replaced by a newer run of the same kind",
}


class SideFetcher(Protocol):
    async def download_cover(
        self,
        cover_url: str,
        *,
        file_name: str,
        convert_to_jpg: bool = False,
    ) -> CoverAttachment:
        ...

    async def extract_transcript(self, video_url: str) -> str:
        ...


@dataclass(frozen=True)
class CollectionLimits:
    max_pages: int = 100
    page_delay_seconds: float = 0.3
    key_scan_limit: int = 5000
    empty_slot_scan_limit: int = 500
    scan_page_size: int = 200
    write_chunk_size: int = 50
    cover_retry: RetryPolicy = RetryPolicy(max_attempts=3, base_delay_seconds=0.4)
    transcript_retry: RetryPolicy = RetryPolicy(
        max_attempts=2,
        base_delay_seconds=1.2,
        retry_http_errors=False,
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> CollectionLimits:
        return cls(
            max_pages=settings.collection_max_pages,
            page_delay_seconds=settings.collection_page_delay_seconds,
            key_scan_limit=settings.collection_key_scan_limit,
            empty_slot_scan_limit=settings.collection_empty_slot_scan_limit,
            scan_page_size=settings.collection_scan_page_size,
            write_chunk_size=settings.collection_write_chunk_size,
            cover_retry=RetryPolicy(
                max_attempts=settings.cover_retry_max_attempts,
                base_delay_seconds=settings.cover_retry_base_delay_seconds,
                max_delay_seconds=settings.side_fetch_max_delay_seconds,
            ),
            transcript_retry=RetryPolicy(
                max_attempts=settings.transcript_retry_max_attempts,
                base_delay_seconds=settings.transcript_retry_base_delay_seconds,
                retry_http_errors=False,
                max_delay_seconds=settings.side_fetch_max_delay_seconds,
            ),
        )


@dataclass
class _RunScope:
    run: CollectionRun
    token: CancellationToken
    store: Datastore
    table: MappingTable
    writers: FieldWriters
    projector: RecordProjector
    scheduler: WriteScheduler
    slots: EmptySlotPool
    query_label: str


def _query_label(config: RunConfig) -> str:
    if config.kind == RunKind.HASHTAG:
        return hashtag_query(config.query.term)
    return config.query.term.strip()


class CollectionOrchestrator:
    """Runs one collection at a time per run kind against a shared quota pool."""

    def __init__(
        self,
        *,
        page_source_factory: PageSourceFactory,
        datastore_resolver: DatastoreResolver,
        side_fetcher: SideFetcher,
        quota: QuotaGovernor,
        broadcaster: CancellationBroadcaster,
        events: RunEventPublisher | None = None,
        limits: CollectionLimits | None = None,
    ) -> None:
        self._page_source_factory = page_source_factory
        self._datastore_resolver = datastore_resolver
        self._side_fetcher = side_fetcher
        self._quota = quota
        self._broadcaster = broadcaster
        self._events = events or RunEventPublisher()
        self._limits = limits or CollectionLimits()

    def cancel(self, kind: RunKind) -> bool:
        return self._broadcaster.cancel(kind.value, CancelReason.USER)

    async def run(self, config: RunConfig) -> RunSummary:
        await self._quota.refresh_if_stale()
        self._quota.ensure_can_start()

        run = CollectionRun(config=config)
        set_run_id(run.run_id)
        token = self._broadcaster.subscribe(config.kind.value)
        token.on_cancel(lambda _reason: run.request_stop())
        run.transition(RunState.RUNNING)
        structured_log(
            logger,
            "info",
            "collection.run_started",
            run_kind=config.kind.value,
            target=config.target,
            selected_field_count=len(config.selected_fields),
        )
        await self._events.publish(config.kind.value, RUN_STARTED, {"run_id": run.run_id})

        end_reason = EndReason.EXHAUSTED
        message: str | None = None
        error: str | None = None
        try:
            scope = await self._prepare(run, token)
            walker = SourceWalker(
                source=self._page_source_factory(config),
                token=token,
                max_pages=self._limits.max_pages,
                page_delay_seconds=self._limits.page_delay_seconds,
            )

            async def on_page(page: SourcePage, page_number: int) -> None:
                await self._process_page(scope, page, page_number)

            result = await walker.walk(on_page)
            run.counters.pages_consumed = max(run.counters.pages_consumed, result.pages_consumed)
            if result.end_reason == WalkEndReason.CANCELLED:
                end_reason = _CANCEL_END_REASONS.get(token.reason, EndReason.USER_REQUEST)
            else:
                end_reason = _WALK_END_REASONS[result.end_reason]
        except QuotaExhaustedError as exc:
            end_reason = EndReason.QUOTA_EXHAUSTED
            message = self._quota.handle_exhausted(remaining=exc.remaining, ceiling=exc.quota)
        except TransportAborted as exc:
            end_reason = _CANCEL_END_REASONS.get(exc.reason or token.reason, EndReason.USER_REQUEST)
        except (MalformedResponseError, WriteFailureError, SourceRequestError, DatastoreError) as exc:
            end_reason = EndReason.ERROR
            error = str(exc)
            structured_log(
                logger,
                "error",
                "collection.run_failed",
                run_kind=config.kind.value,
                error_type=type(exc).__name__,
                error=error,
            )
        except Exception as exc:
            end_reason = EndReason.ERROR
            error = str(exc) or type(exc).__name__
            logger.exception(
                "collection.run_crashed",
                extra={"run_kind": config.kind.value},
            )
        finally:
            self._broadcaster.release(token)

        if end_reason == EndReason.QUOTA_EXHAUSTED and message is None:
            message = self._quota.last_message
        summary = self._finish(run, end_reason, message=message or _END_MESSAGES.get(end_reason), error=error)
        await self._events.publish(
            config.kind.value,
            RUN_FINISHED,
            {
                "run_id": run.run_id,
                "state": summary.state.value,
                "end_reason": summary.end_reason.value,
                "total_written": summary.total_written,
                "pages_consumed": summary.pages_consumed,
                "message": summary.message,
            },
        )
        set_run_id(None)
        return summary

    async def _prepare(self, run: CollectionRun, token: CancellationToken) -> _RunScope:
        config = run.config
        store = await self._datastore_resolver(config.target)
        table = mapping_table_for(config.kind)
        writers = await ensure_fields(store, table.field_specs(config.selected_fields))
        seen_keys = await collect_existing_keys(
            store,
            table.key_field,
            table.key_normalizer,
            token=token,
            max_scan=self._limits.key_scan_limit,
            page_size=self._limits.scan_page_size,
        )
        empty_ids = await find_empty_records(
            store,
            token=token,
            max_scan=self._limits.empty_slot_scan_limit,
            page_size=self._limits.scan_page_size,
        )
        structured_log(
            logger,
            "info",
            "collection.run_prepared",
            run_kind=config.kind.value,
            writable_fields=len(writers),
            existing_keys=len(seen_keys),
            empty_slots=len(empty_ids),
        )
        return _RunScope(
            run=run,
            token=token,
            store=store,
            table=table,
            writers=writers,
            projector=RecordProjector(
                table=table,
                selected_fields=config.selected_fields,
                seen_keys=seen_keys,
            ),
            scheduler=WriteScheduler(
                store=store,
                writers=writers,
                chunk_size=self._limits.write_chunk_size,
            ),
            slots=EmptySlotPool(empty_ids),
            query_label=_query_label(config),
        )

    async def _process_page(self, scope: _RunScope, page: SourcePage, page_number: int) -> None:
        counters = scope.run.counters
        counters.pages_consumed = page_number
        records: list[ProjectedRecord] = []
        for item in page.items:
            scope.token.raise_if_cancelled()
            key = scope.table.key_of(item)
            duplicate = bool(key) and scope.projector.has_seen(key)
            record = scope.projector.project(item, ProjectionContext(query_label=scope.query_label))
            if record is None:
                if duplicate:
                    counters.skipped_duplicates += 1
                else:
                    counters.skipped_empty += 1
                continue
            records.append(await self._attach_covers(scope, record))

        written = 0
        if records:
            try:
                result = await scope.scheduler.persist(
                    [record.fields for record in records],
                    scope.slots,
                    token=scope.token,
                )
            except WriteFailureError as exc:
                if exc.partial is not None:
                    self._count_persisted(scope, exc.partial)
                raise
            written = self._count_persisted(scope, result)
            await self._attach_transcripts(scope, records, result.assigned_ids)

        await scope.token.guard(self._quota.refresh_if_stale())
        structured_log(
            logger,
            "info",
            "collection.page_processed",
            run_kind=scope.run.config.kind.value,
            page=page_number,
            item_count=len(page.items),
            written=written,
            total_written=counters.total_written,
            quota_remaining=self._quota.state.remaining,
        )
        await self._events.publish(
            scope.run.config.kind.value,
            RUN_PAGE_PROCESSED,
            {
                "run_id": scope.run.run_id,
                "page": page_number,
                "total_written": counters.total_written,
                "quota_remaining": self._quota.state.remaining if self._quota.display_enabled else None,
            },
        )

    def _count_persisted(self, scope: _RunScope, result: PersistResult) -> int:
        counters = scope.run.counters
        counters.filled += result.filled
        counters.appended += result.appended
        counters.dropped += result.dropped
        self._quota.consume(result.written)
        return result.written

    async def _attach_covers(self, scope: _RunScope, record: ProjectedRecord) -> ProjectedRecord:
        for pending in record.side_fetches_for(WRITE_BEFORE_SIDE_FETCHES):
            if pending.field_name not in scope.writers:
                continue
            item_id = getattr(record.item, "item_id", "") or str(int(time.time() * 1000))
            file_name = f"{scope.run.config.kind.value}-{item_id}.jpg"
            convert = scope.run.config.kind == RunKind.ACCOUNT_VIDEOS
            try:
                attachment = await fetch_with_retry(
                    lambda url=pending.source: self._side_fetcher.download_cover(
                        url,
                        file_name=file_name,
                        convert_to_jpg=convert,
                    ),
                    policy=self._limits.cover_retry,
                    token=scope.token,
                    label="cover",
                )
            except SideFetchFailure:
                scope.run.counters.side_fetch_failures += 1
                continue
            record = record.with_field(pending.field_name, attachment.to_cell())
        return record

    async def _attach_transcripts(
        self,
        scope: _RunScope,
        records: list[ProjectedRecord],
        assigned_ids: list[str],
    ) -> None:
        for record, record_id in zip(records, assigned_ids):
            if not record_id:
                continue
            for pending in record.side_fetches_for({SideFetchKind.TRANSCRIPT}):
                meta = scope.writers.get(pending.field_name)
                if meta is None:
                    continue
                try:
                    text = await fetch_with_retry(
                        lambda url=pending.source: self._side_fetcher.extract_transcript(url),
                        policy=self._limits.transcript_retry,
                        token=scope.token,
                        label="transcript",
                    )
                    if text:
                        await scope.store.set_cell_value(meta.field_id, record_id, text)
                except (SideFetchFailure, DatastoreError) as exc:
                    scope.run.counters.side_fetch_failures += 1
                    structured_log(
                        logger,
                        "warning",
                        "collection.transcript_skipped",
                        record_id=record_id,
                        error=str(exc),
                    )

    def _finish(
        self,
        run: CollectionRun,
        end_reason: EndReason,
        *,
        message: str | None,
        error: str | None,
    ) -> RunSummary:
        if end_reason == EndReason.ERROR:
            run.transition(RunState.FAILED)
        elif end_reason in _CANCEL_END_REASONS.values():
            if run.state == RunState.RUNNING:
                run.transition(RunState.STOPPING)
            run.transition(RunState.STOPPED)
        elif run.state == RunState.STOPPING:
            run.transition(RunState.STOPPED)
        else:
            run.transition(RunState.COMPLETED)

        counters = run.counters
        summary = RunSummary(
            run_id=run.run_id,
            kind=run.config.kind,
            state=run.state,
            end_reason=end_reason,
            total_written=counters.total_written,
            filled=counters.filled,
            appended=counters.appended,
            dropped=counters.dropped,
            skipped_duplicates=counters.skipped_duplicates,
            skipped_empty=counters.skipped_empty,
            pages_consumed=counters.pages_consumed,
            side_fetch_failures=counters.side_fetch_failures,
            quota_remaining=self._quota.state.remaining,
            message=message,
            error=error,
        )
        structured_log(
            logger,
            "info" if error is None else "error",
            "collection.run_finished",
            run_kind=run.config.kind.value,
            state=run.state.value,
            end_reason=end_reason.value,
            total_written=summary.total_written,
            pages_consumed=summary.pages_consumed,
            dropped=summary.dropped,
        )
        return summary


def summary_as_dict(summary: RunSummary) -> dict[str, Any]:
    return {
        "run_id": summary.run_id,
        "kind": summary.kind.value,
        "state": summary.state.value,
        "end_reason": summary.end_reason.value,
        "total_written": summary.total_written,
        "pages_consumed": summary.pages_consumed,
        "message": summary.message,
        "error": summary.error,
    }
