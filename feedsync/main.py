from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import json
import logging

from feedsync.db.session import close_engine, get_session_factory, init_models
from feedsync.logging_config import configure_logging, parse_redact_fields
from feedsync.logging_utils import structured_log
from feedsync.services.datastore.sql_store import SqlTableStore
from feedsync.services.quota.governor import QuotaGovernor
from feedsync.services.runs.cancellation import CancellationBroadcaster
from feedsync.services.runs.events import RUN_PAGE_PROCESSED, RunEventPublisher
from feedsync.services.runs.orchestrator import (
    CollectionLimits,
    CollectionOrchestrator,
    summary_as_dict,
)
from feedsync.services.runs.types import RunConfig, RunKind, RunQuery
from feedsync.services.source.client import ContentSourceClient
from feedsync.services.source.queries import build_page_source
from feedsync.services.source.types import QuotaHeaders
from feedsync.settings import Settings, settings

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    client: ContentSourceClient
    broadcaster: CancellationBroadcaster
    quota: QuotaGovernor
    events: RunEventPublisher
    orchestrator: CollectionOrchestrator

    async def aclose(self) -> None:
        await self.client.aclose()


def build_runtime(config: Settings = settings) -> Runtime:
    broadcaster = CancellationBroadcaster()
    client = ContentSourceClient(
        base_url=config.source_api_base_url,
        user_id=config.source_user_id,
        tenant_key=config.source_tenant_key,
        search_timeout=config.source_timeout_search_seconds,
        quota_timeout=config.source_timeout_quota_seconds,
        transcript_timeout=config.source_timeout_transcript_seconds,
    )
    quota = QuotaGovernor(
        broadcaster=broadcaster,
        reader=client.fetch_quota if config.quota_enforcement_enabled else None,
        refresh_interval_seconds=config.quota_refresh_interval_seconds,
    )
    if config.quota_enforcement_enabled:

        def _observe(headers: QuotaHeaders) -> None:
            quota.observe_headers(headers.remaining, headers.limit)

        client.on_quota_headers = _observe

    session_factory = get_session_factory()

    async def resolve_datastore(table_name: str) -> SqlTableStore:
        return await SqlTableStore.open(session_factory, table_name or config.app_name)

    def page_source_factory(run_config: RunConfig):
        return build_page_source(
            run_config,
            client=client,
            default_region=config.source_default_region,
            keyword_page_size=config.source_keyword_page_size,
            account_page_size=config.source_account_page_size,
            base_url=config.platform_base_url,
        )

    events = RunEventPublisher()
    orchestrator = CollectionOrchestrator(
        page_source_factory=page_source_factory,
        datastore_resolver=resolve_datastore,
        side_fetcher=client,
        quota=quota,
        broadcaster=broadcaster,
        events=events,
        limits=CollectionLimits.from_settings(config),
    )
    return Runtime(
        client=client,
        broadcaster=broadcaster,
        quota=quota,
        events=events,
        orchestrator=orchestrator,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect content items from the source into a local table.",
    )
    parser.add_argument("kind", choices=[kind.value for kind in RunKind], help="Collection kind.")
    parser.add_argument("term", nargs="?", default="", help="Keyword, hashtag or account handle.")
    parser.add_argument(
        "--handle",
        action="append",
        default=[],
        help="Account handle or profile URL for account_info runs. Repeat for multiple values.",
    )
    parser.add_argument("--table", default="", help="Target table name.")
    parser.add_argument(
        "--field",
        action="append",
        default=[],
        help="Field to write. Repeat for multiple values; required fields are always written.",
    )
    parser.add_argument("--region", default="", help="Region code override.")
    parser.add_argument("--sort-type", default="0", help="Search sort order.")
    parser.add_argument("--publish-time", default="0", help="Search publish window.")
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Log a progress line for every processed page.",
    )
    return parser


def _run_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        kind=RunKind(args.kind),
        query=RunQuery(
            term=args.term,
            region=args.region,
            sort_type=args.sort_type,
            publish_time=args.publish_time,
            handles=tuple(args.handle),
        ),
        selected_fields=frozenset(args.field),
        target=args.table,
    )


async def _report_progress(events: RunEventPublisher, run_kind: str) -> None:
    async for event in events.listen(run_kind):
        if event.type == RUN_PAGE_PROCESSED:
            structured_log(logger, "info", "collection.progress", run_kind=run_kind, **event.data)


async def _run(args: argparse.Namespace) -> dict:
    await init_models()
    runtime = build_runtime()
    config = _run_config(args)
    reporter: asyncio.Task | None = None
    if args.progress:
        reporter = asyncio.create_task(_report_progress(runtime.events, config.kind.value))
        await asyncio.sleep(0)
    try:
        summary = await runtime.orchestrator.run(config)
    finally:
        if reporter is not None:
            reporter.cancel()
        await runtime.aclose()
        await close_engine()
    return summary_as_dict(summary)


def main() -> int:
    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        redact_fields=parse_redact_fields(settings.log_redact_fields),
    )
    args = build_parser().parse_args()

    try:
        result = asyncio.run(_run(args))
    except Exception as exc:
        logger.exception("collection.cli_failed")
        print(json.dumps({"status": "failed", "error": str(exc)}, indent=2))
        return 1

    print(json.dumps(result, indent=2))
    return 0 if result["state"] != "failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
