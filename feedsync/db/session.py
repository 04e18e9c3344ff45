import logging
import os

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from feedsync.db.base import metadata
from feedsync.logging_utils import structured_log
from feedsync.settings import settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _normalized_pool_mode(raw_mode: str, database_url: str) -> str:
    mode = (raw_mode or "").strip().lower()
    if mode == "auto":
        if database_url.startswith("sqlite") or os.getenv("PYTEST_CURRENT_TEST"):
            return "null"
        return "queue"
    if mode in {"null", "queue"}:
        return mode
    structured_log(
        logger,
        "warning",
        "db.invalid_pool_mode_fallback",
        database_pool_mode=raw_mode,
        fallback_mode="queue",
    )
    return "queue"


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        pool_mode = _normalized_pool_mode(settings.database_pool_mode, settings.database_url)
        engine_kwargs: dict[str, object] = {
            "pool_pre_ping": True,
        }
        if pool_mode == "null":
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_size"] = max(1, int(settings.database_pool_size))
            engine_kwargs["max_overflow"] = max(0, int(settings.database_pool_max_overflow))
            engine_kwargs["pool_timeout"] = max(1, int(settings.database_pool_timeout_seconds))

        _engine = create_async_engine(settings.database_url, **engine_kwargs)
        structured_log(logger, "info", "db.engine_initialized", pool_mode=pool_mode)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_models(engine: AsyncEngine | None = None) -> None:
    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(metadata.create_all)
    structured_log(logger, "info", "db.schema_ready")


async def close_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        structured_log(logger, "info", "db.engine_disposed")
        _engine = None
        _session_factory = None
