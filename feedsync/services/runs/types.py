from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class RunKind(StrEnum):
    KEYWORD = "keyword"
    HASHTAG = "hashtag"
    ACCOUNT_VIDEOS = "account_videos"
    ACCOUNT_INFO = "account_info"


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATES = frozenset({RunState.STOPPED, RunState.COMPLETED, RunState.FAILED})


class EndReason(StrEnum):
    EXHAUSTED = "exhausted"
    STALLED_CURSOR = "stalled_cursor"
    MAX_PAGES_REACHED = "max_pages_reached"
    USER_REQUEST = "user_request"
    QUOTA_EXHAUSTED = "quota_exhausted"
    SUPERSEDED = "superseded"
    ERROR = "error"


@dataclass(frozen=True)
class RunQuery:
    """Source query parameters. ``handles`` drives account-info runs."""

    term: str = ""
    region: str = ""
    sort_type: str = "0"
    publish_time: str = "0"
    handles: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunConfig:
    kind: RunKind
    query: RunQuery
    selected_fields: frozenset[str] = field(default_factory=frozenset)
    target: str = ""


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    kind: RunKind
    state: RunState
    end_reason: EndReason
    total_written: int = 0
    filled: int = 0
    appended: int = 0
    dropped: int = 0
    skipped_duplicates: int = 0
    skipped_empty: int = 0
    pages_consumed: int = 0
    side_fetch_failures: int = 0
    quota_remaining: int | None = None
    message: str | None = None
    error: str | None = None
