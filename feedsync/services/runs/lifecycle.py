from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid

from feedsync.logging_utils import structured_log
from feedsync.services.runs.errors import InvalidRunTransitionError
from feedsync.services.runs.types import TERMINAL_RUN_STATES, RunConfig, RunState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.RUNNING}),
    RunState.RUNNING: frozenset({RunState.STOPPING, RunState.COMPLETED, RunState.FAILED}),
    RunState.STOPPING: frozenset({RunState.STOPPED, RunState.FAILED}),
    RunState.STOPPED: frozenset(),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunCounters:
    filled: int = 0
    appended: int = 0
    dropped: int = 0
    skipped_duplicates: int = 0
    skipped_empty: int = 0
    pages_consumed: int = 0
    side_fetch_failures: int = 0

    @property
    def total_written(self) -> int:
        return self.filled + self.appended


@dataclass
class CollectionRun:
    config: RunConfig
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RunState = RunState.IDLE
    counters: RunCounters = field(default_factory=RunCounters)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_RUN_STATES

    def transition(self, target: RunState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidRunTransitionError(
                f"Run {self.run_id} cannot move from {self.state.value} to {target.value}"
            )
        previous = self.state
        self.state = target
        if target == RunState.RUNNING:
            self.started_at = _utcnow()
        if target in TERMINAL_RUN_STATES:
            self.finished_at = _utcnow()
        structured_log(
            logger,
            "debug",
            "run.state_changed",
            run_id=self.run_id,
            run_kind=self.config.kind.value,
            from_state=previous.value,
            to_state=target.value,
        )

    def request_stop(self) -> bool:
        if self.state != RunState.RUNNING:
            return False
        self.transition(RunState.STOPPING)
        return True
