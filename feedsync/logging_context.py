from __future__ import annotations

from contextvars import ContextVar

_run_id_ctx: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_run_id() -> str | None:
    return _run_id_ctx.get()


def set_run_id(value: str | None) -> None:
    _run_id_ctx.set(value)
