from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class SourcePage:
    items: list[Any] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None


@dataclass(frozen=True)
class QuotaHeaders:
    remaining: int | None = None
    limit: int | None = None


@dataclass(frozen=True)
class CoverAttachment:
    file_name: str
    content_type: str
    content: bytes = field(repr=False)

    def to_cell(self) -> list[dict[str, Any]]:
        return [
            {
                "name": self.file_name,
                "type": self.content_type,
                "size": len(self.content),
                "content_base64": base64.b64encode(self.content).decode("ascii"),
            }
        ]


class PageSource(Protocol):
    """One query's cursor walk: ``next_page(cursor)`` returns one page."""

    async def next_page(self, cursor: str) -> SourcePage:
        ...
