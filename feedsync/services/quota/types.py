from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class QuotaAvailability(StrEnum):
    AVAILABLE = "available"
    # Quota subsystem not provisioned: no run may start.
    UNAVAILABLE = "unavailable"
    # Quota subsystem unreachable: runs proceed, display is suppressed.
    DEGRADED = "degraded"


@dataclass(frozen=True)
class QuotaState:
    remaining: int | None = None
    ceiling: int | None = None
    availability: QuotaAvailability = QuotaAvailability.AVAILABLE


@dataclass(frozen=True)
class QuotaReading:
    """One authoritative answer from the quota endpoint."""

    availability: QuotaAvailability
    remaining: int | None = None
    ceiling: int | None = None
    message: str | None = None
