from __future__ import annotations


class SourceError(Exception):
    """Base class for content source failures."""


class SourceRequestError(SourceError):
    """The source answered with a non-success status or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(SourceError):
    """The source answered with a payload that does not have the expected shape."""


class QuotaExhaustedError(SourceError):
    """Authoritative signal that the shared allowance is used up."""

    def __init__(
        self,
        message: str = "Daily quota exhausted",
        *,
        remaining: int | None = None,
        quota: int | None = None,
    ) -> None:
        super().__init__(message)
        self.remaining = remaining
        self.quota = quota


class SourceBusyError(SourceError):
    """The source is temporarily saturated and supplied a retry hint."""

    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class SideFetchHttpError(SourceError):
    """Auxiliary payload request failed in a way worth retrying."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SideFetchFailure(SourceError):
    """Auxiliary payload could not be obtained after all attempts."""

    def __init__(self, message: str, *, label: str, attempts: int) -> None:
        super().__init__(message)
        self.label = label
        self.attempts = attempts
