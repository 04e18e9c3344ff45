from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from feedsync.services.datastore.scheduler import PersistResult


class DatastoreError(Exception):
    """Target datastore rejected or failed an operation."""


class WriteFailureError(DatastoreError):
    """Records could not be persisted even after the append retry.

    ``partial`` reports what the batch committed before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        failed_count: int,
        partial: PersistResult | None = None,
    ) -> None:
        super().__init__(message)
        self.failed_count = failed_count
        self.partial = partial
