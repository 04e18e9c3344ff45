from __future__ import annotations


class QuotaUnavailableError(Exception):
    """Quota subsystem is not provisioned; collection runs are refused."""
