"""Error taxonomy for historical data reconciliation.

Every failure surfaced by the core derives from :class:`HistFillError` so that
callers (CLI, HTTP layer) can map them in one place.
"""

from __future__ import annotations


class HistFillError(Exception):
    """Base class for all reconciliation errors."""


class InvalidRequest(HistFillError, ValueError):
    """Raised when an inbound request is missing required fields."""


class InvalidTimestamp(HistFillError, ValueError):
    """Raised when an anchor time does not match ``YYYYMMDD-HH:MM:SS``."""


class InvalidDuration(HistFillError, ValueError):
    """Raised when a duration expression has no parsable integer part."""


class EmptyWindow(HistFillError):
    """Raised by gap detection when ``start >= end``."""

    def __init__(self, start_ms: int, end_ms: int):
        super().__init__(f"Empty window start_ms={start_ms} end_ms={end_ms}")
        self.start_ms = start_ms
        self.end_ms = end_ms


class ContractNotFound(HistFillError):
    """The upstream provider could not resolve the symbol."""

    def __init__(self, symbol: str, sec_type: str):
        super().__init__(f"Contract not found symbol={symbol!r} sec_type={sec_type!r}")
        self.symbol = symbol
        self.sec_type = sec_type


class UpstreamFetchFailed(HistFillError):
    """A provider call failed mid-backfill. Already persisted gaps stay."""


class StoreUnavailable(HistFillError):
    """A store read or write failed."""


__all__ = [
    "HistFillError",
    "InvalidRequest",
    "InvalidTimestamp",
    "InvalidDuration",
    "EmptyWindow",
    "ContractNotFound",
    "UpstreamFetchFailed",
    "StoreUnavailable",
]
