"""
Error taxonomy for data fetching and layer editing.
"""
from __future__ import annotations

from typing import Optional


class WaterDataError(Exception):
    """Base class for all errors raised by the explorer core."""


class AbortError(WaterDataError):
    """A request was deliberately cancelled. Never a user-visible failure."""

    name = "AbortError"


class ServiceFailure(WaterDataError):
    """An HTTP or parse error from a data source. Retryable."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class NoExtentAvailable(WaterDataError):
    """The map is not ready or its extent cannot be used as a filter."""


class EditConflict(WaterDataError):
    """An edit operation against a feature layer was rejected."""
