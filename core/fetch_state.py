"""
Fetch lifecycle state shared between data pipelines and the map layers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger

from core.errors import AbortError
from core.observable import Observable, Subscription


class FetchStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class FetchState:
    """Status of one logical dataset plus its data (only meaningful on success)."""
    status: FetchStatus = FetchStatus.IDLE
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.SUCCESS


def is_abort(err: BaseException) -> bool:
    """True when err represents a deliberately cancelled request."""
    return isinstance(err, AbortError) or getattr(err, "name", None) == "AbortError"


def handle_fetch_error(err: BaseException) -> FetchState:
    """
    Convert a fetch exception to a state.

    Aborts leave the dataset pending so a retry is distinguishable from a real
    error; anything else is logged and becomes a failure.
    """
    if is_abort(err):
        logger.debug("Request aborted")
        return FetchState(FetchStatus.PENDING, None)
    logger.error(f"Fetch failed: {err}")
    return FetchState(FetchStatus.FAILURE, None)


@dataclass
class FetchedDataStore:
    """
    Holds the fetch state of every named dataset (e.g. "monitoringLocations",
    "surroundingMonitoringLocations") and notifies subscribers on change.
    """
    _states: Dict[str, Observable[FetchState]] = field(default_factory=dict)

    def _observable(self, key: str) -> Observable[FetchState]:
        if key not in self._states:
            self._states[key] = Observable(FetchState())
        return self._states[key]

    def get(self, key: str) -> FetchState:
        return self._observable(key).value

    def dispatch(self, action: str | FetchStatus, key: str, payload: Any = None) -> None:
        """
        Apply a lifecycle transition.

        Args:
            action: One of idle, pending, success, failure
            key: Dataset name
            payload: Data for a success transition
        """
        status = FetchStatus(action)
        data = payload if status == FetchStatus.SUCCESS else None
        # success always notifies, even when the payload is equal to the last one
        self._observable(key).set(FetchState(status, data), force=status == FetchStatus.SUCCESS)

    def subscribe(
        self,
        key: str,
        callback: Callable[[FetchState], None],
        initial: bool = False,
    ) -> Subscription:
        return self._observable(key).subscribe(callback, initial=initial)

    def local_data(self, key: str) -> tuple[list, FetchStatus]:
        """Return (data, status); data is an empty list unless the dataset succeeded."""
        state = self.get(key)
        data = state.data if state.ok and state.data is not None else []
        return data, state.status

    def reset(self, key: Optional[str] = None) -> None:
        """Return one dataset (or all) to pending."""
        keys = [key] if key else list(self._states)
        for k in keys:
            self.dispatch(FetchStatus.PENDING, k)
