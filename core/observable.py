"""
Observable values with explicit subscriptions.
Lets map and filter state publish changes without tying listeners to a UI framework.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class Subscription:
    """Handle returned by Observable.subscribe(); call remove() to stop listening."""

    def __init__(self, observable: "Observable", callback: Callable[[Any], None]):
        self._observable = observable
        self._callback = callback
        self.active = True

    def remove(self) -> None:
        if self.active:
            self._observable._unsubscribe(self._callback)
            self.active = False


class Observable(Generic[T]):
    """
    A published value. Subscribers are called with the new value whenever it changes.

    Example:
        stationary = Observable(True)
        handle = stationary.subscribe(lambda value: print(value))
        stationary.set(False)
        handle.remove()
    """

    def __init__(self, value: Optional[T] = None):
        self._value = value
        self._callbacks: List[Callable[[T], None]] = []

    @property
    def value(self) -> Optional[T]:
        return self._value

    def set(self, value: T, force: bool = False) -> None:
        """Publish a new value. Subscribers only hear about actual changes unless force=True."""
        if value == self._value and not force:
            return
        self._value = value
        for callback in list(self._callbacks):
            callback(value)

    def subscribe(self, callback: Callable[[T], None], initial: bool = False) -> Subscription:
        """
        Register a callback.

        Args:
            callback: Called with each new value
            initial: Also call it immediately with the current value
        """
        self._callbacks.append(callback)
        if initial:
            callback(self._value)
        return Subscription(self, callback)

    def _unsubscribe(self, callback: Callable[[T], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def when_once(self, predicate: Callable[[Optional[T]], bool]) -> Optional[T]:
        """Wait until the value satisfies predicate, then return it."""
        if predicate(self._value):
            return self._value

        future = asyncio.get_running_loop().create_future()

        def _check(value):
            if predicate(value) and not future.done():
                future.set_result(value)

        handle = self.subscribe(_check)
        try:
            return await future
        finally:
            handle.remove()

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)
