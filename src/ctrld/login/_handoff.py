"""Single-slot result handoff between the HTTP handlers and start()."""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class OneShot(Generic[T]):
    """
    Holds at most one value.

    `offer()` never blocks: the first value is kept and later offers are
    dropped. The optional `on_offer` event is set when the value lands.

    Example:
        >>> slot = OneShot()
        >>> slot.offer("work")
        True
        >>> slot.offer("home")
        False
        >>> slot.value
        'work'
    """

    def __init__(self, on_offer: threading.Event | None = None):
        self._lock = threading.Lock()
        self._value: T | None = None
        self._filled = False
        self._on_offer = on_offer

    def offer(self, value: T) -> bool:
        with self._lock:
            if self._filled:
                return False
            self._value = value
            self._filled = True
        if self._on_offer is not None:
            self._on_offer.set()
        return True

    @property
    def value(self) -> T | None:
        with self._lock:
            return self._value
