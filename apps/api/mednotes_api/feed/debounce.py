from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class Debouncer(Generic[T]):
    """
    Temporal filter over raw input.

    Every `push` restarts the quiescence timer and drops the pending emission.
    `value` only changes once `delay` seconds pass without a new push, at which
    point `on_emit` is called with it.
    """

    def __init__(self, delay: float, on_emit: Optional[Callable[[T], None]] = None, *, initial: T | None = None) -> None:
        self.delay = delay
        self.on_emit = on_emit
        self.value: T | None = initial
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def push(self, raw: T) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, raw)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, raw: T) -> None:
        self._handle = None
        self.value = raw
        if self.on_emit is not None:
            self.on_emit(raw)
