# This module provides the debounce primitive used by the data loader.
# Each submission cancels the pending timer (leading edge) and re-arms it; only the trailing edge executes.
# Every caller in a burst awaits the same future, which resolves with the single execution's result.

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class Debouncer(Generic[T, R]):
    def __init__(self, delay_seconds: float, action: Callable[[T], Awaitable[R]]) -> None:
        if delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {delay_seconds}.")
        self.delay_seconds = delay_seconds
        self._action = action
        self._handle: asyncio.TimerHandle | None = None
        self._future: asyncio.Future[R] | None = None
        self._latest: T | None = None
        self._tasks: set[asyncio.Task[R]] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def latest(self) -> T | None:
        return self._latest if self.pending else None

    def submit(self, value: T) -> asyncio.Future[R]:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        if self._future is None or self._future.done():
            self._future = loop.create_future()
        self._latest = value
        self._handle = loop.call_later(self.delay_seconds, self._fire)
        return self._future

    def _fire(self) -> None:
        future, value = self._future, self._latest
        self._handle = None
        self._future = None
        self._latest = None
        if future is None:
            return

        task = asyncio.ensure_future(self._action(value))  # type: ignore[arg-type]
        self._tasks.add(task)

        def _settle(done: asyncio.Task[R]) -> None:
            self._tasks.discard(done)
            if future.done():
                return
            if done.cancelled():
                future.cancel()
            elif done.exception() is not None:
                future.set_exception(done.exception())  # type: ignore[arg-type]
            else:
                future.set_result(done.result())

        task.add_done_callback(_settle)
