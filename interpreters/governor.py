"""Deadline and exactly-once settlement for one in-flight call."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class PendingRequest(Generic[T]):
    """One logical call awaiting its response boundary.

    The first of ``resolve``, ``reject`` or the deadline wins; every later
    settlement attempt is ignored and reported as ``False``.
    """

    def __init__(
        self,
        token: int,
        *,
        timeout: float,
        on_timeout: Callable[[], BaseException],
    ) -> None:
        loop = asyncio.get_running_loop()
        self.token = token
        self.timeout = timeout
        self.buffer = bytearray()
        self.started_at = time.monotonic()
        self._future: asyncio.Future[T] = loop.create_future()
        self._on_timeout = on_timeout
        self._timer = loop.call_later(timeout, self._expire)

    @property
    def settled(self) -> bool:
        return self._future.done()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def append(self, chunk: bytes) -> bytearray:
        """Grow the accumulation buffer; it is never trimmed."""
        self.buffer.extend(chunk)
        return self.buffer

    def resolve(self, value: T) -> bool:
        if self._future.done():
            return False
        self._timer.cancel()
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._timer.cancel()
        self._future.set_exception(error)
        return True

    def _expire(self) -> None:
        if self._future.done():
            return
        # on_timeout builds the error and runs any teardown, e.g. killing a hung interpreter.
        self.reject(self._on_timeout())

    def cancel(self) -> None:
        """Drop the deadline without settling; used when the caller gives up."""
        self._timer.cancel()
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> T:
        return await self._future

    async def guard(self, awaitable: Awaitable[R]) -> R:
        """Await preparatory work under this request's deadline.

        When the request settles first its outcome is raised and the work is
        left running in the background, e.g. an interpreter still importing.
        """
        task = asyncio.ensure_future(awaitable)
        task.add_done_callback(_consume_result)
        await asyncio.wait({task, self._future}, return_when=asyncio.FIRST_COMPLETED)
        if self._future.done():
            await self._future
        return task.result()


def _consume_result(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()
