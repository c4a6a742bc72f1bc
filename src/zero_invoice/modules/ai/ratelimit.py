from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from zero_invoice.core.logging import get_logger, log_event

logger = get_logger(__name__)

T = TypeVar("T")


class RateLimitedCaller:
    """
    Serializes outbound calls and spaces their start times.

    Requests start strictly in the order they were enqueued and at least
    `min_interval` seconds apart. Each request runs to completion before the
    next one is considered. A failing request rejects only its own awaiter.
    """

    def __init__(self, *, min_interval: float = 1.0):
        self.min_interval = min_interval
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._processing = False
        self._last_start: float | None = None
        self._drain_task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def enqueue(self, request: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((request, future))
        if not self._processing:
            self._processing = True
            self._drain_task = loop.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        try:
            while self._queue:
                await self._wait_for_slot()
                request, future = self._queue.popleft()
                self._last_start = time.monotonic()
                if future.done():
                    # Awaiter went away; the slot is still spent.
                    continue
                try:
                    result = await request()
                except Exception as e:  # noqa: BLE001
                    log_event(
                        logger,
                        "ai.queue.request_failed",
                        error=type(e).__name__,
                        queued=len(self._queue),
                    )
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            self._processing = False

    async def _wait_for_slot(self) -> None:
        if self._last_start is None:
            return
        while True:
            remaining = self._last_start + self.min_interval - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)
