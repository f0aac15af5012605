"""Coalesce concurrent calls that share a key into one in-flight task."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Per-key de-duplication of concurrent async work.

    The first caller for a key starts the work; callers arriving while it
    runs await the same task and receive the same result or exception.
    The key is released as soon as the task finishes, so a later call
    starts fresh work. Cancelling one waiter does not cancel the task.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task[T]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            logger.debug("Joining in-flight call for %s", key)
        return await asyncio.shield(task)
