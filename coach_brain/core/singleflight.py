"""
Per-key in-flight de-duplication for async work.

Two concurrent load_user_knowledge(u) calls on a cold cache would otherwise
both run every collector and both write the cache. SingleFlight collapses
them: the first caller starts the work as a task, later callers for the same
key await that task, and everyone receives the same result (or exception).

The shared task is shielded, so cancelling one waiter never cancels the
work the others are waiting on.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    def __init__(self):
        self._calls: Dict[Hashable, asyncio.Task] = {}

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._calls.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._calls[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight call for {key}")
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
