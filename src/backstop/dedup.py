import asyncio
import hashlib
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable

from .types import RequestDescriptor


def dedup_key(descriptor: RequestDescriptor) -> str:
    """METHOD path, plus a body digest for mutating requests.

    Two mutations to the same path only share an execution when their bodies
    are byte-identical.
    """
    key = f"{descriptor.method} {descriptor.path}"
    if descriptor.is_mutating and descriptor.body:
        key += ":" + hashlib.sha256(descriptor.body).hexdigest()
    return key


@dataclass
class DedupStats:
    total: int = 0
    deduplicated: int = 0

    @property
    def hit_rate(self) -> float:
        return (self.deduplicated / self.total * 100.0) if self.total else 0.0


class Deduplicator:
    """Concurrent calls with the same key share one in-flight task."""

    def __init__(self):
        self._pending: dict[str, asyncio.Task] = {}
        self._stats = DedupStats()
        self._logger = logging.getLogger("backstop")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def stats(self) -> DedupStats:
        return DedupStats(self._stats.total, self._stats.deduplicated)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def call(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        self._stats.total += 1
        task = self._pending.get(key)
        if task is not None and not task.done():
            self._stats.deduplicated += 1
            self._logger.debug(f"dedup hit key={key} hit_rate={self._stats.hit_rate:.1f}%")
        else:

            async def _run():
                try:
                    return await factory()
                finally:
                    # leave the map before the task is marked done
                    self._release(key, task)

            # no await between lookup and insert
            task = asyncio.ensure_future(_run())
            self._pending[key] = task
            # covers a task cancelled before its first step
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        # a cancelled caller must not cancel the shared execution
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    def _settle(self, key: str, task: asyncio.Task) -> None:
        self._release(key, task)
        if not task.cancelled():
            # mark retrieved even if every waiter was cancelled
            task.exception()
