import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable
from dataclasses import dataclass, replace
from typing import Callable, Union

from .errors import parse_retry_after
from .state import MAX_BACKOFF, RateLimitEntry

# Seconds between repeated "sleeping" notices for the same endpoint
SLEEP_NOTICE_INTERVAL = 5.0


@dataclass(frozen=True)
class RateLimitEvent:
    endpoint: str
    retry_after_ms: int


Listener = Callable[[RateLimitEvent], Union[None, Awaitable[None]]]


def endpoint_key(method: str, path: str) -> str:
    """Rate limits are tracked per method + path, ignoring the query string."""
    return f"{method.upper()} {path.split('?', 1)[0]}"


class RateLimitTracker:
    """Remembers server back-pressure (HTTP 429) per endpoint.

    Entries live until a non-429 response clears them, so unrelated callers
    hitting the same endpoint wait out the same block.
    """

    def __init__(
        self,
        sleep: Union[Callable[[float], Awaitable[None]], None] = None,
        jitter: tuple[float, float] = (0.9, 1.1),
        max_backoff: float = MAX_BACKOFF,
    ):
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter
        self._max_backoff = max_backoff
        self._entries: dict[str, RateLimitEntry] = {}
        self._listeners: list[Listener] = []
        # keep strong refs to in-flight async notifications
        self._notify_tasks: set[asyncio.Task] = set()
        self._sleep_notice: dict[str, float] = {}
        self._logger = logging.getLogger("backstop")

    def _now(self) -> float:
        return time.monotonic()

    def entry(self, key: str) -> Union[RateLimitEntry, None]:
        e = self._entries.get(key)
        return replace(e) if e is not None else None

    async def check_and_wait(self, key: str) -> float:
        """Sleep until the endpoint's block expires. Returns the seconds slept."""
        e = self._entries.get(key)
        if e is None:
            return 0.0
        now = self._now()
        if not e.is_blocked(now):
            return 0.0
        delay = e.remaining(now)
        if self._sleep_notice.get(key, 0.0) <= now:
            self._logger.info(f"endpoint={key} rate limited; sleeping ~{delay:.2f}s")
            self._sleep_notice[key] = now + SLEEP_NOTICE_INTERVAL
        await self._sleep(delay)
        return delay

    def record_limited(self, key: str, retry_after: Union[str, None] = None) -> float:
        """Register a 429 for key and return the block duration in seconds."""
        e = self._entries.get(key)
        if e is None:
            e = self._entries[key] = RateLimitEntry(endpoint=key)
        delay = parse_retry_after(retry_after)
        if delay is None:
            delay = e.backoff
        delay *= random.uniform(*self._jitter)
        now = self._now()
        e.blocked_until = max(e.blocked_until, now + delay)
        e.backoff = min(e.backoff * 2, self._max_backoff)
        e.hits += 1
        self._logger.info(
            f"429 on endpoint={key} hits={e.hits}; blocking {delay:.2f}s "
            f"(next backoff {e.backoff:.1f}s)"
        )
        self._emit(RateLimitEvent(endpoint=key, retry_after_ms=int(round(delay * 1000))))
        return delay

    def clear(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._logger.debug(f"endpoint={key} rate limit cleared")
        self._sleep_notice.pop(key, None)

    # ---------- notifications ----------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: RateLimitEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception:
                self._logger.warning("rate limit listener failed", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._notify_tasks.add(task)
                task.add_done_callback(self._notify_done)

    def _notify_done(self, task: asyncio.Task) -> None:
        self._notify_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.warning("rate limit listener failed", exc_info=task.exception())
