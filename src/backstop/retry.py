import asyncio
import logging
import random
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Union

from .errors import ApiError
from .types import RetryConfig


# ---------- attempt outcomes ----------
@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Retryable:
    error: ApiError
    # 429: the rate-limit block already delays the next attempt
    throttled: bool = False


@dataclass(frozen=True)
class Fatal:
    error: ApiError


Outcome = Union[Ok, Retryable, Fatal]
Attempt = Callable[[int], Awaitable[Outcome]]


class RetryController:
    def __init__(
        self,
        config: Union[RetryConfig, None] = None,
        sleep: Union[Callable[[float], Awaitable[None]], None] = None,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._logger = logging.getLogger("backstop")

    def compute_delay(self, attempt: int) -> float:
        cfg = self.config
        delay = min(cfg.max_delay, cfg.base_delay * (2**attempt))
        return delay * random.uniform(*cfg.jitter)

    async def run(self, attempt: Attempt, context: str = "") -> Any:
        """Run attempt(0..max_retries) until it succeeds or fails for good.

        Returns the Ok value; raises the last ApiError otherwise.
        """
        last = self.config.max_retries
        for n in range(last + 1):
            outcome = await attempt(n)
            if isinstance(outcome, Ok):
                return outcome.value
            if isinstance(outcome, Fatal):
                raise outcome.error
            if n == last:
                if last:
                    self._logger.warning(
                        f"{context} giving up after {n + 1} attempts: "
                        f"status={outcome.error.status} code={outcome.error.code}"
                    )
                raise outcome.error
            if outcome.throttled:
                self._logger.info(f"{context} attempt {n + 1} throttled; retrying")
                continue
            delay = self.compute_delay(n)
            self._logger.info(
                f"{context} attempt {n + 1}/{last + 1} failed "
                f"(status={outcome.error.status} code={outcome.error.code}); "
                f"retrying in {delay:.2f}s"
            )
            await self._sleep(delay)
        # unreachable: the loop always returns or raises
        raise RuntimeError("backstop: retry loop exited without an outcome")
