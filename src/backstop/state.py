from dataclasses import dataclass

BASE_BACKOFF = 1.0
MAX_BACKOFF = 60.0


@dataclass
class RateLimitEntry:
    endpoint: str
    blocked_until: float = 0.0
    backoff: float = BASE_BACKOFF  # delay used for the next 429 without Retry-After
    hits: int = 0  # consecutive 429s since the last clear

    def remaining(self, now: float) -> float:
        return max(0.0, self.blocked_until - now)

    def is_blocked(self, now: float) -> bool:
        return now < self.blocked_until
