from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]

METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "DELETE"})
MUTATING_METHODS: frozenset[str] = frozenset({"POST", "PUT", "DELETE"})

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class RetryConfig:
    # Attempt budget: initial attempt + max_retries
    max_retries: int = 3

    # Exponential backoff between attempts (seconds)
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: tuple[float, float] = (0.9, 1.1)

    # What counts as transient
    retryable_status_codes: frozenset[int] = frozenset({500, 502, 503, 504})
    retryable_error_codes: frozenset[str] = frozenset({"NETWORK_ERROR", "REQUEST_TIMEOUT"})

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        low, high = self.jitter
        if low <= 0 or high < low:
            raise ValueError("jitter must be a (low, high) pair with 0 < low <= high")


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    csrf_header: str = "X-CSRF-Token"


@dataclass(frozen=True)
class RequestDescriptor:
    """One logical call, as the caller asked for it."""

    method: HttpMethod
    path: str
    body: bytes | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    # None -> client default
    timeout: float | None = None

    @property
    def is_mutating(self) -> bool:
        return self.method in MUTATING_METHODS


@dataclass(frozen=True)
class PreparedRequest:
    """One physical attempt: absolute URL, final headers, resolved timeout."""

    method: str
    url: str
    headers: Mapping[str, str]
    body: bytes | None
    timeout: float


@dataclass(frozen=True)
class RawResponse:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300  # noqa: PLR2004


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str | None = None
    issued_at: str | None = None
    expires_in: int | None = None

    @classmethod
    def from_token_payload(cls, payload: Mapping[str, Any]) -> "Session":
        """Build a Session from a login/refresh response body."""
        token = payload.get("access_token")
        if not token:
            raise ValueError("token payload has no access_token")
        expires_in = payload.get("expires_in")
        return cls(
            access_token=str(token),
            refresh_token=payload.get("refresh_token") or None,
            issued_at=payload.get("issued_at") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
        )
