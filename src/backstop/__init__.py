from .adapters import AiohttpTransport, HttpxTransport, RequestsTransport
from .client import ApiClient
from .csrf import CsrfTokenProvider, StaticCsrfToken, StoredCsrfToken, coerce_csrf_provider
from .dedup import DedupStats, Deduplicator, dedup_key
from .env import load_settings_from_env
from .errors import (
    NETWORK_ERROR,
    REQUEST_TIMEOUT,
    ApiError,
    ErrorKind,
    TransportError,
    TransportTimeout,
    classify,
    normalize_exception,
    normalize_response,
    parse_retry_after,
)
from .rate_limit import RateLimitEvent, RateLimitTracker, endpoint_key
from .retry import Fatal, Ok, Retryable, RetryController
from .session import JsonFileStore, KeyValueStore, MemoryStore, SessionStore
from .state import RateLimitEntry
from .transport import TimeoutTransport, Transport, decode_body
from .types import (
    AuthConfig,
    PreparedRequest,
    RawResponse,
    RequestDescriptor,
    RetryConfig,
    Session,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "ErrorKind",
    "NETWORK_ERROR",
    "REQUEST_TIMEOUT",
    "TransportError",
    "TransportTimeout",
    "classify",
    "normalize_exception",
    "normalize_response",
    "parse_retry_after",
    "RetryConfig",
    "AuthConfig",
    "RequestDescriptor",
    "PreparedRequest",
    "RawResponse",
    "Session",
    "Transport",
    "TimeoutTransport",
    "decode_body",
    "HttpxTransport",
    "AiohttpTransport",
    "RequestsTransport",
    "RetryController",
    "Ok",
    "Retryable",
    "Fatal",
    "Deduplicator",
    "DedupStats",
    "dedup_key",
    "RateLimitTracker",
    "RateLimitEvent",
    "RateLimitEntry",
    "endpoint_key",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "SessionStore",
    "CsrfTokenProvider",
    "StaticCsrfToken",
    "StoredCsrfToken",
    "coerce_csrf_provider",
    "load_settings_from_env",
]
