"""Error normalization: every failure the client can see becomes one ApiError."""

import asyncio
import email.utils
import enum
import json
import math
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Union

from .types import RawResponse, RetryConfig

NETWORK_ERROR = "NETWORK_ERROR"
REQUEST_TIMEOUT = "REQUEST_TIMEOUT"

STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_SERVER_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


class TransportError(Exception):
    """Raised by transports when no HTTP response was obtained."""


class TransportTimeout(TransportError):
    """Raised when a physical attempt was cancelled by its timeout."""


class ErrorKind(enum.Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CLIENT = "client"


class ApiError(Exception):
    """The single error type surfaced to callers.

    status is 0 for transport failures (network error, timeout). Instances are
    not mutated after construction; use with_retry_after() to derive a copy.
    """

    def __init__(
        self,
        status: int,
        code: str,
        message: str,
        detail: Any = None,
        field_errors: Union[Mapping[str, Any], None] = None,
        headers: Union[Mapping[str, str], None] = None,
        retry_after_seconds: Union[float, None] = None,
        timestamp: Union[str, None] = None,
        request_id: Union[str, None] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.detail = detail
        self.field_errors = dict(field_errors) if field_errors else {}
        self.headers = lower_headers(headers)
        if retry_after_seconds is None:
            retry_after_seconds = parse_retry_after(self.headers.get("retry-after"))
        self.retry_after_seconds = retry_after_seconds
        self.timestamp = timestamp or datetime.now(timezone.utc).isoformat()
        self.request_id = (
            request_id or self.headers.get("x-request-id") or self.headers.get("x-correlation-id")
        )
        self.payload = payload

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, code={self.code!r}, message={self.message!r})"

    @property
    def kind(self) -> ErrorKind:
        return classify(self)

    def is_client_error(self) -> bool:
        return 400 <= self.status < 500  # noqa: PLR2004

    def is_server_error(self) -> bool:
        return self.status >= 500  # noqa: PLR2004

    def is_auth_error(self) -> bool:
        return self.status in (401, 403)

    def is_validation_error(self) -> bool:
        return self.status in (400, 422)

    def is_not_found(self) -> bool:
        return self.status == 404  # noqa: PLR2004

    def with_retry_after(self, seconds: float) -> "ApiError":
        return ApiError(
            status=self.status,
            code=self.code,
            message=self.message,
            detail=self.detail,
            field_errors=self.field_errors,
            headers=self.headers,
            retry_after_seconds=seconds,
            timestamp=self.timestamp,
            request_id=self.request_id,
            payload=self.payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "field_errors": self.field_errors,
            "retry_after_seconds": self.retry_after_seconds,
            "timestamp": self.timestamp,
            "request_id": self.request_id,
        }


# ---------- headers ----------


def lower_headers(headers: Union[Mapping[str, str], None]) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v) for k, v in headers.items()}


def get_header(headers: Union[Mapping[str, str], None], name: str) -> Union[str, None]:
    if not headers:
        return None
    wanted = name.lower()
    for k, v in headers.items():
        if str(k).lower() == wanted:
            return v
    return None


def parse_retry_after(
    value: Union[str, None], now: Union[float, None] = None
) -> Union[float, None]:
    """Parse Retry-After as delta-seconds or an HTTP-date.

    Returns None when the header is absent or unparsable.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if math.isnan(seconds) or math.isinf(seconds):
            return None
        return max(0.0, seconds)
    try:
        ts = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    # Round up so a short delay is never truncated to zero
    return max(0.0, float(math.ceil(ts.timestamp() - now)))


# ---------- normalization ----------


def _first_field_error(errors: Mapping[str, Any]) -> Union[str, None]:
    for value in errors.values():
        if isinstance(value, (list, tuple)):
            for item in value:
                if item is not None:
                    return str(item)
        elif value is not None:
            return str(value)
    return None


def _parse_payload(response: RawResponse) -> Any:
    if not response.content:
        return None
    try:
        return json.loads(response.content)
    except (ValueError, UnicodeDecodeError):
        return None


def normalize_response(response: RawResponse) -> ApiError:
    """Build an ApiError from a completed non-2xx response. Never raises."""
    status = response.status
    fallback = f"HTTP {status}: {response.reason}" if response.reason else f"HTTP {status}"
    payload = _parse_payload(response)
    code = STATUS_CODES.get(status, f"HTTP_{status}")
    message = fallback
    detail = None
    field_errors: dict[str, Any] = {}
    request_id = None

    if isinstance(payload, dict):
        for name in ("code", "error_code", "message_code"):
            if payload.get(name):
                code = str(payload[name])
                break
        for name in ("errors", "field_errors"):
            if isinstance(payload.get(name), dict):
                field_errors = payload[name]
                break
        detail = payload.get("detail")
        if isinstance(payload.get("message"), str) and payload["message"].strip():
            message = payload["message"].strip()
        elif isinstance(detail, str) and detail.strip():
            message = detail.strip()
        elif field_errors:
            message = _first_field_error(field_errors) or fallback
        if payload.get("request_id"):
            request_id = str(payload["request_id"])

    return ApiError(
        status=status,
        code=code,
        message=message,
        detail=detail,
        field_errors=field_errors,
        headers=response.headers,
        request_id=request_id,
        payload=payload,
    )


def normalize_exception(exc: BaseException) -> ApiError:
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, (TransportTimeout, asyncio.TimeoutError, TimeoutError)):
        return ApiError(status=0, code=REQUEST_TIMEOUT, message=str(exc) or "Request timed out")
    return ApiError(status=0, code=NETWORK_ERROR, message=str(exc) or "Network request failed")


# ---------- classification ----------


def classify(error: ApiError) -> ErrorKind:
    if error.status == 0:
        return ErrorKind.TIMEOUT if error.code == REQUEST_TIMEOUT else ErrorKind.NETWORK
    if error.status == 429:  # noqa: PLR2004
        return ErrorKind.RATE_LIMITED
    if error.status >= 500:  # noqa: PLR2004
        return ErrorKind.SERVER
    return ErrorKind.CLIENT


def is_retryable(error: ApiError, config: RetryConfig) -> bool:
    kind = classify(error)
    if kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
        return error.code in config.retryable_error_codes
    if kind is ErrorKind.RATE_LIMITED:
        return True
    return error.status in config.retryable_status_codes
