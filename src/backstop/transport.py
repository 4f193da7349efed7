import asyncio
import json
import logging
from typing import Any, Protocol, runtime_checkable

from .errors import TransportTimeout, get_header
from .types import PreparedRequest, RawResponse

NO_CONTENT_STATUSES = (204, 205)


@runtime_checkable
class Transport(Protocol):
    """Performs one physical HTTP exchange.

    Implementations raise TransportTimeout when their own I/O timeout fires and
    TransportError for any other failure to obtain a response. Any HTTP status,
    including 4xx/5xx, is returned as a RawResponse.
    """

    async def send(self, request: PreparedRequest) -> RawResponse: ...

    async def aclose(self) -> None: ...


class TimeoutTransport:
    """Bounds every physical attempt by request.timeout.

    The task cancellation issued by asyncio.wait_for is the attempt's
    cancellation signal; it never reaches other attempts or other callers.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self._logger = logging.getLogger("backstop")

    async def send_with_timeout(self, request: PreparedRequest) -> RawResponse:
        try:
            return await asyncio.wait_for(self.transport.send(request), timeout=request.timeout)
        except asyncio.TimeoutError as e:
            self._logger.debug(
                f"timeout after {request.timeout:.2f}s method={request.method} url={request.url}"
            )
            raise TransportTimeout(
                f"{request.method} {request.url} timed out after {request.timeout:g}s"
            ) from e

    async def aclose(self) -> None:
        await self.transport.aclose()


def decode_body(response: RawResponse) -> Any:
    """Decode a 2xx body: JSON if declared, else best-effort text -> JSON, else None."""
    content_type = get_header(response.headers, "content-type") or ""
    if "application/json" in content_type.lower():
        try:
            return json.loads(response.content)
        except (ValueError, UnicodeDecodeError):
            logging.getLogger("backstop").debug("failed to parse JSON response body")
            return None
    if response.status in NO_CONTENT_STATUSES or not response.content:
        return None
    try:
        text = response.content.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
