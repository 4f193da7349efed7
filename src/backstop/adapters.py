import asyncio
import contextlib

from .errors import TransportError, TransportTimeout
from .types import PreparedRequest, RawResponse


# ---------- httpx (async, default) ----------
class HttpxTransport:
    def __init__(self, client=None):
        self.client = client
        self._own_client = False

    def _get_client(self):
        if self.client is None:
            import httpx  # noqa: PLC0415

            self.client = httpx.AsyncClient()
            self._own_client = True
        return self.client

    async def send(self, request: PreparedRequest) -> RawResponse:
        import httpx  # noqa: PLC0415

        client = self._get_client()
        try:
            resp = await client.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                content=request.body,
                timeout=request.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportTimeout(str(e) or "httpx timeout") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e
        return RawResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            content=resp.content,
            reason=resp.reason_phrase or "",
        )

    async def aclose(self) -> None:
        if self._own_client and self.client is not None:
            with contextlib.suppress(Exception):
                await self.client.aclose()
            self.client = None
            self._own_client = False


# ---------- aiohttp (async) ----------
class AiohttpTransport:
    def __init__(self, session=None):
        self.session = session
        self._own_session = False

    def _get_session(self):
        if self.session is None:
            import aiohttp  # noqa: PLC0415

            self.session = aiohttp.ClientSession()
            self._own_session = True
        return self.session

    async def send(self, request: PreparedRequest) -> RawResponse:
        import aiohttp  # noqa: PLC0415

        session = self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=request.body,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
            ) as resp:
                content = await resp.read()
                return RawResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    content=content,
                    reason=resp.reason or "",
                )
        except (aiohttp.ServerTimeoutError, asyncio.TimeoutError) as e:
            raise TransportTimeout(str(e) or "aiohttp timeout") from e
        except aiohttp.ClientError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

    async def aclose(self) -> None:
        if self._own_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._own_session = False


# ---------- requests (sync, run in a worker thread) ----------
class RequestsTransport:
    """Blocking requests.Session driven from a worker thread.

    A timeout still cancels the awaiting attempt; the thread itself is bounded by
    the same timeout passed to requests.
    """

    def __init__(self, session=None):
        self.session = session
        self._own_session = False

    def _get_session(self):
        if self.session is None:
            import requests  # noqa: PLC0415

            self.session = requests.Session()
            self._own_session = True
        return self.session

    def _send_sync(self, request: PreparedRequest) -> RawResponse:
        import requests  # noqa: PLC0415

        sess = self._get_session()
        try:
            resp = sess.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=request.body,
                timeout=request.timeout,
            )
        except requests.Timeout as e:
            raise TransportTimeout(str(e) or "requests timeout") from e
        except requests.RequestException as e:
            raise TransportError(str(e) or e.__class__.__name__) from e
        return RawResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            content=resp.content or b"",
            reason=resp.reason or "",
        )

    async def send(self, request: PreparedRequest) -> RawResponse:
        return await asyncio.to_thread(self._send_sync, request)

    async def aclose(self) -> None:
        if self._own_session and self.session is not None:
            with contextlib.suppress(Exception):
                self.session.close()
            self.session = None
            self._own_session = False
