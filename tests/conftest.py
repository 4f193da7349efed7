import asyncio
import inspect
import json

import pytest

from backstop import ApiClient, RawResponse


class FakeTransport:
    """Scripted transport: replays responses (or raises exceptions) in order.

    The last scripted item repeats once the script is exhausted. A handler
    callable, sync or async, may be used instead of a script.
    """

    def __init__(self, script=None, handler=None):
        self.requests = []
        self._script = list(script or [])
        self.handler = handler
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def send(self, request):
        self.requests.append(request)
        # yield like a real network call would
        await asyncio.sleep(0)
        if self.handler is not None:
            result = self.handler(request)
            if inspect.isawaitable(result):
                result = await result
        elif len(self._script) > 1:
            result = self._script.pop(0)
        else:
            result = self._script[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self):
        self.closed = True


def json_response(status=200, payload=None, headers=None, reason=""):
    hdrs = {"Content-Type": "application/json", **(headers or {})}
    content = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return RawResponse(status=status, headers=hdrs, content=content, reason=reason)


@pytest.fixture
def respond():
    return json_response


@pytest.fixture
def transport_factory():
    return FakeTransport


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)
        await asyncio.sleep(0)

    return _sleep


@pytest.fixture
def make_client(fake_sleep):
    def _make(transport, **kwargs):
        kwargs.setdefault("sleep", fake_sleep)
        return ApiClient("https://api.test", transport=transport, **kwargs)

    return _make
