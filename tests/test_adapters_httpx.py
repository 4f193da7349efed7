import json

import httpx
import pytest

from backstop import (
    ApiClient,
    HttpxTransport,
    PreparedRequest,
    TransportError,
    TransportTimeout,
)
from backstop.errors import get_header


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_httpx_send_maps_response():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.content
        return httpx.Response(201, json={"id": 7}, headers={"X-Request-ID": "r1"})

    transport = HttpxTransport(client=_mock_client(handler))
    resp = await transport.send(
        PreparedRequest("POST", "https://api.test/users", {"Authorization": "Bearer T"}, b"{}", 5)
    )

    assert seen == {"method": "POST", "auth": "Bearer T", "body": b"{}"}
    assert resp.status == 201  # noqa: PLR2004
    assert resp.reason == "Created"
    assert json.loads(resp.content) == {"id": 7}
    assert get_header(resp.headers, "X-Request-ID") == "r1"


@pytest.mark.asyncio
async def test_httpx_timeout_and_network_errors():
    def slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    def down(request):
        raise httpx.ConnectError("connection refused", request=request)

    req = PreparedRequest("GET", "https://api.test/x", {}, None, 1)
    with pytest.raises(TransportTimeout):
        await HttpxTransport(client=_mock_client(slow)).send(req)
    with pytest.raises(TransportError) as ei:
        await HttpxTransport(client=_mock_client(down)).send(req)
    assert not isinstance(ei.value, TransportTimeout)


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = _mock_client(lambda request: httpx.Response(200))
    transport = HttpxTransport(client=client)
    await transport.aclose()
    assert not client.is_closed


@pytest.mark.asyncio
async def test_api_client_over_httpx(fake_sleep):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"message": "warming up"})
        return httpx.Response(200, json={"ok": True})

    transport = HttpxTransport(client=_mock_client(handler))
    async with ApiClient("https://api.test", transport=transport, sleep=fake_sleep) as api:
        assert await api.get("/health") == {"ok": True}

    assert len(calls) == 2  # noqa: PLR2004
    assert str(calls[0].url) == "https://api.test/health"
    assert calls[0].headers["Content-Type"] == "application/json"
