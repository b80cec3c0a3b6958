from __future__ import annotations

import json

import httpx
import pytest

from wagate.services.webhooks import post_webhook


@pytest.mark.asyncio
async def test_post_webhook_sends_json_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    result = await post_webhook(
        "http://hooks.test/in",
        {"id": "m1", "text": "héllo"},
        timeout_s=1.0,
        transport=httpx.MockTransport(handler),
    )

    assert result.ok is True
    assert result.status_code == 204
    assert result.error is None
    assert seen[0].method == "POST"
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == {"id": "m1", "text": "héllo"}


@pytest.mark.asyncio
async def test_non_2xx_is_a_failure() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404))

    result = await post_webhook("http://hooks.test/in", {}, timeout_s=1.0, transport=transport)

    assert result.ok is False
    assert result.status_code == 404
    assert result.error == "HTTP 404 Not Found"


@pytest.mark.asyncio
async def test_network_errors_never_raise() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    refused = await post_webhook("http://hooks.test/in", {}, timeout_s=5.0, transport=httpx.MockTransport(refuse))
    stalled = await post_webhook("http://hooks.test/in", {}, timeout_s=5.0, transport=httpx.MockTransport(stall))

    assert (refused.ok, refused.error) == (False, "connection refused")
    assert (stalled.ok, stalled.error) == (False, "timeout after 5s")
