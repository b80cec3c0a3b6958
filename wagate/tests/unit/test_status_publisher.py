from __future__ import annotations

import pytest

from wagate.core.errors import InvalidInputError, NotConnectedError, NotFoundError, UpstreamFailureError
from wagate.domain.types import WebhookConfig
from wagate.protocol.base import ConnectionUpdate
from wagate.services.status import StatusContent, build_status_message


STATUS_HOOK = "http://hooks.test/status"


async def _connected(runtime, factory, session_id: str = "s1"):
    await runtime.supervisor.create(session_id)
    connection = factory.latest()
    await connection.emit_connection_update(ConnectionUpdate(connection="open"))
    return connection


def test_build_status_message() -> None:
    assert build_status_message(StatusContent(type="text", text="hi")) == {"text": "hi"}
    assert build_status_message(StatusContent(type="text", text="hi", caption="cap")) == {"text": "cap"}
    assert build_status_message(StatusContent(type="image", media=b"\x89PNG")) == {"image": b"\x89PNG", "caption": ""}
    assert build_status_message(StatusContent(type="video", url="https://cdn.test/v.mp4", caption="c")) == {
        "video": {"url": "https://cdn.test/v.mp4"},
        "caption": "c",
    }
    with pytest.raises(InvalidInputError):
        build_status_message(StatusContent(type="text"))
    with pytest.raises(InvalidInputError):
        build_status_message(StatusContent(type="image"))
    with pytest.raises(InvalidInputError):
        build_status_message(StatusContent(type="audio"))  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_send_status_requires_connected_session(runtime) -> None:
    with pytest.raises(NotFoundError):
        await runtime.status.send_status("s1", StatusContent(type="text", text="hi"))
    await runtime.supervisor.create("s1")
    with pytest.raises(NotConnectedError):
        await runtime.status.send_status("s1", StatusContent(type="text", text="hi"))


@pytest.mark.asyncio
async def test_send_status_broadcasts_and_records_result(runtime, factory, webhooks) -> None:
    connection = await _connected(runtime, factory)
    await runtime.gateway.save_webhook_config("s1", WebhookConfig(status=STATUS_HOOK))

    result = await runtime.status.send_status(
        "s1",
        StatusContent(
            type="text",
            text="status update",
            background_color="#112233",
            font=2,
            status_jid_list=["15550002222@s.whatsapp.net"],
        ),
    )

    jid, content, options = connection.sent[-1]
    assert jid == "status@broadcast"
    assert content == {"text": "status update"}
    assert options == {
        "backgroundColor": "#112233",
        "font": 2,
        "statusJidList": ["15550002222@s.whatsapp.net"],
        "broadcast": True,
    }
    assert runtime.supervisor.get("s1").last_status == result
    assert await runtime.gateway.load_last_status("s1") == result

    (payload,) = webhooks.posted_to(STATUS_HOOK)
    assert payload["sessionId"] == "s1"
    assert payload["result"]["id"] == result["key"]["id"]
    assert payload["result"]["remoteJid"] == "status@broadcast"
    assert isinstance(payload["result"]["timestamp"], int)


@pytest.mark.asyncio
async def test_status_webhook_failure_does_not_fail_send(runtime, factory, webhooks) -> None:
    await _connected(runtime, factory)
    await runtime.gateway.save_webhook_config("s1", WebhookConfig(status=STATUS_HOOK))
    webhooks.statuses[STATUS_HOOK] = 500

    result = await runtime.status.send_status("s1", StatusContent(type="image", url="https://cdn.test/a.jpg"))

    assert result["key"]["remoteJid"] == "status@broadcast"
    assert len(webhooks.posted_to(STATUS_HOOK)) == 1


@pytest.mark.asyncio
async def test_protocol_errors_surface_as_upstream_failures(runtime, factory) -> None:
    connection = await _connected(runtime, factory)
    connection.fail_with = RuntimeError("media upload failed")

    with pytest.raises(UpstreamFailureError):
        await runtime.status.send_status("s1", StatusContent(type="text", text="hi"))
    with pytest.raises(UpstreamFailureError):
        await runtime.status.broadcast_list_info("s1", "1234@broadcast")


@pytest.mark.asyncio
async def test_broadcast_list_info(runtime, factory) -> None:
    await runtime.supervisor.create("s1")

    info = await runtime.status.broadcast_list_info("s1", "1234@broadcast")

    assert info["id"] == "1234@broadcast"
    with pytest.raises(InvalidInputError):
        await runtime.status.broadcast_list_info("s1", "")
