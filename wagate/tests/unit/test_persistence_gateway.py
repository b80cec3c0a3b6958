from __future__ import annotations

import asyncio

import pytest

from wagate.domain.models import Message
from wagate.domain.types import WebhookConfig
from wagate.tests.utils.protocol import make_inbound


@pytest.mark.asyncio
async def test_create_session_is_insert_if_absent(gateway) -> None:
    assert await gateway.create_session("s1") is True
    assert await gateway.create_session("s1") is False
    assert [record.id for record in await gateway.list_sessions()] == ["s1"]
    assert await gateway.load_credentials("s1") is None
    assert await gateway.load_webhook_config("s1") == WebhookConfig()


@pytest.mark.asyncio
async def test_column_saves_upsert_missing_rows(gateway) -> None:
    await gateway.save_webhook_config("s1", WebhookConfig(incoming="http://hooks.test/in"))
    await gateway.save_last_status("s1", {"key": {"id": "ABC"}})
    await gateway.save_credentials("s1", {"version": 1, "files": {"creds.json": "{}"}})

    assert await gateway.session_exists("s1")
    assert (await gateway.load_webhook_config("s1")).incoming == "http://hooks.test/in"
    assert await gateway.load_last_status("s1") == {"key": {"id": "ABC"}}
    assert (await gateway.load_credentials("s1"))["files"] == {"creds.json": "{}"}


@pytest.mark.asyncio
async def test_delete_session_removes_messages(gateway) -> None:
    await gateway.create_session("s1")
    await gateway.create_session("s2")
    await gateway.insert_message_if_absent(make_inbound("m1", "s1"))
    await gateway.insert_message_if_absent(make_inbound("m2", "s2"))

    assert await gateway.delete_session("s1") is True
    assert await gateway.delete_session("s1") is False
    assert await gateway.get_message("m1") is None
    assert await gateway.get_message("m2") is not None


@pytest.mark.asyncio
async def test_concurrent_attempts_are_all_counted(gateway) -> None:
    await gateway.create_session("s1")
    await gateway.insert_message_if_absent(make_inbound("m1"))

    await asyncio.gather(
        *(
            gateway.update_message_delivery("m1", delivered=False, error="boom", pending_webhook="http://hooks.test/in")
            for _ in range(5)
        )
    )

    row = await gateway.get_message("m1")
    assert row.delivery_attempts == 5
    assert await gateway.update_message_delivery("missing", delivered=True, error=None, pending_webhook=None) is None


@pytest.mark.asyncio
async def test_message_queries(gateway) -> None:
    await gateway.create_session("s1")
    for index in range(3):
        await gateway.insert_message_if_absent(make_inbound(f"m{index}", timestamp_ms=index))
    await gateway.update_message_delivery("m1", delivered=True, error=None, pending_webhook=None)
    await gateway.update_message_delivery("m2", delivered=False, error="HTTP 500", pending_webhook="http://a.test")

    assert [row.id for row in await gateway.query_messages("s1", limit=2)] == ["m2", "m1"]
    assert [row.id for row in await gateway.query_messages("s1", ids=["m0", "zz"])] == ["m0"]
    assert [row.id for row in await gateway.query_undelivered("s1")] == ["m0", "m2"]
    assert [row.id for row in await gateway.query_undelivered("s1", "http://a.test")] == ["m2"]


def test_message_indexes_match_initial_migration() -> None:
    assert {index.name for index in Message.__table__.indexes} == {
        "ix_messages_session_id",
        "ix_messages_session_delivered",
    }
