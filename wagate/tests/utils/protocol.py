from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable

from wagate.domain.types import InboundMessage


ACCOUNT_JID = "15550001111:1@s.whatsapp.net"
SENDER_JID = "15550002222@s.whatsapp.net"
GROUP_JID = "120363041234567890@g.us"


def creds_files(account_id: str = ACCOUNT_JID) -> dict[str, str]:
    # Minimal paired-account working state as the protocol layer would write it.
    return {
        "creds.json": json.dumps({"me": {"id": account_id, "name": "tester"}, "registered": True}),
        "app-state-sync-key-AAA.json": json.dumps({"keyData": "c2VjcmV0"}),
    }


def raw_message(
    message_id: str | None,
    *,
    remote_jid: str = SENDER_JID,
    text: str | None = "hello",
    timestamp: Any = 1_700_000_000,
    participant: str | None = None,
    from_me: bool = False,
) -> dict[str, Any]:
    key: dict[str, Any] = {"remoteJid": remote_jid, "fromMe": from_me}
    if message_id is not None:
        key["id"] = message_id
    if participant is not None:
        key["participant"] = participant
    return {
        "key": key,
        "message": {"conversation": text} if text is not None else None,
        "messageTimestamp": timestamp,
    }


def make_inbound(
    message_id: str,
    session_id: str = "s1",
    *,
    from_jid: str = SENDER_JID,
    is_group: bool = False,
    timestamp_ms: int = 1_700_000_000_000,
    text: str | None = "hello",
) -> InboundMessage:
    return InboundMessage(
        id=message_id,
        session_id=session_id,
        from_jid=from_jid,
        is_group=is_group,
        timestamp_ms=timestamp_ms,
        text=text,
        raw=raw_message(message_id, remote_jid=from_jid, text=text),
    )


async def wait_for(
    predicate: Callable[[], bool | Awaitable[bool]],
    *,
    timeout: float = 2.0,
    interval: float = 0.01,
) -> None:
    # Poll background effects (reconnect timers, teardown tasks) until they land.
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
