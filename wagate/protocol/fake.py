from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Any
from uuid import uuid4

from wagate.protocol.base import (
    ConnectionConfig,
    ConnectionUpdate,
    ConnectionUpdateCallback,
    CredentialsCallback,
    MessagesCallback,
)


class FakeConnection:
    """In-process connection used for local development and tests.

    Nothing is sent over the network; tests drive the event callbacks through
    the ``emit_*`` helpers.
    """

    def __init__(self, location: str, config: ConnectionConfig) -> None:
        self.location = location
        self.config = config
        self.closed = False
        self.sent: list[tuple[str, dict[str, Any], dict[str, Any] | None]] = []
        self.pairing_requests: list[str] = []
        self.unregistered: set[str] = set()
        self.fail_with: Exception | None = None
        self._user: dict[str, Any] | None = None
        self._on_credentials_update: CredentialsCallback | None = None
        self._on_connection_update: ConnectionUpdateCallback | None = None
        self._on_messages: MessagesCallback | None = None

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    def subscribe(
        self,
        *,
        on_credentials_update: CredentialsCallback,
        on_connection_update: ConnectionUpdateCallback,
        on_messages: MessagesCallback,
    ) -> None:
        self._on_credentials_update = on_credentials_update
        self._on_connection_update = on_connection_update
        self._on_messages = on_messages

    async def request_pairing_code(self, phone_number: str) -> str:
        self._raise_if_failing()
        self.pairing_requests.append(phone_number)
        digest = hashlib.sha256(phone_number.encode("utf-8")).hexdigest().upper()
        return f"{digest[:4]}-{digest[4:8]}"

    async def is_registered(self, jid: str) -> bool:
        self._raise_if_failing()
        return jid not in self.unregistered

    async def send(
        self,
        jid: str,
        content: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._raise_if_failing()
        self.sent.append((jid, content, options))
        return {
            "key": {"id": f"FAKE{uuid4().hex[:16].upper()}", "remoteJid": jid, "fromMe": True},
            "messageTimestamp": int(time.time()),
        }

    async def broadcast_list_info(self, jid: str) -> dict[str, Any]:
        self._raise_if_failing()
        return {"id": jid, "name": "fake broadcast", "recipients": []}

    async def close(self) -> None:
        self.closed = True

    async def emit_connection_update(self, update: ConnectionUpdate) -> None:
        if update.connection == "open" and self._user is None:
            self._user = {"id": "10000000000:1@s.whatsapp.net", "name": "fake"}
        if self._on_connection_update is not None:
            await self._on_connection_update(update)

    async def emit_credentials_update(self) -> None:
        if self._on_credentials_update is not None:
            await self._on_credentials_update()

    async def emit_messages(self, messages: list[dict[str, Any]]) -> None:
        if self._on_messages is not None:
            await self._on_messages(messages)

    def _raise_if_failing(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with


class FakeConnectionFactory:
    def __init__(self, *, auto_open: bool = False, fail_connect: Exception | None = None) -> None:
        # auto_open walks each new connection through connecting -> open on the next loop turn.
        self.auto_open = auto_open
        self.fail_connect = fail_connect
        self.connections: list[FakeConnection] = []
        self._tasks: set[asyncio.Task] = set()

    async def connect(self, location: str, config: ConnectionConfig) -> FakeConnection:
        if self.fail_connect is not None:
            raise self.fail_connect
        connection = FakeConnection(location, config)
        self.connections.append(connection)
        if self.auto_open:
            task = asyncio.create_task(self._open(connection))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return connection

    def latest(self) -> FakeConnection:
        return self.connections[-1]

    async def _open(self, connection: FakeConnection) -> None:
        await asyncio.sleep(0)
        await connection.emit_connection_update(ConnectionUpdate(connection="connecting"))
        await connection.emit_connection_update(ConnectionUpdate(connection="open"))
