from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Protocol


ConnectionPhase = Literal["connecting", "open", "close"]


@dataclass(frozen=True)
class ConnectionUpdate:
    connection: ConnectionPhase
    reason: str | None = None
    # True only when the account was logged out and credentials are revoked.
    terminal: bool = False


@dataclass(frozen=True)
class ConnectionConfig:
    browser: str = "Ubuntu/Chrome"
    mark_online_on_connect: bool = True
    sync_full_history: bool = False
    keep_alive_interval_ms: int = 30000
    connect_timeout_ms: int = 60000
    default_query_timeout_ms: int = 60000


CredentialsCallback = Callable[[], Awaitable[None]]
ConnectionUpdateCallback = Callable[[ConnectionUpdate], Awaitable[None]]
MessagesCallback = Callable[[list[dict[str, Any]]], Awaitable[None]]


class ConnectionHandle(Protocol):
    @property
    def user(self) -> dict[str, Any] | None:
        ...

    def subscribe(
        self,
        *,
        on_credentials_update: CredentialsCallback,
        on_connection_update: ConnectionUpdateCallback,
        on_messages: MessagesCallback,
    ) -> None:
        ...

    async def request_pairing_code(self, phone_number: str) -> str:
        ...

    async def is_registered(self, jid: str) -> bool:
        ...

    async def send(
        self,
        jid: str,
        content: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...

    async def broadcast_list_info(self, jid: str) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class ConnectionFactory(Protocol):
    async def connect(self, location: str, config: ConnectionConfig) -> ConnectionHandle:
        ...
