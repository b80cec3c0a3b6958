from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class WebhookConfig:
    # Empty string and None both mean "not configured".
    incoming: str | None = None
    group: str | None = None
    status: str | None = None

    @classmethod
    def from_json(cls, raw: dict[str, Any] | None) -> "WebhookConfig":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            incoming=raw.get("incoming") or None,
            group=raw.get("group") or None,
            status=raw.get("status") or None,
        )

    def to_json(self) -> dict[str, str | None]:
        return {"incoming": self.incoming, "group": self.group, "status": self.status}

    def target_for(self, *, is_group: bool) -> str | None:
        return self.group if is_group else self.incoming


@dataclass(frozen=True)
class InboundMessage:
    id: str
    session_id: str
    from_jid: str
    is_group: bool
    timestamp_ms: int
    text: str | None
    raw: dict[str, Any] = field(default_factory=dict)


DeliveryStatus = Literal["delivered", "pending", "skipped", "not_found"]


@dataclass(frozen=True)
class DeliveryOutcome:
    id: str
    status: DeliveryStatus
    webhook: str | None = None
    error: str | None = None
    attempts: int | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "status": self.status}
        if self.webhook is not None:
            payload["webhook"] = self.webhook
        if self.error is not None:
            payload["error"] = self.error
        if self.attempts is not None:
            payload["deliveryAttempts"] = self.attempts
        return payload


@dataclass(frozen=True)
class MessageReceipt:
    message_id: str | None
    timestamp: Any
    raw: dict[str, Any]


@dataclass(frozen=True)
class SessionRecord:
    id: str
    created_at: datetime | None
    updated_at: datetime | None
