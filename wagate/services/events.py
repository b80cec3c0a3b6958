from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from wagate.core.config import GROUP_JID_SUFFIX
from wagate.domain.types import ConnectionState, InboundMessage
from wagate.protocol.base import ConnectionUpdate

if TYPE_CHECKING:
    from wagate.services.credentials import CredentialSynchronizer
    from wagate.services.delivery import DeliveryLedger
    from wagate.services.supervisor import ConnectionSupervisor


logger = logging.getLogger(__name__)

_CAPTION_KEYS = ("imageMessage", "videoMessage", "documentMessage")


def extract_text(content: dict[str, Any]) -> str | None:
    if not isinstance(content, dict):
        return None
    if content.get("conversation"):
        return str(content["conversation"])
    extended = content.get("extendedTextMessage")
    if isinstance(extended, dict) and extended.get("text"):
        return str(extended["text"])
    for key in _CAPTION_KEYS:
        media = content.get(key)
        if isinstance(media, dict) and media.get("caption"):
            return str(media["caption"])
    return None


def _timestamp_ms(raw_timestamp: Any) -> int:
    # Protocol timestamps are seconds, sometimes wrapped as {"low": ..., "high": ...}.
    if isinstance(raw_timestamp, dict):
        raw_timestamp = raw_timestamp.get("low")
    try:
        seconds = float(raw_timestamp)
    except (TypeError, ValueError):
        return int(time.time() * 1000)
    if seconds <= 0:
        return int(time.time() * 1000)
    return int(seconds * 1000)


def to_inbound_message(session_id: str, raw: dict[str, Any]) -> InboundMessage | None:
    """Convert one raw protocol message; None for own or empty messages."""
    if not isinstance(raw, dict):
        return None
    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    if key.get("fromMe"):
        return None
    content = raw.get("message")
    from_jid = key.get("remoteJid")
    if not content or not from_jid:
        return None
    return InboundMessage(
        id=str(key.get("id") or f"gen-{uuid4().hex}"),
        session_id=session_id,
        from_jid=str(from_jid),
        is_group=str(from_jid).endswith(GROUP_JID_SUFFIX),
        timestamp_ms=_timestamp_ms(raw.get("messageTimestamp")),
        text=extract_text(content),
        raw=raw,
    )


class EventAdapter:
    """Routes protocol callbacks for one supervisor into its collaborators."""

    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        synchronizer: "CredentialSynchronizer",
        ledger: "DeliveryLedger",
    ) -> None:
        self._supervisor = supervisor
        self._synchronizer = synchronizer
        self._ledger = ledger

    async def on_credentials_update(self, session_id: str) -> None:
        self._synchronizer.schedule_capture(session_id)

    async def on_connection_update(self, session_id: str, generation: int, update: ConnectionUpdate) -> None:
        if update.connection == "connecting":
            await self._supervisor.mark_state(session_id, generation, ConnectionState.CONNECTING)
        elif update.connection == "open":
            if await self._supervisor.mark_state(session_id, generation, ConnectionState.CONNECTED):
                self._synchronizer.schedule_capture(session_id)
        elif update.connection == "close":
            await self._supervisor.handle_close(
                session_id,
                generation,
                reason=update.reason,
                terminal=update.terminal,
            )
        else:
            logger.debug("connection_update_ignored session_id=%s connection=%s", session_id, update.connection)

    async def on_messages(self, session_id: str, generation: int, messages: list[dict[str, Any]]) -> None:
        for raw in messages:
            # Re-checked per message; a delete can land mid-batch.
            if not self._supervisor.is_current(session_id, generation):
                logger.debug("stale_messages_dropped session_id=%s generation=%s", session_id, generation)
                return
            message = to_inbound_message(session_id, raw)
            if message is None:
                continue
            try:
                await self._ledger.ingest_and_deliver(message)
            except Exception:  # noqa: BLE001 - one bad message must not stop the rest of the batch.
                logger.exception("message_ingest_failed session_id=%s message_id=%s", session_id, message.id)
