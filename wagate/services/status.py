from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import httpx

from wagate.core.config import STATUS_BROADCAST_JID
from wagate.core.errors import InvalidInputError, UpstreamFailureError
from wagate.persistence.gateway import PersistenceGateway
from wagate.services.webhooks import post_webhook

if TYPE_CHECKING:
    from wagate.services.supervisor import ConnectionSupervisor


logger = logging.getLogger(__name__)

StatusType = Literal["text", "image", "video"]


@dataclass(frozen=True)
class StatusContent:
    # Media is either raw bytes or a remote URL the protocol layer fetches itself.
    type: StatusType = "image"
    text: str | None = None
    caption: str | None = None
    media: bytes | None = None
    url: str | None = None
    background_color: str | None = None
    font: int | None = None
    status_jid_list: list[str] = field(default_factory=list)


def build_status_message(content: StatusContent) -> dict[str, Any]:
    if content.type == "text":
        text = content.caption or content.text
        if not text:
            raise InvalidInputError("text content required for text status")
        return {"text": text}
    if content.type in ("image", "video"):
        if content.media is not None:
            source: Any = content.media
        elif content.url:
            source = {"url": content.url}
        else:
            raise InvalidInputError("provide media bytes or a remote url")
        return {content.type: source, "caption": content.caption or ""}
    raise InvalidInputError("invalid type; supported: text, image, video")


def _result_summary(result: dict[str, Any]) -> dict[str, Any]:
    key = result.get("key") if isinstance(result.get("key"), dict) else {}
    return {
        "id": key.get("id"),
        "remoteJid": key.get("remoteJid"),
        "timestamp": int(time.time() * 1000),
    }


class StatusPublisher:
    def __init__(
        self,
        supervisor: "ConnectionSupervisor",
        gateway: PersistenceGateway,
        *,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._gateway = gateway
        self._timeout_s = timeout_s
        self._transport = transport

    async def send_status(self, session_id: str, content: StatusContent) -> dict[str, Any]:
        message = build_status_message(content)
        handle = await self._supervisor.require_handle(session_id, connected=True)
        options = {
            "backgroundColor": content.background_color,
            "font": content.font,
            "statusJidList": list(content.status_jid_list),
            # Sends to the status address are always broadcasts.
            "broadcast": True,
        }
        try:
            result = await handle.send(STATUS_BROADCAST_JID, message, options)
        except Exception as exc:  # noqa: BLE001 - protocol errors are surfaced as upstream failures.
            logger.warning("status_send_failed session_id=%s", session_id, exc_info=exc)
            raise UpstreamFailureError(f"failed to send status: {exc}") from exc
        result = result if isinstance(result, dict) else {}
        logger.info("status_sent session_id=%s type=%s", session_id, content.type)

        self._supervisor.record_last_status(session_id, result)
        try:
            await self._gateway.save_last_status(session_id, result)
        except Exception as exc:  # noqa: BLE001 - diagnostics snapshot only.
            logger.warning("last_status_save_failed session_id=%s", session_id, exc_info=exc)
        await self._notify_status_webhook(session_id, result)
        return result

    async def broadcast_list_info(self, session_id: str, jid: str) -> dict[str, Any]:
        if not jid:
            raise InvalidInputError("broadcast jid is required")
        handle = await self._supervisor.require_handle(session_id)
        try:
            return await handle.broadcast_list_info(jid)
        except Exception as exc:  # noqa: BLE001 - protocol errors are surfaced as upstream failures.
            raise UpstreamFailureError(f"failed to query broadcast list: {exc}") from exc

    async def _notify_status_webhook(self, session_id: str, result: dict[str, Any]) -> None:
        try:
            config = await self._gateway.load_webhook_config(session_id)
        except Exception as exc:  # noqa: BLE001 - status webhook is best effort.
            logger.warning("status_webhook_config_failed session_id=%s", session_id, exc_info=exc)
            return
        if not config.status:
            return
        payload = {"sessionId": session_id, "result": _result_summary(result)}
        outcome = await post_webhook(config.status, payload, timeout_s=self._timeout_s, transport=self._transport)
        if not outcome.ok:
            logger.warning("status_webhook_failed session_id=%s error=%s", session_id, outcome.error)
