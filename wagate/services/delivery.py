from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Sequence

import httpx

from wagate.core.errors import InvalidInputError, NotFoundError
from wagate.domain.models import Message
from wagate.domain.types import DeliveryOutcome, InboundMessage, WebhookConfig
from wagate.persistence.gateway import PersistenceGateway
from wagate.services.webhooks import post_webhook


logger = logging.getLogger(__name__)

_PHONE_RUN = re.compile(r"\d{6,15}")


def validate_target_url(target_url: str | None) -> str:
    # Only absolute http(s) targets are accepted as webhook destinations.
    normalized = (target_url or "").strip()
    if normalized.startswith(("http://", "https://")) and len(normalized) > len("https://"):
        return normalized
    raise InvalidInputError("webhook must be an http:// or https:// URL")


def extract_phone(from_jid: str | None, raw: dict[str, Any] | None) -> str | None:
    """Best-effort international phone number for a message sender.

    Prefers ``raw.key.participant`` (group senders), then ``raw.participant``,
    then the bare ``from_jid``. Exotic addressing forms may misparse.
    """
    raw = raw if isinstance(raw, dict) else {}
    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    candidate = key.get("participant") or raw.get("participant") or from_jid or ""
    match = _PHONE_RUN.search(str(candidate))
    if match is None:
        return None
    return f"+{match.group(0)}"


def sanitize_payload(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "fromJid": message.from_jid,
        "from": extract_phone(message.from_jid, message.raw),
        "isGroup": bool(message.is_group),
        "timestamp": message.timestamp_ms,
        "text": message.text,
        "delivered": bool(message.delivered),
        "deliveryAttempts": int(message.delivery_attempts or 0),
        "lastDeliveryError": message.last_delivery_error,
        "pendingWebhook": message.pending_webhook,
        "raw": message.raw,
    }


class DeliveryLedger:
    """Records inbound messages and their webhook delivery state.

    Delivery failures never raise; they are written onto the message row
    (``pending_webhook``/``last_delivery_error``) and reported as ``pending``
    outcomes so callers can retry later.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        timeout_s: float = 5.0,
        forward_limit: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._gateway = gateway
        self._timeout_s = timeout_s
        self._forward_limit = max(1, int(forward_limit))
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()
        # Every delivery path of one session runs under its lock so a row is never in flight twice.
        self._delivery_locks: dict[str, asyncio.Lock] = {}

    async def ingest(self, message: InboundMessage) -> bool:
        """Store the message once; returns False for a duplicate id."""
        inserted = await self._gateway.insert_message_if_absent(message)
        if not inserted:
            logger.debug("message_duplicate_ignored session_id=%s message_id=%s", message.session_id, message.id)
        return inserted

    async def ingest_and_deliver(self, message: InboundMessage) -> DeliveryOutcome | None:
        # Only the first sighting of a message id triggers an immediate delivery.
        if not await self.ingest(message):
            return None
        async with self._delivery_lock(message.session_id):
            row = await self._gateway.get_message(message.id)
            if row is None or row.delivered:
                # A backlog redelivery already handled the row.
                return None
            return await self.deliver_now(message.session_id, row)

    async def deliver_now(self, session_id: str, message: Message) -> DeliveryOutcome:
        config = await self._gateway.load_webhook_config(session_id)
        target = config.target_for(is_group=bool(message.is_group))
        if not target:
            # Not applicable: stays undelivered with no pending target until a webhook is configured.
            return DeliveryOutcome(id=message.id, status="skipped")
        return await self.attempt_forward(message, target)

    async def attempt_forward(self, message: Message, target_url: str) -> DeliveryOutcome:
        result = await post_webhook(
            target_url,
            sanitize_payload(message),
            timeout_s=self._timeout_s,
            transport=self._transport,
        )
        row = await self._gateway.update_message_delivery(
            message.id,
            delivered=result.ok,
            error=None if result.ok else result.error,
            pending_webhook=None if result.ok else target_url,
        )
        attempts = row.delivery_attempts if row is not None else None
        if result.ok:
            logger.info(
                "message_delivered session_id=%s message_id=%s webhook=%s attempts=%s",
                message.session_id,
                message.id,
                target_url,
                attempts,
            )
            return DeliveryOutcome(id=message.id, status="delivered", webhook=target_url, attempts=attempts)
        logger.warning(
            "message_delivery_failed session_id=%s message_id=%s webhook=%s attempts=%s error=%s",
            message.session_id,
            message.id,
            target_url,
            attempts,
            result.error,
        )
        return DeliveryOutcome(
            id=message.id,
            status="pending",
            webhook=target_url,
            error=result.error,
            attempts=attempts,
        )

    async def forward(
        self,
        session_id: str,
        target_url: str,
        ids: Sequence[str] | None = None,
    ) -> list[DeliveryOutcome]:
        target_url = validate_target_url(target_url)
        await self._require_session(session_id)
        async with self._delivery_lock(session_id):
            if ids is not None:
                rows = await self._gateway.query_messages(session_id, ids=list(ids))
                return await self._run_batch(session_id, _order_by_ids(ids, rows), lambda _row: target_url)
            rows = await self._gateway.query_messages(session_id, limit=self._forward_limit)
            # Newest-first query; deliver oldest first so receivers see chronological order.
            rows.reverse()
            return await self._run_batch(session_id, [(row.id, row) for row in rows], lambda _row: target_url)

    async def retry_pending(
        self,
        session_id: str,
        ids: Sequence[str] | None = None,
        target_url: str | None = None,
    ) -> list[DeliveryOutcome]:
        if target_url is not None:
            target_url = validate_target_url(target_url)
        await self._require_session(session_id)
        async with self._delivery_lock(session_id):
            if ids is not None:
                rows = await self._gateway.query_messages(session_id, ids=list(ids))
                batch = _order_by_ids(ids, rows)
            else:
                rows = await self._gateway.query_undelivered(session_id, target_url)
                batch = [(row.id, row) for row in rows]
            return await self._run_batch(session_id, batch, lambda row: target_url or row.pending_webhook)

    async def query_undelivered(self, session_id: str, target_url: str | None = None) -> list[Message]:
        await self._require_session(session_id)
        return await self._gateway.query_undelivered(session_id, target_url)

    async def on_webhook_config_change(self, session_id: str, config: WebhookConfig) -> asyncio.Task:
        """Save the config, then redeliver the pending backlog in the background."""
        for url in (config.incoming, config.group, config.status):
            if url:
                validate_target_url(url)
        await self._require_session(session_id)
        await self._gateway.save_webhook_config(session_id, config)
        logger.info("webhook_config_saved session_id=%s", session_id)
        task = asyncio.create_task(self._redeliver_backlog(session_id, config))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _redeliver_backlog(self, session_id: str, config: WebhookConfig) -> list[DeliveryOutcome]:
        try:
            # Back-to-back config changes queue here; each sees only what is still undelivered.
            async with self._delivery_lock(session_id):
                pending = await self._gateway.query_undelivered(session_id)
                outcomes: list[DeliveryOutcome] = []
                for row in pending:
                    target = config.target_for(is_group=bool(row.is_group))
                    if target:
                        outcomes.append(await self.attempt_forward(row, target))
        except Exception:  # noqa: BLE001 - background task; failures must surface in logs only.
            logger.exception("webhook_backlog_redelivery_failed session_id=%s", session_id)
            return []
        logger.info("webhook_backlog_redelivered session_id=%s attempted=%s", session_id, len(outcomes))
        return outcomes

    async def _run_batch(
        self,
        session_id: str,
        batch: list[tuple[str, Message | None]],
        resolve_target: Callable[[Message], str | None],
    ) -> list[DeliveryOutcome]:
        # Sequential; each message has its own timeout and a failure never aborts the batch.
        outcomes: list[DeliveryOutcome] = []
        for message_id, row in batch:
            if row is None:
                outcomes.append(DeliveryOutcome(id=message_id, status="not_found"))
                continue
            target = resolve_target(row)
            if not target:
                outcomes.append(DeliveryOutcome(id=row.id, status="skipped"))
                continue
            outcomes.append(await self.attempt_forward(row, target))
        logger.info(
            "delivery_batch_finished session_id=%s total=%s delivered=%s",
            session_id,
            len(outcomes),
            sum(1 for outcome in outcomes if outcome.status == "delivered"),
        )
        return outcomes

    def _delivery_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._delivery_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._delivery_locks[session_id] = lock
        return lock

    async def _require_session(self, session_id: str) -> None:
        if not await self._gateway.session_exists(session_id):
            raise NotFoundError(f"session {session_id} not found")


def _order_by_ids(ids: Sequence[str], rows: list[Message]) -> list[tuple[str, Message | None]]:
    # Preserve caller order, drop repeated ids, and keep unknown ids as not_found entries.
    by_id = {row.id: row for row in rows}
    ordered: list[tuple[str, Message | None]] = []
    seen: set[str] = set()
    for message_id in ids:
        if message_id in seen:
            continue
        seen.add(message_id)
        ordered.append((message_id, by_id.get(message_id)))
    return ordered
