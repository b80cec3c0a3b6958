from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wagate.domain.models import Message
from wagate.domain.types import InboundMessage
from wagate.persistence.repos.dialect import insert_for


async def insert_if_absent(session: AsyncSession, message: InboundMessage) -> bool:
    # Duplicate ids are ignored so at-least-once protocol events store a message once.
    stmt = insert_for(session, Message).values(
        id=message.id,
        session_id=message.session_id,
        from_jid=message.from_jid,
        is_group=message.is_group,
        timestamp_ms=message.timestamp_ms,
        text=message.text,
        raw=message.raw,
        delivered=False,
        delivery_attempts=0,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=[Message.id]).returning(Message.id)
    inserted = (await session.execute(stmt)).scalar_one_or_none()
    return inserted is not None


async def record_attempt(
    session: AsyncSession,
    message_id: str,
    *,
    delivered: bool,
    error: str | None,
    pending_webhook: str | None,
) -> Message | None:
    # Increment in place so concurrent attempts on one message never lose a count.
    values: dict[str, object] = {
        "delivery_attempts": Message.delivery_attempts + 1,
        "delivered": delivered,
        "last_delivery_error": error,
        "pending_webhook": pending_webhook,
    }
    if delivered:
        values["delivered_at"] = datetime.now(timezone.utc)
    stmt = (
        update(Message)
        .where(Message.id == message_id)
        .values(**values)
        .returning(Message)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_message(session: AsyncSession, message_id: str) -> Message | None:
    return await session.get(Message, message_id)


async def list_messages(
    session: AsyncSession,
    session_id: str,
    *,
    ids: Sequence[str] | None = None,
    limit: int | None = None,
) -> list[Message]:
    stmt = select(Message).where(Message.session_id == session_id)
    if ids is not None:
        stmt = stmt.where(Message.id.in_(list(ids)))
    stmt = stmt.order_by(Message.timestamp_ms.desc(), Message.created_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_undelivered(
    session: AsyncSession,
    session_id: str,
    *,
    target_url: str | None = None,
) -> list[Message]:
    stmt = select(Message).where(Message.session_id == session_id, Message.delivered.is_(False))
    if target_url is not None:
        stmt = stmt.where(Message.pending_webhook == target_url)
    stmt = stmt.order_by(Message.timestamp_ms.asc(), Message.created_at.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
