from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wagate.domain.models import Message, Session
from wagate.persistence.repos.dialect import insert_for


async def get_session(session: AsyncSession, session_id: str) -> Session | None:
    result = await session.execute(select(Session).where(Session.id == session_id))
    return result.scalar_one_or_none()


async def create_session(session: AsyncSession, session_id: str) -> bool:
    # Race-safe insert: a concurrent create for the same id keeps the first row.
    stmt = insert_for(session, Session).values(id=session_id)
    stmt = stmt.on_conflict_do_nothing(index_elements=[Session.id]).returning(Session.id)
    created = (await session.execute(stmt)).scalar_one_or_none()
    return created is not None


async def upsert_column(session: AsyncSession, session_id: str, column: str, value: Any) -> None:
    # Single-statement upsert so a missing row is created with only this column set.
    stmt = insert_for(session, Session).values(id=session_id, **{column: value})
    stmt = stmt.on_conflict_do_update(
        index_elements=[Session.id],
        set_={column: getattr(stmt.excluded, column), "updated_at": func.now()},
    )
    await session.execute(stmt)


async def load_column(session: AsyncSession, session_id: str, column: str) -> Any:
    result = await session.execute(select(getattr(Session, column)).where(Session.id == session_id))
    return result.scalar_one_or_none()


async def delete_session(session: AsyncSession, session_id: str) -> bool:
    # Delete messages explicitly so sqlite (no FK enforcement) matches ON DELETE CASCADE on Postgres.
    await session.execute(delete(Message).where(Message.session_id == session_id))
    result = await session.execute(delete(Session).where(Session.id == session_id).returning(Session.id))
    return result.scalar_one_or_none() is not None


async def list_sessions(session: AsyncSession) -> list[Session]:
    result = await session.execute(select(Session).order_by(Session.updated_at.desc()))
    return list(result.scalars().all())
