"""Narrow persistence interface used by the session core.

Every method opens its own short transaction, so each call is atomic at the
single-row level and no caller ever holds a database session across an
``await`` on the network.
"""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wagate.core.errors import DatabaseError
from wagate.domain.models import Message
from wagate.domain.types import InboundMessage, SessionRecord, WebhookConfig
from wagate.persistence.repos import messages as messages_repo
from wagate.persistence.repos import sessions as sessions_repo


class PersistenceGateway:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_session(self, session_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                created = await sessions_repo.create_session(session, session_id)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError(f"failed to create session {session_id}") from exc
        return created

    async def session_exists(self, session_id: str) -> bool:
        async with self._session_factory() as session:
            return await sessions_repo.get_session(session, session_id) is not None

    async def save_credentials(self, session_id: str, blob: dict[str, Any]) -> None:
        await self._save_column(session_id, "auth_json", blob)

    async def load_credentials(self, session_id: str) -> dict[str, Any] | None:
        return await self._load_column(session_id, "auth_json")

    async def delete_session(self, session_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                deleted = await sessions_repo.delete_session(session, session_id)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError(f"failed to delete session {session_id}") from exc
        return deleted

    async def list_sessions(self) -> list[SessionRecord]:
        async with self._session_factory() as session:
            rows = await sessions_repo.list_sessions(session)
        return [SessionRecord(id=row.id, created_at=row.created_at, updated_at=row.updated_at) for row in rows]

    async def save_webhook_config(self, session_id: str, config: WebhookConfig) -> None:
        await self._save_column(session_id, "webhooks_json", config.to_json())

    async def load_webhook_config(self, session_id: str) -> WebhookConfig:
        return WebhookConfig.from_json(await self._load_column(session_id, "webhooks_json"))

    async def save_last_status(self, session_id: str, last_status: dict[str, Any]) -> None:
        await self._save_column(session_id, "last_status", last_status)

    async def load_last_status(self, session_id: str) -> dict[str, Any] | None:
        return await self._load_column(session_id, "last_status")

    async def insert_message_if_absent(self, message: InboundMessage) -> bool:
        async with self._session_factory() as session:
            try:
                inserted = await messages_repo.insert_if_absent(session, message)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError(f"failed to store message {message.id}") from exc
        return inserted

    async def update_message_delivery(
        self,
        message_id: str,
        *,
        delivered: bool,
        error: str | None,
        pending_webhook: str | None,
    ) -> Message | None:
        async with self._session_factory() as session:
            try:
                row = await messages_repo.record_attempt(
                    session,
                    message_id,
                    delivered=delivered,
                    error=error,
                    pending_webhook=pending_webhook,
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError(f"failed to record delivery for message {message_id}") from exc
        return row

    async def get_message(self, message_id: str) -> Message | None:
        async with self._session_factory() as session:
            return await messages_repo.get_message(session, message_id)

    async def query_messages(
        self,
        session_id: str,
        *,
        ids: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        async with self._session_factory() as session:
            return await messages_repo.list_messages(session, session_id, ids=ids, limit=limit)

    async def query_undelivered(self, session_id: str, target_url: str | None = None) -> list[Message]:
        async with self._session_factory() as session:
            return await messages_repo.list_undelivered(session, session_id, target_url=target_url)

    async def _save_column(self, session_id: str, column: str, value: Any) -> None:
        async with self._session_factory() as session:
            try:
                await sessions_repo.upsert_column(session, session_id, column, value)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError(f"failed to save {column} for session {session_id}") from exc

    async def _load_column(self, session_id: str, column: str) -> Any:
        async with self._session_factory() as session:
            return await sessions_repo.load_column(session, session_id, column)
