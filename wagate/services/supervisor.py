"""Registry of live protocol connections, one per session.

The supervisor is the only owner of runtime connection state. Each entry
carries a generation number; events raised by a handle that has since been
replaced (reconnect) or removed (delete) are ignored.

State machine per session::

    disconnected -> connecting -> connected
    connected|connecting -> disconnected   (transient close, one reconnect scheduled)
    * -> logged_out                        (terminal, full teardown)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable
from uuid import uuid4

from wagate.core.config import USER_JID_SUFFIX
from wagate.core.errors import (
    DatabaseError,
    InvalidInputError,
    NotConnectedError,
    NotFoundError,
    NotInitializedError,
    RecipientUnregisteredError,
    UpstreamFailureError,
    WagateError,
    WorkingStateError,
)
from wagate.domain.types import ConnectionState, MessageReceipt
from wagate.persistence.gateway import PersistenceGateway
from wagate.protocol.base import ConnectionConfig, ConnectionFactory, ConnectionHandle
from wagate.services.credentials import CredentialSynchronizer, blob_files, has_usable_credentials
from wagate.services.delivery import DeliveryLedger
from wagate.services.events import EventAdapter


logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@:-]{0,127}$")
_MIN_PHONE_DIGITS = 10
_MAX_PHONE_DIGITS = 15


def validate_session_id(session_id: str | None) -> str:
    if session_id is None or session_id == "":
        return str(uuid4())
    if not _SESSION_ID.match(session_id):
        raise InvalidInputError("session id must be 1-128 characters of letters, digits, '_', '.', '@', ':' or '-'")
    return session_id


def normalize_phone_number(phone_number: str | None) -> str:
    digits = re.sub(r"\D", "", phone_number or "")
    if not _MIN_PHONE_DIGITS <= len(digits) <= _MAX_PHONE_DIGITS:
        raise InvalidInputError("phone number must be between 10-15 digits")
    return digits


def normalize_recipient(to: str | None) -> str:
    # Full addresses pass through; bare numbers become individual-account addresses.
    value = (to or "").strip()
    if "@" in value:
        return value
    digits = re.sub(r"\D", "", value)
    if not digits:
        raise InvalidInputError("recipient must be a phone number or a full address")
    return f"{digits}{USER_JID_SUFFIX}"


@dataclass
class SessionRuntime:
    session_id: str
    generation: int
    handle: ConnectionHandle | None
    state: ConnectionState
    last_status: dict[str, Any] | None = None


@dataclass(frozen=True)
class SessionView:
    session_id: str
    state: ConnectionState
    has_handle: bool
    generation: int
    last_status: dict[str, Any] | None


class ConnectionSupervisor:
    def __init__(
        self,
        *,
        gateway: PersistenceGateway,
        synchronizer: CredentialSynchronizer,
        ledger: DeliveryLedger,
        factory: ConnectionFactory,
        config: ConnectionConfig | None = None,
        reconnect_delay_s: float = 5.0,
    ) -> None:
        self._gateway = gateway
        self._synchronizer = synchronizer
        self._factory = factory
        self._config = config or ConnectionConfig()
        self._reconnect_delay_s = max(0.0, float(reconnect_delay_s))
        self._events = EventAdapter(self, synchronizer, ledger)
        self._sessions: dict[str, SessionRuntime] = {}
        # Coarse lock for the map itself; per-session locks serialize create/delete of one id.
        self._lock = asyncio.Lock()
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._reconnects: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._generations = itertools.count(1)

    # ------------------------------------------------------------------ views

    def get(self, session_id: str) -> SessionView | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        return SessionView(
            session_id=entry.session_id,
            state=entry.state,
            has_handle=entry.handle is not None,
            generation=entry.generation,
            last_status=entry.last_status,
        )

    def state_of(self, session_id: str) -> ConnectionState:
        entry = self._sessions.get(session_id)
        return entry.state if entry is not None else ConnectionState.DISCONNECTED

    def snapshot(self) -> dict[str, ConnectionState]:
        return {session_id: entry.state for session_id, entry in list(self._sessions.items())}

    def reconnect_pending(self, session_id: str) -> bool:
        task = self._reconnects.get(session_id)
        return task is not None and not task.done()

    # ------------------------------------------------------------- operations

    async def create(self, session_id: str | None = None) -> ConnectionHandle:
        """Open a connection for ``session_id`` without waiting for it to connect."""
        session_id = validate_session_id(session_id)
        async with self._session_lock(session_id):
            return await self._create_locked(session_id)

    async def pair_request(self, session_id: str, phone_number: str) -> str:
        digits = normalize_phone_number(phone_number)
        handle = await self.require_handle(session_id)
        logger.info("pairing_code_requested session_id=%s", session_id)
        try:
            return await handle.request_pairing_code(digits)
        except Exception as exc:  # noqa: BLE001 - protocol errors are surfaced as upstream failures.
            logger.warning("pairing_code_failed session_id=%s", session_id, exc_info=exc)
            raise UpstreamFailureError(f"failed to request pairing code: {exc}") from exc

    async def send_text(self, session_id: str, to: str, text: str) -> MessageReceipt:
        if not text:
            raise InvalidInputError("message text is required")
        jid = normalize_recipient(to)
        handle = await self.require_handle(session_id, connected=True)
        try:
            if jid.endswith(USER_JID_SUFFIX) and not await handle.is_registered(jid):
                raise RecipientUnregisteredError(f"{jid} is not registered on the network")
            result = await handle.send(jid, {"text": text})
        except WagateError:
            raise
        except Exception as exc:  # noqa: BLE001 - protocol errors are surfaced as upstream failures.
            logger.warning("send_text_failed session_id=%s to=%s", session_id, jid, exc_info=exc)
            raise UpstreamFailureError(f"failed to send message: {exc}") from exc
        key = result.get("key") if isinstance(result, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None
        logger.info("message_sent session_id=%s to=%s message_id=%s", session_id, jid, message_id)
        return MessageReceipt(
            message_id=message_id,
            timestamp=result.get("messageTimestamp") if isinstance(result, dict) else None,
            raw=result if isinstance(result, dict) else {},
        )

    async def delete(self, session_id: str) -> None:
        """Close, forget and purge a session; unknown ids are a no-op."""
        async with self._session_lock(session_id):
            self._cancel_reconnect(session_id)
            async with self._lock:
                entry = self._sessions.pop(session_id, None)
            if entry is not None:
                await self._close_quietly(entry)
            await self._synchronizer.purge(session_id)
        self._session_locks.pop(session_id, None)
        logger.info("session_deleted session_id=%s", session_id)

    async def restore_all(self) -> list[str]:
        """Reopen every session with usable credentials; returns the restored ids."""
        records = await self._gateway.list_sessions()
        durable_ids = {record.id for record in records}
        candidates: list[str] = []
        for record in records:
            if record.id in self._sessions:
                continue
            blob = await self._gateway.load_credentials(record.id)
            if has_usable_credentials(blob_files(blob)):
                candidates.append(record.id)
            else:
                logger.info("session_restore_skipped session_id=%s reason=awaiting_pairing", record.id)

        for orphan_id in self._synchronizer.working_state.list_sessions():
            if orphan_id in durable_ids or orphan_id in self._sessions:
                continue
            if not self._synchronizer.working_state_usable(orphan_id):
                continue
            # Import before restoring so the durable copy exists for the next restart.
            if await self._synchronizer.capture_and_persist(orphan_id):
                logger.info("orphan_working_state_imported session_id=%s", orphan_id)
                candidates.append(orphan_id)

        results = await asyncio.gather(*(self._restore_one(session_id) for session_id in candidates))
        restored = [session_id for session_id, ok in zip(candidates, results) if ok]
        logger.info("sessions_restored restored=%s candidates=%s", len(restored), len(candidates))
        return restored

    async def shutdown(self) -> None:
        for session_id in list(self._reconnects):
            self._cancel_reconnect(session_id)
        async with self._lock:
            entries = list(self._sessions.values())
            self._sessions.clear()
        for entry in entries:
            await self._close_quietly(entry)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._synchronizer.drain()
        logger.info("supervisor_shutdown closed=%s", len(entries))

    async def require_handle(self, session_id: str, *, connected: bool = False) -> ConnectionHandle:
        entry = self._sessions.get(session_id)
        if entry is None or entry.handle is None:
            if not await self._gateway.session_exists(session_id):
                raise NotFoundError(f"session {session_id} not found")
            if connected:
                raise NotConnectedError(f"session {session_id} is not connected")
            raise NotInitializedError(f"session {session_id} is not initialized")
        if connected and entry.state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"session {session_id} is not connected")
        return entry.handle

    def record_last_status(self, session_id: str, last_status: dict[str, Any]) -> None:
        entry = self._sessions.get(session_id)
        if entry is not None:
            entry.last_status = last_status

    # -------------------------------------------------- event adapter surface

    def is_current(self, session_id: str, generation: int) -> bool:
        entry = self._sessions.get(session_id)
        return (
            entry is not None
            and entry.generation == generation
            and entry.state is not ConnectionState.LOGGED_OUT
        )

    async def mark_state(self, session_id: str, generation: int, state: ConnectionState) -> bool:
        async with self._lock:
            entry = self._current(session_id, generation)
            if entry is None:
                return False
            previous = entry.state
            entry.state = state
            handle = entry.handle
        if state is ConnectionState.CONNECTED and previous is not ConnectionState.CONNECTED:
            user = handle.user if handle is not None else None
            identity = (user or {}).get("name") or (user or {}).get("id") or "unknown"
            logger.info("session_connected session_id=%s identity=%s", session_id, identity)
        return True

    async def handle_close(self, session_id: str, generation: int, *, reason: str | None, terminal: bool) -> bool:
        async with self._lock:
            entry = self._current(session_id, generation)
            if entry is None:
                return False
            entry.state = ConnectionState.LOGGED_OUT if terminal else ConnectionState.DISCONNECTED
        if terminal:
            logger.warning("session_logged_out session_id=%s reason=%s", session_id, reason or "unknown")
            # Teardown runs in its own task so the protocol callback never waits on session locks.
            self._spawn(self._teardown_logged_out(session_id, generation))
        else:
            logger.info("session_closed session_id=%s reason=%s", session_id, reason or "unknown")
            self._schedule_reconnect(session_id, generation)
        return True

    # --------------------------------------------------------------- internals

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    def _current(self, session_id: str, generation: int) -> SessionRuntime | None:
        entry = self._sessions.get(session_id)
        if entry is None or entry.generation != generation:
            logger.debug("stale_connection_event session_id=%s generation=%s", session_id, generation)
            return None
        return entry

    async def _create_locked(self, session_id: str) -> ConnectionHandle:
        working_state = self._synchronizer.working_state
        # Row insert failures propagate unchanged as DatabaseError.
        await self._gateway.create_session(session_id)
        try:
            location = working_state.allocate(session_id)
            await self._synchronizer.materialize(session_id)
        except WorkingStateError:
            raise
        except (OSError, DatabaseError) as exc:
            raise WorkingStateError(f"cannot prepare working state for {session_id}: {exc}") from exc

        self._cancel_reconnect(session_id)
        try:
            handle = await self._factory.connect(location, self._config)
        except Exception as exc:  # noqa: BLE001 - protocol errors are surfaced as upstream failures.
            logger.warning("session_connect_failed session_id=%s", session_id, exc_info=exc)
            await self._mark_connect_failed(session_id)
            raise UpstreamFailureError(f"failed to open connection: {exc}") from exc

        async with self._lock:
            generation = next(self._generations)
            previous = self._sessions.get(session_id)
            self._sessions[session_id] = SessionRuntime(
                session_id=session_id,
                generation=generation,
                handle=handle,
                state=ConnectionState.CONNECTING,
                last_status=previous.last_status if previous is not None else None,
            )
            handle.subscribe(
                on_credentials_update=partial(self._events.on_credentials_update, session_id),
                on_connection_update=partial(self._events.on_connection_update, session_id, generation),
                on_messages=partial(self._events.on_messages, session_id, generation),
            )
        if previous is not None and previous.handle is not None and previous.handle is not handle:
            await self._close_quietly(previous)
        logger.info("session_connecting session_id=%s generation=%s", session_id, generation)
        return handle

    async def _restore_one(self, session_id: str) -> bool:
        try:
            await self.create(session_id)
        except UpstreamFailureError:
            return False
        except WagateError as exc:
            logger.warning("session_restore_failed session_id=%s", session_id, exc_info=exc)
            return False
        return True

    async def _mark_connect_failed(self, session_id: str) -> None:
        # A failed connect becomes a disconnected entry owned by the reconnect policy.
        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                entry = SessionRuntime(
                    session_id=session_id,
                    generation=next(self._generations),
                    handle=None,
                    state=ConnectionState.DISCONNECTED,
                )
                self._sessions[session_id] = entry
            else:
                entry.state = ConnectionState.DISCONNECTED
            generation = entry.generation
        self._schedule_reconnect(session_id, generation)

    def _schedule_reconnect(self, session_id: str, generation: int) -> None:
        if self.reconnect_pending(session_id):
            return
        logger.info("session_reconnect_scheduled session_id=%s delay_s=%s", session_id, self._reconnect_delay_s)
        self._reconnects[session_id] = asyncio.create_task(self._reconnect_later(session_id, generation))

    def _cancel_reconnect(self, session_id: str) -> None:
        task = self._reconnects.pop(session_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _reconnect_later(self, session_id: str, generation: int) -> None:
        await asyncio.sleep(self._reconnect_delay_s)
        if self._reconnects.get(session_id) is asyncio.current_task():
            self._reconnects.pop(session_id, None)
        try:
            async with self._session_lock(session_id):
                # The entry may have been deleted or replaced while the timer was pending.
                if self._current(session_id, generation) is None:
                    logger.info("session_reconnect_dropped session_id=%s", session_id)
                    return
                await self._create_locked(session_id)
        except UpstreamFailureError:
            logger.info("session_reconnect_failed session_id=%s", session_id)
        except WagateError as exc:
            logger.warning("session_reconnect_failed session_id=%s", session_id, exc_info=exc)

    async def _teardown_logged_out(self, session_id: str, generation: int) -> None:
        async with self._session_lock(session_id):
            async with self._lock:
                entry = self._current(session_id, generation)
                if entry is None:
                    return
                self._sessions.pop(session_id, None)
            self._cancel_reconnect(session_id)
            await self._close_quietly(entry)
            try:
                await self._synchronizer.purge(session_id)
            except DatabaseError:
                logger.exception("session_purge_failed session_id=%s", session_id)
        self._session_locks.pop(session_id, None)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _close_quietly(self, entry: SessionRuntime) -> None:
        if entry.handle is None:
            return
        try:
            await entry.handle.close()
        except Exception as exc:  # noqa: BLE001 - closing is best effort.
            logger.warning("session_close_failed session_id=%s", entry.session_id, exc_info=exc)
