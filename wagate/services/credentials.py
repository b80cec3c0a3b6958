"""Two-way mirror between durable credential blobs and protocol working state.

The protocol layer reads and rewrites its credential files in a working area;
the database keeps the copy that survives restarts. This module is the only
code that moves data between the two:

* ``materialize`` copies the durable blob into the working area before a
  connection is opened,
* ``capture_and_persist`` copies the working area back into the database on
  every credential update and once when the connection opens,
* ``purge`` removes both.

Capture failures are logged and swallowed: the live connection keeps running
on its working-state copy and only restart-ability is at risk.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from wagate.core.errors import WorkingStateError
from wagate.persistence.gateway import PersistenceGateway
from wagate.services.working_state import WorkingStateStore


logger = logging.getLogger(__name__)

BLOB_VERSION = 1
CREDS_FILE = "creds.json"


def build_blob(files: dict[str, str]) -> dict[str, Any]:
    return {"version": BLOB_VERSION, "files": dict(sorted(files.items()))}


def blob_files(blob: dict[str, Any] | None) -> dict[str, str]:
    if not isinstance(blob, dict):
        return {}
    files = blob.get("files")
    if not isinstance(files, dict):
        return {}
    normalized: dict[str, str] = {}
    for name, content in files.items():
        # Older rows may hold parsed JSON documents instead of file text.
        normalized[str(name)] = content if isinstance(content, str) else json.dumps(content)
    return normalized


def has_usable_credentials(files: dict[str, str]) -> bool:
    # Paired accounts carry an identity ("me.id") in creds.json; presence of the file alone is not enough.
    raw = files.get(CREDS_FILE)
    if not raw:
        return False
    try:
        creds = json.loads(raw)
    except ValueError:
        return False
    me = creds.get("me") if isinstance(creds, dict) else None
    return isinstance(me, dict) and bool(me.get("id"))


class CredentialSynchronizer:
    def __init__(self, gateway: PersistenceGateway, working_state: WorkingStateStore) -> None:
        self._gateway = gateway
        self._working_state = working_state
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def working_state(self) -> WorkingStateStore:
        return self._working_state

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def materialize(self, session_id: str) -> bool:
        """Write the durable blob into the working area; False for fresh sessions."""
        blob = await self._gateway.load_credentials(session_id)
        files = blob_files(blob)
        if not files:
            return False
        try:
            self._working_state.write_files(session_id, files)
        except OSError as exc:
            raise WorkingStateError(f"cannot materialize credentials for {session_id}") from exc
        logger.info("credentials_materialized session_id=%s files=%s", session_id, len(files))
        return True

    async def capture_and_persist(self, session_id: str) -> bool:
        # Serialize per session so an older snapshot never lands after a newer one.
        async with self._lock_for(session_id):
            try:
                files = self._working_state.read_files(session_id)
                if not files:
                    logger.debug("credentials_capture_skipped session_id=%s reason=empty", session_id)
                    return False
                await self._gateway.save_credentials(session_id, build_blob(files))
            except Exception as exc:  # noqa: BLE001 - capture is best effort and must not break the connection.
                logger.warning("credentials_capture_failed session_id=%s", session_id, exc_info=exc)
                return False
        logger.debug("credentials_captured session_id=%s files=%s", session_id, len(files))
        return True

    def schedule_capture(self, session_id: str) -> asyncio.Task:
        # Fire-and-forget relative to the protocol layer; drain() waits for stragglers.
        task = asyncio.create_task(self.capture_and_persist(session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def working_state_usable(self, session_id: str) -> bool:
        try:
            return has_usable_credentials(self._working_state.read_files(session_id))
        except (OSError, WorkingStateError):
            logger.warning("working_state_unreadable session_id=%s", session_id, exc_info=True)
            return False

    async def purge(self, session_id: str) -> None:
        """Delete the durable session row and the working-state area."""
        async with self._lock_for(session_id):
            await self._gateway.delete_session(session_id)
            try:
                self._working_state.remove(session_id)
            except (OSError, WorkingStateError) as exc:
                logger.warning("working_state_remove_failed session_id=%s", session_id, exc_info=exc)
        self._locks.pop(session_id, None)
        logger.info("credentials_purged session_id=%s", session_id)
