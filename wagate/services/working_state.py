from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Protocol

from wagate.core.config import Settings, get_settings
from wagate.core.errors import WorkingStateError


_SAFE_SESSION_ID = re.compile(r"^[A-Za-z0-9_.@:-]+$")
_PATH_CHARS = ("/", "\\", "\0")
_TMP_SUFFIX = ".wagate-tmp"


def _check_session_id(session_id: str) -> str:
    # Session ids become directory names; reject traversal.
    if session_id in {".", ".."} or not _SAFE_SESSION_ID.match(session_id or ""):
        raise WorkingStateError(f"unsafe session id: {session_id!r}")
    return session_id


def _check_file_name(name: str) -> str:
    # Any single path component is allowed; protocol key files carry base64 ids.
    if not name or name in {".", ".."} or any(char in name for char in _PATH_CHARS):
        raise WorkingStateError(f"unsafe file name: {name!r}")
    return name


class WorkingStateStore(Protocol):
    # Per-session file area the protocol layer reads credentials from.
    def location(self, session_id: str) -> str:
        ...

    def allocate(self, session_id: str) -> str:
        ...

    def read_files(self, session_id: str) -> dict[str, str]:
        ...

    def write_files(self, session_id: str, files: dict[str, str]) -> None:
        ...

    def remove(self, session_id: str) -> None:
        ...

    def list_sessions(self) -> list[str]:
        ...


@dataclass(frozen=True)
class LocalWorkingStateStore:
    # One directory per session under base_dir, one file per credential document.
    base_dir: Path

    def _session_dir(self, session_id: str) -> Path:
        return self.base_dir / _check_session_id(session_id)

    def location(self, session_id: str) -> str:
        return str(self._session_dir(session_id))

    def allocate(self, session_id: str) -> str:
        session_dir = self._session_dir(session_id)
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkingStateError(f"cannot allocate working state for {session_id}") from exc
        return str(session_dir)

    def read_files(self, session_id: str) -> dict[str, str]:
        session_dir = self._session_dir(session_id)
        if not session_dir.is_dir():
            return {}
        files: dict[str, str] = {}
        for path in sorted(session_dir.iterdir()):
            if path.is_file() and not path.name.endswith(_TMP_SUFFIX):
                files[_check_file_name(path.name)] = path.read_text(encoding="utf-8")
        return files

    def write_files(self, session_id: str, files: dict[str, str]) -> None:
        session_dir = self._session_dir(session_id)
        # Every name is checked before the first write so a bad blob leaves no partial state.
        names = [_check_file_name(name) for name in files]
        session_dir.mkdir(parents=True, exist_ok=True)
        for name in names:
            target = session_dir / name
            staging = session_dir / f"{name}{_TMP_SUFFIX}"
            staging.write_text(files[name], encoding="utf-8")
            os.replace(staging, target)

    def remove(self, session_id: str) -> None:
        shutil.rmtree(self._session_dir(session_id), ignore_errors=True)

    def list_sessions(self) -> list[str]:
        if not self.base_dir.is_dir():
            return []
        return sorted(path.name for path in self.base_dir.iterdir() if path.is_dir())


@dataclass
class InMemoryWorkingStateStore:
    # Thread-safe in-process working area for tests and ephemeral deployments.
    _sessions: dict[str, dict[str, str]] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def location(self, session_id: str) -> str:
        return f"memory://{_check_session_id(session_id)}"

    def allocate(self, session_id: str) -> str:
        with self._lock:
            self._sessions.setdefault(_check_session_id(session_id), {})
        return self.location(session_id)

    def read_files(self, session_id: str) -> dict[str, str]:
        with self._lock:
            return dict(self._sessions.get(session_id, {}))

    def write_files(self, session_id: str, files: dict[str, str]) -> None:
        checked = {_check_file_name(name): content for name, content in files.items()}
        with self._lock:
            self._sessions.setdefault(_check_session_id(session_id), {}).update(checked)

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def list_sessions(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)


def get_working_state_store(settings: Settings | None = None) -> WorkingStateStore:
    settings = settings or get_settings()
    backend = (settings.working_state_backend or "local").lower()
    if backend == "memory":
        return InMemoryWorkingStateStore()
    return LocalWorkingStateStore(base_dir=Path(settings.working_state_dir))
