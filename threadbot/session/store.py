"""Per-user thread registry with self-healing JSON persistence."""

import json
import os
import shutil
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any

from loguru import logger

from threadbot.errors import InvalidSessionId, PersistenceError

SESSION_ID_PREFIX = "thread_"
SESSION_ID_MIN_LENGTH = 15


def parse_session_id(value: Any) -> str:
    """
    Coerce and validate a backend thread id.

    Non-string values are reduced to their ``id`` attribute (or ``"id"`` key)
    when present, otherwise ``str(value)``.

    Raises:
        InvalidSessionId: if the value is not a well-formed thread id.
    """
    if value is None:
        raise InvalidSessionId(value, "missing")
    if not isinstance(value, str):
        if isinstance(value, Mapping) and "id" in value:
            value = value["id"]
        elif hasattr(value, "id"):
            value = getattr(value, "id")
        if value is None:
            raise InvalidSessionId(value, "missing")
        value = str(value)

    candidate = value.strip()
    if not candidate:
        raise InvalidSessionId(value, "empty")
    if not candidate.startswith(SESSION_ID_PREFIX):
        raise InvalidSessionId(value, f"expected prefix '{SESSION_ID_PREFIX}'")
    if len(candidate) < SESSION_ID_MIN_LENGTH:
        raise InvalidSessionId(value, f"shorter than {SESSION_ID_MIN_LENGTH} characters")
    if any(ch.isspace() for ch in candidate):
        raise InvalidSessionId(value, "contains whitespace")
    return candidate


def is_valid_session_id(value: Any) -> bool:
    try:
        parse_session_id(value)
    except InvalidSessionId:
        return False
    return True


@dataclass
class Session:
    """A user's binding to one remote assistant thread."""

    user_id: str
    session_id: str
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat(),
        }


class SessionStore:
    """
    Durable mapping of user id to assistant thread id.

    The registry is a flat JSON object ``{user_id: thread_id}``. Entries that
    fail validation are dropped on load and the cleaned registry is written
    back, so a corrupted id never reaches a caller twice.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._sessions: dict[str, Session] = {}
        self._lock = RLock()
        self._load()

    @staticmethod
    def _backup_path(path: Path) -> Path:
        return path.with_suffix(f"{path.suffix}.bak")

    def _read_registry(self, path: Path) -> dict[str, Any]:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"registry root must be an object, got {type(data).__name__}")
        return data

    def _read_backup(self, backup: Path) -> dict[str, Any]:
        if not backup.exists():
            return {}
        try:
            raw = self._read_registry(backup)
        except (OSError, ValueError) as e:
            logger.warning(f"Session registry backup unreadable: {e}")
            return {}
        logger.warning(f"Recovered session registry from backup: {backup}")
        return raw

    def _load(self) -> None:
        raw: dict[str, Any] = {}
        needs_rewrite = False

        backup = self._backup_path(self.path)
        if self.path.exists():
            try:
                raw = self._read_registry(self.path)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read session registry {self.path}: {e}; trying backup")
                needs_rewrite = True
                raw = self._read_backup(backup)
                if raw:
                    # Keep the good backup; the rewrite below must not copy the corrupt file over it.
                    self.path.unlink(missing_ok=True)
        elif backup.exists():
            logger.warning(f"Session registry {self.path} missing; trying backup")
            raw = self._read_backup(backup)
            needs_rewrite = bool(raw)

        dropped = 0
        for user_id, value in raw.items():
            try:
                session_id = parse_session_id(value)
            except InvalidSessionId as e:
                dropped += 1
                logger.warning(f"Dropping invalid session for {user_id}: {e}")
                continue
            self._sessions[str(user_id)] = Session(user_id=str(user_id), session_id=session_id)

        if dropped:
            logger.info(f"Removed {dropped} invalid session(s) from registry")
            needs_rewrite = True
        if needs_rewrite:
            self._save()
        logger.info(f"Loaded {len(self._sessions)} session(s) from {self.path}")

    def _write_registry(self, payload: str) -> None:
        path = self.path
        backup_path = self._backup_path(path)
        tmp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(path.parent),
                prefix=f"{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())

            # The live file is never absent: copy it aside, then swap the new one in.
            if path.exists():
                shutil.copy2(path, backup_path)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write session registry {path}: {e}") from e

    def _save(self) -> None:
        with self._lock:
            registry = {user_id: s.session_id for user_id, s in self._sessions.items()}
            payload = json.dumps(registry, indent=2, ensure_ascii=False) + "\n"
            try:
                self._write_registry(payload)
            except PersistenceError as e:
                logger.error(f"{e}; keeping in-memory sessions")

    def get(self, user_id: str) -> str | None:
        """Return the user's thread id, or None if there is no valid session."""
        session = self._sessions.get(str(user_id))
        return session.session_id if session else None

    def get_session(self, user_id: str) -> Session | None:
        return self._sessions.get(str(user_id))

    def set(self, user_id: str, session_id: Any) -> str:
        """
        Bind a user to a thread and persist the registry.

        Raises:
            InvalidSessionId: if ``session_id`` is malformed. The registry is
                left unchanged.
        """
        canonical = parse_session_id(session_id)
        key = str(user_id)
        with self._lock:
            existing = self._sessions.get(key)
            if existing and existing.session_id == canonical:
                existing.last_used_at = datetime.now()
            else:
                self._sessions[key] = Session(user_id=key, session_id=canonical)
            self._save()
        logger.debug(f"Session set for {key}: {canonical}")
        return canonical

    def remove(self, user_id: str) -> None:
        """Forget a user's thread. No-op if there is none."""
        key = str(user_id)
        with self._lock:
            if self._sessions.pop(key, None) is None:
                return
            self._save()
        logger.info(f"Session removed for {key}")

    def touch(self, user_id: str) -> None:
        session = self._sessions.get(str(user_id))
        if session:
            session.last_used_at = datetime.now()

    def is_first_interaction(self, user_id: str) -> bool:
        """True when the user has no valid session yet."""
        return self.get(user_id) is None

    def list_sessions(self) -> list[dict[str, Any]]:
        rows = [s.to_dict() for s in self._sessions.values()]
        return sorted(rows, key=lambda x: x["last_used_at"], reverse=True)

    def reset_all(self) -> int:
        """Remove every session. Returns how many were removed."""
        with self._lock:
            count = len(self._sessions)
            if count:
                self._sessions.clear()
                self._save()
        return count

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return str(user_id) in self._sessions
