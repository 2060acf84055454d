"""Local mirror of session data and the single-active-session guard."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from .config import settings
from .database import get_db_connection
from .exceptions import SessionNotFound
from .models import SessionPayload

logger = logging.getLogger(__name__)


class SessionStore:
    """Keyed store of session payloads written by the setup step."""

    def __init__(self, db_path: Optional[str] = None, timeout_minutes: Optional[int] = None):
        self.db_path = db_path
        self.timeout = timedelta(
            minutes=settings.SESSION_TIMEOUT_MINUTES if timeout_minutes is None else timeout_minutes
        )

    def save(self, session_id: str, payload: Union[SessionPayload, Dict[str, Any]]) -> SessionPayload:
        if not isinstance(payload, SessionPayload):
            payload = SessionPayload.model_validate(payload)
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO practice_sessions (session_id, payload, created_at) "
                "VALUES (?, ?, ?)",
                (session_id, payload.model_dump_json(), datetime.now().isoformat()),
            )
        conn.close()
        logger.info(f"Saved session {session_id} [{payload.mode.value}, {payload.total} questions]")
        return payload

    def load(self, session_id: str) -> SessionPayload:
        conn = get_db_connection(self.db_path)
        row = conn.execute(
            "SELECT payload, created_at FROM practice_sessions WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        conn.close()
        if row is None:
            raise SessionNotFound(session_id)

        if datetime.now() - datetime.fromisoformat(row["created_at"]) > self.timeout:
            logger.info(f"Session {session_id} expired")
            self.delete(session_id)
            raise SessionNotFound(session_id)
        return SessionPayload.model_validate(json.loads(row["payload"]))

    def delete(self, session_id: str):
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute("DELETE FROM practice_sessions WHERE session_id = ?", (session_id,))
        conn.close()

    def exists(self, session_id: str) -> bool:
        try:
            self.load(session_id)
        except SessionNotFound:
            return False
        return True


class SessionGuard(ABC):
    """Marks which session, if any, is currently active in this client."""

    @abstractmethod
    def acquire(self, session_id: str) -> bool:
        """Take the marker; False when another session holds it."""

    @abstractmethod
    def release(self, session_id: Optional[str] = None):
        """Clear the marker (only if held by ``session_id`` when given)."""

    @abstractmethod
    def holder(self) -> Optional[str]:
        pass

    def is_held(self, session_id: Optional[str] = None) -> bool:
        current = self.holder()
        if session_id is None:
            return current is not None
        return current == session_id


class SQLiteSessionGuard(SessionGuard):
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def acquire(self, session_id: str) -> bool:
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute(
                "INSERT OR IGNORE INTO session_guard (id, session_id) VALUES (1, ?)",
                (session_id,),
            )
            row = conn.execute("SELECT session_id FROM session_guard WHERE id = 1").fetchone()
        conn.close()
        acquired = row is not None and row["session_id"] == session_id
        if not acquired:
            logger.warning(f"Guard held by {row['session_id']}, refused {session_id}")
        return acquired

    def release(self, session_id: Optional[str] = None):
        conn = get_db_connection(self.db_path)
        with conn:
            if session_id is None:
                conn.execute("DELETE FROM session_guard")
            else:
                conn.execute("DELETE FROM session_guard WHERE session_id = ?", (session_id,))
        conn.close()

    def holder(self) -> Optional[str]:
        conn = get_db_connection(self.db_path)
        row = conn.execute("SELECT session_id FROM session_guard WHERE id = 1").fetchone()
        conn.close()
        return row["session_id"] if row else None
