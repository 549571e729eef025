"""
Session Persistence Layer.

Durable storage for wizard session state. Each browser session owns one
record whose ``data`` mapping holds the submissions the SubmissionStore
keeps for that user.

Records expire after the configured idle time; expired records are dropped
on load and by ``cleanup_expired_sessions``.
"""

import sqlite3
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
import logging

from config.settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "data" / "wizard_sessions.db"

# Session expiry (20 minutes of inactivity by default)
DEFAULT_SESSION_TTL_MINUTES = 20


@dataclass
class SessionRecord:
    """Persisted session record."""
    session_id: str
    created_at: str
    last_activity: str
    expires_at: str
    data: Dict[str, Any] = field(default_factory=dict)


class SessionPersistence:
    """
    SQLite-backed persistence for wizard sessions.

    One row per session in the ``wizard_sessions`` table; the session data
    is stored as JSON.
    """

    def __init__(self, db_path: Optional[Path] = None, ttl_minutes: int = DEFAULT_SESSION_TTL_MINUTES):
        """
        Initialize session persistence.

        Args:
            db_path: Path to SQLite database file.
            ttl_minutes: Session time-to-live in minutes.
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.ttl_minutes = ttl_minutes
        self._ensure_tables_exist()

    def _ensure_tables_exist(self):
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS wizard_sessions (
                    session_id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    last_activity TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    data_json TEXT NOT NULL DEFAULT '{}'
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_wizard_session_expires
                ON wizard_sessions(expires_at)
            """)
            conn.commit()

    # =========================================================================
    # SESSION STATE METHODS
    # =========================================================================

    def save_session(self, session_id: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Save or update a session and extend its expiry.

        Args:
            session_id: Unique session identifier
            data: Session data dictionary
        """
        now = datetime.utcnow()
        expires_at = now + timedelta(minutes=self.ttl_minutes)
        data_json = json.dumps(data or {}, default=str)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO wizard_sessions (
                    session_id, created_at, last_activity, expires_at, data_json
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    last_activity = excluded.last_activity,
                    expires_at = excluded.expires_at,
                    data_json = excluded.data_json
            """, (
                session_id,
                now.isoformat(),
                now.isoformat(),
                expires_at.isoformat(),
                data_json,
            ))
            conn.commit()

    def load_session(self, session_id: str) -> Optional[SessionRecord]:
        """
        Load a session by ID.

        Returns:
            SessionRecord or None if not found/expired
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT session_id, created_at, last_activity, expires_at, data_json
                FROM wizard_sessions
                WHERE session_id = ?
            """, (session_id,))
            row = cursor.fetchone()

        if not row:
            return None

        # Check if expired
        if datetime.utcnow() > datetime.fromisoformat(row[3]):
            logger.info(f"Session {session_id} expired at {row[3]}")
            self.delete_session(session_id)
            return None

        return SessionRecord(
            session_id=row[0],
            created_at=row[1],
            last_activity=row[2],
            expires_at=row[3],
            data=json.loads(row[4]) if row[4] else {},
        )

    def delete_session(self, session_id: str) -> bool:
        """Delete a session."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM wizard_sessions WHERE session_id = ?",
                (session_id,)
            )
            conn.commit()
            return cursor.rowcount > 0

    def cleanup_expired_sessions(self) -> int:
        """Remove all expired sessions."""
        now = datetime.utcnow().isoformat()

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM wizard_sessions WHERE expires_at < ?",
                (now,)
            )
            conn.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Removed {removed} expired wizard sessions")
        return removed


class InMemorySessionBackend:
    """Process-local stand-in for SessionPersistence (tests, single-process dev)."""

    def __init__(self, ttl_minutes: int = DEFAULT_SESSION_TTL_MINUTES):
        self.ttl_minutes = ttl_minutes
        self._records: Dict[str, SessionRecord] = {}

    def save_session(self, session_id: str, data: Optional[Dict[str, Any]] = None) -> None:
        now = datetime.utcnow()
        existing = self._records.get(session_id)
        self._records[session_id] = SessionRecord(
            session_id=session_id,
            created_at=existing.created_at if existing else now.isoformat(),
            last_activity=now.isoformat(),
            expires_at=(now + timedelta(minutes=self.ttl_minutes)).isoformat(),
            # Round-trip through JSON so callers never share mutable state
            data=json.loads(json.dumps(data or {}, default=str)),
        )

    def load_session(self, session_id: str) -> Optional[SessionRecord]:
        record = self._records.get(session_id)
        if record is None:
            return None
        if datetime.utcnow() > datetime.fromisoformat(record.expires_at):
            self.delete_session(session_id)
            return None
        return SessionRecord(
            session_id=record.session_id,
            created_at=record.created_at,
            last_activity=record.last_activity,
            expires_at=record.expires_at,
            data=json.loads(json.dumps(record.data)),
        )

    def delete_session(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    def cleanup_expired_sessions(self) -> int:
        now = datetime.utcnow()
        expired = [
            sid for sid, record in self._records.items()
            if now > datetime.fromisoformat(record.expires_at)
        ]
        for sid in expired:
            del self._records[sid]
        return len(expired)


# Global instance
_session_persistence: Optional[SessionPersistence] = None


def get_session_persistence() -> SessionPersistence:
    """Get the global session persistence instance, configured from settings."""
    global _session_persistence
    if _session_persistence is None:
        settings = get_settings()
        _session_persistence = SessionPersistence(
            db_path=Path(settings.session_db_path),
            ttl_minutes=settings.session_ttl_minutes,
        )
    return _session_persistence
