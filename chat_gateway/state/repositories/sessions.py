"""Chat session repository."""
import aiosqlite
from datetime import datetime
from typing import Optional

from chat_gateway.state.models.session import AutoResponseSettings, Session, SessionStatus


class SessionRepository:
    """Persists chat session records and their auto-response settings.

    The (owner_id, name) pair is unique; inserting a duplicate raises
    ``sqlite3.IntegrityError``.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert(self, session: Session) -> None:
        """Insert a new session record."""
        await self._conn.execute(
            "INSERT INTO sessions "
            "(id, owner_id, name, phone_number, phone_verified, status, "
            "created_at, updated_at, last_activity) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                session.id,
                session.owner_id,
                session.name,
                session.phone_number,
                int(session.phone_verified),
                session.status.value,
                session.created_at.isoformat(),
                session.updated_at.isoformat(),
                _iso(session.last_activity),
            ),
        )
        await self._conn.commit()

    async def update(self, session: Session) -> None:
        """Write back the mutable fields of a session."""
        await self._conn.execute(
            "UPDATE sessions SET phone_number = ?, phone_verified = ?, "
            "status = ?, updated_at = ?, last_activity = ? WHERE id = ?",
            (
                session.phone_number,
                int(session.phone_verified),
                session.status.value,
                session.updated_at.isoformat(),
                _iso(session.last_activity),
                session.id,
            ),
        )
        await self._conn.commit()

    async def get(self, session_id: str) -> Optional[Session]:
        """Look up a session by id.

        Returns:
            The Session if found, None otherwise.
        """
        cursor = await self._conn.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    async def list_by_owner(self, owner_id: str) -> list[Session]:
        cursor = await self._conn.execute(
            "SELECT * FROM sessions WHERE owner_id = ? ORDER BY created_at",
            (owner_id,),
        )
        return [self._row_to_session(row) for row in await cursor.fetchall()]

    async def list_all(self) -> list[Session]:
        cursor = await self._conn.execute("SELECT * FROM sessions ORDER BY created_at")
        return [self._row_to_session(row) for row in await cursor.fetchall()]

    async def delete(self, session_id: str) -> bool:
        """Remove a session.

        Returns:
            True if a session was deleted.
        """
        cursor = await self._conn.execute(
            "DELETE FROM sessions WHERE id = ?", (session_id,)
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def get_auto_response(self, session_id: str) -> Optional[AutoResponseSettings]:
        cursor = await self._conn.execute(
            "SELECT * FROM auto_response_settings WHERE session_id = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return AutoResponseSettings(
            enabled=bool(row["enabled"]),
            trigger_word=row["trigger_word"],
            prompt=row["prompt"],
        )

    async def upsert_auto_response(self, session_id: str, settings: AutoResponseSettings) -> None:
        await self._conn.execute(
            "INSERT OR REPLACE INTO auto_response_settings "
            "(session_id, enabled, trigger_word, prompt) VALUES (?, ?, ?, ?)",
            (session_id, int(settings.enabled), settings.trigger_word, settings.prompt),
        )
        await self._conn.commit()

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        """Convert a database row to a Session."""
        return Session(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            phone_number=row["phone_number"],
            phone_verified=bool(row["phone_verified"]),
            status=SessionStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            last_activity=(
                datetime.fromisoformat(row["last_activity"])
                if row["last_activity"] else None
            ),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
