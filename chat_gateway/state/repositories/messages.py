"""Message log repository."""
import aiosqlite
from datetime import datetime
from typing import Optional

from chat_gateway.state.models.message import MessageDirection, MessageLogEntry


class MessageLogRepository:
    """Records inbound and outbound messages per session.

    Re-recording the same (session, message, direction) is ignored so that
    transport redeliveries do not duplicate history.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def record(self, entry: MessageLogEntry) -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO message_log "
            "(message_id, session_id, direction, peer_id, message_type, text, agent_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.message_id,
                entry.session_id,
                entry.direction.value,
                entry.peer_id,
                entry.message_type,
                entry.text,
                entry.agent_id,
                entry.created_at.isoformat(),
            ),
        )
        await self._conn.commit()

    async def list_by_session(
        self,
        session_id: str,
        limit: int = 50,
        direction: Optional[MessageDirection] = None,
    ) -> list[MessageLogEntry]:
        """List the most recent messages for a session, newest first."""
        query = "SELECT * FROM message_log WHERE session_id = ?"
        params: list = [session_id]
        if direction is not None:
            query += " AND direction = ?"
            params.append(direction.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        cursor = await self._conn.execute(query, params)
        return [self._row_to_entry(row) for row in await cursor.fetchall()]

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> MessageLogEntry:
        return MessageLogEntry(
            message_id=row["message_id"],
            session_id=row["session_id"],
            direction=MessageDirection(row["direction"]),
            peer_id=row["peer_id"],
            message_type=row["message_type"],
            text=row["text"],
            agent_id=row["agent_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
