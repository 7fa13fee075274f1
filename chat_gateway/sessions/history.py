"""Per-session message history."""
import logging
from datetime import datetime, timezone
from typing import Optional

from chat_gateway.state.database import DatabaseManager
from chat_gateway.state.models.message import MessageDirection, MessageLogEntry
from chat_gateway.state.repositories.messages import MessageLogRepository

logger = logging.getLogger(__name__)


class MessageHistory:
    """Records messages that pass through a session."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def record(
        self,
        session_id: str,
        message_id: str,
        direction: MessageDirection,
        peer_id: str,
        message_type: str,
        text: str,
        agent_id: Optional[str] = None,
    ) -> MessageLogEntry:
        entry = MessageLogEntry(
            message_id=message_id,
            session_id=session_id,
            direction=direction,
            peer_id=peer_id,
            message_type=message_type,
            text=text,
            agent_id=agent_id,
            created_at=datetime.now(timezone.utc),
        )
        async with self._db.connection() as conn:
            await MessageLogRepository(conn).record(entry)
        return entry

    async def list(
        self,
        session_id: str,
        limit: int = 50,
        direction: Optional[MessageDirection] = None,
    ) -> list[MessageLogEntry]:
        async with self._db.connection() as conn:
            return await MessageLogRepository(conn).list_by_session(session_id, limit, direction)
