"""Authoritative record of chat sessions."""
import asyncio
import logging
import sqlite3
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from chat_gateway.sessions.errors import ConflictError, LimitExceededError, NotFoundError
from chat_gateway.state.database import DatabaseManager
from chat_gateway.state.models.session import AutoResponseSettings, Session, SessionStatus
from chat_gateway.state.repositories.sessions import SessionRepository

logger = logging.getLogger(__name__)

TeardownHook = Callable[[str], Awaitable[None]]


class SessionRegistry:
    """In-memory view of every session, written through to the database.

    Status and phone-number mutations are reserved for the connection
    supervisor; the HTTP layer only creates, reads and deletes.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        max_sessions_per_owner: int = 5,
        default_auto_response: Optional[AutoResponseSettings] = None,
    ) -> None:
        self._db = db_manager
        self._max_per_owner = max_sessions_per_owner
        self._default_auto_response = default_auto_response or AutoResponseSettings()
        self._sessions: dict[str, Session] = {}
        self._create_lock = asyncio.Lock()
        self._teardown: Optional[TeardownHook] = None

    def bind_supervisor(self, teardown: TeardownHook) -> None:
        """Register the hook that tears down a live connection before delete."""
        self._teardown = teardown

    async def load(self) -> int:
        """Load all sessions, resetting live statuses left over from a previous run."""
        async with self._db.connection() as conn:
            repo = SessionRepository(conn)
            sessions = await repo.list_all()
            for session in sessions:
                if session.status.is_live:
                    session = session.with_status(SessionStatus.DISCONNECTED)
                    await repo.update(session)
                self._sessions[session.id] = session
        logger.info("Loaded %d sessions", len(self._sessions))
        return len(self._sessions)

    async def create(self, owner_id: str, name: str, phone_number: Optional[str] = None) -> Session:
        async with self._create_lock:
            owned = self.list_by_owner(owner_id)
            if len(owned) >= self._max_per_owner:
                raise LimitExceededError(
                    f"Session limit reached ({self._max_per_owner} per owner)",
                    details={"limit": self._max_per_owner},
                )
            if any(s.name == name for s in owned):
                raise ConflictError(f"Session '{name}' already exists")
            now = datetime.now(timezone.utc)
            session = Session(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                name=name,
                phone_number=phone_number or None,
                status=SessionStatus.IDLE,
                created_at=now,
                updated_at=now,
            )
            try:
                async with self._db.connection() as conn:
                    await SessionRepository(conn).insert(session)
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Session '{name}' already exists") from e
            self._sessions[session.id] = session
        logger.info("Created session %s (%s) for owner %s", session.id, name, owner_id)
        return session

    def find(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_owned(self, session_id: str, owner_id: str) -> Session:
        """Like ``get`` but hides sessions belonging to another owner."""
        session = self.get(session_id)
        if session.owner_id != owner_id:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def list_by_owner(self, owner_id: str) -> list[Session]:
        return sorted(
            (s for s in self._sessions.values() if s.owner_id == owner_id),
            key=lambda s: s.created_at,
        )

    def list_all(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SessionStatus}
        for session in self._sessions.values():
            counts[session.status.value] += 1
        return counts

    async def update_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self.get(session_id)
        if session.status != status:
            logger.info(
                "Session %s: %s -> %s", session_id, session.status.value, status.value
            )
        return await self._store(session.with_status(status))

    async def update_phone_number(self, session_id: str, phone_number: str) -> Session:
        session = self.get(session_id)
        if session.phone_verified and session.phone_number == phone_number:
            return session
        return await self._store(session.with_phone_number(phone_number))

    async def touch(self, session_id: str) -> Session:
        session = self.get(session_id)
        return await self._store(replace(session, last_activity=datetime.now(timezone.utc)))

    async def delete(self, session_id: str) -> None:
        self.get(session_id)
        if self._teardown is not None:
            await self._teardown(session_id)
        async with self._db.connection() as conn:
            await SessionRepository(conn).delete(session_id)
        self._sessions.pop(session_id, None)
        logger.info("Deleted session %s", session_id)

    async def get_auto_response(self, session_id: str) -> AutoResponseSettings:
        self.get(session_id)
        async with self._db.connection() as conn:
            settings = await SessionRepository(conn).get_auto_response(session_id)
        return settings or self._default_auto_response

    async def set_auto_response(self, session_id: str, settings: AutoResponseSettings) -> AutoResponseSettings:
        self.get(session_id)
        async with self._db.connection() as conn:
            await SessionRepository(conn).upsert_auto_response(session_id, settings)
        return settings

    async def _store(self, session: Session) -> Session:
        if session.id not in self._sessions:
            raise NotFoundError(f"Session {session.id} not found")
        self._sessions[session.id] = session
        async with self._db.connection() as conn:
            await SessionRepository(conn).update(session)
        return session
