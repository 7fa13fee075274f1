"""Database connection and lifecycle management."""
import aiosqlite
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator


class DatabaseError(Exception):
    pass


class DatabaseNotInitializedError(DatabaseError):
    pass


class DatabaseManager:
    """Manages SQLite database connections and schema initialization."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._initialized = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create tables and indexes."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.connection() as conn:
            await conn.executescript(_SCHEMA)
            await conn.commit()
        self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield an async database connection."""
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """Mark the manager as closed."""
        self._initialized = False


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_versions (version TEXT PRIMARY KEY, applied_at TEXT NOT NULL);
CREATE TABLE IF NOT EXISTS sessions (
    id             TEXT PRIMARY KEY,
    owner_id       TEXT NOT NULL,
    name           TEXT NOT NULL CHECK(length(name) <= 64),
    phone_number   TEXT,
    phone_verified INTEGER NOT NULL DEFAULT 0,
    status         TEXT NOT NULL DEFAULT 'idle',
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    last_activity  TEXT,
    UNIQUE (owner_id, name),
    CHECK(status IN ('idle', 'connecting', 'pairing', 'connected', 'disconnected', 'error'))
);
CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_id, created_at);
CREATE TABLE IF NOT EXISTS auto_response_settings (
    session_id   TEXT PRIMARY KEY,
    enabled      INTEGER NOT NULL DEFAULT 1,
    trigger_word TEXT,
    prompt       TEXT NOT NULL DEFAULT '',
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS agents (
    id           TEXT PRIMARY KEY,
    owner_id     TEXT,
    name         TEXT NOT NULL,
    prompt       TEXT NOT NULL,
    is_active    INTEGER NOT NULL DEFAULT 1,
    triggers     TEXT NOT NULL DEFAULT '[]',
    qa_pairs     TEXT NOT NULL DEFAULT '[]',
    usage_count  INTEGER NOT NULL DEFAULT 0,
    last_used_at TEXT,
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_agents_owner ON agents(owner_id, is_active);
CREATE TABLE IF NOT EXISTS message_log (
    message_id   TEXT NOT NULL,
    session_id   TEXT NOT NULL,
    direction    TEXT NOT NULL,
    peer_id      TEXT NOT NULL,
    message_type TEXT NOT NULL,
    text         TEXT NOT NULL DEFAULT '',
    agent_id     TEXT,
    created_at   TEXT NOT NULL,
    PRIMARY KEY (session_id, message_id, direction),
    CHECK(direction IN ('inbound', 'outbound')),
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_message_log_session ON message_log(session_id, created_at);
INSERT OR IGNORE INTO schema_versions (version, applied_at) VALUES ('1.0.0', datetime('now'));
"""
