"""State management module."""
from chat_gateway.state.auth_store import AuthStateError, AuthStateStore
from chat_gateway.state.cache import MemoryCache
from chat_gateway.state.database import DatabaseError, DatabaseManager, DatabaseNotInitializedError
from chat_gateway.state.models import (
    Agent, AutoResponseSettings, MessageDirection, MessageLogEntry, QAPair, Session, SessionStatus,
    Trigger, TriggerType,
)
from chat_gateway.state.repositories import AgentRepository, MessageLogRepository, SessionRepository
__all__ = ["AuthStateError", "AuthStateStore", "MemoryCache",
           "DatabaseError", "DatabaseManager", "DatabaseNotInitializedError",
           "Agent", "AutoResponseSettings", "MessageDirection", "MessageLogEntry", "QAPair",
           "Session", "SessionStatus", "Trigger", "TriggerType",
           "AgentRepository", "MessageLogRepository", "SessionRepository"]
