"""Repositories."""
from chat_gateway.state.repositories.agents import AgentRepository
from chat_gateway.state.repositories.messages import MessageLogRepository
from chat_gateway.state.repositories.sessions import SessionRepository
__all__ = [
    "AgentRepository",
    "MessageLogRepository",
    "SessionRepository",
]
