"""State models."""
from chat_gateway.state.models.agent import Agent, QAPair, Trigger, TriggerType
from chat_gateway.state.models.message import MessageDirection, MessageLogEntry
from chat_gateway.state.models.session import AutoResponseSettings, Session, SessionStatus
__all__ = [
    "Agent", "QAPair", "Trigger", "TriggerType",
    "MessageDirection", "MessageLogEntry",
    "AutoResponseSettings", "Session", "SessionStatus",
]
