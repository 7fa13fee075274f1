"""Message log entry model."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MessageDirection(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class MessageLogEntry:
    """A message sent or received through a session.

    Attributes:
        message_id: Transport message identifier.
        session_id: Session the message went through.
        direction: Inbound or outbound.
        peer_id: Remote chat identifier.
        message_type: Content kind (text, image, ...).
        text: Displayable text, empty when the message has none.
        created_at: When the message was recorded.
        agent_id: Agent that produced an auto-reply, if any.
    """

    message_id: str
    session_id: str
    direction: MessageDirection
    peer_id: str
    message_type: str
    text: str
    created_at: datetime
    agent_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.message_id:
            raise ValueError("message_id cannot be empty")
        if not self.session_id:
            raise ValueError("session_id cannot be empty")
