"""Chat session record and per-session auto-response settings."""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SessionStatus(Enum):
    """Lifecycle states of a chat session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    PAIRING = "pairing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    @property
    def is_live(self) -> bool:
        return self in (SessionStatus.CONNECTING, SessionStatus.PAIRING, SessionStatus.CONNECTED)


@dataclass(frozen=True)
class Session:
    """A durable, user-named binding to one external chat identity.

    Attributes:
        id: Opaque immutable identifier.
        owner_id: Owner derived from the caller's API key.
        name: Human label, unique per owner.
        phone_number: Optional number; selects the pairing-code flow.
        phone_verified: True once the transport reported the number.
        status: Current lifecycle state.
        created_at: Creation time.
        updated_at: Time of the last mutation.
        last_activity: Time of the last connection or message activity.
    """

    id: str
    owner_id: str
    name: str
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    phone_number: Optional[str] = None
    phone_verified: bool = False
    last_activity: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id cannot be empty")
        if not self.owner_id:
            raise ValueError("owner_id cannot be empty")
        if not self.name:
            raise ValueError("name cannot be empty")

    def with_status(self, status: SessionStatus) -> "Session":
        now = datetime.now(timezone.utc)
        return replace(self, status=status, updated_at=now, last_activity=now)

    def with_phone_number(self, phone_number: str) -> "Session":
        return replace(
            self,
            phone_number=phone_number,
            phone_verified=True,
            updated_at=datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class AutoResponseSettings:
    """Per-session auto-response configuration.

    ``trigger_word`` is the default trigger evaluated only when no agent
    matched; ``prompt`` is used with it.
    """

    enabled: bool = True
    trigger_word: Optional[str] = None
    prompt: str = ""
