"""Transport provider contract and the events a handle emits."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Connection-state change, optionally carrying a QR payload or close cause."""
    state: Optional[ConnectionState] = None
    qr: Optional[str] = None
    disconnect_code: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class CredentialsUpdate:
    creds: dict[str, Any]


@dataclass(frozen=True)
class InboundMessage:
    """One message from a messages-upsert batch.

    ``content`` is the raw message payload keyed by message kind
    (``conversation``, ``extendedTextMessage``, ``imageMessage``, ...).
    """
    id: str
    remote_jid: str
    from_me: bool = False
    push_name: Optional[str] = None
    content: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "InboundMessage":
        key = payload.get("key") or {}
        timestamp = payload.get("messageTimestamp")
        return cls(
            id=str(key.get("id") or ""),
            remote_jid=str(key.get("remoteJid") or ""),
            from_me=bool(key.get("fromMe", False)),
            push_name=payload.get("pushName"),
            content=payload.get("message") or {},
            timestamp=int(timestamp) if timestamp is not None else None,
        )

    @property
    def message_type(self) -> str:
        """First content key, e.g. ``conversation`` or ``imageMessage``."""
        for key in self.content:
            return key
        return "unknown"


@dataclass(frozen=True)
class MessagesUpsert:
    """A batch of messages; ``is_live`` is False for history sync."""
    messages: tuple[InboundMessage, ...]
    is_live: bool = True


TransportEvent = Union[ConnectionUpdate, CredentialsUpdate, MessagesUpsert]
EventListener = Callable[[TransportEvent], None]

Fingerprint = tuple[str, str, str]


class TransportHandle(ABC):
    """A live connection to the chat network for one session."""

    @abstractmethod
    def subscribe(self, listener: EventListener) -> None:
        """Register a listener; it is called synchronously for every event."""

    @property
    @abstractmethod
    def phone_number(self) -> Optional[str]:
        """Phone number of the linked account once the connection is open."""

    @abstractmethod
    async def request_pairing_code(self, phone_digits: str) -> str:
        """Request a pairing code for a digits-only phone number."""

    @abstractmethod
    async def send_message(self, peer_id: str, content: dict[str, Any]) -> str:
        """Send a message and return its transport message id."""

    @abstractmethod
    async def logout(self) -> None:
        """Unlink the device from the account."""

    @abstractmethod
    async def end(self) -> None:
        """Close the connection without logging out."""


class TransportProvider(ABC):
    """Opens transport handles."""

    @abstractmethod
    async def open(
        self,
        session_id: str,
        auth_state: dict[str, Any],
        fingerprint: Fingerprint,
    ) -> TransportHandle:
        """Open a handle restoring ``auth_state`` under a stable ``fingerprint``."""

    async def close(self) -> None:
        """Release provider-wide resources."""
