"""Chat-network transport providers."""
from chat_gateway.transport.base import (
    ConnectionState, ConnectionUpdate, CredentialsUpdate, EventListener, Fingerprint,
    InboundMessage, MessagesUpsert, TransportEvent, TransportHandle, TransportProvider,
)
from chat_gateway.transport.bridge import BridgeTransportHandle, BridgeTransportProvider
__all__ = ["ConnectionState", "ConnectionUpdate", "CredentialsUpdate", "EventListener",
           "Fingerprint", "InboundMessage", "MessagesUpsert", "TransportEvent",
           "TransportHandle", "TransportProvider",
           "BridgeTransportHandle", "BridgeTransportProvider"]
