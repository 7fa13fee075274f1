"""Session lifecycle: registry, connect queue and connection supervisor."""
from chat_gateway.sessions.classifier import DisconnectClass, DisconnectReason, classify, describe, is_clean_logout
from chat_gateway.sessions.credentials import CredentialKind, CredentialStore, PendingCredential
from chat_gateway.sessions.fingerprint import fingerprint_for
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor, ConnectResult, SentMessage
__all__ = ["DisconnectClass", "DisconnectReason", "classify", "describe", "is_clean_logout",
           "CredentialKind", "CredentialStore", "PendingCredential", "fingerprint_for",
           "MessageHistory", "ConnectQueue", "SessionRegistry",
           "ConnectionSupervisor", "ConnectResult", "SentMessage"]
