"""Response models for API endpoints."""
from datetime import datetime
from typing import Literal, Optional

from chat_gateway.autoreply.responder import AutoReply
from chat_gateway.server.models.common import CamelModel
from chat_gateway.sessions.credentials import PendingCredential
from chat_gateway.sessions.supervisor import ConnectResult, SentMessage
from chat_gateway.state.models.agent import Agent
from chat_gateway.state.models.message import MessageLogEntry
from chat_gateway.state.models.session import AutoResponseSettings, Session


class SessionResponse(CamelModel):
    id: str
    name: str
    phone_number: Optional[str] = None
    phone_verified: bool = False
    status: str
    created_at: datetime
    updated_at: datetime
    last_activity: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            name=session.name,
            phone_number=session.phone_number,
            phone_verified=session.phone_verified,
            status=session.status.value,
            created_at=session.created_at,
            updated_at=session.updated_at,
            last_activity=session.last_activity,
        )


class ConnectResponse(CamelModel):
    session_id: str
    status: str
    pairing_code: Optional[str] = None
    qr_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    message: str

    @classmethod
    def from_result(cls, result: ConnectResult) -> "ConnectResponse":
        if result.pairing_code:
            message = "Enter the pairing code on your phone"
        elif result.qr:
            message = "QR pending"
        else:
            message = f"Session is {result.status.value}"
        return cls(
            session_id=result.session_id,
            status=result.status.value,
            pairing_code=result.pairing_code,
            qr_code=result.qr,
            expires_at=result.expires_at,
            message=message,
        )


class CredentialResponse(CamelModel):
    session_id: str
    kind: Literal["qr", "pairing"]
    qr_code: Optional[str] = None
    pairing_code: Optional[str] = None
    phone_number: Optional[str] = None
    expires_at: datetime

    @classmethod
    def from_credential(cls, credential: PendingCredential) -> "CredentialResponse":
        is_qr = credential.kind.value == "qr"
        return cls(
            session_id=credential.session_id,
            kind=credential.kind.value,
            qr_code=credential.payload if is_qr else None,
            pairing_code=None if is_qr else credential.payload,
            phone_number=credential.phone_number,
            expires_at=credential.expires_at,
        )


class SentMessageResponse(CamelModel):
    message_id: str
    to: str
    type: str
    status: Literal["sent"] = "sent"

    @classmethod
    def from_sent(cls, sent: SentMessage) -> "SentMessageResponse":
        return cls(message_id=sent.message_id, to=sent.peer_id, type=sent.message_type)


class MessageLogResponse(CamelModel):
    message_id: str
    direction: str
    peer_id: str
    message_type: str
    text: str
    agent_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: MessageLogEntry) -> "MessageLogResponse":
        return cls(
            message_id=entry.message_id,
            direction=entry.direction.value,
            peer_id=entry.peer_id,
            message_type=entry.message_type,
            text=entry.text,
            agent_id=entry.agent_id,
            created_at=entry.created_at,
        )


class AutoResponseSettingsResponse(CamelModel):
    enabled: bool
    trigger_word: Optional[str] = None
    prompt: str

    @classmethod
    def from_settings(cls, settings: AutoResponseSettings) -> "AutoResponseSettingsResponse":
        return cls(enabled=settings.enabled, trigger_word=settings.trigger_word, prompt=settings.prompt)


class AutoResponseTestResponse(CamelModel):
    matched: bool
    source: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    response: Optional[str] = None

    @classmethod
    def from_reply(cls, reply: Optional[AutoReply]) -> "AutoResponseTestResponse":
        if reply is None:
            return cls(matched=False)
        agent = reply.match.agent
        return cls(
            matched=True,
            source=reply.match.source.value,
            agent_id=agent.id if agent else None,
            agent_name=agent.name if agent else None,
            response=reply.text,
        )


class AgentResponse(CamelModel):
    id: str
    name: str
    prompt: str
    is_active: bool
    shared: bool
    triggers: list[dict[str, str]]
    qa_pairs: list[dict[str, str]]
    usage_count: int
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentResponse":
        return cls(
            id=agent.id,
            name=agent.name,
            prompt=agent.prompt,
            is_active=agent.is_active,
            shared=agent.owner_id is None,
            triggers=[t.to_dict() for t in agent.triggers],
            qa_pairs=[{"question": qa.question, "answer": qa.answer} for qa in agent.qa_pairs],
            usage_count=agent.usage_count,
            last_used_at=agent.last_used_at,
            created_at=agent.created_at,
        )


class HealthResponse(CamelModel):
    status: Literal["healthy", "degraded"]
    version: str
    timestamp: str
    sessions: dict[str, int]
    active_connections: int
    queued_connects: int
    connect_in_progress: bool
    pending_retries: int
    auto_response: bool
    message: Optional[str] = None


class ResetResponse(CamelModel):
    connections: int
    retries: int
    queued: int
