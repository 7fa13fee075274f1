"""Session lifecycle, credential and messaging endpoints."""
import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status

from chat_gateway.server.auth import OwnerDependency
from chat_gateway.server.models.common import success_envelope
from chat_gateway.server.models.requests import CreateSessionRequest, SendMessageRequest
from chat_gateway.server.models.responses import (
    ConnectResponse,
    CredentialResponse,
    MessageLogResponse,
    SentMessageResponse,
    SessionResponse,
)
from chat_gateway.sessions.errors import AlreadyConnectingError, GatewayError
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor
from chat_gateway.state.models.message import MessageDirection

logger = logging.getLogger(__name__)


def create_sessions_router(
    registry: SessionRegistry,
    supervisor: ConnectionSupervisor,
    queue: ConnectQueue,
    history: MessageHistory,
    require_owner: OwnerDependency,
) -> APIRouter:
    """Create sessions router with injected dependencies."""
    router = APIRouter(prefix="/sessions", tags=["sessions"])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_session(
        body: CreateSessionRequest, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        session = await registry.create(owner_id, body.name, body.phone_number)
        return success_envelope(SessionResponse.from_session(session))

    @router.get("")
    async def list_sessions(owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        return success_envelope(
            [SessionResponse.from_session(s) for s in registry.list_by_owner(owner_id)]
        )

    @router.get("/{session_id}/status")
    async def session_status(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        return success_envelope(SessionResponse.from_session(registry.get_owned(session_id, owner_id)))

    @router.post("/{session_id}/connect")
    async def connect_session(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        """Queue a connect and wait for its QR code or pairing code.

        Handshakes are serialised, so this may wait behind other sessions.
        """
        registry.get_owned(session_id, owner_id)
        if session_id in supervisor.active_session_ids():
            raise AlreadyConnectingError(f"Session {session_id} is already connecting or connected")
        future = queue.enqueue(session_id)
        try:
            result = await asyncio.shield(future)
        except asyncio.CancelledError:
            if future.cancelled():
                raise GatewayError("Connect request was cancelled")
            raise
        return success_envelope(ConnectResponse.from_result(result))

    @router.post("/{session_id}/disconnect")
    async def disconnect_session(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        await supervisor.disconnect(session_id)
        return success_envelope(SessionResponse.from_session(registry.get(session_id)))

    @router.delete("/{session_id}")
    async def delete_session(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        await registry.delete(session_id)
        return success_envelope({"id": session_id, "deleted": True})

    @router.get("/{session_id}/qr")
    async def get_qr(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        return success_envelope(CredentialResponse.from_credential(supervisor.get_qr(session_id)))

    @router.get("/{session_id}/pairing-code")
    async def get_pairing_code(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        return success_envelope(
            CredentialResponse.from_credential(supervisor.get_pairing_code(session_id))
        )

    @router.post("/{session_id}/send-message")
    async def send_message(
        session_id: str, body: SendMessageRequest, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        sent = await supervisor.send_message(session_id, body.to, body.type, body.content)
        logger.info("Message %s sent from session %s", sent.message_id, session_id)
        return success_envelope(SentMessageResponse.from_sent(sent))

    @router.get("/{session_id}/messages")
    async def list_messages(
        session_id: str,
        limit: int = Query(default=50, ge=1, le=500),
        direction: Optional[MessageDirection] = Query(default=None),
        owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        entries = await history.list(session_id, limit=limit, direction=direction)
        return success_envelope([MessageLogResponse.from_entry(e) for e in entries])

    return router
