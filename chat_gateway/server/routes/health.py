"""GET /health endpoint handler."""
from typing import Any

from fastapi import APIRouter, status

from chat_gateway.autoreply.responder import AutoResponder
from chat_gateway.server.config import ServerConfig
from chat_gateway.server.models.common import success_envelope, timestamp_now
from chat_gateway.server.models.responses import HealthResponse
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor


def create_health_router(
    config: ServerConfig,
    registry: SessionRegistry,
    supervisor: ConnectionSupervisor,
    queue: ConnectQueue,
    responder: AutoResponder,
) -> APIRouter:
    """Create health router with injected dependencies."""
    router = APIRouter()

    @router.get("/health", status_code=status.HTTP_200_OK, tags=["status"])
    async def health_check() -> dict[str, Any]:
        """Liveness plus session and connection counts. Needs no API key."""
        health = HealthResponse(
            status="healthy",
            version=config.api.version,
            timestamp=timestamp_now(),
            sessions=registry.count_by_status(),
            active_connections=len(supervisor.active_session_ids()),
            queued_connects=queue.pending(),
            connect_in_progress=queue.in_flight is not None,
            pending_retries=supervisor.pending_retries(),
            auto_response=responder.can_generate,
        )
        if not queue.running:
            health = health.model_copy(
                update={"status": "degraded", "message": "Connect queue is not running"}
            )
        return success_envelope(health)

    return router
