"""POST /system/reset endpoint handler."""
import logging
from typing import Any

from fastapi import APIRouter, Depends

from chat_gateway.server.auth import OwnerDependency
from chat_gateway.server.models.common import success_envelope
from chat_gateway.server.models.responses import ResetResponse
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)


def create_system_router(
    supervisor: ConnectionSupervisor,
    queue: ConnectQueue,
    require_owner: OwnerDependency,
) -> APIRouter:
    """Create system router with injected dependencies."""
    router = APIRouter(prefix="/system", tags=["system"])

    @router.post("/reset")
    async def reset(owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        """Drop queued connects and force-terminate every connection."""
        queued = queue.clear()
        counts = await supervisor.reset()
        logger.warning("System reset requested by %s", owner_id)
        return success_envelope(
            ResetResponse(connections=counts["connections"], retries=counts["retries"], queued=queued)
        )

    return router
