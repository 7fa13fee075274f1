"""Agent directory endpoints."""
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, status

from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.server.auth import OwnerDependency
from chat_gateway.server.models.common import success_envelope
from chat_gateway.server.models.requests import (
    CreateAgentRequest,
    QAPairModel,
    TriggerModel,
    UpdateAgentRequest,
)
from chat_gateway.server.models.responses import AgentResponse
from chat_gateway.state.models.agent import QAPair, Trigger


def _triggers(items: Optional[list[Union[str, TriggerModel]]]) -> Optional[tuple[Trigger, ...]]:
    if items is None:
        return None
    parsed = (
        Trigger.parse(item if isinstance(item, str) else item.model_dump())
        for item in items
    )
    return tuple(t for t in parsed if t is not None)


def _qa_pairs(items: Optional[list[QAPairModel]]) -> Optional[tuple[QAPair, ...]]:
    if items is None:
        return None
    return tuple(QAPair(question=qa.question, answer=qa.answer) for qa in items)


def create_agents_router(directory: AgentDirectory, require_owner: OwnerDependency) -> APIRouter:
    """Create agents router with injected dependencies."""
    router = APIRouter(prefix="/agents", tags=["agents"])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_agent(body: CreateAgentRequest, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        agent = await directory.create(
            name=body.name,
            prompt=body.prompt,
            owner_id=None if body.shared else owner_id,
            triggers=_triggers(body.triggers),
            qa_pairs=_qa_pairs(body.qa_pairs),
            is_active=body.is_active,
        )
        return success_envelope(AgentResponse.from_agent(agent))

    @router.get("")
    async def list_agents(
        active_only: bool = False, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        agents = await directory.list_for_owner(owner_id, active_only=active_only)
        return success_envelope([AgentResponse.from_agent(a) for a in agents])

    @router.get("/{agent_id}")
    async def get_agent(agent_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        return success_envelope(AgentResponse.from_agent(await directory.get(agent_id, owner_id)))

    @router.patch("/{agent_id}")
    async def update_agent(
        agent_id: str, body: UpdateAgentRequest, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        agent = await directory.update(
            agent_id,
            owner_id,
            name=body.name,
            prompt=body.prompt,
            is_active=body.is_active,
            triggers=_triggers(body.triggers),
            qa_pairs=_qa_pairs(body.qa_pairs),
        )
        return success_envelope(AgentResponse.from_agent(agent))

    @router.delete("/{agent_id}")
    async def delete_agent(agent_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        await directory.delete(agent_id, owner_id)
        return success_envelope({"id": agent_id, "deleted": True})

    return router
