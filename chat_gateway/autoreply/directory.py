"""Agent directory backed by the database."""
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from chat_gateway.sessions.errors import AgentNotFoundError, DependencyError
from chat_gateway.state.database import DatabaseManager
from chat_gateway.state.models.agent import Agent, QAPair, Trigger
from chat_gateway.state.repositories.agents import AgentRepository

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "prompt", "is_active", "triggers", "qa_pairs")


class AgentDirectory:
    """CRUD over agents, scoped by owner.

    Agents without an owner are shared: every owner sees them but only
    an unscoped caller may change them.
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def create(
        self,
        name: str,
        prompt: str,
        owner_id: Optional[str] = None,
        triggers: tuple[Trigger, ...] = (),
        qa_pairs: tuple[QAPair, ...] = (),
        is_active: bool = True,
    ) -> Agent:
        agent = Agent(
            id=str(uuid.uuid4()),
            name=name,
            prompt=prompt,
            owner_id=owner_id,
            triggers=triggers,
            qa_pairs=qa_pairs,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
        )
        async with self._db.connection() as conn:
            await AgentRepository(conn).insert(agent)
        logger.info("Created agent %s (%s)", agent.id, name)
        return agent

    async def get(self, agent_id: str, owner_id: Optional[str] = None) -> Agent:
        async with self._db.connection() as conn:
            agent = await AgentRepository(conn).get(agent_id)
        if agent is None or (owner_id is not None and agent.owner_id not in (None, owner_id)):
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    async def list_for_owner(self, owner_id: Optional[str], active_only: bool = False) -> list[Agent]:
        async with self._db.connection() as conn:
            return await AgentRepository(conn).list_visible(owner_id, active_only=active_only)

    async def active_for_owner(self, owner_id: Optional[str]) -> list[Agent]:
        """Snapshot of the agents the matcher may pick for ``owner_id``."""
        try:
            return await self.list_for_owner(owner_id, active_only=True)
        except Exception as e:
            raise DependencyError(f"Agent directory unavailable: {e}") from e

    async def update(self, agent_id: str, owner_id: Optional[str], **changes: Any) -> Agent:
        agent = await self._owned(agent_id, owner_id)
        updates = {k: v for k, v in changes.items() if k in _EDITABLE and v is not None}
        updated = replace(agent, **updates)
        async with self._db.connection() as conn:
            if not await AgentRepository(conn).update(updated):
                raise AgentNotFoundError(f"Agent {agent_id} not found")
        return updated

    async def delete(self, agent_id: str, owner_id: Optional[str]) -> None:
        await self._owned(agent_id, owner_id)
        async with self._db.connection() as conn:
            await AgentRepository(conn).delete(agent_id)
        logger.info("Deleted agent %s", agent_id)

    async def record_usage(self, agent_id: str) -> None:
        async with self._db.connection() as conn:
            await AgentRepository(conn).increment_usage(agent_id)

    async def _owned(self, agent_id: str, owner_id: Optional[str]) -> Agent:
        agent = await self.get(agent_id, owner_id)
        if owner_id is not None and agent.owner_id != owner_id:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent
