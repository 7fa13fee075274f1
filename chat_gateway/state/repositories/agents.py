"""Agent directory repository."""
import json
import aiosqlite
from datetime import datetime, timezone
from typing import Optional

from chat_gateway.state.models.agent import Agent, QAPair, Trigger


class AgentRepository:
    """Persists auto-reply agents.

    Triggers and Q&A pairs are stored as JSON arrays. Agents with a NULL
    owner are shared by every owner.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert(self, agent: Agent) -> None:
        created_at = agent.created_at or datetime.now(timezone.utc)
        await self._conn.execute(
            "INSERT INTO agents "
            "(id, owner_id, name, prompt, is_active, triggers, qa_pairs, "
            "usage_count, last_used_at, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                agent.id,
                agent.owner_id,
                agent.name,
                agent.prompt,
                int(agent.is_active),
                _dump_triggers(agent.triggers),
                _dump_qa_pairs(agent.qa_pairs),
                agent.usage_count,
                agent.last_used_at.isoformat() if agent.last_used_at else None,
                created_at.isoformat(),
            ),
        )
        await self._conn.commit()

    async def update(self, agent: Agent) -> bool:
        """Write back the editable fields of an agent.

        Returns:
            True if the agent exists.
        """
        cursor = await self._conn.execute(
            "UPDATE agents SET name = ?, prompt = ?, is_active = ?, "
            "triggers = ?, qa_pairs = ? WHERE id = ?",
            (
                agent.name,
                agent.prompt,
                int(agent.is_active),
                _dump_triggers(agent.triggers),
                _dump_qa_pairs(agent.qa_pairs),
                agent.id,
            ),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def get(self, agent_id: str) -> Optional[Agent]:
        cursor = await self._conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_agent(row)

    async def list_visible(self, owner_id: Optional[str], active_only: bool = False) -> list[Agent]:
        """List agents owned by ``owner_id`` plus shared agents, oldest first."""
        query = "SELECT * FROM agents WHERE (owner_id IS NULL OR owner_id = ?)"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at, id"
        cursor = await self._conn.execute(query, (owner_id,))
        return [self._row_to_agent(row) for row in await cursor.fetchall()]

    async def list_all(self) -> list[Agent]:
        cursor = await self._conn.execute("SELECT * FROM agents ORDER BY created_at, id")
        return [self._row_to_agent(row) for row in await cursor.fetchall()]

    async def delete(self, agent_id: str) -> bool:
        cursor = await self._conn.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
        await self._conn.commit()
        return cursor.rowcount > 0

    async def increment_usage(self, agent_id: str) -> None:
        await self._conn.execute(
            "UPDATE agents SET usage_count = usage_count + 1, last_used_at = ? WHERE id = ?",
            (datetime.now(timezone.utc).isoformat(), agent_id),
        )
        await self._conn.commit()

    @staticmethod
    def _row_to_agent(row: aiosqlite.Row) -> Agent:
        triggers = tuple(
            t for t in (Trigger.parse(raw) for raw in json.loads(row["triggers"] or "[]"))
            if t is not None
        )
        qa_pairs = tuple(
            QAPair(question=qa.get("question", ""), answer=qa.get("answer", ""))
            for qa in json.loads(row["qa_pairs"] or "[]")
            if isinstance(qa, dict)
        )
        return Agent(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            prompt=row["prompt"],
            is_active=bool(row["is_active"]),
            triggers=triggers,
            qa_pairs=qa_pairs,
            usage_count=row["usage_count"],
            last_used_at=(
                datetime.fromisoformat(row["last_used_at"]) if row["last_used_at"] else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


def _dump_triggers(triggers: tuple[Trigger, ...]) -> str:
    return json.dumps([t.to_dict() for t in triggers])


def _dump_qa_pairs(qa_pairs: tuple[QAPair, ...]) -> str:
    return json.dumps([{"question": qa.question, "answer": qa.answer} for qa in qa_pairs])
