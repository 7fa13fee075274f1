"""Agent configuration entities used by the trigger matcher."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class TriggerType(Enum):
    CONTAINS = "contains"
    EXACT = "exact"


@dataclass(frozen=True)
class Trigger:
    keyword: str
    type: TriggerType = TriggerType.CONTAINS

    @classmethod
    def parse(cls, raw: Any) -> Optional["Trigger"]:
        """Build a trigger from a bare keyword or a ``{keyword, type}`` mapping.

        Returns None for entries with no usable keyword.
        """
        if isinstance(raw, str):
            keyword, kind = raw, TriggerType.CONTAINS.value
        elif isinstance(raw, dict):
            keyword, kind = raw.get("keyword") or "", raw.get("type") or TriggerType.CONTAINS.value
        else:
            return None
        keyword = keyword.strip()
        if not keyword:
            return None
        try:
            trigger_type = TriggerType(kind)
        except ValueError:
            trigger_type = TriggerType.CONTAINS
        return cls(keyword=keyword, type=trigger_type)

    def to_dict(self) -> dict[str, str]:
        return {"keyword": self.keyword, "type": self.type.value}


@dataclass(frozen=True)
class QAPair:
    question: str
    answer: str = ""


@dataclass(frozen=True)
class Agent:
    """An auto-reply agent: trigger keywords, Q&A pairs and a prompt.

    ``owner_id`` of None makes the agent visible to every owner.
    """

    id: str
    name: str
    prompt: str
    is_active: bool = True
    owner_id: Optional[str] = None
    triggers: tuple[Trigger, ...] = field(default_factory=tuple)
    qa_pairs: tuple[QAPair, ...] = field(default_factory=tuple)
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
