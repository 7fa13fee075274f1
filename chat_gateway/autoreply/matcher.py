"""Select the agent that should answer an inbound message."""
import string
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from chat_gateway.state.models.agent import Agent, Trigger, TriggerType

MIN_REVERSE_MATCH_LENGTH = 3

_PUNCTUATION = string.punctuation + "¿¡«»“”‘’…"


class MatchSource(Enum):
    TRIGGER = "trigger"
    QUESTION = "question"
    NAME = "name"
    DEFAULT_TRIGGER = "default_trigger"
    FIRST_AGENT = "first_agent"


@dataclass(frozen=True)
class MatchResult:
    """The agent (if any) and prompt chosen for a message."""
    prompt: str
    source: MatchSource
    agent: Optional[Agent] = None
    keyword: Optional[str] = None


def tokenize(text: str) -> list[str]:
    """Lowercase whitespace tokens with surrounding punctuation stripped."""
    tokens = []
    for raw in text.lower().split():
        token = raw.strip(_PUNCTUATION)
        if token:
            tokens.append(token)
    return tokens


def trigger_matches(trigger: Trigger, token: str) -> bool:
    keyword = trigger.keyword.lower()
    if trigger.type is TriggerType.EXACT:
        return token == keyword
    if keyword in token:
        return True
    return len(token) >= MIN_REVERSE_MATCH_LENGTH and token in keyword


def match(
    text: str,
    agents: Sequence[Agent],
    default_trigger: Optional[str] = None,
    default_prompt: str = "",
    fallback_to_first_agent: bool = False,
) -> Optional[MatchResult]:
    """Pick at most one agent for ``text``.

    Rules, first hit wins: trigger keywords token by token, then Q&A
    questions contained in the text, then agent names contained in the
    text, then the default trigger word. Inactive agents never match.
    """
    active = [a for a in agents if a.is_active]
    lowered = text.lower()

    for token in tokenize(text):
        for agent in active:
            for trigger in agent.triggers:
                if trigger_matches(trigger, token):
                    return MatchResult(
                        prompt=agent.prompt,
                        source=MatchSource.TRIGGER,
                        agent=agent,
                        keyword=trigger.keyword,
                    )

    for agent in active:
        for qa in agent.qa_pairs:
            question = qa.question.strip().lower()
            if question and question in lowered:
                return MatchResult(prompt=agent.prompt, source=MatchSource.QUESTION, agent=agent)

    for agent in active:
        name = agent.name.strip().lower()
        if name and name in lowered:
            return MatchResult(prompt=agent.prompt, source=MatchSource.NAME, agent=agent)

    trigger_word = (default_trigger or "").strip().lower()
    if trigger_word and trigger_word in lowered:
        return MatchResult(
            prompt=default_prompt,
            source=MatchSource.DEFAULT_TRIGGER,
            keyword=default_trigger,
        )

    if fallback_to_first_agent and active:
        return MatchResult(prompt=active[0].prompt, source=MatchSource.FIRST_AGENT, agent=active[0])
    return None
