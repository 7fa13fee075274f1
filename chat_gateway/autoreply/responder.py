"""Automatic replies to inbound chat messages."""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.autoreply.generator import TextGenerator
from chat_gateway.autoreply.matcher import MatchResult, match
from chat_gateway.sessions.errors import DependencyError
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.state.models.message import MessageDirection
from chat_gateway.state.models.session import AutoResponseSettings
from chat_gateway.transport.base import InboundMessage, MessagesUpsert

logger = logging.getLogger(__name__)

FALLBACK_TEXT = (
    "Hi! I'm having a technical problem right now. "
    "Please try again in a few minutes."
)

ReplySender = Callable[[str, str], Awaitable[str]]

_CAPTIONED = ("imageMessage", "videoMessage", "documentMessage")


def extract_text(content: dict[str, Any]) -> str:
    """Displayable text of a message payload, empty when there is none."""
    if not content:
        return ""
    if content.get("conversation"):
        return str(content["conversation"])
    extended = content.get("extendedTextMessage") or {}
    if extended.get("text"):
        return str(extended["text"])
    for kind in _CAPTIONED:
        caption = (content.get(kind) or {}).get("caption")
        if caption:
            return str(caption)
    return ""


@dataclass(frozen=True)
class AutoReply:
    """Outcome of answering one message; ``match`` is None when agent lookup failed."""
    match: Optional[MatchResult]
    text: str
    fallback: bool = False
    message_id: Optional[str] = None


class AutoResponder:
    """Matches inbound text against the owner's agents and replies.

    Nothing raised here reaches the connection supervisor: generator and
    send failures turn into the fallback text, and failures of the
    fallback itself are only logged.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        directory: AgentDirectory,
        history: MessageHistory,
        generator: Optional[TextGenerator] = None,
        generator_timeout: float = 30.0,
        fallback_text: str = FALLBACK_TEXT,
        fallback_to_first_agent: bool = False,
    ) -> None:
        self._registry = registry
        self._directory = directory
        self._history = history
        self._generator = generator
        self._timeout = generator_timeout
        self._fallback_text = fallback_text
        self._fallback_to_first_agent = fallback_to_first_agent

    @property
    def can_generate(self) -> bool:
        return self._generator is not None

    async def handle_batch(self, session_id: str, batch: MessagesUpsert, reply: ReplySender) -> int:
        """Answer every live message in ``batch``; returns the number of replies sent."""
        if not batch.is_live:
            return 0
        sent = 0
        for message in batch.messages:
            try:
                outcome = await self.handle_message(session_id, message, reply)
            except Exception:
                logger.exception("Auto-response failed for message %s", message.id)
                continue
            if outcome is not None and outcome.message_id is not None:
                sent += 1
        return sent

    async def handle_message(
        self,
        session_id: str,
        message: InboundMessage,
        reply: ReplySender,
    ) -> Optional[AutoReply]:
        if message.from_me:
            return None
        text = extract_text(message.content)
        await self._record(
            session_id,
            message.id or uuid.uuid4().hex,
            MessageDirection.INBOUND,
            message.remote_jid,
            message.message_type,
            text,
        )
        if not text.strip():
            return None

        settings = await self._registry.get_auto_response(session_id)
        if not settings.enabled:
            return None
        session = self._registry.get(session_id)
        try:
            result = await self.select(text, settings, session.owner_id)
        except DependencyError as e:
            logger.warning("Agent lookup for message %s failed: %s", message.id, e)
            if self._generator is None:
                return None
            message_id = await self._send_fallback(session_id, message.remote_jid, reply)
            return AutoReply(match=None, text=self._fallback_text, fallback=True, message_id=message_id)
        if result is None:
            logger.debug("No agent matched message %s", message.id)
            return None
        if self._generator is None:
            logger.warning("Matched message %s but no text generator is configured", message.id)
            return None

        agent_id = result.agent.id if result.agent else None
        try:
            reply_text = await self.generate(result.prompt, text)
            message_id = await reply(message.remote_jid, reply_text)
        except Exception as e:
            logger.warning("Auto-reply to %s failed: %s", message.remote_jid, e)
            message_id = await self._send_fallback(session_id, message.remote_jid, reply)
            return AutoReply(match=result, text=self._fallback_text, fallback=True, message_id=message_id)

        logger.info(
            "Auto-replied to %s in session %s (%s)",
            message.remote_jid, session_id, result.source.value,
        )
        await self._record(
            session_id, message_id, MessageDirection.OUTBOUND,
            message.remote_jid, "text", reply_text, agent_id,
        )
        if agent_id is not None:
            try:
                await self._directory.record_usage(agent_id)
            except Exception as e:
                logger.warning("Failed to record usage for agent %s: %s", agent_id, e)
        return AutoReply(match=result, text=reply_text, message_id=message_id)

    async def select(
        self,
        text: str,
        settings: AutoResponseSettings,
        owner_id: Optional[str],
    ) -> Optional[MatchResult]:
        agents = await self._directory.active_for_owner(owner_id)
        return match(
            text,
            agents,
            default_trigger=settings.trigger_word,
            default_prompt=settings.prompt,
            fallback_to_first_agent=self._fallback_to_first_agent,
        )

    async def generate(self, prompt: str, text: str) -> str:
        if self._generator is None:
            raise DependencyError("No text generator configured")
        try:
            return await asyncio.wait_for(
                self._generator.generate(prompt, text), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise DependencyError(f"Text generator timed out after {self._timeout}s") from e

    async def test(
        self,
        text: str,
        settings: AutoResponseSettings,
        owner_id: Optional[str] = None,
    ) -> Optional[AutoReply]:
        """Match and generate without sending anything."""
        result = await self.select(text, settings, owner_id)
        if result is None:
            return None
        return AutoReply(match=result, text=await self.generate(result.prompt, text))

    async def _send_fallback(self, session_id: str, peer_id: str, reply: ReplySender) -> Optional[str]:
        try:
            message_id = await reply(peer_id, self._fallback_text)
        except Exception as e:
            logger.error("Fallback reply to %s failed: %s", peer_id, e)
            return None
        await self._record(
            session_id, message_id, MessageDirection.OUTBOUND, peer_id, "text", self._fallback_text
        )
        return message_id

    async def _record(
        self,
        session_id: str,
        message_id: str,
        direction: MessageDirection,
        peer_id: str,
        message_type: str,
        text: str,
        agent_id: Optional[str] = None,
    ) -> None:
        try:
            await self._history.record(
                session_id, message_id, direction, peer_id, message_type, text, agent_id
            )
        except Exception as e:
            logger.warning("Failed to record %s message %s: %s", direction.value, message_id, e)
