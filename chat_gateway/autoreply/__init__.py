"""Trigger matching and automatic replies."""
from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.autoreply.generator import GeminiTextGenerator, TextGenerator, compose_prompt
from chat_gateway.autoreply.matcher import MatchResult, MatchSource, match, tokenize
from chat_gateway.autoreply.responder import FALLBACK_TEXT, AutoReply, AutoResponder, extract_text
__all__ = ["AgentDirectory", "GeminiTextGenerator", "TextGenerator", "compose_prompt",
           "MatchResult", "MatchSource", "match", "tokenize",
           "FALLBACK_TEXT", "AutoReply", "AutoResponder", "extract_text"]
