"""Server configuration."""
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

logger = logging.getLogger(__name__)

_RECOGNISED_BOOL_VALUES = frozenset(
    ("1", "true", "yes", "0", "false", "no")
)


@dataclass(frozen=True)
class ApiConfig:
    """API key to owner mapping.

    ``keys`` maps each accepted ``X-API-Key`` value to the owner id it
    authenticates as. When empty, any non-empty key is accepted and the
    owner id is derived from a digest of the key.
    """

    keys: tuple[tuple[str, str], ...] = ()
    title: str = "Chat Session Gateway"
    version: str = "0.1.0"

    def owner_for(self, api_key: str) -> Optional[str]:
        if not api_key:
            return None
        if not self.keys:
            return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
        return dict(self.keys).get(api_key)


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int = 120


@dataclass(frozen=True)
class ConnectionConfig:
    """Session lifecycle tuning.

    ``single_connection`` tears down every other connection before a new
    handshake; by default sessions connect concurrently.
    """

    max_sessions_per_owner: int = 5
    credential_ttl: float = 60.0
    connect_spacing: float = 5.0
    eviction_cooldown: float = 10.0
    single_connection: bool = False
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 60.0
    logout_timeout: float = 5.0


@dataclass(frozen=True)
class AutoResponseConfig:
    """Defaults for sessions that have no auto-response settings of their own."""

    enabled: bool = True
    trigger_word: Optional[str] = None
    prompt: str = "You are a helpful assistant. Answer briefly and politely."
    fallback_text: str = (
        "Hi! I'm having a technical problem right now. "
        "Please try again in a few minutes."
    )
    fallback_to_first_agent: bool = False


@dataclass(frozen=True)
class GeneratorConfig:
    """Gemini text generator. Disabled when ``api_key`` is empty."""

    api_key: str = ""
    model: str = "gemini-1.5-flash"
    timeout: float = 30.0


@dataclass(frozen=True)
class BridgeConfig:
    url: str = "ws://localhost:3001"
    token: str = ""
    request_timeout: float = 30.0


@dataclass(frozen=True)
class ServerConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    auto_response: AutoResponseConfig = field(default_factory=AutoResponseConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    db_path: Path = field(default_factory=lambda: Path("data/gateway.db"))
    auth_state_dir: Path = field(default_factory=lambda: Path("data/auth"))


def _parse_bool(value: str, default: bool) -> bool:
    """Parse a boolean environment variable with explicit default.

    Recognises ``true/1/yes`` and ``false/0/no`` (case-insensitive).
    Returns *default* when the value is empty or unset.
    Logs a warning and returns *default* for unrecognised values
    (e.g. typos like ``ture``).
    """
    if not value:
        return default
    normalised = value.lower()
    if normalised not in _RECOGNISED_BOOL_VALUES:
        logger.warning(
            "Unrecognised boolean value %r, using default %s. "
            "Expected one of: true/1/yes or false/0/no.",
            value,
            default,
        )
        return default
    return normalised in ("1", "true", "yes")


def _parse_api_keys(value: str) -> tuple[tuple[str, str], ...]:
    """Parse ``key:owner,key2:owner2``."""
    pairs = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, owner = item.partition(":")
        if not sep or not key.strip() or not owner.strip():
            raise ValueError(f"Invalid API_KEYS entry {item!r}, expected key:owner")
        pairs.append((key.strip(), owner.strip()))
    return tuple(pairs)


def load_config_from_env() -> ServerConfig:
    api_keys = _parse_api_keys(os.environ.get("API_KEYS", ""))
    if not api_keys:
        logger.warning(
            "API_KEYS not set -- any X-API-Key is accepted and mapped to a "
            "derived owner id. Set API_KEYS=key:owner,... to restrict access."
        )

    connection = ConnectionConfig(
        max_sessions_per_owner=int(os.environ.get("MAX_SESSIONS_PER_OWNER", "5")),
        credential_ttl=float(os.environ.get("CREDENTIAL_TTL", "60")),
        connect_spacing=float(os.environ.get("CONNECT_SPACING", "5")),
        eviction_cooldown=float(os.environ.get("EVICTION_COOLDOWN", "10")),
        single_connection=_parse_bool(os.environ.get("SINGLE_CONNECTION_MODE", ""), default=False),
        max_reconnect_attempts=int(os.environ.get("MAX_RECONNECT_ATTEMPTS", "5")),
        reconnect_base_delay=float(os.environ.get("RECONNECT_BASE_DELAY", "1")),
        reconnect_max_delay=float(os.environ.get("RECONNECT_MAX_DELAY", "60")),
        logout_timeout=float(os.environ.get("LOGOUT_TIMEOUT", "5")),
    )
    if connection.max_sessions_per_owner < 1:
        raise ValueError("MAX_SESSIONS_PER_OWNER must be at least 1")
    if connection.reconnect_max_delay < connection.reconnect_base_delay:
        raise ValueError("RECONNECT_MAX_DELAY must not be below RECONNECT_BASE_DELAY")

    defaults = AutoResponseConfig()
    auto_response = AutoResponseConfig(
        enabled=_parse_bool(os.environ.get("AUTO_RESPONSE_ENABLED", ""), default=True),
        trigger_word=os.environ.get("AUTO_RESPONSE_TRIGGER") or None,
        prompt=os.environ.get("AUTO_RESPONSE_PROMPT", defaults.prompt),
        fallback_text=os.environ.get("AUTO_RESPONSE_FALLBACK", defaults.fallback_text),
        fallback_to_first_agent=_parse_bool(
            os.environ.get("AUTO_RESPONSE_FIRST_AGENT_FALLBACK", ""), default=False
        ),
    )

    generator = GeneratorConfig(
        api_key=os.environ.get("GEMINI_API_KEY", ""),
        model=os.environ.get("GEMINI_MODEL", "gemini-1.5-flash"),
        timeout=float(os.environ.get("GENERATOR_TIMEOUT", "30")),
    )
    if auto_response.enabled and not generator.api_key:
        logger.warning(
            "Auto-response enabled with no GEMINI_API_KEY -- matched messages "
            "will not be answered."
        )

    bridge_url = os.environ.get("BRIDGE_URL", "ws://localhost:3001")
    if not bridge_url.startswith(("ws://", "wss://")):
        raise ValueError("BRIDGE_URL must be a ws:// or wss:// URL")

    return ServerConfig(
        api=ApiConfig(keys=api_keys),
        rate_limit=RateLimitConfig(
            requests_per_minute=int(os.environ.get("RATE_LIMIT_REQUESTS_PER_MINUTE", "120")),
        ),
        connection=connection,
        auto_response=auto_response,
        generator=generator,
        bridge=BridgeConfig(
            url=bridge_url,
            token=os.environ.get("BRIDGE_TOKEN", ""),
            request_timeout=float(os.environ.get("BRIDGE_REQUEST_TIMEOUT", "30")),
        ),
        db_path=Path(os.environ.get("DB_PATH", "data/gateway.db")),
        auth_state_dir=Path(os.environ.get("AUTH_STATE_DIR", "data/auth")),
    )
