"""Shared fixtures: temp database, fake transport, wired session core."""
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.autoreply.generator import compose_prompt
from chat_gateway.autoreply.responder import AutoResponder
from chat_gateway.server.app import create_app
from chat_gateway.server.config import (
    ApiConfig, AutoResponseConfig, ConnectionConfig, GeneratorConfig, RateLimitConfig, ServerConfig,
)
from chat_gateway.sessions.credentials import CredentialStore
from chat_gateway.sessions.errors import TransportError
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor
from chat_gateway.state.auth_store import AuthStateStore
from chat_gateway.state.cache import MemoryCache
from chat_gateway.state.database import DatabaseManager
from chat_gateway.transport.base import (
    ConnectionState, ConnectionUpdate, EventListener, Fingerprint, TransportEvent,
    TransportHandle, TransportProvider,
)

API_KEY = "test-key"
OWNER_ID = "owner-1"
OTHER_KEY = "other-key"
OTHER_OWNER_ID = "owner-2"


class FakeHandle(TransportHandle):
    """In-memory transport handle; tests drive it with ``emit``."""

    def __init__(self, session_id: str, provider: "FakeTransportProvider") -> None:
        self.session_id = session_id
        self.provider = provider
        self.listeners: list[EventListener] = []
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.pairing_requests: list[str] = []
        self.logged_out = False
        self.ended = False
        self._phone_number: Optional[str] = None

    @property
    def phone_number(self) -> Optional[str]:
        return self._phone_number

    def set_phone_number(self, phone_number: str) -> None:
        self._phone_number = phone_number

    def subscribe(self, listener: EventListener) -> None:
        self.listeners.append(listener)

    def emit(self, event: TransportEvent) -> None:
        for listener in list(self.listeners):
            listener(event)

    async def request_pairing_code(self, phone_digits: str) -> str:
        self.pairing_requests.append(phone_digits)
        if self.provider.fail_pairing:
            raise TransportError("pairing rejected")
        return self.provider.pairing_code

    async def send_message(self, peer_id: str, content: dict[str, Any]) -> str:
        if self.provider.fail_send:
            raise TransportError("send rejected")
        self.sent.append((peer_id, content))
        return f"out-{len(self.sent)}"

    async def logout(self) -> None:
        if self.provider.logout_delay:
            await asyncio.sleep(self.provider.logout_delay)
        self.logged_out = True

    async def end(self) -> None:
        self.ended = True


class FakeTransportProvider(TransportProvider):
    """Records every open; optionally emits a QR or ``open`` right after."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.opened: list[tuple[str, dict[str, Any], Fingerprint]] = []
        self.open_times: list[float] = []
        self.auto_qr: Optional[str] = None
        self.auto_open = False
        self.fail_open = False
        self.open_error_code: Optional[int] = None
        self.fail_pairing = False
        self.fail_send = False
        self.pairing_code = "ABCD-1234"
        self.logout_delay = 0.0
        self.closed = False

    async def open(
        self,
        session_id: str,
        auth_state: dict[str, Any],
        fingerprint: Fingerprint,
    ) -> TransportHandle:
        self.opened.append((session_id, auth_state, fingerprint))
        self.open_times.append(asyncio.get_running_loop().time())
        if self.fail_open:
            raise TransportError("bridge unreachable", disconnect_code=self.open_error_code)
        handle = FakeHandle(session_id, self)
        self.handles.append(handle)
        loop = asyncio.get_running_loop()
        if self.auto_qr:
            loop.call_soon(handle.emit, ConnectionUpdate(qr=self.auto_qr))
        if self.auto_open:
            loop.call_soon(handle.emit, ConnectionUpdate(state=ConnectionState.OPEN))
        return handle

    def latest(self, session_id: str) -> FakeHandle:
        return [h for h in self.handles if h.session_id == session_id][-1]

    async def close(self) -> None:
        self.closed = True


class FakeGenerator:
    def __init__(self, reply: str = "generated reply", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str, user_text: str) -> str:
        self.prompts.append(compose_prompt(prompt, user_text))
        if self.error is not None:
            raise self.error
        return self.reply


@dataclass
class Core:
    db: DatabaseManager
    registry: SessionRegistry
    supervisor: ConnectionSupervisor
    queue: ConnectQueue
    provider: FakeTransportProvider
    credentials: CredentialStore
    auth_store: AuthStateStore
    history: MessageHistory


async def settle(rounds: int = 10) -> None:
    """Let queued callbacks and worker tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> DatabaseManager:
    db_manager = DatabaseManager(tmp_path / "test.db")
    await db_manager.initialize()
    return db_manager


@pytest.fixture
def provider() -> FakeTransportProvider:
    return FakeTransportProvider()


def build_core(
    db: DatabaseManager,
    provider: FakeTransportProvider,
    auth_dir: Path,
    credential_ttl: float = 60.0,
    connect_spacing: float = 0.0,
    eviction_cooldown: float = 0.0,
    single_connection: bool = False,
    max_reconnect_attempts: int = 5,
    reconnect_base_delay: float = 0.01,
    logout_timeout: float = 5.0,
) -> Core:
    registry = SessionRegistry(db, max_sessions_per_owner=5)
    history = MessageHistory(db)
    credentials = CredentialStore(MemoryCache(), ttl=credential_ttl)
    auth_store = AuthStateStore(auth_dir)
    supervisor = ConnectionSupervisor(
        registry=registry,
        provider=provider,
        auth_store=auth_store,
        credentials=credentials,
        history=history,
        max_reconnect_attempts=max_reconnect_attempts,
        reconnect_base_delay=reconnect_base_delay,
        reconnect_max_delay=1.0,
        logout_timeout=logout_timeout,
    )
    queue = ConnectQueue(
        supervisor,
        registry,
        connect_spacing=connect_spacing,
        eviction_cooldown=eviction_cooldown,
        single_connection=single_connection,
    )
    supervisor.bind_queue(queue.enqueue)
    registry.bind_supervisor(supervisor.teardown)
    return Core(db, registry, supervisor, queue, provider, credentials, auth_store, history)


@pytest_asyncio.fixture
async def core(db: DatabaseManager, provider: FakeTransportProvider, tmp_path: Path):
    c = build_core(db, provider, tmp_path / "auth")
    await c.registry.load()
    c.queue.start()
    yield c
    await c.queue.stop()
    await c.supervisor.shutdown()


@pytest_asyncio.fixture
async def responder_setup(core: Core):
    directory = AgentDirectory(core.db)
    generator = FakeGenerator()
    responder = AutoResponder(
        registry=core.registry,
        directory=directory,
        history=core.history,
        generator=generator,
        generator_timeout=1.0,
    )
    core.supervisor.set_responder(responder)
    return responder, directory, generator


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(
        api=ApiConfig(keys=((API_KEY, OWNER_ID), (OTHER_KEY, OTHER_OWNER_ID))),
        rate_limit=RateLimitConfig(requests_per_minute=1000),
        connection=ConnectionConfig(
            max_sessions_per_owner=3,
            connect_spacing=0.0,
            eviction_cooldown=0.0,
            reconnect_base_delay=0.01,
        ),
        auto_response=AutoResponseConfig(trigger_word="setter", prompt="Default prompt"),
        generator=GeneratorConfig(api_key=""),
        db_path=tmp_path / "api.db",
        auth_state_dir=tmp_path / "auth",
    )


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator(reply="api reply")


@pytest.fixture
def client(server_config: ServerConfig, provider: FakeTransportProvider, fake_generator: FakeGenerator):
    app = create_app(server_config, provider=provider, generator=fake_generator)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"X-API-Key": OTHER_KEY}
