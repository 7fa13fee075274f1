"""Tests for the serialised connect queue."""
import asyncio
from typing import Optional

import pytest

from chat_gateway.sessions.errors import AlreadyConnectingError, TransportError
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectResult
from chat_gateway.state.models.session import SessionStatus


class RecordingSupervisor:
    """Stands in for the connection supervisor and records call timing."""

    def __init__(self, duration: float = 0.02) -> None:
        self.duration = duration
        self.calls: list[tuple[str, float, float]] = []
        self.failures: dict[str, Exception] = {}
        self.active: list[str] = []
        self.teardowns: list[tuple[Optional[str], float]] = []
        self.retrying: set[str] = set()

    def active_session_ids(self) -> list[str]:
        return list(self.active)

    def retry_scheduled(self, session_id: str) -> bool:
        return session_id in self.retrying

    async def teardown_all(self, exclude: Optional[str] = None) -> int:
        loop = asyncio.get_running_loop()
        evicted = [s for s in self.active if s != exclude]
        self.active = [s for s in self.active if s == exclude]
        self.teardowns.append((exclude, loop.time()))
        return len(evicted)

    async def connect(self, session_id: str) -> ConnectResult:
        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.sleep(self.duration)
        self.calls.append((session_id, started, loop.time()))
        if session_id in self.failures:
            raise self.failures[session_id]
        self.active.append(session_id)
        return ConnectResult(session_id=session_id, status=SessionStatus.CONNECTING, qr="qr")


@pytest.fixture
def registry(db) -> SessionRegistry:
    return SessionRegistry(db)


async def run_queue(queue: ConnectQueue, *futures: asyncio.Future) -> list:
    try:
        return await asyncio.wait_for(
            asyncio.gather(*futures, return_exceptions=True), timeout=5
        )
    finally:
        await queue.stop()


class TestOrdering:
    async def test_fifo_without_overlap(self, registry) -> None:
        supervisor = RecordingSupervisor()
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        queue.start()

        await run_queue(queue, queue.enqueue("a"), queue.enqueue("b"), queue.enqueue("c"))

        assert [c[0] for c in supervisor.calls] == ["a", "b", "c"]
        for previous, current in zip(supervisor.calls, supervisor.calls[1:]):
            assert current[1] >= previous[2]

    async def test_spacing_between_handshakes(self, registry) -> None:
        supervisor = RecordingSupervisor(duration=0)
        queue = ConnectQueue(supervisor, registry, connect_spacing=0.1)
        queue.start()

        await run_queue(queue, queue.enqueue("a"), queue.enqueue("b"), queue.enqueue("c"))

        starts = [c[1] for c in supervisor.calls]
        for previous, current in zip(starts, starts[1:]):
            assert current - previous >= 0.09

    async def test_first_connect_not_delayed(self, registry) -> None:
        supervisor = RecordingSupervisor(duration=0)
        queue = ConnectQueue(supervisor, registry, connect_spacing=10)
        queue.start()
        loop = asyncio.get_running_loop()
        before = loop.time()

        await run_queue(queue, queue.enqueue("a"))

        assert supervisor.calls[0][1] - before < 1

    async def test_future_resolves_with_connect_result(self, registry) -> None:
        queue = ConnectQueue(RecordingSupervisor(), registry, connect_spacing=0)
        queue.start()
        results = await run_queue(queue, queue.enqueue("a"))
        assert results[0].session_id == "a"
        assert results[0].qr == "qr"


class TestEnqueue:
    async def test_duplicate_enqueue_returns_same_future(self, registry) -> None:
        supervisor = RecordingSupervisor()
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        first = queue.enqueue("a")
        second = queue.enqueue("a")
        assert first is second
        assert queue.pending() == 1

        queue.start()
        await run_queue(queue, first)
        assert len(supervisor.calls) == 1

    async def test_clear_cancels_waiting_requests(self, registry) -> None:
        queue = ConnectQueue(RecordingSupervisor(), registry)
        a = queue.enqueue("a")
        b = queue.enqueue("b")

        assert queue.clear() == 2
        assert a.cancelled() and b.cancelled()
        assert queue.pending() == 0

    async def test_running_flag(self, registry) -> None:
        queue = ConnectQueue(RecordingSupervisor(), registry)
        assert not queue.running
        queue.start()
        assert queue.running
        await queue.stop()
        assert not queue.running

    async def test_in_flight_names_running_handshake(self, registry) -> None:
        queue = ConnectQueue(RecordingSupervisor(duration=0.2), registry, connect_spacing=0)
        queue.start()
        future = queue.enqueue("a")
        await asyncio.sleep(0.05)

        assert queue.in_flight == "a"
        await run_queue(queue, future)
        assert queue.in_flight is None


class TestFailures:
    async def test_failure_does_not_block_queue(self, registry) -> None:
        bad = await registry.create("o", "bad")
        good = await registry.create("o", "good")
        supervisor = RecordingSupervisor()
        supervisor.failures[bad.id] = TransportError("boom")
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        queue.start()

        results = await run_queue(queue, queue.enqueue(bad.id), queue.enqueue(good.id))

        assert isinstance(results[0], TransportError)
        assert results[1].session_id == good.id
        assert registry.get(bad.id).status is SessionStatus.ERROR

    async def test_already_connecting_leaves_status(self, registry) -> None:
        session = await registry.create("o", "busy")
        await registry.update_status(session.id, SessionStatus.CONNECTED)
        supervisor = RecordingSupervisor()
        supervisor.failures[session.id] = AlreadyConnectingError("busy")
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        queue.start()

        results = await run_queue(queue, queue.enqueue(session.id))

        assert isinstance(results[0], AlreadyConnectingError)
        assert registry.get(session.id).status is SessionStatus.CONNECTED

    async def test_failure_with_scheduled_retry_leaves_status(self, registry) -> None:
        session = await registry.create("o", "retrying")
        await registry.update_status(session.id, SessionStatus.DISCONNECTED)
        supervisor = RecordingSupervisor()
        supervisor.failures[session.id] = TransportError("bridge down", disconnect_code=408)
        supervisor.retrying.add(session.id)
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        queue.start()

        results = await run_queue(queue, queue.enqueue(session.id))

        assert isinstance(results[0], TransportError)
        assert registry.get(session.id).status is SessionStatus.DISCONNECTED


class TestSingleConnectionMode:
    async def test_other_connections_torn_down_before_handshake(self, registry) -> None:
        supervisor = RecordingSupervisor()
        supervisor.active = ["other"]
        queue = ConnectQueue(
            supervisor, registry, connect_spacing=0, eviction_cooldown=0.05, single_connection=True,
        )
        queue.start()

        await run_queue(queue, queue.enqueue("target"))

        assert supervisor.teardowns[0][0] == "target"
        assert supervisor.calls[0][1] - supervisor.teardowns[0][1] >= 0.04
        assert supervisor.active == ["target"]

    async def test_no_teardown_without_other_connections(self, registry) -> None:
        supervisor = RecordingSupervisor()
        queue = ConnectQueue(supervisor, registry, connect_spacing=0, single_connection=True)
        queue.start()

        await run_queue(queue, queue.enqueue("solo"))

        assert supervisor.teardowns == []

    async def test_concurrent_mode_keeps_others(self, registry) -> None:
        supervisor = RecordingSupervisor()
        supervisor.active = ["other"]
        queue = ConnectQueue(supervisor, registry, connect_spacing=0)
        queue.start()

        await run_queue(queue, queue.enqueue("target"))

        assert supervisor.teardowns == []
        assert supervisor.active == ["other", "target"]
