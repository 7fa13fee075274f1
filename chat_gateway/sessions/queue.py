"""Serialised connect requests with handshake spacing."""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from chat_gateway.sessions.errors import AlreadyConnectingError, GatewayError, NotFoundError
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor
from chat_gateway.state.models.session import SessionStatus

logger = logging.getLogger(__name__)


@dataclass
class QueuedConnect:
    session_id: str
    future: asyncio.Future


class ConnectQueue:
    """FIFO of connect requests drained by a single task.

    Consecutive handshakes start at least ``connect_spacing`` seconds
    apart and never overlap. With ``single_connection`` set, every other
    live connection is torn down before a handshake, followed by
    ``eviction_cooldown`` seconds of quiet.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        registry: SessionRegistry,
        connect_spacing: float = 5.0,
        eviction_cooldown: float = 10.0,
        single_connection: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._supervisor = supervisor
        self._registry = registry
        self._spacing = connect_spacing
        self._cooldown = eviction_cooldown
        self._single_connection = single_connection
        self._clock = clock
        self._items: deque[QueuedConnect] = deque()
        self._queued: dict[str, QueuedConnect] = {}
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._last_attempt: Optional[float] = None
        self._in_flight: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight

    def pending(self) -> int:
        return len(self._items)

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.clear()

    def clear(self) -> int:
        """Drop every queued request, cancelling their futures."""
        dropped = len(self._items)
        while self._items:
            item = self._items.popleft()
            if not item.future.done():
                item.future.cancel()
        self._queued.clear()
        return dropped

    def enqueue(self, session_id: str) -> asyncio.Future:
        """Queue a connect; re-queuing a session already waiting returns its future."""
        existing = self._queued.get(session_id)
        if existing is not None:
            return existing.future
        item = QueuedConnect(session_id=session_id, future=asyncio.get_running_loop().create_future())
        self._items.append(item)
        self._queued[session_id] = item
        self._wakeup.set()
        logger.debug("Queued connect for %s (%d pending)", session_id, len(self._items))
        return item.future

    async def _drain(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._items:
                item = self._items.popleft()
                self._queued.pop(item.session_id, None)
                if item.future.done():
                    continue
                await self._process(item)

    async def _process(self, item: QueuedConnect) -> None:
        session_id = item.session_id
        self._in_flight = session_id
        try:
            await self._wait_for_spacing()
            if self._single_connection:
                others = [s for s in self._supervisor.active_session_ids() if s != session_id]
                if others:
                    await self._supervisor.teardown_all(exclude=session_id)
                    await asyncio.sleep(self._cooldown)
            self._last_attempt = self._clock()
            result = await self._supervisor.connect(session_id)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as e:
            if isinstance(e, GatewayError):
                logger.warning("Connect for %s failed: %s", session_id, e.message)
            else:
                logger.exception("Connect for %s failed", session_id)
            await self._mark_error(session_id, e)
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._in_flight = None

    async def _wait_for_spacing(self) -> None:
        if self._last_attempt is None:
            return
        remaining = self._last_attempt + self._spacing - self._clock()
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _mark_error(self, session_id: str, error: Exception) -> None:
        if isinstance(error, (AlreadyConnectingError, NotFoundError)):
            return
        if self._supervisor.retry_scheduled(session_id):
            return
        session = self._registry.find(session_id)
        if session is None or session.status is SessionStatus.ERROR:
            return
        try:
            await self._registry.update_status(session_id, SessionStatus.ERROR)
        except Exception as e:
            logger.warning("Could not mark session %s as error: %s", session_id, e)
