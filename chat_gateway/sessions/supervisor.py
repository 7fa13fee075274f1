"""Connection supervisor: owns every live transport connection.

Each connection has an event inbox drained by one worker task. The worker
holds the session's lock while it handles an event, so transport events
and lifecycle operations (connect, disconnect, reset) never interleave for
the same session.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from chat_gateway.sessions.classifier import DisconnectClass, classify, describe, is_clean_logout
from chat_gateway.sessions.credentials import CredentialKind, CredentialStore, PendingCredential
from chat_gateway.sessions.errors import (
    AlreadyConnectingError,
    CredentialNotFoundError,
    GatewayError,
    NotConnectedError,
    TransportError,
    ValidationError,
)
from chat_gateway.sessions.fingerprint import fingerprint_for
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.state.auth_store import AuthStateStore
from chat_gateway.state.models.message import MessageDirection
from chat_gateway.state.models.session import SessionStatus
from chat_gateway.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    MessagesUpsert,
    TransportEvent,
    TransportHandle,
    TransportProvider,
)

if TYPE_CHECKING:
    from chat_gateway.autoreply.responder import AutoResponder

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
PEER_SUFFIX = "@s.whatsapp.net"

Enqueue = Callable[[str], "asyncio.Future"]

_STOP = object()


@dataclass(frozen=True)
class ConnectResult:
    session_id: str
    status: SessionStatus
    pairing_code: Optional[str] = None
    qr: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class SentMessage:
    message_id: str
    peer_id: str
    message_type: str


@dataclass
class _Connection:
    session_id: str
    handle: TransportHandle
    ready: asyncio.Future
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: Optional[asyncio.Task] = None
    expiry_timer: Optional[asyncio.Task] = None
    qr: Optional[str] = None
    pairing_code: Optional[str] = None
    closed: bool = False


def phone_digits(phone_number: str) -> str:
    """Strip everything but digits, rejecting numbers too short to dial."""
    digits = re.sub(r"\D", "", phone_number or "")
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValidationError(
            f"Phone number must contain at least {MIN_PHONE_DIGITS} digits",
            details={"phone_number": phone_number},
        )
    return digits


def peer_id_for(recipient: str) -> str:
    if "@" in recipient:
        return recipient
    return re.sub(r"\D", "", recipient) + PEER_SUFFIX


def build_content(message_type: str, content: Union[str, dict[str, Any]]) -> dict[str, Any]:
    """Shape an outbound payload for the transport."""
    if isinstance(content, dict):
        return {message_type: content} if message_type != "text" else content
    if message_type == "text":
        return {"text": content}
    return {message_type: {"url": content}}


class ConnectionSupervisor:
    """Drives sessions through idle, connecting, pairing and connected.

    Connects are only started by the connect queue (``bind_queue``), both
    for user requests and for scheduled reconnects.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: TransportProvider,
        auth_store: AuthStateStore,
        credentials: CredentialStore,
        history: MessageHistory,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        logout_timeout: float = 5.0,
    ) -> None:
        self._registry = registry
        self._provider = provider
        self._auth_store = auth_store
        self._credentials = credentials
        self._history = history
        self._max_attempts = max_reconnect_attempts
        self._base_delay = reconnect_base_delay
        self._max_delay = reconnect_max_delay
        self._logout_timeout = logout_timeout
        self._connections: dict[str, _Connection] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._attempts: dict[str, int] = {}
        self._retries: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._enqueue: Optional[Enqueue] = None
        self._responder: Optional["AutoResponder"] = None

    def bind_queue(self, enqueue: Enqueue) -> None:
        self._enqueue = enqueue

    def set_responder(self, responder: Optional["AutoResponder"]) -> None:
        self._responder = responder

    def active_session_ids(self) -> list[str]:
        return list(self._connections)

    def attempts(self, session_id: str) -> int:
        return self._attempts.get(session_id, 0)

    def pending_retries(self) -> int:
        return len(self._retries)

    def retry_scheduled(self, session_id: str) -> bool:
        return session_id in self._retries

    def backoff_delay(self, attempts: int) -> float:
        return min(self._base_delay * (2 ** attempts), self._max_delay)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    # Lifecycle operations

    async def connect(self, session_id: str) -> ConnectResult:
        """Open a connection and run the handshake until a credential is issued.

        Raises:
            NotFoundError: Unknown session.
            AlreadyConnectingError: A connection already exists.
            ValidationError: The phone number has fewer than 10 digits.
            TransportError: The handle could not be opened or the pairing
                code request failed.
        """
        session = self._registry.get(session_id)
        async with self._lock_for(session_id):
            if session_id in self._connections:
                raise AlreadyConnectingError(f"Session {session_id} is already connecting")
            self._cancel_retry(session_id)
            digits = phone_digits(session.phone_number) if session.phone_number else None

            await self._registry.update_status(session_id, SessionStatus.CONNECTING)
            auth_state = await self._auth_store.load(session_id)
            try:
                handle = await self._provider.open(
                    session_id, auth_state, fingerprint_for(session_id)
                )
            except Exception as e:
                error = e if isinstance(e, TransportError) else TransportError(
                    f"Failed to open connection: {e}"
                )
                await self._handle_open_failure(session_id, error)
                if error is e:
                    raise
                raise error from e

            conn = _Connection(
                session_id=session_id,
                handle=handle,
                ready=asyncio.get_running_loop().create_future(),
            )
            self._connections[session_id] = conn
            handle.subscribe(lambda event: self._on_event(conn, event))
            conn.worker = asyncio.create_task(self._run_worker(conn))

            if digits and not auth_state.get("registered"):
                try:
                    code = await handle.request_pairing_code(digits)
                except Exception as e:
                    await self._release(conn)
                    await self._registry.update_status(session_id, SessionStatus.ERROR)
                    raise TransportError(f"Pairing code request failed: {e}") from e
                conn.pairing_code = code
                credential = self._credentials.put(
                    CredentialKind.PAIRING, session_id, code, phone_number=digits
                )
                self._start_expiry_timer(conn)
                await self._registry.update_status(session_id, SessionStatus.PAIRING)
                logger.info("Pairing code issued for session %s", session_id)
                return ConnectResult(
                    session_id=session_id,
                    status=SessionStatus.PAIRING,
                    pairing_code=code,
                    expires_at=credential.expires_at,
                )
            self._start_expiry_timer(conn)

        outcome = await asyncio.shield(conn.ready)
        status = self._registry.get(session_id).status
        qr = self._credentials.get(CredentialKind.QR, session_id)
        if outcome == "qr" and qr is not None:
            return ConnectResult(
                session_id=session_id,
                status=status,
                qr=qr.payload,
                expires_at=qr.expires_at,
            )
        return ConnectResult(session_id=session_id, status=status)

    async def disconnect(self, session_id: str) -> None:
        """Log out, close the connection and stop any reconnection."""
        self._registry.get(session_id)
        self._cancel_retry(session_id)
        async with self._lock_for(session_id):
            conn = self._connections.get(session_id)
            if conn is not None:
                try:
                    await asyncio.wait_for(conn.handle.logout(), timeout=self._logout_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Logout timed out for session %s", session_id)
                except Exception as e:
                    logger.warning("Logout failed for session %s: %s", session_id, e)
                await self._release(conn)
            self._credentials.clear(session_id)
            self._attempts.pop(session_id, None)
            await self._registry.update_status(session_id, SessionStatus.DISCONNECTED)
        logger.info("Session %s disconnected", session_id)

    async def teardown(self, session_id: str) -> None:
        """Disconnect and remove persisted auth state."""
        await self.disconnect(session_id)
        await self._auth_store.remove(session_id)
        self._locks.pop(session_id, None)

    async def teardown_all(self, exclude: Optional[str] = None) -> int:
        """Tear down every connection except ``exclude``."""
        evicted = [sid for sid in self._connections if sid != exclude]
        for session_id in evicted:
            await self.teardown(session_id)
        if evicted:
            logger.info("Tore down %d connections", len(evicted))
        return len(evicted)

    async def reset(self) -> dict[str, int]:
        """Force-terminate every connection and forget retries and counters."""
        retries = len(self._retries)
        for session_id in list(self._retries):
            self._cancel_retry(session_id)
        connections = 0
        for session_id in list(self._connections):
            async with self._lock_for(session_id):
                conn = self._connections.get(session_id)
                if conn is None:
                    continue
                await self._release(conn)
                connections += 1
                if self._registry.find(session_id) is not None:
                    await self._registry.update_status(session_id, SessionStatus.DISCONNECTED)
        for session in self._registry.list_all():
            self._credentials.clear(session.id)
            if session.status.is_live:
                await self._registry.update_status(session.id, SessionStatus.DISCONNECTED)
        self._attempts.clear()
        logger.warning("Reset: closed %d connections, cancelled %d retries", connections, retries)
        return {"connections": connections, "retries": retries}

    async def shutdown(self) -> None:
        """End all connections without logging out and stop background tasks."""
        await self.reset()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # Credentials and messaging

    def get_qr(self, session_id: str) -> PendingCredential:
        self._registry.get(session_id)
        credential = self._credentials.get(CredentialKind.QR, session_id)
        if credential is None:
            raise CredentialNotFoundError(f"No QR code available for session {session_id}")
        return credential

    def get_pairing_code(self, session_id: str) -> PendingCredential:
        self._registry.get(session_id)
        credential = self._credentials.get(CredentialKind.PAIRING, session_id)
        if credential is None:
            raise CredentialNotFoundError(f"No pairing code available for session {session_id}")
        return credential

    async def send_message(
        self,
        session_id: str,
        to: str,
        message_type: str,
        content: Union[str, dict[str, Any]],
    ) -> SentMessage:
        session = self._registry.get(session_id)
        conn = self._connections.get(session_id)
        if session.status is not SessionStatus.CONNECTED or conn is None:
            raise NotConnectedError(f"Session {session_id} is not connected")
        peer_id = peer_id_for(to)
        try:
            message_id = await conn.handle.send_message(peer_id, build_content(message_type, content))
        except Exception as e:
            raise TransportError(f"Failed to send message: {e}") from e
        try:
            await self._registry.touch(session_id)
            await self._history.record(
                session_id,
                message_id,
                MessageDirection.OUTBOUND,
                peer_id,
                message_type,
                content if isinstance(content, str) else str(content.get("caption") or content.get("text") or ""),
            )
        except Exception as e:
            logger.warning("Message %s sent but not recorded for %s: %s", message_id, session_id, e)
        return SentMessage(message_id=message_id, peer_id=peer_id, message_type=message_type)

    # Event handling

    def _on_event(self, conn: _Connection, event: TransportEvent) -> None:
        if not conn.closed:
            conn.inbox.put_nowait(event)

    async def _run_worker(self, conn: _Connection) -> None:
        while True:
            event = await conn.inbox.get()
            if event is _STOP or conn.closed:
                return
            try:
                async with self._lock_for(conn.session_id):
                    if conn.closed:
                        return
                    await self._handle_event(conn, event)
            except Exception:
                logger.exception("Error handling transport event for session %s", conn.session_id)

    async def _handle_event(self, conn: _Connection, event: TransportEvent) -> None:
        if isinstance(event, ConnectionUpdate):
            if event.qr:
                await self._handle_qr(conn, event.qr)
            if event.state is ConnectionState.OPEN:
                await self._handle_open(conn)
            elif event.state is ConnectionState.CLOSE:
                await self._handle_close(conn, event.disconnect_code)
        elif isinstance(event, CredentialsUpdate):
            try:
                await self._auth_store.save(conn.session_id, event.creds)
            except Exception as e:
                logger.warning("Failed to persist auth state for %s: %s", conn.session_id, e)
        elif isinstance(event, MessagesUpsert):
            self._spawn_auto_response(conn, event)

    async def _handle_qr(self, conn: _Connection, qr: str) -> None:
        session = self._registry.get(conn.session_id)
        if session.phone_number and conn.pairing_code:
            return
        conn.qr = qr
        self._credentials.put(CredentialKind.QR, conn.session_id, qr)
        self._start_expiry_timer(conn)
        self._resolve_ready(conn, "qr")
        logger.info("QR code refreshed for session %s", conn.session_id)

    async def _handle_open(self, conn: _Connection) -> None:
        session_id = conn.session_id
        self._cancel_timer(conn)
        self._credentials.clear(session_id)
        conn.qr = None
        conn.pairing_code = None
        self._attempts[session_id] = 0
        await self._registry.update_status(session_id, SessionStatus.CONNECTED)
        phone_number = conn.handle.phone_number
        if phone_number:
            await self._registry.update_phone_number(session_id, phone_number)
        self._resolve_ready(conn, "open")
        logger.info("Session %s connected", session_id)

    async def _handle_close(self, conn: _Connection, code: Optional[int]) -> None:
        session_id = conn.session_id
        logger.info("Session %s closed: %s", session_id, describe(code))
        await self._release(conn)
        if classify(code) is DisconnectClass.RETRYABLE:
            await self._schedule_reconnect(session_id)
            return
        self._attempts.pop(session_id, None)
        if is_clean_logout(code):
            await self._auth_store.remove(session_id)
            await self._registry.update_status(session_id, SessionStatus.DISCONNECTED)
        else:
            await self._registry.update_status(session_id, SessionStatus.ERROR)

    async def _handle_open_failure(self, session_id: str, error: TransportError) -> None:
        """A failed open during reconnection, or one with a retryable code, counts as an attempt."""
        reconnecting = self._attempts.get(session_id, 0) > 0
        if reconnecting or classify(error.disconnect_code) is DisconnectClass.RETRYABLE:
            logger.warning("Opening session %s failed: %s", session_id, error.message)
            await self._schedule_reconnect(session_id)
        else:
            await self._registry.update_status(session_id, SessionStatus.ERROR)

    async def _schedule_reconnect(self, session_id: str) -> None:
        attempts = self._attempts.get(session_id, 0)
        if attempts >= self._max_attempts:
            logger.error(
                "Session %s exhausted %d reconnect attempts", session_id, self._max_attempts
            )
            self._attempts.pop(session_id, None)
            await self._registry.update_status(session_id, SessionStatus.ERROR)
            return
        self._attempts[session_id] = attempts + 1
        await self._registry.update_status(session_id, SessionStatus.DISCONNECTED)
        delay = self.backoff_delay(attempts)
        logger.info(
            "Reconnecting session %s in %.1fs (attempt %d/%d)",
            session_id, delay, attempts + 1, self._max_attempts,
        )
        self._cancel_retry(session_id)
        self._retries[session_id] = asyncio.create_task(self._reconnect_later(session_id, delay))

    async def _reconnect_later(self, session_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            if self._retries.get(session_id) is asyncio.current_task():
                del self._retries[session_id]
        if self._enqueue is None or self._registry.find(session_id) is None:
            return
        future = self._enqueue(session_id)
        future.add_done_callback(lambda f: _log_retry_outcome(session_id, f))

    def _cancel_retry(self, session_id: str) -> None:
        task = self._retries.pop(session_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # Timers and release

    def _start_expiry_timer(self, conn: _Connection) -> None:
        self._cancel_timer(conn)
        conn.expiry_timer = asyncio.create_task(self._expire_after(conn, self._credentials.ttl))

    def _cancel_timer(self, conn: _Connection) -> None:
        if conn.expiry_timer is not None:
            conn.expiry_timer.cancel()
            conn.expiry_timer = None

    async def _expire_after(self, conn: _Connection, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock_for(conn.session_id):
            if conn.closed or conn.expiry_timer is not asyncio.current_task():
                return
            conn.expiry_timer = None
            session = self._registry.find(conn.session_id)
            if session is None or session.status is SessionStatus.CONNECTED:
                return
            logger.info("Handshake credential expired for session %s", conn.session_id)
            await self._release(conn)
            await self._registry.update_status(conn.session_id, SessionStatus.DISCONNECTED)

    def _resolve_ready(self, conn: _Connection, outcome: str) -> None:
        if not conn.ready.done():
            conn.ready.set_result(outcome)

    async def _release(self, conn: _Connection) -> None:
        """Close a connection exactly once; later events are ignored."""
        if conn.closed:
            return
        conn.closed = True
        self._cancel_timer(conn)
        self._credentials.clear(conn.session_id)
        if self._connections.get(conn.session_id) is conn:
            del self._connections[conn.session_id]
        conn.inbox.put_nowait(_STOP)
        self._resolve_ready(conn, "closed")
        try:
            await conn.handle.end()
        except Exception as e:
            logger.debug("Ending transport for %s failed: %s", conn.session_id, e)

    def _spawn_auto_response(self, conn: _Connection, batch: MessagesUpsert) -> None:
        if self._responder is None or not batch.is_live:
            return
        handle = conn.handle

        async def reply(peer_id: str, text: str) -> str:
            return await handle.send_message(peer_id, {"text": text})

        task = asyncio.create_task(self._responder.handle_batch(conn.session_id, batch, reply))
        self._tasks.add(task)
        task.add_done_callback(self._auto_response_done)

    def _auto_response_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Auto-response failed: %s", task.exception())


def _log_retry_outcome(session_id: str, future: "asyncio.Future") -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is None:
        return
    if isinstance(error, GatewayError):
        logger.warning("Reconnect of session %s failed: %s", session_id, error.message)
    else:
        logger.error("Reconnect of session %s failed: %s", session_id, error)
