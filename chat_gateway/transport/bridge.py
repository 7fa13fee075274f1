"""Transport provider speaking JSON over a WebSocket to a chat-network bridge.

One WebSocket is shared by every session. Requests carry an ``id`` and the
bridge answers with ``{"type": "response", "replyTo": <id>, "ok": ...}``;
everything else is an event routed to the handle named by ``sessionId``.

Outbound frames::

    {"id", "type": "open", "sessionId", "auth", "browser"}
    {"id", "type": "pairing_code", "sessionId", "phone"}
    {"id", "type": "send", "sessionId", "to", "content"}
    {"id", "type": "logout" | "end", "sessionId"}

Inbound events::

    {"type": "connection.update", "sessionId", "connection", "qr", "statusCode", "user"}
    {"type": "creds.update", "sessionId", "creds"}
    {"type": "messages.upsert", "sessionId", "messages", "upsertType"}
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Optional

import websockets

from chat_gateway.sessions.classifier import DisconnectReason
from chat_gateway.sessions.errors import TransportError
from chat_gateway.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    EventListener,
    Fingerprint,
    InboundMessage,
    MessagesUpsert,
    TransportEvent,
    TransportHandle,
    TransportProvider,
)

logger = logging.getLogger(__name__)

_CONNECTION_STATES = {state.value: state for state in ConnectionState}


def parse_event(data: dict[str, Any]) -> Optional[TransportEvent]:
    """Translate a bridge event frame into a transport event."""
    kind = data.get("type")
    if kind == "connection.update":
        status_code = data.get("statusCode")
        return ConnectionUpdate(
            state=_CONNECTION_STATES.get(data.get("connection") or ""),
            qr=data.get("qr") or None,
            disconnect_code=int(status_code) if status_code is not None else None,
            error=data.get("error"),
        )
    if kind == "creds.update":
        return CredentialsUpdate(creds=data.get("creds") or {})
    if kind == "messages.upsert":
        messages = tuple(
            InboundMessage.from_payload(m)
            for m in data.get("messages") or []
            if isinstance(m, dict)
        )
        return MessagesUpsert(messages=messages, is_live=data.get("upsertType") == "notify")
    return None


def phone_from_user_id(user_id: Optional[str]) -> Optional[str]:
    """Extract the phone number from an id such as ``15551234567:12@s.whatsapp.net``."""
    if not user_id:
        return None
    number = user_id.split("@", 1)[0].split(":", 1)[0]
    return number or None


class BridgeTransportHandle(TransportHandle):
    def __init__(self, provider: "BridgeTransportProvider", session_id: str) -> None:
        self._provider = provider
        self._session_id = session_id
        self._listeners: list[EventListener] = []
        self._phone_number: Optional[str] = None
        self._closed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def phone_number(self) -> Optional[str]:
        return self._phone_number

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def dispatch(self, data: dict[str, Any]) -> None:
        """Deliver a raw bridge frame addressed to this session."""
        if data.get("type") == "connection.update" and data.get("user"):
            self._phone_number = phone_from_user_id(data["user"])
        event = parse_event(data)
        if event is None:
            logger.debug("Ignoring bridge frame type %s", data.get("type"))
            return
        self.emit(event)

    def emit(self, event: TransportEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed for session %s", self._session_id)

    async def request_pairing_code(self, phone_digits: str) -> str:
        data = await self._provider.request(
            "pairing_code", self._session_id, phone=phone_digits
        )
        code = data.get("code")
        if not code:
            raise TransportError("Bridge returned no pairing code")
        return str(code)

    async def send_message(self, peer_id: str, content: dict[str, Any]) -> str:
        data = await self._provider.request(
            "send", self._session_id, to=peer_id, content=content
        )
        return str(data.get("messageId") or uuid.uuid4().hex)

    async def logout(self) -> None:
        await self._provider.request("logout", self._session_id)

    async def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._provider.request("end", self._session_id)
        except TransportError as e:
            logger.debug("End request for %s failed: %s", self._session_id, e)
        finally:
            self._provider.forget(self._session_id)


class BridgeTransportProvider(TransportProvider):
    """Multiplexes session handles over one bridge WebSocket.

    The socket is opened lazily on first use. When it drops, every open
    handle receives a ``close`` update with a connection-lost reason so
    the supervisor's reconnection policy takes over.
    """

    def __init__(self, url: str, token: str = "", request_timeout: float = 30.0) -> None:
        self._url = url
        self._token = token
        self._request_timeout = request_timeout
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future] = {}
        self._handles: dict[str, BridgeTransportHandle] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def open(
        self,
        session_id: str,
        auth_state: dict[str, Any],
        fingerprint: Fingerprint,
    ) -> TransportHandle:
        handle = BridgeTransportHandle(self, session_id)
        self._handles[session_id] = handle
        try:
            await self.request("open", session_id, auth=auth_state, browser=list(fingerprint))
        except TransportError:
            self._handles.pop(session_id, None)
            raise
        return handle

    def forget(self, session_id: str) -> None:
        self._handles.pop(session_id, None)

    async def request(self, kind: str, session_id: str, **fields: Any) -> dict[str, Any]:
        """Send a request frame and wait for the matching response."""
        ws = await self._ensure_connected()
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        frame = {"id": request_id, "type": kind, "sessionId": session_id, **fields}
        try:
            await ws.send(json.dumps(frame))
            response = await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Bridge did not answer {kind} for {session_id}") from e
        except websockets.ConnectionClosed as e:
            raise TransportError(
                f"Bridge connection closed during {kind}",
                disconnect_code=DisconnectReason.CONNECTION_LOST,
            ) from e
        finally:
            self._pending.pop(request_id, None)
        if not response.get("ok", False):
            raise TransportError(response.get("error") or f"Bridge rejected {kind}")
        return response.get("data") or {}

    async def _ensure_connected(self):
        async with self._connect_lock:
            if self._ws is not None:
                return self._ws
            logger.info("Connecting to chat bridge at %s", self._url)
            try:
                ws = await websockets.connect(self._url, max_size=2**22)
            except (OSError, websockets.WebSocketException) as e:
                raise TransportError(
                    f"Chat bridge unreachable: {e}",
                    disconnect_code=DisconnectReason.CONNECTION_LOST,
                ) from e
            if self._token:
                await ws.send(json.dumps({"type": "auth", "token": self._token}))
            self._ws = ws
            self._reader_task = asyncio.create_task(self._reader_loop(ws))
            return ws

    async def _reader_loop(self, ws) -> None:
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except websockets.ConnectionClosed:
            logger.warning("Chat bridge connection lost")
        finally:
            if self._ws is ws:
                self._ws = None
                self._fail_all(DisconnectReason.CONNECTION_LOST)

    def _handle_frame(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge: %s", raw[:100])
            return
        if data.get("type") == "response":
            future = self._pending.get(data.get("replyTo") or "")
            if future is not None and not future.done():
                future.set_result(data)
            return
        handle = self._handles.get(data.get("sessionId") or "")
        if handle is None:
            logger.debug("Bridge event for unknown session %s", data.get("sessionId"))
            return
        handle.dispatch(data)

    def _fail_all(self, code: int) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("Bridge connection lost", disconnect_code=code))
        for handle in list(self._handles.values()):
            handle.emit(ConnectionUpdate(state=ConnectionState.CLOSE, disconnect_code=code))
        self._handles.clear()

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._handles.clear()
