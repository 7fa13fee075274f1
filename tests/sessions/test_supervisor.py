"""Tests for the connection supervisor."""
import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from chat_gateway.sessions.credentials import CredentialKind
from chat_gateway.sessions.errors import (
    AlreadyConnectingError,
    CredentialNotFoundError,
    NotConnectedError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from chat_gateway.sessions.fingerprint import fingerprint_for
from chat_gateway.sessions.supervisor import build_content, peer_id_for, phone_digits
from chat_gateway.state.models.message import MessageDirection
from chat_gateway.state.models.session import SessionStatus
from chat_gateway.transport.base import ConnectionState, ConnectionUpdate, CredentialsUpdate
from tests.conftest import build_core, settle, wait_for


@pytest_asyncio.fixture
async def make_core(db, provider, tmp_path: Path):
    built = []

    def factory(**kwargs):
        c = build_core(db, provider, tmp_path / "auth", **kwargs)
        c.queue.start()
        built.append(c)
        return c

    yield factory
    for c in built:
        await c.queue.stop()
        await c.supervisor.shutdown()


def close_event(code):
    return ConnectionUpdate(state=ConnectionState.CLOSE, disconnect_code=code)


OPEN = ConnectionUpdate(state=ConnectionState.OPEN)


class TestHelpers:
    def test_phone_digits_strips_formatting(self) -> None:
        assert phone_digits("+1 (555) 123-4567") == "15551234567"

    def test_phone_digits_rejects_short_numbers(self) -> None:
        with pytest.raises(ValidationError):
            phone_digits("555-1234")

    def test_peer_id_for_number(self) -> None:
        assert peer_id_for("+1 555 123 4567") == "15551234567@s.whatsapp.net"

    def test_peer_id_for_existing_jid(self) -> None:
        assert peer_id_for("12345@g.us") == "12345@g.us"

    def test_build_content(self) -> None:
        assert build_content("text", "hi") == {"text": "hi"}
        assert build_content("image", "https://x/y.png") == {"image": {"url": "https://x/y.png"}}
        assert build_content("image", {"url": "u", "caption": "c"}) == {"image": {"url": "u", "caption": "c"}}


class TestQrFlow:
    async def test_connect_returns_qr(self, core, provider) -> None:
        session = await core.registry.create("o", "qr-session")
        provider.auto_qr = "qr-payload-1"

        result = await core.supervisor.connect(session.id)

        assert result.qr == "qr-payload-1"
        assert result.expires_at is not None
        assert result.status is SessionStatus.CONNECTING
        assert core.supervisor.get_qr(session.id).payload == "qr-payload-1"
        assert core.supervisor.active_session_ids() == [session.id]

    async def test_open_uses_stable_fingerprint_and_stored_auth(self, core, provider) -> None:
        session = await core.registry.create("o", "fp")
        await core.auth_store.save(session.id, {"registered": True, "me": "x"})
        provider.auto_open = True

        await core.supervisor.connect(session.id)

        opened_id, auth_state, fingerprint = provider.opened[0]
        assert opened_id == session.id
        assert auth_state == {"registered": True, "me": "x"}
        assert fingerprint == fingerprint_for(session.id)

    async def test_qr_refresh_replaces_credential(self, core, provider) -> None:
        session = await core.registry.create("o", "refresh")
        provider.auto_qr = "first"
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(ConnectionUpdate(qr="second"))
        await wait_for(lambda: core.supervisor.get_qr(session.id).payload == "second")

    async def test_open_clears_credentials_and_stores_phone(self, core, provider) -> None:
        session = await core.registry.create("o", "opens")
        provider.auto_qr = "qr"
        await core.supervisor.connect(session.id)
        handle = provider.latest(session.id)
        handle.set_phone_number("15551234567")

        handle.emit(OPEN)
        await wait_for(lambda: core.registry.get(session.id).status is SessionStatus.CONNECTED)

        with pytest.raises(CredentialNotFoundError):
            core.supervisor.get_qr(session.id)
        stored = core.registry.get(session.id)
        assert stored.phone_number == "15551234567"
        assert stored.phone_verified is True
        assert core.supervisor.attempts(session.id) == 0

    async def test_connect_resolves_on_immediate_open(self, core, provider) -> None:
        session = await core.registry.create("o", "restored")
        provider.auto_open = True
        result = await core.supervisor.connect(session.id)
        assert result.status is SessionStatus.CONNECTED
        assert result.qr is None

    async def test_second_connect_rejected(self, core, provider) -> None:
        session = await core.registry.create("o", "twice")
        provider.auto_qr = "qr"
        await core.supervisor.connect(session.id)
        with pytest.raises(AlreadyConnectingError):
            await core.supervisor.connect(session.id)
        assert len(provider.opened) == 1

    async def test_unknown_session(self, core) -> None:
        with pytest.raises(NotFoundError):
            await core.supervisor.connect("missing")

    async def test_open_failure_marks_error(self, core, provider) -> None:
        session = await core.registry.create("o", "broken")
        provider.fail_open = True
        with pytest.raises(TransportError):
            await core.supervisor.connect(session.id)
        assert core.registry.get(session.id).status is SessionStatus.ERROR
        assert core.supervisor.active_session_ids() == []


class TestPairingFlow:
    async def test_pairing_code_issued(self, core, provider) -> None:
        session = await core.registry.create("o", "pair", "+1 (555) 123-4567")

        result = await core.supervisor.connect(session.id)

        assert result.pairing_code == "ABCD-1234"
        assert result.status is SessionStatus.PAIRING
        assert core.registry.get(session.id).status is SessionStatus.PAIRING
        assert provider.latest(session.id).pairing_requests == ["15551234567"]
        credential = core.supervisor.get_pairing_code(session.id)
        assert credential.payload == "ABCD-1234"
        assert credential.phone_number == "15551234567"

    async def test_short_phone_rejected_before_opening(self, core, provider) -> None:
        session = await core.registry.create("o", "short", "12345")
        with pytest.raises(ValidationError):
            await core.supervisor.connect(session.id)
        assert provider.opened == []

    async def test_registered_auth_skips_pairing(self, core, provider) -> None:
        session = await core.registry.create("o", "known", "15551234567")
        await core.auth_store.save(session.id, {"registered": True})
        provider.auto_open = True

        result = await core.supervisor.connect(session.id)

        assert result.status is SessionStatus.CONNECTED
        assert provider.latest(session.id).pairing_requests == []

    async def test_pairing_failure_marks_error(self, core, provider) -> None:
        session = await core.registry.create("o", "nopair", "15551234567")
        provider.fail_pairing = True
        with pytest.raises(TransportError):
            await core.supervisor.connect(session.id)
        assert core.registry.get(session.id).status is SessionStatus.ERROR
        assert core.supervisor.active_session_ids() == []
        assert provider.latest(session.id).ended is True

    async def test_qr_ignored_while_pairing(self, core, provider) -> None:
        session = await core.registry.create("o", "pairqr", "15551234567")
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(ConnectionUpdate(qr="unexpected"))
        await settle()

        with pytest.raises(CredentialNotFoundError):
            core.supervisor.get_qr(session.id)
        assert core.supervisor.get_pairing_code(session.id).payload == "ABCD-1234"


class TestCredentialExpiry:
    async def test_unscanned_qr_expires_to_disconnected(self, make_core, provider) -> None:
        c = make_core(credential_ttl=0.05)
        session = await c.registry.create("o", "expire")
        provider.auto_qr = "qr"
        await c.supervisor.connect(session.id)

        await wait_for(lambda: c.registry.get(session.id).status is SessionStatus.DISCONNECTED)
        assert c.supervisor.active_session_ids() == []
        assert provider.latest(session.id).ended is True
        with pytest.raises(CredentialNotFoundError):
            c.supervisor.get_qr(session.id)

    async def test_open_before_expiry_keeps_connection(self, make_core, provider) -> None:
        c = make_core(credential_ttl=0.1)
        session = await c.registry.create("o", "in-time")
        provider.auto_qr = "qr"
        await c.supervisor.connect(session.id)
        provider.latest(session.id).emit(OPEN)

        await asyncio.sleep(0.2)
        assert c.registry.get(session.id).status is SessionStatus.CONNECTED
        assert c.supervisor.active_session_ids() == [session.id]


class TestDisconnectHandling:
    async def test_retryable_close_schedules_reconnect(self, make_core, provider) -> None:
        c = make_core(reconnect_base_delay=10.0)
        session = await c.registry.create("o", "flaky")
        provider.auto_open = True
        await c.supervisor.connect(session.id)

        provider.latest(session.id).emit(close_event(428))
        await wait_for(lambda: c.registry.get(session.id).status is SessionStatus.DISCONNECTED)
        await wait_for(lambda: c.supervisor.pending_retries() == 1)

        assert c.supervisor.attempts(session.id) == 1
        assert c.supervisor.pending_retries() == 1
        assert c.supervisor.active_session_ids() == []

    async def test_reconnect_goes_through_queue(self, core, provider) -> None:
        session = await core.registry.create("o", "recover")
        provider.auto_open = True
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(close_event(515))

        await wait_for(lambda: len(provider.opened) == 2)
        await wait_for(lambda: core.registry.get(session.id).status is SessionStatus.CONNECTED)
        assert core.supervisor.attempts(session.id) == 0

    async def test_attempts_exhausted_marks_error(self, make_core, provider) -> None:
        c = make_core(max_reconnect_attempts=1)
        session = await c.registry.create("o", "gives-up")
        provider.auto_open = True
        await c.supervisor.connect(session.id)

        provider.auto_open = False
        provider.auto_qr = "qr"
        provider.latest(session.id).emit(close_event(408))
        await wait_for(lambda: len(provider.handles) == 2)
        await wait_for(lambda: c.credentials.get(CredentialKind.QR, session.id) is not None)

        provider.latest(session.id).emit(close_event(408))
        await wait_for(lambda: c.registry.get(session.id).status is SessionStatus.ERROR)
        assert c.supervisor.pending_retries() == 0
        await asyncio.sleep(0.05)
        assert len(provider.handles) == 2

    async def test_failed_reconnect_schedules_another_attempt(self, make_core, provider) -> None:
        c = make_core(reconnect_base_delay=0.05)
        session = await c.registry.create("o", "bridge-drop")
        provider.auto_open = True
        await c.supervisor.connect(session.id)

        provider.fail_open = True
        provider.latest(session.id).emit(close_event(408))
        await wait_for(lambda: len(provider.opened) == 2)
        await wait_for(lambda: c.supervisor.attempts(session.id) == 2)

        assert c.registry.get(session.id).status is SessionStatus.DISCONNECTED
        assert c.supervisor.retry_scheduled(session.id)

    async def test_failed_reconnects_stop_at_max_attempts(self, make_core, provider) -> None:
        c = make_core(max_reconnect_attempts=3, reconnect_base_delay=0.01)
        session = await c.registry.create("o", "bridge-gone")
        provider.auto_open = True
        await c.supervisor.connect(session.id)

        provider.fail_open = True
        provider.latest(session.id).emit(close_event(408))
        await wait_for(lambda: c.registry.get(session.id).status is SessionStatus.ERROR)

        assert len(provider.opened) == 1 + 3
        assert c.supervisor.pending_retries() == 0

    async def test_retryable_open_failure_schedules_reconnect(self, make_core, provider) -> None:
        c = make_core(reconnect_base_delay=10.0)
        session = await c.registry.create("o", "no-bridge")
        provider.fail_open = True
        provider.open_error_code = 408

        with pytest.raises(TransportError):
            await c.supervisor.connect(session.id)

        assert c.registry.get(session.id).status is SessionStatus.DISCONNECTED
        assert c.supervisor.attempts(session.id) == 1
        assert c.supervisor.retry_scheduled(session.id)

    async def test_terminal_close_marks_error(self, core, provider) -> None:
        session = await core.registry.create("o", "banned")
        await core.auth_store.save(session.id, {"registered": True})
        provider.auto_open = True
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(close_event(500))
        await wait_for(lambda: core.registry.get(session.id).status is SessionStatus.ERROR)

        assert core.supervisor.pending_retries() == 0
        assert core.auth_store.exists(session.id)

    async def test_logout_removes_auth(self, core, provider) -> None:
        session = await core.registry.create("o", "logged-out")
        await core.auth_store.save(session.id, {"registered": True})
        provider.auto_open = True
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(close_event(401))
        await wait_for(lambda: core.registry.get(session.id).status is SessionStatus.DISCONNECTED)

        assert not core.auth_store.exists(session.id)
        assert core.supervisor.pending_retries() == 0

    async def test_credentials_update_persisted(self, core, provider) -> None:
        session = await core.registry.create("o", "creds")
        provider.auto_qr = "qr"
        await core.supervisor.connect(session.id)

        provider.latest(session.id).emit(CredentialsUpdate(creds={"registered": True, "k": 1}))
        await wait_for(lambda: core.auth_store.exists(session.id))
        assert await core.auth_store.load(session.id) == {"registered": True, "k": 1}


class TestLifecycleOperations:
    async def test_disconnect_logs_out(self, core, provider) -> None:
        session = await core.registry.create("o", "bye")
        provider.auto_open = True
        await core.supervisor.connect(session.id)
        handle = provider.latest(session.id)

        await core.supervisor.disconnect(session.id)

        assert handle.logged_out is True
        assert handle.ended is True
        assert core.registry.get(session.id).status is SessionStatus.DISCONNECTED
        assert core.supervisor.active_session_ids() == []

    async def test_disconnect_survives_slow_logout(self, make_core, provider) -> None:
        c = make_core(logout_timeout=0.05)
        session = await c.registry.create("o", "slow")
        provider.auto_open = True
        provider.logout_delay = 1.0
        await c.supervisor.connect(session.id)

        await c.supervisor.disconnect(session.id)

        assert c.registry.get(session.id).status is SessionStatus.DISCONNECTED
        assert provider.latest(session.id).ended is True

    async def test_disconnect_cancels_pending_retry(self, make_core, provider) -> None:
        c = make_core(reconnect_base_delay=10.0)
        session = await c.registry.create("o", "stop-retry")
        provider.auto_open = True
        await c.supervisor.connect(session.id)
        provider.latest(session.id).emit(close_event(428))
        await wait_for(lambda: c.supervisor.pending_retries() == 1)

        await c.supervisor.disconnect(session.id)

        assert c.supervisor.pending_retries() == 0
        assert c.supervisor.attempts(session.id) == 0

    async def test_events_after_disconnect_are_ignored(self, core, provider) -> None:
        session = await core.registry.create("o", "stale")
        provider.auto_qr = "qr"
        await core.supervisor.connect(session.id)
        handle = provider.latest(session.id)
        await core.supervisor.disconnect(session.id)

        handle.emit(OPEN)
        await settle()

        assert core.registry.get(session.id).status is SessionStatus.DISCONNECTED

    async def test_teardown_removes_auth(self, core, provider) -> None:
        session = await core.registry.create("o", "gone")
        await core.auth_store.save(session.id, {"registered": True})
        provider.auto_open = True
        await core.supervisor.connect(session.id)

        await core.supervisor.teardown(session.id)

        assert not core.auth_store.exists(session.id)
        assert core.supervisor.active_session_ids() == []

    async def test_teardown_all_keeps_excluded(self, core, provider) -> None:
        provider.auto_open = True
        keep = await core.registry.create("o", "keep")
        drop = await core.registry.create("o", "drop")
        await core.supervisor.connect(keep.id)
        await core.supervisor.connect(drop.id)

        assert await core.supervisor.teardown_all(exclude=keep.id) == 1
        assert core.supervisor.active_session_ids() == [keep.id]

    async def test_reset_terminates_everything(self, core, provider) -> None:
        provider.auto_open = True
        first = await core.registry.create("o", "one")
        second = await core.registry.create("o", "two")
        await core.supervisor.connect(first.id)
        await core.supervisor.connect(second.id)

        counts = await core.supervisor.reset()

        assert counts == {"connections": 2, "retries": 0}
        assert core.supervisor.active_session_ids() == []
        assert core.registry.get(first.id).status is SessionStatus.DISCONNECTED
        assert core.registry.get(second.id).status is SessionStatus.DISCONNECTED

    async def test_backoff_is_capped(self, core) -> None:
        assert core.supervisor.backoff_delay(0) == pytest.approx(0.01)
        assert core.supervisor.backoff_delay(3) == pytest.approx(0.08)
        assert core.supervisor.backoff_delay(20) == 1.0


class TestSendMessage:
    async def test_rejected_when_idle(self, core) -> None:
        session = await core.registry.create("o", "idle")
        with pytest.raises(NotConnectedError):
            await core.supervisor.send_message(session.id, "15551234567", "text", "hi")

    async def test_rejected_during_handshake(self, core, provider) -> None:
        session = await core.registry.create("o", "handshake")
        provider.auto_qr = "qr"
        await core.supervisor.connect(session.id)

        with pytest.raises(NotConnectedError):
            await core.supervisor.send_message(session.id, "15551234567", "text", "hi")
        assert provider.latest(session.id).sent == []

    async def test_sends_and_records(self, core, provider) -> None:
        session = await core.registry.create("o", "sender")
        provider.auto_open = True
        await core.supervisor.connect(session.id)

        sent = await core.supervisor.send_message(session.id, "+1 555 123 4567", "text", "hello")

        assert sent.peer_id == "15551234567@s.whatsapp.net"
        assert provider.latest(session.id).sent == [("15551234567@s.whatsapp.net", {"text": "hello"})]
        log = await core.history.list(session.id)
        assert [(e.direction, e.text) for e in log] == [(MessageDirection.OUTBOUND, "hello")]
        assert core.registry.get(session.id).last_activity is not None

    async def test_transport_failure_wrapped(self, core, provider) -> None:
        session = await core.registry.create("o", "fails")
        provider.auto_open = True
        await core.supervisor.connect(session.id)
        provider.fail_send = True

        with pytest.raises(TransportError):
            await core.supervisor.send_message(session.id, "15551234567", "text", "hello")

    async def test_log_failure_after_send_still_succeeds(self, core, provider) -> None:
        session = await core.registry.create("o", "unlogged")
        provider.auto_open = True
        await core.supervisor.connect(session.id)
        core.history.record = AsyncMock(side_effect=RuntimeError("database is locked"))

        sent = await core.supervisor.send_message(session.id, "15551234567", "text", "hello")

        assert sent.message_id == "out-1"
        assert provider.latest(session.id).sent == [("15551234567@s.whatsapp.net", {"text": "hello"})]
        core.history.record.assert_awaited_once()
