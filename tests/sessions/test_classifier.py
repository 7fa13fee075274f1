"""Tests for disconnect reason classification."""
import pytest

from chat_gateway.sessions.classifier import (
    DisconnectClass,
    DisconnectReason,
    classify,
    describe,
    is_clean_logout,
)


class TestClassify:
    @pytest.mark.parametrize("code", [428, 408, 515])
    def test_retryable_codes(self, code: int) -> None:
        assert classify(code) is DisconnectClass.RETRYABLE

    @pytest.mark.parametrize("code", [401, 403, 411, 440, 500, 503])
    def test_terminal_codes(self, code: int) -> None:
        assert classify(code) is DisconnectClass.TERMINAL

    def test_unknown_code_is_terminal(self) -> None:
        assert classify(999) is DisconnectClass.TERMINAL

    def test_missing_code_is_terminal(self) -> None:
        assert classify(None) is DisconnectClass.TERMINAL

    def test_accepts_enum_members(self) -> None:
        assert classify(DisconnectReason.RESTART_REQUIRED) is DisconnectClass.RETRYABLE


class TestCleanLogout:
    def test_logged_out(self) -> None:
        assert is_clean_logout(401)

    def test_other_terminal_codes_are_not_logout(self) -> None:
        assert not is_clean_logout(500)
        assert not is_clean_logout(None)


class TestDescribe:
    def test_known_reason(self) -> None:
        assert describe(428) == "connection closed"

    def test_unknown_reason(self) -> None:
        assert describe(777) == "unknown (777)"
        assert describe(None) == "unknown"
