"""Classification of transport disconnect reasons."""
from enum import Enum, IntEnum
from typing import Optional


class DisconnectReason(IntEnum):
    """Numeric disconnect reasons reported by the chat-network bridge."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE = 503


class DisconnectClass(Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


_RETRYABLE = frozenset({
    DisconnectReason.CONNECTION_CLOSED,
    DisconnectReason.CONNECTION_LOST,
    DisconnectReason.RESTART_REQUIRED,
})

_LABELS = {
    DisconnectReason.CONNECTION_CLOSED: "connection closed",
    DisconnectReason.CONNECTION_LOST: "connection lost",
    DisconnectReason.CONNECTION_REPLACED: "connection replaced",
    DisconnectReason.LOGGED_OUT: "logged out",
    DisconnectReason.BAD_SESSION: "bad session",
    DisconnectReason.RESTART_REQUIRED: "restart required",
    DisconnectReason.MULTIDEVICE_MISMATCH: "multi-device mismatch",
    DisconnectReason.FORBIDDEN: "forbidden",
    DisconnectReason.UNAVAILABLE: "service unavailable",
}


def _coerce(code: Optional[int]) -> Optional[DisconnectReason]:
    if code is None:
        return None
    try:
        return DisconnectReason(int(code))
    except (TypeError, ValueError):
        return None


def classify(code: Optional[int]) -> DisconnectClass:
    """Map a disconnect reason code to retryable or terminal.

    Unknown or missing codes are terminal so that an unexpected failure
    never turns into an endless reconnect loop.
    """
    reason = _coerce(code)
    if reason is not None and reason in _RETRYABLE:
        return DisconnectClass.RETRYABLE
    return DisconnectClass.TERMINAL


def is_clean_logout(code: Optional[int]) -> bool:
    """Return True when the remote side logged the device out."""
    return _coerce(code) == DisconnectReason.LOGGED_OUT


def describe(code: Optional[int]) -> str:
    """Human-readable label for log lines."""
    reason = _coerce(code)
    if reason is None:
        return "unknown" if code is None else f"unknown ({code})"
    return _LABELS[reason]
