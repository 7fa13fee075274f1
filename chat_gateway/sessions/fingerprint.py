"""Stable client fingerprint per session."""
import hashlib

from chat_gateway.transport.base import Fingerprint

_PLATFORMS = ("Mac OS", "Windows", "Ubuntu")
_BROWSERS = ("Chrome", "Firefox", "Safari", "Edge")
_VERSIONS = ("120.0.0", "121.0.0", "122.0.0", "123.0.0", "124.0.0")


def fingerprint_for(session_id: str) -> Fingerprint:
    """Derive the (platform, browser, version) triple announced for a session.

    The same session always reconnects as the same client; the chat network
    treats a changing fingerprint as a new device.
    """
    digest = hashlib.sha256(session_id.encode("utf-8")).digest()
    return (
        _PLATFORMS[digest[0] % len(_PLATFORMS)],
        _BROWSERS[digest[1] % len(_BROWSERS)],
        _VERSIONS[digest[2] % len(_VERSIONS)],
    )
