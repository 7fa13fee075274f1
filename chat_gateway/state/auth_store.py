"""Durable per-session authentication state for the transport."""
import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class AuthStateError(Exception):
    """Persisted auth state could not be read or written."""


class AuthStateStore:
    """Stores transport credentials as ``<base_dir>/<session_id>/creds.json``.

    The payload is opaque to the gateway: whatever the transport reports
    in a credentials update is written back on the next open.
    """

    CREDS_FILE = "creds.json"

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    def session_dir(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or session_id in (".", ".."):
            raise AuthStateError(f"Invalid session id for auth storage: {session_id!r}")
        return self._base_dir / session_id

    async def load(self, session_id: str) -> dict[str, Any]:
        """Return the stored credentials, or an empty dict for a fresh login."""
        return await asyncio.to_thread(self._load, session_id)

    async def save(self, session_id: str, creds: dict[str, Any]) -> None:
        await asyncio.to_thread(self._save, session_id, creds)

    async def remove(self, session_id: str) -> None:
        await asyncio.to_thread(self._remove, session_id)

    def exists(self, session_id: str) -> bool:
        return (self.session_dir(session_id) / self.CREDS_FILE).exists()

    def _load(self, session_id: str) -> dict[str, Any]:
        path = self.session_dir(session_id) / self.CREDS_FILE
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise AuthStateError(f"Corrupted auth state for session {session_id}: {e}") from e
        if not isinstance(data, dict):
            raise AuthStateError(f"Corrupted auth state for session {session_id}: not an object")
        return data

    def _save(self, session_id: str, creds: dict[str, Any]) -> None:
        directory = self.session_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        tmp = directory / (self.CREDS_FILE + ".tmp")
        tmp.write_text(json.dumps(creds))
        tmp.chmod(0o600)
        tmp.replace(directory / self.CREDS_FILE)

    def _remove(self, session_id: str) -> None:
        directory = self.session_dir(session_id)
        if directory.exists():
            shutil.rmtree(directory, ignore_errors=True)
            logger.info("Removed auth state for session %s", session_id)
