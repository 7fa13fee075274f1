"""Short-lived QR and pairing-code credentials."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from chat_gateway.state.cache import MemoryCache


class CredentialKind(Enum):
    QR = "qr"
    PAIRING = "pairing"


_KEY_PREFIX = {
    CredentialKind.QR: "qr_code",
    CredentialKind.PAIRING: "pairing_code",
}


@dataclass(frozen=True)
class PendingCredential:
    """A handshake credential the user has to act on before it expires."""
    kind: CredentialKind
    session_id: str
    payload: str
    created_at: datetime
    expires_at: datetime
    phone_number: Optional[str] = None


class CredentialStore:
    """Keeps at most one QR and one pairing code per session.

    Entries live in the ephemeral cache under ``qr_code:<id>`` and
    ``pairing_code:<id>`` and vanish after ``ttl`` seconds.
    """

    def __init__(self, cache: MemoryCache, ttl: float = 60.0) -> None:
        self._cache = cache
        self._ttl = ttl

    @property
    def ttl(self) -> float:
        return self._ttl

    @staticmethod
    def key(kind: CredentialKind, session_id: str) -> str:
        return f"{_KEY_PREFIX[kind]}:{session_id}"

    def put(
        self,
        kind: CredentialKind,
        session_id: str,
        payload: str,
        phone_number: Optional[str] = None,
    ) -> PendingCredential:
        now = datetime.now(timezone.utc)
        credential = PendingCredential(
            kind=kind,
            session_id=session_id,
            payload=payload,
            phone_number=phone_number,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl),
        )
        self._cache.set(self.key(kind, session_id), credential, ttl=self._ttl)
        return credential

    def get(self, kind: CredentialKind, session_id: str) -> Optional[PendingCredential]:
        return self._cache.get(self.key(kind, session_id))

    def clear(self, session_id: str) -> None:
        for kind in CredentialKind:
            self._cache.delete(self.key(kind, session_id))
