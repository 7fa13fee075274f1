"""API key authentication."""
from typing import Awaitable, Callable, Optional
from fastapi import Header

from chat_gateway.server.config import ApiConfig
from chat_gateway.sessions.errors import AuthenticationError

OwnerDependency = Callable[..., Awaitable[str]]


def create_owner_dependency(config: ApiConfig) -> OwnerDependency:
    """Build a dependency resolving ``X-API-Key`` to the caller's owner id."""

    async def require_owner(
        x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    ) -> str:
        owner_id = config.owner_for(x_api_key or "")
        if owner_id is None:
            raise AuthenticationError("Invalid or missing API key")
        return owner_id

    return require_owner
