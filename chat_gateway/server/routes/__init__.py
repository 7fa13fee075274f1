"""API route factories."""
from chat_gateway.server.routes.agents import create_agents_router
from chat_gateway.server.routes.auto_response import create_auto_response_router
from chat_gateway.server.routes.health import create_health_router
from chat_gateway.server.routes.sessions import create_sessions_router
from chat_gateway.server.routes.system import create_system_router

__all__ = [
    "create_agents_router",
    "create_auto_response_router",
    "create_health_router",
    "create_sessions_router",
    "create_system_router",
]
