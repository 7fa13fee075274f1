"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from chat_gateway.autoreply.directory import AgentDirectory
from chat_gateway.autoreply.generator import GeminiTextGenerator, TextGenerator
from chat_gateway.autoreply.responder import AutoResponder
from chat_gateway.server.auth import create_owner_dependency
from chat_gateway.server.config import ServerConfig, load_config_from_env
from chat_gateway.server.middleware.logging import RequestLoggingMiddleware, sanitize_dict
from chat_gateway.server.middleware.rate_limit import RateLimitMiddleware
from chat_gateway.server.models.common import error_envelope
from chat_gateway.server.routes.agents import create_agents_router
from chat_gateway.server.routes.auto_response import create_auto_response_router
from chat_gateway.server.routes.health import create_health_router
from chat_gateway.server.routes.sessions import create_sessions_router
from chat_gateway.server.routes.system import create_system_router
from chat_gateway.sessions.credentials import CredentialStore
from chat_gateway.sessions.errors import GatewayError, RateLimitedError
from chat_gateway.sessions.history import MessageHistory
from chat_gateway.sessions.queue import ConnectQueue
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.sessions.supervisor import ConnectionSupervisor
from chat_gateway.state.auth_store import AuthStateStore
from chat_gateway.state.cache import MemoryCache
from chat_gateway.state.database import DatabaseManager
from chat_gateway.state.models.session import AutoResponseSettings
from chat_gateway.transport.base import TransportProvider
from chat_gateway.transport.bridge import BridgeTransportProvider

logger = logging.getLogger(__name__)


def _build_generator(config: ServerConfig) -> Optional[TextGenerator]:
    """Build the Gemini generator when an API key is configured, else return None."""
    if not config.generator.api_key:
        return None
    return GeminiTextGenerator(
        api_key=config.generator.api_key,
        model=config.generator.model,
        timeout=config.generator.timeout,
    )


def _build_provider(config: ServerConfig) -> TransportProvider:
    return BridgeTransportProvider(
        url=config.bridge.url,
        token=config.bridge.token,
        request_timeout=config.bridge.request_timeout,
    )


def create_app(
    config: Optional[ServerConfig] = None,
    provider: Optional[TransportProvider] = None,
    generator: Optional[TextGenerator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When called without arguments (e.g. via uvicorn --factory), loads
    configuration from environment variables. ``provider`` and
    ``generator`` replace the bridge transport and Gemini client.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    if config is None:
        config = load_config_from_env()
    if provider is None:
        provider = _build_provider(config)
    if generator is None:
        generator = _build_generator(config)

    conn_cfg = config.connection
    ar_cfg = config.auto_response
    default_settings = AutoResponseSettings(
        enabled=ar_cfg.enabled, trigger_word=ar_cfg.trigger_word, prompt=ar_cfg.prompt,
    )

    db_manager = DatabaseManager(config.db_path)
    registry = SessionRegistry(
        db_manager,
        max_sessions_per_owner=conn_cfg.max_sessions_per_owner,
        default_auto_response=default_settings,
    )
    history = MessageHistory(db_manager)
    supervisor = ConnectionSupervisor(
        registry=registry,
        provider=provider,
        auth_store=AuthStateStore(config.auth_state_dir),
        credentials=CredentialStore(MemoryCache(), ttl=conn_cfg.credential_ttl),
        history=history,
        max_reconnect_attempts=conn_cfg.max_reconnect_attempts,
        reconnect_base_delay=conn_cfg.reconnect_base_delay,
        reconnect_max_delay=conn_cfg.reconnect_max_delay,
        logout_timeout=conn_cfg.logout_timeout,
    )
    queue = ConnectQueue(
        supervisor,
        registry,
        connect_spacing=conn_cfg.connect_spacing,
        eviction_cooldown=conn_cfg.eviction_cooldown,
        single_connection=conn_cfg.single_connection,
    )
    supervisor.bind_queue(queue.enqueue)
    registry.bind_supervisor(supervisor.teardown)
    directory = AgentDirectory(db_manager)
    responder = AutoResponder(
        registry=registry,
        directory=directory,
        history=history,
        generator=generator,
        generator_timeout=config.generator.timeout,
        fallback_text=ar_cfg.fallback_text,
        fallback_to_first_agent=ar_cfg.fallback_to_first_agent,
    )
    supervisor.set_responder(responder)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await db_manager.initialize()
        logger.info("Database initialized at %s", config.db_path)
        await registry.load()
        queue.start()
        if generator is not None:
            logger.info("Auto-responder active, model=%s", config.generator.model)
        else:
            logger.info("Auto-responder has no text generator; replies disabled")
        logger.info(
            "Connect queue started, spacing=%.1fs single_connection=%s",
            conn_cfg.connect_spacing, conn_cfg.single_connection,
        )
        yield
        await queue.stop()
        await supervisor.shutdown()
        await provider.close()
        await db_manager.close()

    app = FastAPI(
        title=config.api.title,
        description="Chat session lifecycle and auto-response gateway",
        version=config.api.version,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.supervisor = supervisor
    app.state.queue = queue
    app.state.directory = directory
    app.state.responder = responder

    require_owner = create_owner_dependency(config.api)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, requests_per_minute=config.rate_limit.requests_per_minute)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(create_sessions_router(registry, supervisor, queue, history, require_owner))
    app.include_router(create_auto_response_router(registry, responder, default_settings, require_owner))
    app.include_router(create_agents_router(directory, require_owner))
    app.include_router(create_system_router(supervisor, queue, require_owner))
    app.include_router(create_health_router(config, registry, supervisor, queue, responder))
    return app


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitedError) and exc.reset_time:
        headers["Retry-After"] = str(exc.reset_time)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.error_code, exc.message)
    elif exc.details:
        logger.info("%s %s rejected: %s %s", request.method, request.url.path, exc.error_code, sanitize_dict(exc.details))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.error_code, exc.message, exc.details),
        headers=headers if headers else None,
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_envelope("VALIDATION_ERROR", "Request validation failed", {"validation_errors": errors}),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_envelope("INTERNAL_SERVER_ERROR", "Internal server error"),
    )
