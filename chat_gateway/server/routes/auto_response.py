"""Auto-response settings and dry-run endpoints."""
from dataclasses import replace
from typing import Any

from fastapi import APIRouter, Depends

from chat_gateway.autoreply.responder import AutoResponder
from chat_gateway.server.auth import OwnerDependency
from chat_gateway.server.models.common import success_envelope
from chat_gateway.server.models.requests import AutoResponseSettingsRequest, AutoResponseTestRequest
from chat_gateway.server.models.responses import AutoResponseSettingsResponse, AutoResponseTestResponse
from chat_gateway.sessions.registry import SessionRegistry
from chat_gateway.state.models.session import AutoResponseSettings


def create_auto_response_router(
    registry: SessionRegistry,
    responder: AutoResponder,
    defaults: AutoResponseSettings,
    require_owner: OwnerDependency,
) -> APIRouter:
    """Create auto-response router with injected dependencies."""
    router = APIRouter(tags=["auto-response"])

    @router.get("/sessions/{session_id}/auto-response")
    async def get_settings(session_id: str, owner_id: str = Depends(require_owner)) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        settings = await registry.get_auto_response(session_id)
        return success_envelope(AutoResponseSettingsResponse.from_settings(settings))

    @router.put("/sessions/{session_id}/auto-response")
    async def put_settings(
        session_id: str, body: AutoResponseSettingsRequest, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        registry.get_owned(session_id, owner_id)
        settings = await registry.set_auto_response(
            session_id,
            AutoResponseSettings(
                enabled=body.enabled,
                trigger_word=(body.trigger_word or "").strip() or None,
                prompt=body.prompt,
            ),
        )
        return success_envelope(AutoResponseSettingsResponse.from_settings(settings))

    @router.post("/auto-response/test")
    async def test_auto_response(
        body: AutoResponseTestRequest, owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        """Match a sample message and generate a reply without sending it."""
        settings = defaults
        if body.session_id:
            registry.get_owned(body.session_id, owner_id)
            settings = await registry.get_auto_response(body.session_id)
        if body.trigger_word is not None:
            settings = replace(settings, trigger_word=body.trigger_word.strip() or None)
        if body.prompt is not None:
            settings = replace(settings, prompt=body.prompt)
        reply = await responder.test(body.message, settings, owner_id)
        return success_envelope(AutoResponseTestResponse.from_reply(reply))

    return router
