"""Agent settings and webhook integration endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status

from ...auth import AuthUser
from ...db.client import PersistenceError
from ...db.settings import AgentSettings, SettingsProvider
from ...services.webhook.dispatcher import resolve_webhook_target, test_webhook
from ...services.webhook.errors import DispatchError, MissingEndpoint
from ..dependencies import get_auth_user, get_settings_provider
from ..schemas import (
    AgentSettingsResponse,
    AgentSettingsUpdateRequest,
    IntegrationUpdateRequest,
    WebhookTestRequest,
    WebhookTestResponse,
)

router = APIRouter()


def _to_response(settings: AgentSettings) -> AgentSettingsResponse:
    return AgentSettingsResponse(**settings.to_public_dict())


@router.get("/settings/agent", response_model=AgentSettingsResponse, status_code=status.HTTP_200_OK)
def get_agent_settings(provider: SettingsProvider = Depends(get_settings_provider)) -> AgentSettingsResponse:
    """Return the caller's agent settings without credentials."""

    try:
        settings = provider.refresh()
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_response(settings)


@router.patch("/settings/agent", response_model=AgentSettingsResponse, status_code=status.HTTP_200_OK)
def update_agent_settings(
    payload: AgentSettingsUpdateRequest,
    provider: SettingsProvider = Depends(get_settings_provider),
) -> AgentSettingsResponse:
    updates = payload.model_dump(exclude_unset=True)
    try:
        settings = provider.save(updates)
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_response(settings)


@router.put("/settings/integration", response_model=AgentSettingsResponse, status_code=status.HTTP_200_OK)
def update_integration(
    payload: IntegrationUpdateRequest,
    provider: SettingsProvider = Depends(get_settings_provider),
) -> AgentSettingsResponse:
    """Store the global webhook URL and the credentials for the chosen auth mode."""

    try:
        settings = provider.save_integration(
            webhook_url=payload.webhook_url,
            auth_type=payload.auth_type,
            api_key=payload.api_key,
            basic_username=payload.basic_auth_username,
            basic_password=payload.basic_auth_password,
            oauth_token=payload.oauth_token,
        )
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_response(settings)


@router.post("/settings/webhook/test", response_model=WebhookTestResponse, status_code=status.HTTP_200_OK)
async def run_webhook_test(
    payload: WebhookTestRequest,
    user: AuthUser = Depends(get_auth_user),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> WebhookTestResponse:
    """Send a ``webhook.test`` event to the effective endpoint and echo the reply."""

    agent = None
    if payload.agent_id:
        agent = user.get_agent(payload.agent_id)
        if agent is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")

    try:
        settings = await asyncio.to_thread(provider.current)
        target = resolve_webhook_target(agent, settings)
    except MissingEndpoint as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    try:
        message = await test_webhook(target, agent)
    except DispatchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return WebhookTestResponse(url=target.url, message=message)
