"""
Outbound webhook calls.

Resolves the effective endpoint for an agent, attaches the configured auth
header and performs exactly one POST per turn. The blocking ``requests`` call
runs in a worker thread so the event loop keeps serving other users.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

import requests
from requests.exceptions import RequestException, Timeout

from ...auth.user_context import AgentProfile
from ...config import CONFIG
from ...db.settings import AgentSettings
from .errors import DispatchTimeout, MissingEndpoint, ServerError, TransportError
from .normalizer import RawResponse, normalize_reply
from .payload import ENCODING_JSON, WebhookRequestBody


logger = logging.getLogger(__name__)

TEST_REPLY_MESSAGE = "Webhook antwortete erfolgreich, aber ohne Inhalt."


@dataclass(frozen=True)
class AuthConfig:
    auth_type: str = "none"
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    oauth_token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "AuthConfig":
        return cls(
            auth_type=settings.auth_type,
            api_key=settings.api_key,
            username=settings.basic_auth_username,
            password=settings.basic_auth_password,
            oauth_token=settings.oauth_token,
        )


@dataclass(frozen=True)
class WebhookTarget:
    url: str
    auth: AuthConfig = field(default_factory=AuthConfig)


def resolve_webhook_target(agent: Optional[AgentProfile], settings: AgentSettings) -> WebhookTarget:
    """
    Pick the agent's own URL when set, else the global one.

    Raises:
        MissingEndpoint: neither URL is configured.
    """
    agent_url = ((agent.webhook_url if agent else None) or "").strip()
    url = agent_url or (settings.webhook_url or "").strip()
    if not url:
        raise MissingEndpoint()
    return WebhookTarget(url=url, auth=AuthConfig.from_settings(settings))


def build_auth_headers(auth: AuthConfig, *, api_key_header: Optional[str] = None) -> Dict[str, str]:
    """Headers for the selected auth mode; missing credentials omit the header."""
    headers: Dict[str, str] = {}
    if auth.auth_type == "apiKey":
        if auth.api_key:
            headers[api_key_header or CONFIG.webhook_api_key_header] = auth.api_key
    elif auth.auth_type == "basic":
        if auth.username or auth.password:
            credentials = f"{auth.username or ''}:{auth.password or ''}"
            encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
    elif auth.auth_type == "oauth":
        if auth.oauth_token:
            headers["Authorization"] = f"Bearer {auth.oauth_token}"
    return headers


def _post(target: WebhookTarget, body: WebhookRequestBody, timeout: float) -> RawResponse:
    headers = build_auth_headers(target.auth)
    try:
        response = requests.post(
            target.url,
            headers=headers,
            timeout=timeout,
            **body.request_kwargs(),
        )
    except Timeout as exc:
        raise DispatchTimeout() from exc
    except RequestException as exc:
        raise TransportError(exc) from exc

    raw = RawResponse.from_requests(response)
    if not raw.ok:
        raise ServerError(raw.status, raw.text.strip())
    return raw


async def dispatch(
    target: WebhookTarget,
    body: WebhookRequestBody,
    timeout: Optional[float] = None,
) -> RawResponse:
    """
    Send ``body`` to ``target`` once. No retries.

    Raises:
        DispatchTimeout, TransportError, ServerError
    """
    effective_timeout = timeout if timeout and timeout > 0 else CONFIG.webhook_timeout_seconds
    logger.debug(
        "Dispatching %s webhook request to %s (timeout=%ss)",
        body.encoding,
        target.url,
        effective_timeout,
    )
    return await asyncio.to_thread(_post, target, body, effective_timeout)


async def test_webhook(
    target: WebhookTarget,
    agent: Optional[AgentProfile] = None,
    timeout: Optional[float] = None,
) -> str:
    """Send a ``webhook.test`` event and return the normalised reply."""
    fields = {
        "agent": {
            "id": agent.id if agent else None,
            "name": agent.display_name if agent else None,
            "description": agent.description if agent else None,
        },
        "event": "webhook.test",
        "sentAt": datetime.now(timezone.utc).isoformat(),
    }
    response = await dispatch(target, WebhookRequestBody(encoding=ENCODING_JSON, fields=fields), timeout)
    return normalize_reply(response, TEST_REPLY_MESSAGE)


# Not a pytest test function.
test_webhook.__test__ = False  # type: ignore[attr-defined]


__all__ = [
    "AuthConfig",
    "TEST_REPLY_MESSAGE",
    "WebhookTarget",
    "build_auth_headers",
    "dispatch",
    "resolve_webhook_target",
    "test_webhook",
]
