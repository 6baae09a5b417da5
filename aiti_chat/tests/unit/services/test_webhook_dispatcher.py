"""Tests for webhook endpoint resolution, auth headers and dispatch."""

from __future__ import annotations

import asyncio

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import ReadTimeout

from aiti_chat.auth import AgentProfile
from aiti_chat.db.settings import AgentSettings
from aiti_chat.services.webhook import dispatcher
from aiti_chat.services.webhook.dispatcher import (
    AuthConfig,
    WebhookTarget,
    build_auth_headers,
    dispatch,
    resolve_webhook_target,
)
from aiti_chat.services.webhook.errors import (
    DispatchTimeout,
    MissingEndpoint,
    ServerError,
    TransportError,
)
from aiti_chat.services.webhook.payload import PendingTurn, build_webhook_request


def _body():
    return build_webhook_request(PendingTurn(conversation_id="chat-1", message_id="msg-1", text="Hallo"))


def test_agent_url_overrides_global_url() -> None:
    agent = AgentProfile(id="a1", name="Bot", webhook_url=" https://agent.example.com/hook ")
    settings = AgentSettings(webhook_url="https://global.example.com/hook")

    target = resolve_webhook_target(agent, settings)

    assert target.url == "https://agent.example.com/hook"


def test_blank_agent_url_uses_global_url() -> None:
    agent = AgentProfile(id="a1", name="Bot", webhook_url="   ")
    settings = AgentSettings(webhook_url="https://global.example.com/hook")

    assert resolve_webhook_target(agent, settings).url == "https://global.example.com/hook"


def test_missing_endpoint_raises_before_network(fake_webhook) -> None:
    with pytest.raises(MissingEndpoint):
        resolve_webhook_target(AgentProfile(id="a1", name="Bot"), AgentSettings())

    assert fake_webhook.calls == []


def test_basic_auth_header() -> None:
    settings = AgentSettings(auth_type="basic", basic_auth_username="u", basic_auth_password="p")

    headers = build_auth_headers(AuthConfig.from_settings(settings))

    assert headers == {"Authorization": "Basic dTpw"}


def test_api_key_header_uses_configured_name() -> None:
    auth = AuthConfig(auth_type="apiKey", api_key="secret")

    assert build_auth_headers(auth) == {"x-api-key": "secret"}
    assert build_auth_headers(auth, api_key_header="X-N8N-Key") == {"X-N8N-Key": "secret"}


def test_oauth_header() -> None:
    assert build_auth_headers(AuthConfig(auth_type="oauth", oauth_token="tok")) == {
        "Authorization": "Bearer tok"
    }


@pytest.mark.parametrize(
    "auth",
    [
        AuthConfig(auth_type="none", api_key="ignored"),
        AuthConfig(auth_type="apiKey"),
        AuthConfig(auth_type="basic"),
        AuthConfig(auth_type="oauth"),
    ],
)
def test_missing_credentials_omit_header(auth: AuthConfig) -> None:
    assert build_auth_headers(auth) == {}


def test_dispatch_posts_once_with_headers_and_timeout(fake_webhook) -> None:
    fake_webhook.respond(200, {"reply": "Hi there"})
    target = WebhookTarget(
        url="https://hooks.example.com/x",
        auth=AuthConfig(auth_type="basic", username="u", password="p"),
    )

    response = asyncio.run(dispatch(target, _body(), timeout=5))

    assert response.status == 200
    assert len(fake_webhook.calls) == 1
    call = fake_webhook.last_call
    assert call["url"] == "https://hooks.example.com/x"
    assert call["headers"] == {"Authorization": "Basic dTpw"}
    assert call["timeout"] == 5
    assert call["json"]["message"] == "Hallo"


def test_dispatch_uses_default_timeout(fake_webhook) -> None:
    asyncio.run(dispatch(WebhookTarget(url="https://hooks.example.com/x"), _body()))

    assert fake_webhook.last_call["timeout"] == 20.0


def test_non_2xx_raises_server_error(fake_webhook) -> None:
    fake_webhook.respond(500, "boom", content_type="text/plain")

    with pytest.raises(ServerError) as exc:
        asyncio.run(dispatch(WebhookTarget(url="https://hooks.example.com/x"), _body()))

    assert exc.value.status == 500
    assert exc.value.body == "boom"
    assert "500" in str(exc.value) and "boom" in str(exc.value)


def test_timeout_is_classified(fake_webhook) -> None:
    fake_webhook.error = ReadTimeout("slow")

    with pytest.raises(DispatchTimeout):
        asyncio.run(dispatch(WebhookTarget(url="https://hooks.example.com/x"), _body()))


def test_transport_failure_keeps_cause(fake_webhook) -> None:
    cause = RequestsConnectionError("refused")
    fake_webhook.error = cause

    with pytest.raises(TransportError) as exc:
        asyncio.run(dispatch(WebhookTarget(url="https://hooks.example.com/x"), _body()))

    assert exc.value.cause is cause


def test_webhook_test_event(fake_webhook) -> None:
    fake_webhook.respond(200, "")
    agent = AgentProfile(id="a1", name="Bot", description="Hilft")

    message = asyncio.run(dispatcher.test_webhook(WebhookTarget(url="https://hooks.example.com/x"), agent))

    assert message == dispatcher.TEST_REPLY_MESSAGE
    payload = fake_webhook.last_call["json"]
    assert payload["event"] == "webhook.test"
    assert payload["agent"] == {"id": "a1", "name": "Bot", "description": "Hilft"}
    assert payload["sentAt"]
