"""Webhook message protocol: payload building, dispatch and reply normalisation."""

from .attachments import AttachmentReader, AttachmentSource, AudioRecording, EncodedFile
from .dispatcher import (
    AuthConfig,
    WebhookTarget,
    build_auth_headers,
    dispatch,
    resolve_webhook_target,
    test_webhook,
)
from .errors import (
    DispatchError,
    DispatchTimeout,
    EmptyMessageError,
    EncodingFailure,
    MissingEndpoint,
    ServerError,
    TransportError,
    WebhookError,
)
from .normalizer import DEFAULT_REPLY_MESSAGE, REPLY_FIELD_PROBES, RawResponse, normalize_reply
from .payload import (
    PendingTurn,
    WebhookRequestBody,
    build_audio_notification,
    build_webhook_request,
    encode_attachments,
    serialize_history,
)

__all__ = [
    "AttachmentReader",
    "AttachmentSource",
    "AudioRecording",
    "EncodedFile",
    "AuthConfig",
    "WebhookTarget",
    "build_auth_headers",
    "dispatch",
    "resolve_webhook_target",
    "test_webhook",
    "DispatchError",
    "DispatchTimeout",
    "EmptyMessageError",
    "EncodingFailure",
    "MissingEndpoint",
    "ServerError",
    "TransportError",
    "WebhookError",
    "DEFAULT_REPLY_MESSAGE",
    "REPLY_FIELD_PROBES",
    "RawResponse",
    "normalize_reply",
    "PendingTurn",
    "WebhookRequestBody",
    "build_audio_notification",
    "build_webhook_request",
    "encode_attachments",
    "serialize_history",
]
