"""Exception hierarchy for building and dispatching webhook turns."""

from __future__ import annotations

from typing import Optional


class WebhookError(Exception):
    """Base class; ``str(exc)`` is the user-facing (German) description."""


class EmptyMessageError(WebhookError):
    """A turn with neither text nor attachments was submitted."""

    def __init__(self, message: str = "Nachricht ist leer.") -> None:
        super().__init__(message)


class EncodingFailure(WebhookError):
    """An attachment could not be read or serialised."""

    def __init__(self, message: str = "Anhang konnte nicht gelesen werden.", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class DispatchError(WebhookError):
    """Raised for failures around the outbound webhook request."""


class MissingEndpoint(DispatchError):
    def __init__(self, message: str = "Kein Webhook konfiguriert. Hinterlege die URL in den Einstellungen.") -> None:
        super().__init__(message)


class DispatchTimeout(DispatchError):
    def __init__(
        self,
        message: str = "Die Verbindung zum Webhook hat zu lange gedauert. Bitte versuche es erneut.",
    ) -> None:
        super().__init__(message)


class TransportError(DispatchError):
    """Network-level failure (DNS, refused connection, TLS, ...)."""

    def __init__(self, cause: Optional[BaseException] = None, message: Optional[str] = None) -> None:
        detail = message or (f"Webhook nicht erreichbar: {cause}" if cause else "Webhook nicht erreichbar.")
        super().__init__(detail)
        self.cause = cause


class ServerError(DispatchError):
    """The endpoint answered with a status outside ``[200, 300)``."""

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        message = f"Webhook antwortete mit Status {status}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)


__all__ = [
    "DispatchError",
    "DispatchTimeout",
    "EmptyMessageError",
    "EncodingFailure",
    "MissingEndpoint",
    "ServerError",
    "TransportError",
    "WebhookError",
]
