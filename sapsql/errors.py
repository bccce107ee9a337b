"""Error types raised by the SAP connectors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import HttpResponse


class SapConnectorError(RuntimeError):
    """Base class for every error surfaced by sapsql."""


class TransportError(SapConnectorError):
    """Raised by a request sender when no response was received at all."""


class AuthenticationFailure(SapConnectorError):
    """Credentials were rejected by the backend."""

    def __init__(self, message: str = "Authentication failed", *, response: HttpResponse | None = None) -> None:
        super().__init__(message)
        self.response = response


class UnsupportedPasswordError(AuthenticationFailure):
    """The password contains characters SAP basic authentication cannot handle."""

    use_remote_message_as_title = True


class CsrfFetchFailure(SapConnectorError):
    """The CSRF token request could not reach the backend."""


class TokenRefreshError(SapConnectorError):
    """The backend answered the CSRF token request without a usable token."""

    def __init__(self, text: str, *, response: HttpResponse | None = None) -> None:
        super().__init__(f"Cannot fetch CSRF token: {text}")
        self.text = text
        self.response = response


class RequestFailure(SapConnectorError):
    """A request returned a non-2xx response or no response at all."""

    def __init__(
        self,
        text: str,
        *,
        status_code: int | None = None,
        response: HttpResponse | None = None,
        use_remote_message_as_title: bool = False,
    ) -> None:
        super().__init__(text)
        self.text = text
        self.status_code = status_code
        self.response = response
        self.use_remote_message_as_title = use_remote_message_as_title


class ResultTooLargeError(SapConnectorError):
    """The result hit the row ceiling of the SQL console endpoint."""


class TranslationError(SapConnectorError):
    """SQL could not be translated into the SAP dialect."""


class CodecError(SapConnectorError):
    """A value could not be converted to or from its SAP encoding."""


__all__ = [
    "AuthenticationFailure",
    "CodecError",
    "CsrfFetchFailure",
    "RequestFailure",
    "ResultTooLargeError",
    "SapConnectorError",
    "TokenRefreshError",
    "TranslationError",
    "TransportError",
    "UnsupportedPasswordError",
]
