"""CSRF token handling for SAP web services.

SAP services (NetWeaver Gateway, ADT) expect every modifying request to carry
an ``X-CSRF-Token`` header together with the session cookie the token was
issued for. Tokens are fetched by sending ``X-CSRF-Token: Fetch`` to a cheap
endpoint, stored in session storage and replayed until the backend answers
with ``X-CSRF-Token: Required`` or 401. In that case the token is fetched
again and the request is repeated, exactly once.

The storage is read and written without locking. Sessions that issue several
requests in parallel may refresh the token more than once; the last write
wins.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from pydantic import ValidationError

from .errors import (
    AuthenticationFailure,
    CsrfFetchFailure,
    RequestFailure,
    TokenRefreshError,
    TransportError,
)
from .errortext import ErrorTextExtractor
from .models import TOKEN_HEADER, ConnectionIdentity, HttpRequest, HttpResponse, TokenRecord

LOG = logging.getLogger(__name__)

FETCH_VALUE = "Fetch"
REQUIRED_VALUE = "Required"

Send = Callable[[HttpRequest], HttpResponse]


class RequestSender(Protocol):
    """Transport used to talk to the backend."""

    def send(self, request: HttpRequest) -> HttpResponse:
        """Send the request; return any response, raise ``TransportError`` if none arrived."""


class SessionStorage(Protocol):
    """Session-scoped key/value storage for token records."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def unset(self, key: str) -> None: ...


class InMemorySessionStorage:
    """Dict-backed storage living as long as the object itself."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def unset(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._values


def always_required(request: HttpRequest) -> bool:
    return True


def token_rejected(response: HttpResponse) -> bool:
    """Default retry trigger: token header says `Required` or the session is unauthenticated."""

    return response.header(TOKEN_HEADER) == REQUIRED_VALUE or response.status_code == 401


def token_rejected_forbidden(response: HttpResponse) -> bool:
    """Gateway (OData) variant: 403 together with the `Required` token header."""

    return response.status_code == 403 and response.header(TOKEN_HEADER) == REQUIRED_VALUE


def required_for_modifying_methods(request: HttpRequest) -> bool:
    """GET and OPTIONS requests do not need a token."""

    return request.method.upper() not in {"GET", "OPTIONS"}


class CsrfTokenManager:
    """Fetches, caches, attaches and refreshes CSRF tokens for one transport."""

    MAX_RETRIES = 1

    def __init__(
        self,
        sender: RequestSender,
        storage: SessionStorage | None = None,
        *,
        error_text: ErrorTextExtractor | None = None,
        fixed_url_params: Callable[[str], str] | None = None,
        csrf_required: Callable[[HttpRequest], bool] = always_required,
        is_token_rejected: Callable[[HttpResponse], bool] = token_rejected,
    ) -> None:
        self._sender = sender
        self._storage = storage if storage is not None else InMemorySessionStorage()
        self._error_text = error_text or ErrorTextExtractor()
        self._fixed_url_params = fixed_url_params or (lambda url: url)
        self._csrf_required = csrf_required
        self._token_rejected = is_token_rejected

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    def cached(self, identity: ConnectionIdentity) -> TokenRecord | None:
        """Return the stored record if it still matches the connection configuration."""

        raw = self._storage.get(identity.storage_key)
        if raw is None:
            return None
        try:
            record = TokenRecord.model_validate_json(raw)
        except ValidationError:
            LOG.warning("Discarding unreadable CSRF token record for %s", identity.key)
            self.invalidate(identity)
            return None
        if record.fingerprint != identity.fingerprint:
            LOG.info("Connection %s changed since the CSRF token was fetched; discarding it", identity.key)
            self.invalidate(identity)
            return None
        return record

    def get_headers(self, identity: ConnectionIdentity) -> dict[str, str]:
        """Headers to attach to a request, fetching a token if none is cached."""

        record = self.cached(identity) or self.refresh(identity)
        return record.headers()

    def invalidate(self, identity: ConnectionIdentity) -> None:
        self._storage.unset(identity.storage_key)

    def refresh(self, identity: ConnectionIdentity) -> TokenRecord:
        """Request a new token and store it together with the session cookie."""

        url = self._fixed_url_params(identity.csrf_request_url)
        request = HttpRequest("GET", url, {TOKEN_HEADER: FETCH_VALUE})
        LOG.debug("Fetching CSRF token for %s from %s", identity.key, url)
        try:
            response = self._sender.send(request)
        except TransportError as exc:
            raise CsrfFetchFailure(f"Cannot fetch CSRF token from {url}: {exc}") from exc

        token = response.header(TOKEN_HEADER)
        if not token or token == REQUIRED_VALUE:
            self.invalidate(identity)
            if response.status_code == 401:
                raise AuthenticationFailure(
                    f"Authentication failed while fetching CSRF token from {url}",
                    response=response,
                )
            raise TokenRefreshError(
                self._error_text.extract(response.body, response.content_type),
                response=response,
            )

        record = TokenRecord(token=token, cookie=_cookie_header(response), fingerprint=identity.fingerprint)
        self._storage.set(identity.storage_key, record.model_dump_json())
        LOG.debug("Stored CSRF token %s... for %s", token[:8], identity.key)
        return record

    def is_stale_token_response(self, response: HttpResponse) -> bool:
        return self._token_rejected(response)

    def send_with_retry(
        self,
        request: HttpRequest,
        identity: ConnectionIdentity,
        send: Send | None = None,
    ) -> HttpResponse:
        """Send with CSRF headers, refreshing the token and resending at most once."""

        send = send or self._sender.send
        needs_token = self._csrf_required(request)
        retries_left = self.MAX_RETRIES
        try:
            while True:
                outgoing = request.with_headers(self.get_headers(identity)) if needs_token else request
                try:
                    response = send(outgoing)
                except TransportError as exc:
                    raise RequestFailure(f"No response from {request.url}: {exc}") from exc
                if not response.ok and needs_token and retries_left and self.is_stale_token_response(response):
                    retries_left -= 1
                    LOG.info(
                        "CSRF token rejected for %s (HTTP %s); fetching a new one and retrying",
                        identity.key,
                        response.status_code,
                    )
                    self.invalidate(identity)
                    continue
                break
            if response.ok:
                return response
            raise self.failure_for(response)
        except AuthenticationFailure:
            self.invalidate(identity)
            raise

    def failure_for(self, response: HttpResponse) -> RequestFailure | AuthenticationFailure:
        """Build the error describing a failed response."""

        described = self._error_text.describe(response.body, response.content_type)
        if response.status_code == 401:
            return AuthenticationFailure(described.text or "Authentication failed", response=response)
        return RequestFailure(
            described.text or f"HTTP {response.status_code}",
            status_code=response.status_code,
            response=response,
            use_remote_message_as_title=described.meaningful_title,
        )


def _cookie_header(response: HttpResponse) -> str:
    cookies = response.set_cookies
    if not cookies:
        single = response.header("Set-Cookie")
        cookies = (single,) if single else ()
    return ";".join(cookies)


__all__ = [
    "CsrfTokenManager",
    "FETCH_VALUE",
    "InMemorySessionStorage",
    "REQUIRED_VALUE",
    "RequestSender",
    "SessionStorage",
    "always_required",
    "required_for_modifying_methods",
    "token_rejected",
    "token_rejected_forbidden",
]
