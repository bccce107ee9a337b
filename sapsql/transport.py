"""HTTP transport adapter built on requests."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from .errors import TransportError, UnsupportedPasswordError
from .models import HttpRequest, HttpResponse

LOG = logging.getLogger(__name__)

_NON_ASCII = re.compile(r"[^\x20-\x7e]")

ASCII_PASSWORD_HINT = (
    "Unsupported characters (non-ASCII) detected in SAP-password. Please change the password in SAP!"
)


class RequestsSender:
    """Sends ``HttpRequest`` objects through a ``requests.Session``.

    Non-2xx responses are returned as they are; only requests that got no
    response at all raise ``TransportError``.
    """

    def __init__(
        self,
        *,
        auth: tuple[str, str] | None = None,
        timeout: float = 30.0,
        verify: bool = True,
        session: requests.Session | None = None,
    ) -> None:
        self._session = session or requests.Session()
        self._auth = auth
        self._timeout = timeout
        self._verify = verify

    def send(self, request: HttpRequest) -> HttpResponse:
        body = request.body.encode("utf-8") if isinstance(request.body, str) else request.body
        try:
            response = self._session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=body,
                auth=self._auth,
                timeout=self._timeout,
                verify=self._verify,
            )
        except requests.RequestException as exc:
            LOG.debug("%s %s failed without response: %s", request.method, request.url, exc)
            raise TransportError(str(exc)) from exc
        LOG.debug("%s %s -> HTTP %s", request.method, request.url, response.status_code)
        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text,
            set_cookies=_set_cookie_headers(response),
        )

    def update_auth(self, auth: tuple[str, str] | None) -> None:
        self._auth = auth

    def close(self) -> None:
        self._session.close()


class FixedUrlParams:
    """Query parameters appended to every URL, such as the SAP client (MANDT)."""

    def __init__(self, sap_client: str | None = None, extra: Mapping[str, str] | None = None) -> None:
        params = dict(extra or {})
        if sap_client is not None and not any(name.lower() == "sap-client" for name in params):
            params["sap-client"] = sap_client
        self._params = params

    def apply(self, url: str) -> str:
        """Append every fixed parameter the URL does not already carry."""

        if not self._params:
            return url
        parts = urlsplit(url)
        existing = {name.lower() for name, _ in parse_qsl(parts.query, keep_blank_values=True)}
        missing = {name: value for name, value in self._params.items() if name.lower() not in existing}
        if not missing:
            return url
        query = f"{parts.query}&{urlencode(missing)}" if parts.query else urlencode(missing)
        return urlunsplit(parts._replace(query=query))

    def __call__(self, url: str) -> str:
        return self.apply(url)


def check_password(password: str | None, *, allow_unicode: bool = False) -> None:
    """Reject non-ASCII passwords, which fail basic authentication on most SAP systems."""

    if allow_unicode or not password:
        return
    if _NON_ASCII.search(password):
        raise UnsupportedPasswordError(ASCII_PASSWORD_HINT)


def auth_options(user: str | None, password: str | None, *, verify: bool = True) -> dict[str, Any]:
    """Request options visible to the backend; part of the connection fingerprint."""

    options: dict[str, Any] = {"verify": verify}
    if user:
        options["auth"] = [user, password or ""]
    return options


def _set_cookie_headers(response: requests.Response) -> tuple[str, ...]:
    raw_headers = getattr(response.raw, "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if callable(getlist):
        return tuple(getlist("Set-Cookie"))
    single = response.headers.get("Set-Cookie")
    return (single,) if single else ()


__all__ = [
    "ASCII_PASSWORD_HINT",
    "FixedUrlParams",
    "RequestsSender",
    "auth_options",
    "check_password",
]
