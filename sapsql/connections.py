"""HTTP connectors for SAP's ADT SQL console and OData 2.0 services."""

from __future__ import annotations

import getpass
import json
import logging
import re
import time
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode, urljoin

from .codec import ValueCodec
from .config import ConnectionProfileConfig
from .csrf import (
    CsrfTokenManager,
    RequestSender,
    SessionStorage,
    required_for_modifying_methods,
    token_rejected_forbidden,
)
from .dialect import SqlDialect, SqlDialectTranslator
from .errors import RequestFailure, TranslationError
from .errortext import ErrorTextExtractor
from .models import ROW_CEILING_MAX, ColumnSpec, ConnectionIdentity, HttpRequest, HttpResponse
from .query import QueryResult, ResultRowDecoder, parse_data_preview
from .transport import FixedUrlParams, RequestsSender, auth_options, check_password

LOG = logging.getLogger(__name__)

ADT_DATA_PREVIEW_PATH = "/sap/bc/adt/datapreview/"
ADT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ODATA_ACCEPT = "application/json"

_ESCAPE = re.compile(r"[\x00\n\r\x1a\"'\\]")


class SapHttpConnection:
    """Common plumbing: fixed URL parameters, CSRF handling and credentials."""

    def __init__(
        self,
        profile: ConnectionProfileConfig,
        *,
        sender: RequestSender | None = None,
        storage: SessionStorage | None = None,
        error_text: ErrorTextExtractor | None = None,
        **csrf_options: Any,
    ) -> None:
        check_password(profile.password, allow_unicode=profile.allow_unicode_passwords)
        self.profile = profile
        self.fixed_url_params = FixedUrlParams(profile.sap_client)
        self.error_text = error_text or ErrorTextExtractor()
        self._sender = sender or RequestsSender(
            auth=_basic_auth(profile.user, profile.password),
            timeout=profile.timeout,
            verify=profile.verify_tls,
        )
        self.tokens = CsrfTokenManager(
            self._sender,
            storage,
            error_text=self.error_text,
            fixed_url_params=self.fixed_url_params,
            **csrf_options,
        )

    @property
    def url(self) -> str:
        return self.profile.url

    @property
    def csrf_request_url(self) -> str:
        return urljoin(self.url, self.profile.csrf_request_url or "")

    @property
    def identity(self) -> ConnectionIdentity:
        return ConnectionIdentity.build(
            self.profile.name,
            self.url,
            self.csrf_request_url,
            auth_options(self.profile.user, self.profile.password, verify=self.profile.verify_tls),
        )

    def save_credentials(self, user: str, password: str, *, owner: str | None = None) -> bool:
        """Store new credentials on the connection and forget the cached token.

        Credentials saved on behalf of another user are ignored. Returns
        whether the connection was updated.
        """

        if owner is not None and owner != getpass.getuser():
            LOG.info("Not updating credentials of %s on behalf of %s", self.profile.name, owner)
            return False
        check_password(password, allow_unicode=self.profile.allow_unicode_passwords)
        previous = self.identity
        self.profile = self.profile.model_copy(update={"user": user, "password": password})
        update_auth = getattr(self._sender, "update_auth", None)
        if callable(update_auth):
            update_auth(_basic_auth(user, password))
        self.tokens.invalidate(previous)
        return True

    def close(self) -> None:
        close = getattr(self._sender, "close", None)
        if callable(close):
            close()


class AdtSqlConnector(SapHttpConnection):
    """Runs SQL through the data preview service of the ABAP Development Tools."""

    def __init__(
        self,
        profile: ConnectionProfileConfig,
        *,
        translator: SqlDialectTranslator | None = None,
        codec: ValueCodec | None = None,
        **options: Any,
    ) -> None:
        super().__init__(profile, **options)
        codec = codec or ValueCodec()
        self.translator = translator or SqlDialectTranslator(SqlDialect(profile.dialect), codec=codec)
        self._decoder = ResultRowDecoder(codec)
        self._last_row_number = ROW_CEILING_MAX

    @property
    def url(self) -> str:
        return self.profile.url.rstrip("/") + ADT_DATA_PREVIEW_PATH

    @property
    def affected_rows_count(self) -> int:
        """Row ceiling requested by the last statement."""

        return self._last_row_number

    def run_sql(self, sql: str, columns: Sequence[ColumnSpec] | None = None) -> QueryResult:
        """Translate and execute a statement, returning decoded rows."""

        if not sql or not sql.strip():
            raise TranslationError("Cannot run an empty SQL statement")
        started = time.perf_counter()
        translated = self.translator.translate(sql)
        pagination = translated.pagination
        self._last_row_number = pagination.row_ceiling

        path = "freestyle?" + urlencode({"rowNumber": pagination.row_ceiling})
        response = self.perform_request("POST", path, translated.sql)
        envelope = parse_data_preview(response.body)
        decoded = self._decoder.decode(envelope, pagination, columns)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        names = tuple(spec.column_key for spec in columns) if columns else envelope.columns
        LOG.debug("%s returned %s row(s) in %sms", self.profile.name, len(decoded.rows), elapsed_ms)
        return QueryResult(
            columns=names,
            rows=decoded.rows,
            status=f"{len(decoded.rows)} row(s)",
            elapsed_ms=elapsed_ms,
            row_count=len(decoded.rows),
            total_row_count=decoded.total_row_count,
            pagination=pagination,
        )

    def run_custom_query(self, sql: str) -> QueryResult:
        return self.run_sql(sql)

    def perform_request(
        self,
        method: str,
        path: str,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        url = self.fixed_url_params.apply(urljoin(self.url, path))
        request = HttpRequest(method, url, {"Accept": ADT_ACCEPT, **(headers or {})}, body)
        return self.tokens.send_with_retry(request, self.identity)

    @staticmethod
    def escape_string(text: str) -> str:
        """Backslash-escape characters that would break a quoted literal."""

        return _ESCAPE.sub(lambda match: "\\" + match.group(0), text)

    def can_join(self, other: object) -> bool:
        """Statements can only be joined within the same ADT endpoint."""

        return isinstance(other, AdtSqlConnector) and other.url == self.url


class OData2Connector(SapHttpConnection):
    """JSON client for SAP Gateway OData 2.0 services.

    Only modifying requests carry a CSRF token. Gateway reports a stale token
    with 403 and ``X-CSRF-Token: Required``.
    """

    def __init__(self, profile: ConnectionProfileConfig, **options: Any) -> None:
        options.setdefault("csrf_required", required_for_modifying_methods)
        options.setdefault("is_token_rejected", token_rejected_forbidden)
        super().__init__(profile, **options)

    @property
    def csrf_request_url(self) -> str:
        return urljoin(self.url, self.profile.csrf_request_url or self.url)

    def request(
        self,
        method: str,
        path: str,
        payload: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the JSON payload, unwrapping OData's ``d`` envelope."""

        url = urljoin(self.url.rstrip("/") + "/", path.lstrip("/"))
        query = {"$format": "json", **(params or {})}
        url = self.fixed_url_params.apply(f"{url}{'&' if '?' in url else '?'}{urlencode(query)}")
        headers = {"Accept": ODATA_ACCEPT}
        body = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            body = json.dumps(payload)
        response = self.tokens.send_with_retry(HttpRequest(method.upper(), url, headers, body), self.identity)
        return _odata_payload(response)

    def read(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def create(self, path: str, payload: Any) -> Any:
        return self.request("POST", path, payload)

    def update(self, path: str, payload: Any) -> Any:
        return self.request("MERGE", path, payload)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)


def create_connector(profile: ConnectionProfileConfig, **options: Any) -> AdtSqlConnector | OData2Connector:
    """Build the connector matching the profile's kind."""

    if profile.kind == "odata2":
        return OData2Connector(profile, **options)
    return AdtSqlConnector(profile, **options)


def _odata_payload(response: HttpResponse) -> Any:
    if not response.body.strip():
        return None
    try:
        data = json.loads(response.body)
    except json.JSONDecodeError as exc:
        raise RequestFailure(
            f"Invalid JSON in OData response: {exc}",
            status_code=response.status_code,
            response=response,
        ) from exc
    if isinstance(data, dict) and "d" in data:
        return data["d"]
    return data


def _basic_auth(user: str | None, password: str | None) -> tuple[str, str] | None:
    if not user:
        return None
    return user, password or ""


__all__ = [
    "ADT_ACCEPT",
    "ADT_DATA_PREVIEW_PATH",
    "AdtSqlConnector",
    "OData2Connector",
    "SapHttpConnection",
    "create_connector",
]
