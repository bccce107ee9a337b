"""Shared value objects used across the connector modules."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel

ROW_CEILING_MAX = 99999

TOKEN_HEADER = "X-CSRF-Token"
COOKIE_HEADER = "Cookie"


class ColumnType(str, Enum):
    """Canonical data types understood by the value codec."""

    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    NUMERIC_STRING = "numeric_string"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    BINARY = "binary"


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """Expected result column: the alias SAP returns and how to decode it."""

    name: str
    type: ColumnType = ColumnType.STRING
    key: str | None = None
    sql_data_type: str | None = None

    @property
    def column_key(self) -> str:
        return self.key or self.name


@dataclass(frozen=True, slots=True)
class ConnectionIdentity:
    """Everything about a connection that a cached CSRF token depends on."""

    key: str
    url: str
    csrf_request_url: str
    auth_options: str = "{}"

    @classmethod
    def build(
        cls,
        key: str,
        url: str,
        csrf_request_url: str,
        auth_options: Mapping[str, Any] | None = None,
    ) -> ConnectionIdentity:
        """Create an identity, serializing the auth options deterministically."""

        snapshot = json.dumps(dict(auth_options or {}), sort_keys=True, default=str)
        return cls(key=key, url=url, csrf_request_url=csrf_request_url, auth_options=snapshot)

    @property
    def fingerprint(self) -> str:
        """Hash of the properties whose change must invalidate a cached token."""

        raw = self.url + self.csrf_request_url + self.auth_options
        return hashlib.md5(raw.encode("utf-8")).hexdigest()

    @property
    def storage_key(self) -> str:
        return f"csrf_{self.key}"


class TokenRecord(BaseModel):
    """CSRF token and session cookie persisted in session storage."""

    token: str
    cookie: str = ""
    fingerprint: str

    def headers(self) -> dict[str, str]:
        return {TOKEN_HEADER: self.token, COOKIE_HEADER: self.cookie}


@dataclass(frozen=True, slots=True)
class PaginationDirective:
    """Client-side pagination derived from a translated statement."""

    limit: int | None = None
    offset: int = 0
    row_ceiling: int = ROW_CEILING_MAX


@dataclass(frozen=True, slots=True)
class ResultEnvelope:
    """Raw rows as returned by the data preview service."""

    columns: tuple[str, ...] = ()
    rows: tuple[Mapping[str, str], ...] = ()
    total_rows: int | None = None


@dataclass(frozen=True, slots=True)
class HttpRequest:
    """Transport-neutral description of an outgoing request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | bytes | None = None

    def with_headers(self, headers: Mapping[str, str]) -> HttpRequest:
        """Return a copy with the given headers replacing existing ones."""

        merged = {
            name: value
            for name, value in self.headers.items()
            if name.lower() not in {key.lower() for key in headers}
        }
        merged.update(headers)
        return replace(self, headers=merged)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Transport-neutral response; headers are looked up case-insensitively."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    set_cookies: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.header("Content-Type") or ""

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


__all__ = [
    "COOKIE_HEADER",
    "ColumnSpec",
    "ColumnType",
    "ConnectionIdentity",
    "HttpRequest",
    "HttpResponse",
    "PaginationDirective",
    "ROW_CEILING_MAX",
    "ResultEnvelope",
    "TOKEN_HEADER",
    "TokenRecord",
]
