"""Connectors for SAP's ADT SQL console and OData 2.0 services."""

from __future__ import annotations

from .codec import ValueCodec
from .config import AppConfig, ConnectionProfileConfig, load_config, save_config
from .connections import AdtSqlConnector, OData2Connector, create_connector
from .csrf import CsrfTokenManager, InMemorySessionStorage
from .dialect import Comparator, SqlDialect, SqlDialectTranslator
from .errors import (
    AuthenticationFailure,
    CodecError,
    CsrfFetchFailure,
    RequestFailure,
    ResultTooLargeError,
    SapConnectorError,
    TokenRefreshError,
    TranslationError,
    TransportError,
    UnsupportedPasswordError,
)
from .errortext import ErrorTextExtractor
from .models import ColumnSpec, ColumnType, ConnectionIdentity, PaginationDirective
from .query import QueryResult, ResultRowDecoder
from .session import SessionManager, SessionState

__version__ = "0.1.0"

__all__ = [
    "AdtSqlConnector",
    "AppConfig",
    "AuthenticationFailure",
    "CodecError",
    "ColumnSpec",
    "ColumnType",
    "Comparator",
    "ConnectionIdentity",
    "ConnectionProfileConfig",
    "CsrfFetchFailure",
    "CsrfTokenManager",
    "ErrorTextExtractor",
    "InMemorySessionStorage",
    "OData2Connector",
    "PaginationDirective",
    "QueryResult",
    "RequestFailure",
    "ResultRowDecoder",
    "ResultTooLargeError",
    "SapConnectorError",
    "SessionManager",
    "SessionState",
    "SqlDialect",
    "SqlDialectTranslator",
    "TokenRefreshError",
    "TranslationError",
    "TransportError",
    "UnsupportedPasswordError",
    "ValueCodec",
    "__version__",
    "create_connector",
    "load_config",
    "save_config",
]
