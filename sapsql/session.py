"""Connection/session manager sharing one CSRF token store across profiles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from .config import AppConfig, ConnectionProfileConfig
from .connections import AdtSqlConnector, OData2Connector, create_connector
from .csrf import InMemorySessionStorage, SessionStorage
from .errors import SapConnectorError
from .models import ColumnSpec
from .query import QueryResult

LOG = logging.getLogger(__name__)
PACKAGE_LOGGER = "sapsql"

SessionListener = Callable[["SessionState"], None]
ConnectorFactory = Callable[..., AdtSqlConnector | OData2Connector]


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot (active profile + last outcome)."""

    profile: ConnectionProfileConfig
    connected: bool
    refreshed_at: datetime
    status: str = "Connected"
    last_error: str | None = None


class SessionManager:
    """Keeps one connector per profile and reports state changes to listeners."""

    def __init__(
        self,
        *,
        config: AppConfig,
        storage: SessionStorage | None = None,
        connector_factory: ConnectorFactory = create_connector,
    ) -> None:
        self._config = config
        self._storage = storage if storage is not None else InMemorySessionStorage()
        self._factory = connector_factory
        self._connectors: dict[str, AdtSqlConnector | OData2Connector] = {}
        self._listeners: set[SessionListener] = set()
        self._state: SessionState | None = None
        _apply_log_level(config.log_level)

    @property
    def profiles(self) -> tuple[ConnectionProfileConfig, ...]:
        return tuple(self._config.profiles)

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    @property
    def active_profile_name(self) -> str | None:
        if self._state:
            return self._state.profile.name
        return None

    def connect(self, name: str | None = None) -> SessionState:
        """Activate the requested profile, or the configured default."""

        name = name or self._config.active_profile or (self.profiles[0].name if self.profiles else None)
        if name is None:
            raise ValueError("No connection profiles configured.")
        connector = self.connector(name)
        self._update_state(connector.profile, connected=True, status="Connected")
        return self._state

    def connector(self, name: str) -> AdtSqlConnector | OData2Connector:
        """Return the connector for a profile, creating it on first use."""

        connector = self._connectors.get(name)
        if connector is None:
            profile = self._config.profile(name)
            connector = self._factory(profile, storage=self._storage)
            self._connectors[name] = connector
        return connector

    def run_sql(self, sql: str, columns: Sequence[ColumnSpec] | None = None) -> QueryResult:
        """Run SQL on the active ADT profile."""

        connector = self._active_connector()
        if not isinstance(connector, AdtSqlConnector):
            raise SapConnectorError(f"Profile '{connector.profile.name}' cannot run SQL.")
        try:
            result = connector.run_sql(sql, columns)
        except SapConnectorError as exc:
            self._update_state(connector.profile, connected=False, status="Query failed", last_error=str(exc))
            raise
        self._update_state(connector.profile, connected=True, status=result.status)
        return result

    def odata(self, method: str, path: str, payload: Any | None = None) -> Any:
        """Send an OData request through the active OData profile."""

        connector = self._active_connector()
        if not isinstance(connector, OData2Connector):
            raise SapConnectorError(f"Profile '{connector.profile.name}' is not an OData service.")
        return connector.request(method, path, payload)

    def save_credentials(self, user: str, password: str, *, name: str | None = None, owner: str | None = None) -> bool:
        """Update the credentials of a profile and keep the config in sync."""

        name = name or self.active_profile_name
        if name is None:
            raise ValueError("No profile selected.")
        connector = self.connector(name)
        if not connector.save_credentials(user, password, owner=owner):
            return False
        self._config = self._config.with_profile(connector.profile)
        if self._state and self._state.profile.name == name:
            self._update_state(connector.profile, connected=True, status="Credentials updated")
        return True

    @property
    def config(self) -> AppConfig:
        return self._config

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        if self._state:
            listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def close(self) -> None:
        for connector in self._connectors.values():
            connector.close()
        self._connectors.clear()

    def _active_connector(self) -> AdtSqlConnector | OData2Connector:
        if not self._state:
            self.connect()
        return self.connector(self._state.profile.name)

    def _update_state(
        self,
        profile: ConnectionProfileConfig,
        *,
        connected: bool,
        status: str,
        last_error: str | None = None,
    ) -> None:
        self._state = SessionState(
            profile=profile,
            connected=connected,
            refreshed_at=datetime.now(tz=timezone.utc),
            status=status,
            last_error=last_error,
        )
        if last_error:
            LOG.warning("%s: %s", profile.name, last_error)
        self._notify()

    def _notify(self) -> None:
        if not self._state:
            return
        for listener in tuple(self._listeners):
            listener(self._state)


def _apply_log_level(level: str) -> None:
    """Set the package logger level; handlers are left to the application."""

    try:
        logging.getLogger(PACKAGE_LOGGER).setLevel(level.upper())
    except ValueError:
        LOG.warning("Ignoring unknown log level %r", level)


__all__ = [
    "PACKAGE_LOGGER",
    "SessionManager",
    "SessionState",
]
