"""Connection profile configuration loading helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal

import tomllib

from pydantic import BaseModel, Field, ValidationError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "sapsql" / "config.toml"

_STRING_FIELDS = ("url", "csrf_request_url", "sap_client", "user")


class ConnectionProfileConfig(BaseModel):
    """Connection profile stored in config.toml."""

    name: str
    url: str
    kind: Literal["adt_sql", "odata2"] = "adt_sql"
    dialect: Literal["opensql", "console"] = "opensql"
    csrf_request_url: str | None = None
    sap_client: str | None = None
    user: str | None = None
    password: str | None = None
    allow_unicode_passwords: bool = False
    timeout: float = 30.0
    verify_tls: bool = True


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    log_level: str = "WARNING"
    profiles: list[ConnectionProfileConfig] = Field(default_factory=list)
    active_profile: str | None = None

    def profile(self, name: str) -> ConnectionProfileConfig:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' not found.")

    def with_active_profile(self, name: str) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": name})

    def with_profile(self, profile: ConnectionProfileConfig) -> AppConfig:
        """Return a copy with the profile added or replaced by name."""

        profiles = [existing for existing in self.profiles if existing.name != profile.name]
        profiles.append(profile)
        return self.model_copy(update={"profiles": profiles})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return AppConfig()

    profiles: list[ConnectionProfileConfig] = []
    for entry in data.get("profiles", []):  # type: ignore[union-attr]
        try:
            profiles.append(ConnectionProfileConfig.model_validate(entry))
        except ValidationError as exc:
            LOG.warning("Skipping invalid profile %r: %s", entry.get("name"), exc)

    return AppConfig(
        log_level=data.get("log_level", AppConfig.model_fields["log_level"].default),
        profiles=profiles,
        active_profile=data.get("active_profile"),
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk; passwords are never written."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f"log_level = {_quote(config.log_level)}"]
    if config.active_profile:
        lines.append(f"active_profile = {_quote(config.active_profile)}")
    if config.profiles:
        lines.append("")
        for profile in config.profiles:
            lines.append("[[profiles]]")
            lines.append(f"name = {_quote(profile.name)}")
            lines.append(f"kind = {_quote(profile.kind)}")
            lines.append(f"dialect = {_quote(profile.dialect)}")
            for key in _STRING_FIELDS:
                value = getattr(profile, key)
                if value:
                    lines.append(f"{key} = {_quote(value)}")
            if profile.allow_unicode_passwords:
                lines.append("allow_unicode_passwords = true")
            lines.append(f"timeout = {profile.timeout}")
            if not profile.verify_tls:
                lines.append("verify_tls = false")
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        data["log_level"] = log_level.upper()
    active_profile = raw.get("active_profile")
    if isinstance(active_profile, str):
        data["active_profile"] = active_profile
    profiles = raw.get("profiles")
    if isinstance(profiles, list):
        data["profiles"] = [profile for profile in profiles if isinstance(profile, dict) and profile.get("name")]
    return data


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)
