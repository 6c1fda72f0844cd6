"""Configuration management for ClanHall."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    DEFAULT_COMPLETED_RETENTION_MINUTES,
    DEFAULT_MAX_SNAPSHOTS_PER_GUILD,
    DEFAULT_MUTATION_DELAY_SECONDS,
    DEFAULT_OVERWRITE_DELAY_SECONDS,
    DEFAULT_SESSION_TIMEOUT_MINUTES,
    DEFAULT_SNAPSHOT_DIRECTORY,
    DEFAULT_SUMMARY_ERROR_LIMIT,
)

CONFIG_PATH = Path("config.json")


@dataclass(frozen=True)
class LoggingChannels:
    audit: int | None = None
    errors: int | None = None


@dataclass(frozen=True)
class RoleIDs:
    admin: int | None = None


@dataclass(frozen=True)
class ProvisioningSettings:
    """Pacing and reporting knobs for reconciliation and restore."""
    mutation_delay_seconds: float = DEFAULT_MUTATION_DELAY_SECONDS
    overwrite_delay_seconds: float = DEFAULT_OVERWRITE_DELAY_SECONDS
    summary_error_limit: int = DEFAULT_SUMMARY_ERROR_LIMIT


@dataclass(frozen=True)
class SetupSettings:
    """Settings for the setup wizard."""
    session_timeout_minutes: int = DEFAULT_SESSION_TIMEOUT_MINUTES
    completed_retention_minutes: int = DEFAULT_COMPLETED_RETENTION_MINUTES


@dataclass(frozen=True)
class SnapshotSettings:
    directory: str = DEFAULT_SNAPSHOT_DIRECTORY
    max_per_guild: int = DEFAULT_MAX_SNAPSHOTS_PER_GUILD


@dataclass
class Config:
    token: str
    guild_ids: list[int]
    role_ids: RoleIDs = field(default_factory=RoleIDs)
    logging_channels: LoggingChannels = field(default_factory=LoggingChannels)
    bot_prefix: str = "!"
    database_path: str = "clanhall.db"
    provisioning: ProvisioningSettings = field(default_factory=ProvisioningSettings)
    setup_settings: SetupSettings = field(default_factory=SetupSettings)
    snapshot_settings: SnapshotSettings = field(default_factory=SnapshotSettings)


def _coerce_optional_id(value: Any, *, field_name: str) -> int | None:
    if value in (None, "", 0):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer ID (got {value!r})") from exc
    if parsed <= 0:
        raise ValueError(f"{field_name} must be a positive integer (got {parsed})")
    return parsed


def _parse_role_ids(payload: dict[str, Any] | None) -> RoleIDs:
    if not payload:
        return RoleIDs()
    if not isinstance(payload, dict):
        raise ValueError("role_ids must be an object")
    return RoleIDs(admin=_coerce_optional_id(payload.get("admin"), field_name="role_ids.admin"))


def _parse_logging_channels(payload: dict[str, Any] | None) -> LoggingChannels:
    if not payload:
        return LoggingChannels()
    if not isinstance(payload, dict):
        raise ValueError("logging_channels must be an object")
    return LoggingChannels(
        audit=_coerce_optional_id(payload.get("audit"), field_name="logging_channels.audit"),
        errors=_coerce_optional_id(payload.get("errors"), field_name="logging_channels.errors"),
    )


def _parse_delay(payload: dict[str, Any], key: str, default: float) -> float:
    raw = payload.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"provisioning.{key} must be a number (got {raw!r})") from exc
    if not 0 <= value <= 30:
        raise ValueError(f"provisioning.{key} must be between 0 and 30 seconds (got {value})")
    return value


def _parse_provisioning(payload: dict[str, Any] | None) -> ProvisioningSettings:
    """Parse provisioning pacing settings from configuration."""
    if not payload:
        return ProvisioningSettings()
    if not isinstance(payload, dict):
        raise ValueError("provisioning must be an object")

    raw_limit = payload.get("summary_error_limit", DEFAULT_SUMMARY_ERROR_LIMIT)
    try:
        summary_error_limit = int(raw_limit)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"provisioning.summary_error_limit must be an integer (got {raw_limit!r})") from exc
    if summary_error_limit < 1:
        raise ValueError(f"provisioning.summary_error_limit must be at least 1 (got {summary_error_limit})")

    return ProvisioningSettings(
        mutation_delay_seconds=_parse_delay(
            payload, "mutation_delay_seconds", DEFAULT_MUTATION_DELAY_SECONDS
        ),
        overwrite_delay_seconds=_parse_delay(
            payload, "overwrite_delay_seconds", DEFAULT_OVERWRITE_DELAY_SECONDS
        ),
        summary_error_limit=summary_error_limit,
    )


def _parse_positive_minutes(payload: dict[str, Any], key: str, default: int) -> int:
    raw = payload.get(key, default)
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError(f"{key} must be positive")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"setup_settings.{key} must be a positive integer") from exc
    return value


def _parse_setup_settings(payload: dict[str, Any] | None) -> SetupSettings:
    """Parse setup wizard settings from configuration."""
    if not payload:
        return SetupSettings()
    if not isinstance(payload, dict):
        raise ValueError("setup_settings must be an object")

    return SetupSettings(
        session_timeout_minutes=_parse_positive_minutes(
            payload, "session_timeout_minutes", DEFAULT_SESSION_TIMEOUT_MINUTES
        ),
        completed_retention_minutes=_parse_positive_minutes(
            payload, "completed_retention_minutes", DEFAULT_COMPLETED_RETENTION_MINUTES
        ),
    )


def _parse_snapshot_settings(payload: dict[str, Any] | None) -> SnapshotSettings:
    if not payload:
        return SnapshotSettings()
    if not isinstance(payload, dict):
        raise ValueError("snapshot_settings must be an object")

    directory = str(payload.get("directory", DEFAULT_SNAPSHOT_DIRECTORY)).strip()
    if not directory:
        raise ValueError("snapshot_settings.directory must not be empty")

    raw_max = payload.get("max_per_guild", DEFAULT_MAX_SNAPSHOTS_PER_GUILD)
    try:
        max_per_guild = int(raw_max)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"snapshot_settings.max_per_guild must be an integer (got {raw_max!r})") from exc
    if max_per_guild < 1:
        raise ValueError(f"snapshot_settings.max_per_guild must be at least 1 (got {max_per_guild})")

    return SnapshotSettings(directory=directory, max_per_guild=max_per_guild)


def load_config(config_path: str | Path = CONFIG_PATH) -> Config:
    """Load and parse configuration from JSON file."""
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {path}\n"
            "Please copy config.example.json to config.json and fill in your values."
        )

    with path.open("r", encoding="utf-8") as file:
        data: dict[str, Any] = json.load(file)

    if "token" not in data:
        raise ValueError("token field is required in configuration")

    try:
        guild_ids = [int(gid) for gid in data.get("guild_ids", [])]
    except (TypeError, ValueError) as exc:
        raise ValueError("guild_ids must be a list of integer IDs") from exc

    return Config(
        token=data["token"],
        guild_ids=guild_ids,
        role_ids=_parse_role_ids(data.get("role_ids")),
        logging_channels=_parse_logging_channels(data.get("logging_channels")),
        bot_prefix=data.get("bot_prefix", "!"),
        database_path=str(data.get("database_path", "clanhall.db")),
        provisioning=_parse_provisioning(data.get("provisioning")),
        setup_settings=_parse_setup_settings(data.get("setup_settings")),
        snapshot_settings=_parse_snapshot_settings(data.get("snapshot_settings")),
    )
