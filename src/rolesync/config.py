"""Runtime configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

from .audit import DEFAULT_AUDIT_INTERVAL, DEFAULT_SAMPLE_SIZE
from .catalog import ManagedCatalog
from .exceptions import ConfigError
from .scheduler import DEFAULT_DEBOUNCE_SECONDS

# Environment variable -> Settings field, for required settings.
REQUIRED_ENV = {
    "DISCORD_TOKEN": "discord_token",
    "GUILD_ID": "guild_id",
    "TABLE_NAME": "table_name",
}


@dataclass(frozen=True)
class Settings:
    """
    Settings for a rolesync process.

    Attributes:
        discord_token: Bot token used for the Discord REST API
        guild_id: Guild whose member roles are managed
        table_name: DynamoDB table holding player records
        stream_arn: Table stream ARN (discovered from the table when None)
        region: AWS region (default: boto3 defaults)
        endpoint_url: AWS endpoint override (e.g. LocalStack)
        catalog_path: YAML catalog of managed roles (default: tier roles)
        audit_topic_arn: SNS topic for audit reports (default: log only)
        debounce_seconds: Per-member debounce window
        audit_interval_seconds: Time between audits
        audit_sample_size: Records listed per audit report
    """

    discord_token: str
    guild_id: str
    table_name: str
    stream_arn: str | None = None
    region: str | None = None
    endpoint_url: str | None = None
    catalog_path: Path | None = None
    audit_topic_arn: str | None = None
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    audit_interval_seconds: float = DEFAULT_AUDIT_INTERVAL
    audit_sample_size: int = DEFAULT_SAMPLE_SIZE

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Build settings from environment variables.

        Raises:
            ConfigError: If a required variable is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_ENV if not env.get(name, "").strip()]
        if missing:
            raise ConfigError(f"Missing env vars: {', '.join(missing)}", missing=missing)

        def optional(name: str) -> str | None:
            value = env.get(name, "").strip()
            return value or None

        try:
            debounce_ms = float(env.get("DEBOUNCE_MS", DEFAULT_DEBOUNCE_SECONDS * 1000))
            audit_interval = float(env.get("AUDIT_INTERVAL_SECONDS", DEFAULT_AUDIT_INTERVAL))
            sample_size = int(env.get("AUDIT_SAMPLE_SIZE", DEFAULT_SAMPLE_SIZE))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        catalog_path = optional("CATALOG_PATH")
        settings = cls(
            discord_token=env["DISCORD_TOKEN"].strip(),
            guild_id=env["GUILD_ID"].strip(),
            table_name=env["TABLE_NAME"].strip(),
            stream_arn=optional("STREAM_ARN"),
            region=optional("AWS_REGION") or optional("AWS_DEFAULT_REGION"),
            endpoint_url=optional("AWS_ENDPOINT_URL"),
            catalog_path=Path(catalog_path) if catalog_path else None,
            audit_topic_arn=optional("AUDIT_TOPIC_ARN"),
            debounce_seconds=debounce_ms / 1000,
            audit_interval_seconds=audit_interval,
            audit_sample_size=sample_size,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """
        Check values that ``from_env`` and the CLI cannot type-check.

        Raises:
            ConfigError: If any required value is empty or a number is out of range
        """
        missing = [env for env, attr in REQUIRED_ENV.items() if not getattr(self, attr)]
        if missing:
            raise ConfigError(f"Missing env vars: {', '.join(missing)}", missing=missing)
        if self.debounce_seconds < 0:
            raise ConfigError("DEBOUNCE_MS must not be negative")
        if self.audit_interval_seconds <= 0:
            raise ConfigError("AUDIT_INTERVAL_SECONDS must be positive")
        if self.audit_sample_size < 1:
            raise ConfigError("AUDIT_SAMPLE_SIZE must be at least 1")


def load_catalog(path: Path | None) -> ManagedCatalog:
    """
    Load the managed-role catalog.

    Args:
        path: YAML file, or None for the built-in tier catalog

    Raises:
        ConfigError: If the file cannot be read or is not a valid catalog
    """
    if path is None:
        return ManagedCatalog.default()
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read catalog {path}: {e}") from e
    try:
        return ManagedCatalog.from_yaml(text)
    except (ValueError, TypeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid catalog {path}: {e}") from e
