from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..errors import ConfigError
from ..excel.aliases import ColumnAliasTable
from ..models.config_models import ArchivePolicy, MailConfig, ReportConfig

"""Application config loader.

Responsibilities:
- Load YAML config/report.yml
- Validate against the bundled JSON schema (config_schema.json)
- Apply defaults for every omitted key
- Overlay SMTP settings from the environment (.env is loaded by the CLI first)
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "default_config",
    "load_config",
    "apply_env_overrides",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/report.yml")


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not JSON, or data fails validation
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def default_config() -> ReportConfig:
    return apply_env_overrides(ReportConfig())


def apply_env_overrides(cfg: ReportConfig) -> ReportConfig:
    """Overlay SMTP_* environment variables onto the mail config (env wins)."""
    mail = cfg.mail
    port_env = os.getenv("SMTP_PORT")
    try:
        port = int(port_env) if port_env else mail.smtp_port
    except ValueError as e:
        raise ConfigError(f"invalid SMTP_PORT: {port_env!r}") from e
    merged = MailConfig(
        smtp_server=os.getenv("SMTP_SERVER") or mail.smtp_server,
        smtp_port=port,
        sender=os.getenv("SMTP_SENDER") or mail.sender,
        use_tls=mail.use_tls,
        user=os.getenv("SMTP_USER") or mail.user,
        password=os.getenv("SMTP_PASSWORD") or mail.password,
    )
    return replace(cfg, mail=merged)


def load_config(path: Path) -> ReportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)

    defaults = ReportConfig()
    archive_raw = data.get("archive", {})
    mail_raw = data.get("mail", {})
    cfg = ReportConfig(
        aliases=ColumnAliasTable.with_overrides(data.get("aliases")),
        required_fields=tuple(data.get("required_fields", defaults.required_fields)),
        special_sheets=tuple(data.get("special_sheets", defaults.special_sheets)),
        header_match_threshold=data.get("header_match_threshold", defaults.header_match_threshold),
        escalation_days=data.get("escalation_days", defaults.escalation_days),
        job_timeout_seconds=float(data.get("job_timeout_seconds", defaults.job_timeout_seconds)),
        poll_interval_seconds=float(data.get("poll_interval_seconds", defaults.poll_interval_seconds)),
        archive=ArchivePolicy(
            retries=archive_raw.get("retries", defaults.archive.retries),
            backoff_seconds=float(archive_raw.get("backoff_seconds", defaults.archive.backoff_seconds)),
        ),
        mail=MailConfig(
            smtp_server=mail_raw.get("smtp_server"),
            smtp_port=mail_raw.get("smtp_port", 25),
            sender=mail_raw.get("sender"),
            use_tls=mail_raw.get("use_tls", False),
        ),
    )
    return apply_env_overrides(cfg)
