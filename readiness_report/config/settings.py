from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import ValidationError

from ..errors import ConfigError
from ..models.config_models import ReportSettings

"""settings.json persistence.

Shape: {Recipients: str, EscalationDays: int, EscalationRecipients: str, OutputFolder: str}.
A missing file is not an error (defaults apply). Unknown keys are ignored on
read and never written back.
"""

__all__ = [
    "SETTINGS_SCHEMA",
    "load_settings",
    "save_settings",
]

SETTINGS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "Recipients": {"type": "string"},
        "EscalationDays": {"type": "integer", "minimum": 1},
        "EscalationRecipients": {"type": "string"},
        "OutputFolder": {"type": "string"},
    },
}


def load_settings(path: Path, *, default_escalation_days: int = 7) -> ReportSettings:
    defaults = ReportSettings(escalation_days=default_escalation_days)
    if not path.exists():
        return defaults
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid settings file {path}: {e}") from e
    try:
        jsonschema.validate(data, SETTINGS_SCHEMA)
    except ValidationError as e:
        raise ConfigError(f"settings validation failed: {e.message}") from e
    return ReportSettings(
        recipients=data.get("Recipients", defaults.recipients),
        escalation_days=data.get("EscalationDays", defaults.escalation_days),
        escalation_recipients=data.get("EscalationRecipients", defaults.escalation_recipients),
        output_folder=data.get("OutputFolder", defaults.output_folder),
    )


def save_settings(path: Path, settings: ReportSettings) -> Path:
    """Write settings atomically (temp file + replace)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(settings.to_json_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
    return path
