from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from readiness_report.config.loader import SCHEMA_PATH
from readiness_report.config.settings import SETTINGS_SCHEMA, save_settings
from readiness_report.models.config_models import ReportSettings

"""Config / settings.json shape contract."""


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_schema_is_bundled_and_valid():
    jsonschema.Draft7Validator.check_schema(_schema())


def test_sample_config_validates(sample_config_yaml: str):
    jsonschema.validate(yaml.safe_load(sample_config_yaml), _schema())


def test_full_config_validates():
    config = {
        "aliases": {"Status": ["Status", "RAG"], "TargetDate": ["Go-Live"]},
        "required_fields": ["Status", "Component"],
        "special_sheets": ["Release Checklist", "Go-Live Readiness"],
        "header_match_threshold": 3,
        "escalation_days": 14,
        "job_timeout_seconds": 120,
        "poll_interval_seconds": 0.5,
        "archive": {"retries": 5, "backoff_seconds": 2.5},
        "mail": {"smtp_server": "smtp.example.com", "smtp_port": 587, "sender": "bot@example.com", "use_tls": True},
    }
    jsonschema.validate(config, _schema())


@pytest.mark.parametrize("config", [
    {"aliases": {"Colour": ["Color"]}},
    {"aliases": {"Status": []}},
    {"mail": {"password": "secret"}},
    {"archive": {"retries": -1}},
    {"job_timeout_seconds": 0},
])
def test_invalid_configs_rejected(config):
    with pytest.raises(ValidationError):
        jsonschema.validate(config, _schema())


def test_settings_file_shape(tmp_path: Path):
    path = save_settings(tmp_path / "settings.json", ReportSettings(recipients="a@example.com"))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data) == {"Recipients", "EscalationDays", "EscalationRecipients", "OutputFolder"}
    assert data["EscalationDays"] == 7
    jsonschema.validate(data, SETTINGS_SCHEMA)
