from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest

from readiness_report.cli.__main__ import _effective_settings, _parse_args, _resolve_mode, _submit, main
from readiness_report.errors import ConfigError
from readiness_report.models.config_models import ReportConfig, ReportSettings


@pytest.mark.parametrize("mode,sheet,expected", [
    ("auto", None, "batch"),
    ("auto", "Tracker", "standard"),
    ("auto", "release_checklist", "special"),
    ("auto", "Go-Live Readiness", "special"),
    ("special", "Tracker", "special"),
    ("batch", "Tracker", "batch"),
])
def test_resolve_mode(mode, sheet, expected):
    assert _resolve_mode(mode, sheet, ReportConfig()) == expected


@pytest.mark.parametrize("mode", ["standard", "special"])
def test_submit_without_sheet_raises(mode):
    controller = Mock()
    with pytest.raises(ValueError, match=f"--sheet is required for mode={mode}"):
        _submit(controller, mode, Path("book.xlsx"), None, ReportSettings(), None)
    controller.run_standard_report.assert_not_called()
    controller.run_special_report.assert_not_called()


def test_parse_args_today():
    args = _parse_args(["book.xlsx", "--today", "2024-01-10"])
    assert args.today == date(2024, 1, 10)
    with pytest.raises(SystemExit):
        _parse_args(["book.xlsx", "--today", "10/01/2024"])


def test_effective_settings_overrides():
    args = _parse_args(["--output", "out", "--recipients", "a@example.com;b@example.com", "--escalation-days", "3"])
    s = _effective_settings(args, ReportSettings(escalation_recipients="lead@example.com"))
    assert s.output_folder == "out"
    assert s.recipient_list() == ["a@example.com", "b@example.com"]
    assert s.escalation_days == 3
    assert s.escalation_recipient_list() == ["lead@example.com"]


def test_effective_settings_rejects_bad_threshold():
    args = argparse.Namespace(output=None, recipients=None, escalation_recipients=None, escalation_days=0)
    with pytest.raises(ConfigError, match="escalation days"):
        _effective_settings(args, ReportSettings())


def test_env_file_feeds_mail_config(temp_workdir: Path, monkeypatch, capsys):
    monkeypatch.setenv("SMTP_PORT", "25")  # teardown で元に戻す
    (temp_workdir / ".env").write_text("SMTP_PORT=not-a-port\n", encoding="utf-8")
    code = main(["data/missing.xlsx"])
    assert code == 1
    assert "invalid SMTP_PORT" in capsys.readouterr().out


def test_bad_settings_file_is_fatal(temp_workdir: Path, capsys):
    (temp_workdir / "settings.json").write_text("{broken", encoding="utf-8")
    assert main(["data/missing.xlsx"]) == 1
    assert "ERROR config: invalid settings file" in capsys.readouterr().out


def test_debug_flag(temp_workdir: Path, capsys):
    assert main(["--debug", "data/missing.xlsx"]) == 1
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
