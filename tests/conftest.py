# Shared pytest fixtures
from __future__ import annotations

import multiprocessing
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from readiness_report.logging.init import reset_logging

SCENARIO_A_HEADER = ["Component", "Status", "Owner", "Target Date"]


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("SMTP_SERVER", "SMTP_PORT", "SMTP_SENDER", "SMTP_USER", "SMTP_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """required_fields: [Status]
special_sheets: [Release Checklist]
header_match_threshold: 2
escalation_days: 7
job_timeout_seconds: 60
poll_interval_seconds: 0.05
archive:
  retries: 2
  backoff_seconds: 0
aliases:
  Owner: [Owner, Assignee, Lead]
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "report.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def write_workbook(path: Path, sheets: dict[str, list[list[Any]]]) -> Path:
    """Write ``sheets`` (name -> physical rows) without any header handling."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
    return path


@pytest.fixture()
def make_workbook(tmp_path: Path) -> Callable[..., Path]:
    def _make(sheets: dict[str, list[list[Any]]], name: str = "tracker.xlsx") -> Path:
        return write_workbook(tmp_path / "data" / name, sheets)
    return _make


@pytest.fixture()
def scenario_a_rows() -> list[list[Any]]:
    return [SCENARIO_A_HEADER, ["Build", "Pending", "Alice", "2024-01-01"]]


@pytest.fixture()
def scenario_b_rows() -> list[list[Any]]:
    return [SCENARIO_A_HEADER, ["Build", "Complete", "Alice", "2024-01-01"]]


@pytest.fixture()
def scenario_c_rows() -> list[list[Any]]:
    # 2 ブロック、区切り行なし
    return [
        ["Component", "Status", "Owner", "Target Date"],
        ["Auth service", "Pending", "Alice", "2024-01-05"],
        ["Billing", "In Progress", "Bob", "2024-01-20"],
        ["Item", "State", "Assignee", "Due Date"],
        ["Runbook", "Pending", "Carol", None],
        ["Rollback plan", "Not-Started", "Dave", "2024-01-12"],
    ]


@pytest.fixture()
def fork_context() -> str:
    # テスト用 target はモジュール外で pickle できないため fork 限定
    if "fork" not in multiprocessing.get_all_start_methods():
        pytest.skip("fork start method not available")
    return "fork"
