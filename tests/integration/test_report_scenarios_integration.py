from __future__ import annotations

import functools
import json
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from readiness_report.cli.__main__ import main as cli_main
from readiness_report.config.loader import load_config
from readiness_report.models.report_job import JobState
from readiness_report.services.jobs import ReportJobController

"""End-to-end scenarios: workbook on disk -> controller/worker -> files on disk."""

TODAY = date(2024, 1, 10)


@pytest.fixture()
def controller(write_config: Path, fork_context):
    with ReportJobController(load_config(write_config), mp_context=fork_context) as c:
        yield c


@pytest.fixture()
def cli_fork(monkeypatch, fork_context):
    monkeypatch.setattr(
        "readiness_report.cli.__main__.ReportJobController",
        functools.partial(ReportJobController, mp_context=fork_context),
    )


def test_scenario_single_overdue_item(controller, make_workbook, scenario_a_rows, tmp_path: Path):
    src = make_workbook({"Tracker": scenario_a_rows})
    out = tmp_path / "reports"
    job = controller.wait(controller.run_standard_report(src, "Tracker", out, today=TODAY), timeout=60)
    assert job.state is JobState.COMPLETED
    assert job.result.row_count == 1
    assert job.result.escalated_count == 1
    assert len(job.result.outputs) == 2
    export = pd.read_excel(out / "Standard_Tracker_2024-01-10.xlsx", sheet_name="Tracker")
    assert export.loc[0, "Component"] == "Build"
    assert export.loc[0, "Days Until Due"] == -9
    assert len(list((out / "Archives").glob("tracker_*.xlsx"))) == 1


def test_scenario_all_complete(controller, make_workbook, scenario_b_rows, tmp_path: Path):
    src = make_workbook({"Tracker": scenario_b_rows})
    out = tmp_path / "reports"
    job = controller.wait(controller.run_standard_report(src, "Tracker", out, today=TODAY), timeout=60)
    assert job.state is JobState.COMPLETED
    assert job.result.empty
    assert not out.exists()


def test_scenario_two_blocks(controller, make_workbook, scenario_c_rows, tmp_path: Path):
    src = make_workbook({"Release Checklist": scenario_c_rows})
    out = tmp_path / "reports"
    job = controller.wait(controller.run_special_report(src, "Release Checklist", out, today=TODAY), timeout=60)
    assert job.state is JobState.COMPLETED
    assert job.result.row_count == 4
    html = (out / "Special_Release Checklist_2024-01-10.html").read_text(encoding="utf-8")
    assert html.count("<table>") == 2
    assert '<tr class="status-red">' in html  # Not-Started (special は区切り正規化)
    export = pd.read_excel(out / "Special_Release Checklist_2024-01-10.xlsx")
    assert export["Section"].nunique() == 2


def test_controller_runs_jobs_back_to_back(controller, make_workbook, scenario_a_rows, scenario_c_rows, tmp_path: Path):
    src = make_workbook({"Tracker": scenario_a_rows, "Release Checklist": scenario_c_rows})
    out = tmp_path / "reports"
    first = controller.wait(controller.run_standard_report(src, "Tracker", out, today=TODAY), timeout=60)
    second = controller.wait(controller.run_batch_report(src, out, today=TODAY), timeout=60)
    assert first.state is second.state is JobState.COMPLETED
    assert first.id != second.id
    assert second.result.row_count == 5
    assert len(second.result.outputs) == 4


def test_cli_auto_mode_batch_with_skips(temp_workdir: Path, write_config, make_workbook, scenario_a_rows,
                                        scenario_b_rows, scenario_c_rows, cli_fork, capsys):
    src = make_workbook({
        "Tracker": scenario_a_rows,
        "Done": scenario_b_rows,
        "Release Checklist": scenario_c_rows,
    })
    code = cli_main([str(src), "--output", "reports", "--today", "2024-01-10"])
    out = capsys.readouterr().out
    assert code == 0
    assert "kind=batch state=completed rows=5 escalated=0 outputs=4" in out
    assert "WARN skipped sheet=Done: all items complete or sheet empty" in out
    assert sorted(p.name for p in (temp_workdir / "reports").glob("Batch_*")) == [
        "Batch_Release Checklist_2024-01-10.html",
        "Batch_Release Checklist_2024-01-10.xlsx",
        "Batch_Tracker_2024-01-10.html",
        "Batch_Tracker_2024-01-10.xlsx",
    ]


def test_cli_auto_mode_picks_special_layout(temp_workdir: Path, write_config, make_workbook, scenario_c_rows, cli_fork, capsys):
    src = make_workbook({"release checklist": scenario_c_rows})
    code = cli_main([str(src), "--sheet", "release checklist", "--output", "reports", "--today", "2024-01-10"])
    assert code == 0
    assert "kind=special state=completed rows=4" in capsys.readouterr().out


def test_cli_invalid_escalation_recipients_is_partial(temp_workdir: Path, write_config, make_workbook, scenario_a_rows,
                                                      cli_fork, capsys):
    src = make_workbook({"Tracker": scenario_a_rows})
    code = cli_main([str(src), "--sheet", "Tracker", "--output", "reports", "--today", "2024-01-10",
                     "--escalation-recipients", "lead@@example.com"])
    out = capsys.readouterr().out
    assert code == 0
    assert "outputs=2" in out
    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["stage"] == "escalation"
    assert record["error_type"] == "ESCALATION_SEND_ERROR"


def test_cli_save_settings_then_run(temp_workdir: Path, write_config, make_workbook, scenario_a_rows, cli_fork, capsys):
    assert cli_main(["--save-settings", "--output", "out-folder", "--escalation-days", "30"]) == 0
    saved = json.loads((temp_workdir / "settings.json").read_text(encoding="utf-8"))
    assert saved["OutputFolder"] == "out-folder"
    assert saved["EscalationDays"] == 30
    src = make_workbook({"Tracker": scenario_a_rows})
    assert cli_main([str(src), "--sheet", "Tracker", "--today", "2024-01-10"]) == 0
    out = capsys.readouterr().out
    # 9 日超過 < 30 日しきい値
    assert "escalated=0 outputs=2" in out
    assert (temp_workdir / "out-folder" / "Standard_Tracker_2024-01-10.html").exists()


def test_cli_list_sheets_and_inspect(temp_workdir: Path, make_workbook, scenario_a_rows, scenario_c_rows, capsys):
    src = make_workbook({"Tracker": scenario_a_rows, "Release Checklist": scenario_c_rows})
    assert cli_main([str(src), "--list-sheets"]) == 0
    assert capsys.readouterr().out.splitlines()[-2:] == ["Tracker", "Release Checklist"]
    assert cli_main([str(src), "--inspect-data"]) == 0
    out = capsys.readouterr().out
    assert "SHEET: Tracker layout=standard header_row=1" in out
    assert "SHEET: Release Checklist layout=special blocks=2" in out
