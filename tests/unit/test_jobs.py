from __future__ import annotations

import os
import time
from datetime import date
from pathlib import Path
from unittest.mock import patch

import pytest

from readiness_report.errors import JobCancelledError, JobConflictError
from readiness_report.models.config_models import ArchivePolicy, ReportConfig
from readiness_report.models.report_job import JobError, JobState
from readiness_report.models.report_result import ReportResult
from readiness_report.services.jobs import QueueProgress, ReportJobController
from readiness_report.services.validation import check_source_file

TODAY = date(2024, 1, 10)
CONFIG = ReportConfig(archive=ArchivePolicy(retries=1, backoff_seconds=0), poll_interval_seconds=0.05)


# --- worker targets (fork で子プロセスへ渡す) ---------------------------------------

def _mark_started(params, job_id: str) -> None:
    folder = Path(params.output_folder)
    folder.mkdir(parents=True, exist_ok=True)
    (folder / f".report.html.{job_id}.tmp").write_text("partial", encoding="utf-8")
    (folder / "worker.pid").write_text(str(os.getpid()), encoding="utf-8")


def stubborn_target(params, channel, cancel_event, job_id):
    _mark_started(params, job_id)
    time.sleep(60)


def cooperative_target(params, channel, cancel_event, job_id):
    progress = QueueProgress(channel, cancel_event)
    progress.start("waiting")
    try:
        for _ in range(3000):
            time.sleep(0.01)
            progress.checkpoint()
    except JobCancelledError as e:
        channel.put(("error", JobError.from_exception(e)))
        return
    channel.put(("result", ReportResult(report_type="Standard")))


def late_cancel_target(params, channel, cancel_event, job_id):
    # 最後のチェックポイント通過後にキャンセルが届いたケース
    cancel_event.wait(10)
    channel.put(("result", ReportResult(report_type="Standard", sheet="Tracker", row_count=1, message="done")))


def crash_target(params, channel, cancel_event, job_id):
    os._exit(3)


def marker_target(params, channel, cancel_event, job_id):
    Path(params.output_folder, "spawned").write_text("x", encoding="utf-8")


def unknown_message_target(params, channel, cancel_event, job_id):
    _mark_started(params, job_id)
    channel.put(("weird", 1))
    time.sleep(60)


def _controller(fork_context: str, **kw) -> ReportJobController:
    return ReportJobController(CONFIG, mp_context=fork_context, **kw)


def _wait_for(predicate, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.02)


def _source(tmp_path: Path) -> Path:
    src = tmp_path / "tracker.xlsx"
    src.write_bytes(b"placeholder")
    return src


# --- tests ----------------------------------------------------------------------------

def test_standard_job_completes(fork_context, make_workbook, scenario_a_rows, tmp_path: Path):
    src = make_workbook({"Tracker": scenario_a_rows})
    out = tmp_path / "out"
    seen: list[int] = []
    with _controller(fork_context) as controller:
        job = controller.run_standard_report(src, "Tracker", out, today=TODAY)
        assert controller.active_job is job
        controller.wait(job, on_progress=lambda j: seen.append(j.progress), timeout=60)
        assert controller.active_job is None
    assert job.state is JobState.COMPLETED
    assert job.result.row_count == 1
    assert job.result.escalated_count == 1
    assert len(job.result.outputs) == 2
    assert job.progress == 100
    assert seen == sorted(seen) and seen[-1] == 100
    assert job.summary.startswith("Completed: Standard report for 'Tracker'")
    assert job.parameters.job_id == job.id
    assert not list(out.glob(".*.tmp"))


def test_empty_report_completes_with_nothing_to_do(fork_context, make_workbook, scenario_b_rows, tmp_path: Path):
    src = make_workbook({"Tracker": scenario_b_rows})
    out = tmp_path / "out"
    with _controller(fork_context) as controller:
        job = controller.wait(controller.run_standard_report(src, "Tracker", out, today=TODAY), timeout=60)
    assert job.state is JobState.COMPLETED
    assert job.result.empty is True
    assert job.error is None
    assert job.summary == "Nothing to do: all items complete or sheet empty"
    assert not out.exists()


def test_schema_error_fails_job(fork_context, make_workbook, tmp_path: Path):
    src = make_workbook({"Tracker": [["Component", "Owner"], ["Build", "Alice"]]})
    with _controller(fork_context) as controller:
        job = controller.wait(controller.run_standard_report(src, "Tracker", tmp_path / "out", today=TODAY), timeout=60)
    assert job.state is JobState.FAILED
    assert job.error.kind == "SchemaError"
    assert job.error.sheet == "Tracker"
    assert job.summary == "Failed: SchemaError: no recognizable status column [sheet=Tracker]"


def test_special_job_runs_in_worker(fork_context, make_workbook, scenario_c_rows, tmp_path: Path):
    src = make_workbook({"Release Checklist": scenario_c_rows})
    with _controller(fork_context) as controller:
        job = controller.wait(controller.run_special_report(src, "Release Checklist", tmp_path / "out", today=TODAY), timeout=60)
    assert job.state is JobState.COMPLETED
    assert job.result.row_count == 4


def test_missing_source_fails_before_spawn(fork_context, tmp_path: Path):
    out = tmp_path / "out"
    out.mkdir()
    controller = _controller(fork_context, target=marker_target)
    job = controller.run_standard_report(tmp_path / "missing.xlsx", "Tracker", out)
    assert job.state is JobState.FAILED
    assert job.error.kind == "FileAccessError"
    assert controller.active_job is None
    assert controller.wait(job, timeout=1) is job
    time.sleep(0.2)
    assert not (out / "spawned").exists()
    controller.close()


def test_submit_checks_source_metadata_only(fork_context, tmp_path: Path):
    src = _source(tmp_path)
    out = tmp_path / "out"
    out.mkdir()
    with patch("readiness_report.services.jobs.check_source_file", wraps=check_source_file) as check, \
         _controller(fork_context, target=marker_target) as controller:
        job = controller.wait(controller.run_standard_report(src, "Tracker", out), timeout=20)
    check.assert_called_once_with(src, open_file=False)
    assert (out / "spawned").exists()
    assert job.state is JobState.FAILED


def test_second_submit_conflicts_and_close_stops_worker(fork_context, tmp_path: Path):
    src = _source(tmp_path)
    out = tmp_path / "out"
    controller = _controller(fork_context, target=stubborn_target, timeout_seconds=30)
    job = controller.run_standard_report(src, "Tracker", out)
    with pytest.raises(JobConflictError, match=job.id):
        controller.run_standard_report(src, "Tracker", out)
    _wait_for((out / "worker.pid").exists)
    pid = int((out / "worker.pid").read_text(encoding="utf-8"))
    controller.close()
    assert job.state is JobState.FAILED
    assert job.error.message == "job stopped: controller closed"
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
    with pytest.raises(JobConflictError, match="closed"):
        controller.run_standard_report(src, "Tracker", out)


def test_cancel_stops_at_checkpoint(fork_context, tmp_path: Path):
    controller = _controller(fork_context, target=cooperative_target, timeout_seconds=30)
    job = controller.run_standard_report(_source(tmp_path), "Tracker", tmp_path / "out")
    _wait_for(lambda: controller.poll(job)["activity"] == "waiting")
    assert controller.cancel(job) is True
    assert controller.cancel(job) is False
    assert controller.poll(job)["state"] in ("cancelling", "failed")
    controller.wait(job, timeout=30)
    assert job.state is JobState.FAILED
    assert job.error.kind == "JobCancelledError"
    assert job.summary == "Cancelled: job cancelled by caller"
    assert controller.cancel(job) is False
    controller.close()


def test_timeout_kills_worker_and_removes_temp_files(fork_context, tmp_path: Path):
    out = tmp_path / "out"
    controller = _controller(fork_context, target=stubborn_target, timeout_seconds=0.5)
    job = controller.run_standard_report(_source(tmp_path), "Tracker", out)
    controller.wait(job, timeout=30)
    assert job.state is JobState.TIMED_OUT
    assert job.error.kind == "JobTimeoutError"
    assert job.summary.startswith("Timed out: job exceeded 0.5s")
    pid = int((out / "worker.pid").read_text(encoding="utf-8"))
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
    assert not list(out.glob(".*.tmp"))
    controller.close()


def test_unrecognized_worker_message_fails_and_stops_worker(fork_context, tmp_path: Path):
    out = tmp_path / "out"
    controller = _controller(fork_context, target=unknown_message_target, timeout_seconds=30)
    job = controller.run_standard_report(_source(tmp_path), "Tracker", out)
    controller.wait(job, timeout=20)
    assert job.state is JobState.FAILED
    assert job.error.kind == "ValueError"
    assert "unknown worker message" in job.error.message
    assert controller.active_job is None
    pid = int((out / "worker.pid").read_text(encoding="utf-8"))
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
    assert not list(out.glob(".*.tmp"))
    controller.close()

def test_timeout_supersedes_cancelling(fork_context, tmp_path: Path):
    controller = _controller(fork_context, target=stubborn_target, timeout_seconds=0.8)
    job = controller.run_standard_report(_source(tmp_path), "Tracker", tmp_path / "out")
    assert controller.cancel(job) is True
    controller.wait(job, timeout=30)
    assert job.state is JobState.TIMED_OUT
    controller.close()


def test_cancel_after_last_checkpoint_completes(fork_context, tmp_path: Path):
    controller = _controller(fork_context, target=late_cancel_target, timeout_seconds=30)
    job = controller.run_standard_report(_source(tmp_path), "Tracker", tmp_path / "out")
    assert controller.cancel(job) is True
    controller.wait(job, timeout=30)
    assert job.state is JobState.COMPLETED
    assert job.result.cancel_requested is True
    assert job.summary == "Completed: done (cancel arrived after the last checkpoint)"
    controller.close()


def test_worker_crash_fails_job(fork_context, tmp_path: Path):
    controller = _controller(fork_context, target=crash_target, timeout_seconds=30)
    job = controller.wait(controller.run_standard_report(_source(tmp_path), "Tracker", tmp_path / "out"), timeout=30)
    assert job.state is JobState.FAILED
    assert job.error.message == "worker exited unexpectedly (exit code 3)"
    # 次のジョブを受け付けられる
    assert controller.active_job is None
    controller.close()
