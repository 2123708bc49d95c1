from __future__ import annotations

import logging
import multiprocessing
import queue as queue_mod
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ..errors import EmptyReportError, JobCancelledError, JobConflictError, JobTimeoutError, ReportError
from ..logging.init import setup_logging
from ..models.config_models import ReportConfig
from ..models.report_job import JobError, JobState, ReportJob
from ..models.report_result import ReportResult
from .pipeline import BatchReportParams, ReportParams, SpecialReportParams, StandardReportParams, execute
from .progress import PipelineProgress
from .render import cleanup_temp_files
from .summary import describe_outcome
from .validation import check_source_file

logger = logging.getLogger(__name__)

"""Asynchronous job controller.

One controller runs at most one job at a time. Each job gets its own worker
process (own interpreter state, nothing shared with the caller) and talks back
over a multiprocessing Queue:

    ("progress", percent, activity)
    ("result", ReportResult)
    ("empty", JobError)        EmptyReportError: "nothing to do"
    ("error", JobError)

Cancellation is a one-way Event the worker polls at its checkpoints.

A watchdog thread per job drains the queue every ``poll_interval`` seconds,
enforces the elapsed-time ceiling (terminate, then kill) and always tears the
worker down before the job is published in its terminal state.

State machine: PENDING -> RUNNING -> COMPLETED | FAILED | TIMED_OUT
               RUNNING -> CANCELLING -> COMPLETED | FAILED | TIMED_OUT
"""

__all__ = [
    "QueueProgress",
    "worker_main",
    "ReportJobController",
]

TERMINATE_GRACE_SECONDS = 2.0
EXIT_GRACE_SECONDS = 5.0


class QueueProgress(PipelineProgress):
    """Worker-side progress sink: updates go to the queue, cancel comes from the event."""

    def __init__(self, channel: Any, cancel_event: Any) -> None:
        super().__init__()
        self._channel = channel
        self._cancel_event = cancel_event

    def emit(self, percent: int, activity: str) -> None:
        self._channel.put(("progress", percent, activity))

    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()


def worker_main(params: ReportParams, channel: Any, cancel_event: Any, job_id: str) -> None:
    """Worker process entry point."""
    setup_logging()
    logger.debug("worker started job=%s pid=%s", job_id, multiprocessing.current_process().pid)
    progress = QueueProgress(channel, cancel_event)
    try:
        result = execute(params, progress)
    except EmptyReportError as e:
        logger.info("nothing to do job=%s: %s", job_id, e)
        channel.put(("empty", JobError.from_exception(e)))
    except Exception as e:  # 全エラーを構造化して呼び出し側へ
        if not isinstance(e, JobCancelledError):
            logger.error("job=%s failed: %s", job_id, e, exc_info=not isinstance(e, ReportError))
        channel.put(("error", JobError.from_exception(e)))
    else:
        channel.put(("result", result))


@dataclass
class _ActiveRun:
    job: ReportJob
    process: Any
    channel: Any
    cancel_event: Any
    started: float
    abort: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


@dataclass(frozen=True)
class _Outcome:
    state: JobState
    result: ReportResult | None = None
    error: JobError | None = None


class ReportJobController:
    """Runs report jobs off the calling thread.

    Args:
        config: application config passed by value into every job
        timeout_seconds: elapsed-time ceiling (default: config.job_timeout_seconds)
        poll_interval: watchdog / caller poll cadence (default: config.poll_interval_seconds)
        mp_context: multiprocessing start method name (None = platform default)
        target: worker entry point (module level, picklable for spawn/forkserver)
    """

    def __init__(
        self,
        config: ReportConfig | None = None,
        *,
        timeout_seconds: float | None = None,
        poll_interval: float | None = None,
        mp_context: str | None = None,
        target: Callable[..., None] | None = None,
    ) -> None:
        self.config = config or ReportConfig()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else self.config.job_timeout_seconds
        self.poll_interval = poll_interval if poll_interval is not None else self.config.poll_interval_seconds
        self._ctx = multiprocessing.get_context(mp_context)
        self._target = target or worker_main
        self._lock = threading.Lock()
        self._run: _ActiveRun | None = None
        self._closed = False

    # -- submission ---------------------------------------------------------------
    def submit(self, params: ReportParams) -> ReportJob:
        """Start ``params`` in a new worker process and return its job handle.

        A source file that fails the metadata check (missing or unreadable)
        fails the job before any worker starts. Nothing is opened or read on
        this thread; the worker repeats the full check, one-byte read for
        locked files included, before parsing the workbook.

        Raises:
            JobConflictError: another job is still active (or the controller is closed)
        """
        with self._lock:
            if self._closed:
                raise JobConflictError("controller is closed")
            if self._run is not None:
                active = self._run.job
                raise JobConflictError(f"job {active.id} is still {active.state.value}")
            job_id = uuid.uuid4().hex[:12]
            params = replace(params, job_id=job_id)
            job = ReportJob(id=job_id, command_kind=params.kind, parameters=params)

        source_error = check_source_file(params.path, open_file=False)
        if source_error is not None:
            logger.error("job=%s not started: %s", job_id, source_error)
            with self._lock:
                job.error = JobError.from_exception(source_error)
                job.transition(JobState.FAILED)
                job.summary = describe_outcome(job)
            return job

        channel = self._ctx.Queue()
        cancel_event = self._ctx.Event()
        process = self._ctx.Process(
            target=self._target,
            args=(params, channel, cancel_event, job_id),
            name=f"report-{job_id}",
            daemon=True,
        )
        run = _ActiveRun(job=job, process=process, channel=channel, cancel_event=cancel_event, started=time.monotonic())
        with self._lock:
            if self._run is not None:  # 別スレッドが先に submit した
                channel.close()
                raise JobConflictError(f"job {self._run.job.id} is still {self._run.job.state.value}")
            job.start_time = datetime.now()
            job.transition(JobState.RUNNING)
            self._run = run
        try:
            process.start()
        except OSError as e:
            logger.error("job=%s worker failed to start: %s", job_id, e)
            with self._lock:
                self._run = None
                job.error = JobError.from_exception(e)
                job.transition(JobState.FAILED)
                job.summary = describe_outcome(job)
            channel.close()
            return job
        run.started = time.monotonic()
        run.thread = threading.Thread(target=self._watch, args=(run,), name=f"watchdog-{job_id}", daemon=True)
        run.thread.start()
        logger.info("job=%s started kind=%s pid=%s", job_id, job.command_kind.value, process.pid)
        return job

    def run_standard_report(
        self,
        path: Path | str,
        worksheet: str,
        output_folder: Path | str,
        recipients: list[str] | tuple[str, ...] = (),
        escalation_recipients: list[str] | tuple[str, ...] = (),
        escalation_days: int | None = None,
        *,
        today: date | None = None,
    ) -> ReportJob:
        return self.submit(StandardReportParams(
            path=Path(path),
            worksheet=worksheet,
            output_folder=Path(output_folder),
            recipients=tuple(recipients),
            escalation_recipients=tuple(escalation_recipients),
            escalation_days=escalation_days if escalation_days is not None else self.config.escalation_days,
            config=self.config,
            today=today,
        ))

    def run_special_report(
        self,
        path: Path | str,
        worksheet: str,
        output_folder: Path | str,
        *,
        today: date | None = None,
    ) -> ReportJob:
        return self.submit(SpecialReportParams(
            path=Path(path),
            worksheet=worksheet,
            output_folder=Path(output_folder),
            config=self.config,
            today=today,
        ))

    def run_batch_report(self, path: Path | str, output_folder: Path | str, *, today: date | None = None) -> ReportJob:
        return self.submit(BatchReportParams(
            path=Path(path),
            output_folder=Path(output_folder),
            config=self.config,
            today=today,
        ))

    # -- caller side ----------------------------------------------------------------
    def cancel(self, job: ReportJob) -> bool:
        """Request cooperative cancellation. Only valid while the job is RUNNING."""
        with self._lock:
            run = self._run
            if run is None or run.job is not job or job.state is not JobState.RUNNING:
                logger.debug("cancel ignored job=%s state=%s", job.id, job.state.value)
                return False
            job.transition(JobState.CANCELLING)
            run.cancel_event.set()
        logger.info("job=%s cancelling", job.id)
        return True

    def poll(self, job: ReportJob) -> dict[str, Any]:
        """Consistent snapshot of ``job`` for display."""
        with self._lock:
            return job.describe()

    @property
    def active_job(self) -> ReportJob | None:
        with self._lock:
            return self._run.job if self._run is not None else None

    def wait(
        self,
        job: ReportJob,
        on_progress: Callable[[ReportJob], None] | None = None,
        timeout: float | None = None,
    ) -> ReportJob:
        """Block until ``job`` is terminal and its worker is torn down.

        ``on_progress`` is called every ``poll_interval`` seconds, never per update.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                run = self._run if self._run is not None and self._run.job is job else None
                thread = run.thread if run is not None else None
            if thread is None:
                if run is None:
                    break
                time.sleep(self.poll_interval)
            else:
                thread.join(self.poll_interval)
                if not thread.is_alive():
                    break
            if on_progress is not None:
                on_progress(job)
            if deadline is not None and time.monotonic() >= deadline:
                break
        if on_progress is not None:
            on_progress(job)
        return job

    def close(self) -> None:
        """Stop accepting jobs; cancel and, failing that, stop the active worker."""
        with self._lock:
            self._closed = True
            run = self._run
        if run is None:
            return
        self.cancel(run.job)
        if run.thread is not None:
            run.thread.join(max(self.poll_interval * 5, 1.0))
            if run.thread.is_alive():
                run.abort.set()
                run.thread.join()

    def __enter__(self) -> ReportJobController:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -- watchdog -------------------------------------------------------------------
    def _watch(self, run: _ActiveRun) -> None:
        outcome: _Outcome | None = None
        try:
            outcome = self._monitor(run)
        except Exception as e:  # 結果取得失敗でも teardown は必ず実行
            logger.error("job=%s result retrieval failed: %s", run.job.id, e, exc_info=True)
            outcome = _Outcome(JobState.FAILED, error=JobError.from_exception(e))
        finally:
            self._teardown(run)
            self._settle(run, outcome)

    def _monitor(self, run: _ActiveRun) -> _Outcome:
        while True:
            outcome = self._drain(run, self.poll_interval)
            if outcome is not None:
                return outcome
            if time.monotonic() - run.started > self.timeout_seconds:
                logger.error("job=%s exceeded %ss, stopping worker", run.job.id, self.timeout_seconds)
                self._stop(run.process)
                return _Outcome(JobState.TIMED_OUT, error=JobError.from_exception(
                    JobTimeoutError(f"job exceeded {self.timeout_seconds:g}s and was stopped")
                ))
            if run.abort.is_set():
                self._stop(run.process)
                return _Outcome(JobState.FAILED, error=JobError.from_exception(
                    JobCancelledError("job stopped: controller closed")
                ))
            if not run.process.is_alive():
                # 終了直後にキューへ届く最終メッセージを拾う
                outcome = self._drain(run, self.poll_interval)
                if outcome is not None:
                    return outcome
                return _Outcome(JobState.FAILED, error=JobError(
                    kind="ReportError",
                    message=f"worker exited unexpectedly (exit code {run.process.exitcode})",
                ))

    def _drain(self, run: _ActiveRun, wait: float) -> _Outcome | None:
        """Consume queued messages; progress is applied, a final message is returned."""
        try:
            message = run.channel.get(timeout=wait)
        except queue_mod.Empty:
            return None
        while True:
            outcome = self._apply(run, message)
            if outcome is not None:
                return outcome
            try:
                message = run.channel.get_nowait()
            except queue_mod.Empty:
                return None

    def _apply(self, run: _ActiveRun, message: tuple[Any, ...]) -> _Outcome | None:
        tag = message[0]
        job = run.job
        if tag == "progress":
            with self._lock:
                job.progress = int(message[1])
                job.activity = str(message[2])
            return None
        if tag == "result":
            result: ReportResult = message[1]
            if job.state is JobState.CANCELLING or run.cancel_event.is_set():
                result = replace(result, cancel_requested=True)
            return _Outcome(JobState.COMPLETED, result=result)
        if tag == "empty":
            err: JobError = message[1]
            sheet = err.sheet or getattr(job.parameters, "worksheet", None)
            return _Outcome(JobState.COMPLETED, result=ReportResult(
                report_type=job.command_kind.value.title(),
                sheet=sheet,
                empty=True,
                message=err.message,
            ))
        if tag == "error":
            return _Outcome(JobState.FAILED, error=message[1])
        raise ValueError(f"unknown worker message: {tag!r}")

    def _stop(self, process: Any) -> None:
        if not process.is_alive():
            return
        process.terminate()
        process.join(TERMINATE_GRACE_SECONDS)
        if process.is_alive():
            process.kill()
            process.join()

    def _teardown(self, run: _ActiveRun) -> None:
        """Release the worker process, the channel and job-scoped temp files."""
        process = run.process
        try:
            process.join(EXIT_GRACE_SECONDS)
            self._stop(process)
        finally:
            run.channel.close()
            run.channel.cancel_join_thread()
            try:
                process.close()
            except ValueError:
                logger.warning("job=%s worker still running at teardown", run.job.id)
            folder = getattr(run.job.parameters, "output_folder", None)
            if folder is not None:
                removed = cleanup_temp_files(Path(folder), run.job.id)
                if removed:
                    logger.info("job=%s removed %d temp file(s)", run.job.id, len(removed))

    def _settle(self, run: _ActiveRun, outcome: _Outcome | None) -> None:
        job = run.job
        if outcome is None:
            outcome = _Outcome(JobState.FAILED, error=JobError(kind="ReportError", message="job ended without a result"))
        with self._lock:
            job.result = outcome.result
            job.error = outcome.error
            if outcome.state is JobState.COMPLETED:
                job.progress = 100
            job.transition(outcome.state)
            job.summary = describe_outcome(job)
            if self._run is run:
                self._run = None
        log = logger.info if outcome.state is JobState.COMPLETED else logger.error
        log("job=%s %s", job.id, job.summary)
