from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord, error_type_for
from ..models.report_job import ReportJob

"""Error log buffering.

Failed jobs and failed artifacts are buffered as ErrorRecord and written as
JSON Lines to ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC) on flush. The file is
only created when there is something to write.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    Single-threaded use (the caller side of the job controller).
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def record_job(self, job: ReportJob) -> int:
        """Buffer the job-level error and every artifact error of ``job``.

        Returns the number of records added.
        """
        added = 0
        sheet = getattr(job.parameters, "worksheet", None)
        if job.error is not None:
            self.append(ErrorRecord.create(
                job_id=job.id,
                sheet=job.error.sheet or sheet,
                stage="job",
                error_type=error_type_for(job.error.kind),
                message=job.error.message,
            ))
            added += 1
        result = job.result
        if result is not None:
            for err in result.artifact_errors:
                self.append(ErrorRecord.create(
                    job_id=job.id,
                    sheet=result.sheet or sheet,
                    stage=err.artifact,
                    error_type=error_type_for(err.kind),
                    message=err.message,
                ))
                added += 1
        return added

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
