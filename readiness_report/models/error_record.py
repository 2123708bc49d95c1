from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the structured (JSON Lines) error log.

One record per failed job or failed artifact. The key set is fixed.
"""

__all__ = [
    "ErrorRecord",
    "error_type_for",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        job_id: Report job identifier
        sheet: Worksheet name ("<JOB_LEVEL>" when not sheet-specific)
        stage: Pipeline stage or artifact (e.g. "job", "html", "export", "escalation")
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    job_id: str
    sheet: str
    stage: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(job_id: str, sheet: str | None, stage: str, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            job_id=job_id,
            sheet=sheet or "<JOB_LEVEL>",
            stage=stage,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)


def error_type_for(kind: str) -> str:
    """CamelCase taxonomy name -> UPPER_SNAKE error_type ("SchemaError" -> "SCHEMA_ERROR")."""
    out: list[str] = []
    for i, ch in enumerate(kind):
        if ch.isupper() and i and not kind[i - 1].isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)
