from __future__ import annotations

from dataclasses import dataclass, field

"""Report result models returned by the pipeline to the job controller.

Artifacts are attempted independently; failures are reported per artifact
instead of discarding the artifacts that did succeed.
"""

__all__ = [
    "ArtifactError",
    "SkippedSheet",
    "ReportResult",
]


@dataclass(frozen=True)
class ArtifactError:
    """Failure of a single output artifact (html, export, archive, mail, escalation)."""

    artifact: str
    kind: str
    message: str


@dataclass(frozen=True)
class SkippedSheet:
    """Sheet skipped during a batch run."""

    sheet: str
    kind: str  # SchemaError / EmptyReportError
    reason: str


@dataclass(frozen=True)
class ReportResult:
    """Outcome of one pipeline run."""

    report_type: str  # Standard / Special / Batch
    sheet: str | None = None
    outputs: list[str] = field(default_factory=list)  # written artifact paths
    row_count: int = 0
    escalated_count: int = 0
    escalation_sent: bool = False
    mailed: bool = False
    archive_path: str | None = None
    artifact_errors: list[ArtifactError] = field(default_factory=list)
    skipped_sheets: list[SkippedSheet] = field(default_factory=list)
    empty: bool = False  # "nothing to do" outcome
    cancel_requested: bool = False  # cancellation arrived after the last checkpoint
    message: str = ""

    @property
    def ok(self) -> bool:
        return not self.artifact_errors

    def merged(self, other: ReportResult) -> ReportResult:
        """Fold a per-sheet result into a batch result."""
        return ReportResult(
            report_type=self.report_type,
            sheet=self.sheet,
            outputs=[*self.outputs, *other.outputs],
            row_count=self.row_count + other.row_count,
            escalated_count=self.escalated_count + other.escalated_count,
            escalation_sent=self.escalation_sent or other.escalation_sent,
            mailed=self.mailed or other.mailed,
            archive_path=self.archive_path or other.archive_path,
            artifact_errors=[*self.artifact_errors, *other.artifact_errors],
            skipped_sheets=[*self.skipped_sheets, *other.skipped_sheets],
            empty=self.empty and other.empty,
            cancel_requested=self.cancel_requested or other.cancel_requested,
            message=self.message,
        )
