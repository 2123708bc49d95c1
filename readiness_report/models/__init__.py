"""Domain models for the release-readiness report generator."""

from .config_models import ArchivePolicy, MailConfig, ReportConfig, ReportSettings
from .error_record import ErrorRecord
from .report_job import CommandKind, JobError, JobState, ReportJob
from .report_result import ArtifactError, ReportResult, SkippedSheet
from .rows import HeaderBlock, NormalizedRow

__all__ = [
    # Configuration models
    "ArchivePolicy",
    "MailConfig",
    "ReportConfig",
    "ReportSettings",
    # Row models
    "HeaderBlock",
    "NormalizedRow",
    # Job models
    "CommandKind",
    "JobError",
    "JobState",
    "ReportJob",
    "ArtifactError",
    "ReportResult",
    "SkippedSheet",
    "ErrorRecord",
]
