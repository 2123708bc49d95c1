from __future__ import annotations

"""Error taxonomy shared by the report pipeline and the job controller.

Every error derives from ReportError so the controller can turn any pipeline
failure into a single structured JobError. Instances are picklable (they cross
the worker process boundary).
"""

__all__ = [
    "ReportError",
    "ConfigError",
    "FileAccessError",
    "SchemaError",
    "EmptyReportError",
    "RenderError",
    "WriteError",
    "EscalationSendError",
    "JobTimeoutError",
    "JobCancelledError",
    "JobConflictError",
]


class ReportError(Exception):
    """Base class. ``sheet`` names the worksheet involved, when known."""

    def __init__(self, message: str, sheet: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.sheet = sheet

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if self.sheet:
            return f"{self.message} (sheet '{self.sheet}')"
        return self.message

    def __reduce__(self):  # keep sheet across pickling
        return (type(self), (self.message, self.sheet))


class ConfigError(ReportError):
    """Application config or settings file is missing, malformed or invalid."""


class FileAccessError(ReportError):
    """Source file missing, unreadable or locked. Recoverable: reported, run aborted before work."""


class SchemaError(ReportError):
    """A required canonical column could not be resolved in the worksheet."""


class EmptyReportError(ReportError):
    """No actionable rows remain. Treated as a non-failure "nothing to do" outcome."""


class RenderError(ReportError):
    """An artifact could not be rendered."""


class WriteError(ReportError):
    """An artifact could not be written (path unwritable or file held open)."""


class EscalationSendError(ReportError):
    """Mail dispatch failed. Logged, never aborts the main report."""


class JobTimeoutError(ReportError):
    """The controller watchdog stopped the worker after the elapsed-time ceiling."""


class JobCancelledError(ReportError):
    """The caller cancelled the job and the worker stopped at a checkpoint."""


class JobConflictError(ReportError):
    """A job is already running on this controller."""
