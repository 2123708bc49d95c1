from __future__ import annotations

from ..models.report_job import JobState, ReportJob

"""Job outcome rendering.

Two forms:
- describe_outcome: the human-readable summary every terminal job carries
- render_summary_line: the machine-parsable SUMMARY line printed by the CLI

SUMMARY line format:
    SUMMARY job=<id> kind=<kind> state=<state> rows=<n> escalated=<n> outputs=<n> elapsed_sec=<x>
"""

__all__ = [
    "format_seconds",
    "describe_outcome",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Integers without a fraction, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def describe_outcome(job: ReportJob) -> str:
    """Human-readable summary for ``job``'s current (normally terminal) state."""
    result = job.result
    error = job.error
    if job.state is JobState.COMPLETED and result is not None:
        if result.empty:
            return f"Nothing to do: {result.message or 'no actionable rows'}"
        text = f"Completed: {result.message}" if result.message else "Completed"
        if result.cancel_requested:
            text += " (cancel arrived after the last checkpoint)"
        return text
    if job.state is JobState.TIMED_OUT:
        return f"Timed out: {error.message if error else 'elapsed-time ceiling reached'}"
    if job.state is JobState.FAILED:
        if error is None:
            return "Failed"
        if error.kind == "JobCancelledError":
            return f"Cancelled: {error.message}"
        return f"Failed: {error}"
    return job.state.value.title()


def render_summary_line(job: ReportJob) -> str:
    """Render the SUMMARY line for a terminal job.

    Examples:
        >>> from readiness_report.models.report_job import CommandKind
        >>> job = ReportJob(id="abc123", command_kind=CommandKind.STANDARD, parameters=None)
        >>> render_summary_line(job)
        'SUMMARY job=abc123 kind=standard state=pending rows=0 escalated=0 outputs=0 elapsed_sec=0'
    """
    result = job.result
    rows = result.row_count if result is not None else 0
    escalated = result.escalated_count if result is not None else 0
    outputs = len(result.outputs) if result is not None else 0
    return (
        f"SUMMARY job={job.id} "
        f"kind={job.command_kind.value} "
        f"state={job.state.value} "
        f"rows={rows} "
        f"escalated={escalated} "
        f"outputs={outputs} "
        f"elapsed_sec={format_seconds(job.elapsed_seconds)}"
    )
