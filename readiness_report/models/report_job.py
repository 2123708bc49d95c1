from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ReportError

"""ReportJob domain model and its state machine enums.

State transitions:
    Pending -> Running -> (Completed | Failed | TimedOut)
    Running -> Cancelling -> (Completed | Failed | TimedOut)

A ReportJob is owned by the job controller until it reaches a terminal state.
"""

__all__ = [
    "CommandKind",
    "JobState",
    "TERMINAL_STATES",
    "JobError",
    "ReportJob",
]


class CommandKind(Enum):
    STANDARD = "standard"
    SPECIAL = "special"
    BATCH = "batch"


class JobState(Enum):
    """Lifecycle of a report job.

    - PENDING: created, not yet bound to a worker
    - RUNNING: worker process started
    - CANCELLING: cancel requested, worker stops at its next checkpoint
    - COMPLETED / FAILED / TIMED_OUT: terminal
    """
    PENDING = "pending"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT})

_ALLOWED: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING, JobState.FAILED}),
    JobState.RUNNING: frozenset({JobState.CANCELLING, *TERMINAL_STATES}),
    JobState.CANCELLING: TERMINAL_STATES,
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.TIMED_OUT: frozenset(),
}


@dataclass(frozen=True)
class JobError:
    """Structured error carried by a terminal job."""

    kind: str  # taxonomy class name, e.g. "SchemaError"
    message: str
    sheet: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> JobError:
        if isinstance(exc, ReportError):
            return cls(kind=exc.kind, message=exc.message, sheet=exc.sheet)
        return cls(kind=type(exc).__name__, message=str(exc))

    def __str__(self) -> str:
        where = f" [sheet={self.sheet}]" if self.sheet else ""
        return f"{self.kind}: {self.message}{where}"


@dataclass
class ReportJob:
    """Handle returned to the caller for one pipeline invocation.

    Mutated only by the job controller (under its lock); callers read it.
    """

    id: str
    command_kind: CommandKind
    parameters: Any  # frozen *ReportParams
    state: JobState = JobState.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    progress: int = 0  # percent 0..100
    activity: str = ""
    result: Any = None  # ReportResult on completion
    error: JobError | None = None
    summary: str = ""  # human-readable outcome for every terminal state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def transition(self, new_state: JobState) -> None:
        """Move to ``new_state``; raises ValueError on an illegal transition."""
        if new_state not in _ALLOWED[self.state]:
            raise ValueError(f"illegal job transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state in TERMINAL_STATES and self.end_time is None:
            self.end_time = datetime.now()

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.command_kind.value,
            "state": self.state.value,
            "progress": self.progress,
            "activity": self.activity,
            "error": str(self.error) if self.error else None,
            "summary": self.summary,
        }

