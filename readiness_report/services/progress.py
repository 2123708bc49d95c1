from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..errors import JobCancelledError

"""Progress reporting.

Two sides:
- PipelineProgress: the sink the pipeline reports into. It rate-limits updates
  (one per whole percent, always 0 and 100) and is where cooperative
  cancellation is observed: ``checkpoint()`` runs at row-batch boundaries only.
  The base class never cancels and emits nothing; the worker subclass
  (services.jobs.QueueProgress) forwards updates over the message channel.
- ProgressTracker: caller-side tqdm bar (TTY only) fed with polled job progress.
"""

__all__ = [
    "PipelineProgress",
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and a progress bar should be displayed."""
    return sys.stdout.isatty()


class PipelineProgress:
    """Rate-limited progress sink with cooperative cancellation checkpoints."""

    def __init__(self) -> None:
        self.last_percent = -1
        self.activity = ""
        self._last_activity: str | None = None
        self._lo = 0
        self._hi = 100
        self.cancel_seen = False

    # -- hooks for subclasses -------------------------------------------------
    def emit(self, percent: int, activity: str) -> None:
        """Deliver one update. No-op here."""

    def cancel_requested(self) -> bool:
        return False

    # -- pipeline API -----------------------------------------------------------
    def start(self, activity: str = "starting") -> None:
        self.activity = activity
        self._publish(0, force=True)

    def stage(self, activity: str, lo: int, hi: int) -> None:
        """Enter a stage that owns the [lo, hi] percent band."""
        self.activity = activity
        self._lo, self._hi = lo, max(lo, hi)
        self._publish(lo, force=True)

    def advance(self, done: int, total: int) -> None:
        """Record ``done`` of ``total`` units in the current stage.

        A row batch is ~1% of ``total``; the cancel flag is checked and an
        update published only on batch boundaries.
        """
        if total <= 0:
            return
        batch = max(1, total // 100)
        if done % batch and done != total:
            return
        self.checkpoint()
        span = self._hi - self._lo
        self._publish(self._lo + (span * done) // total)

    def checkpoint(self) -> None:
        """Raise JobCancelledError when cancellation was requested."""
        if self.cancel_requested():
            self.cancel_seen = True
            raise JobCancelledError("job cancelled by caller")

    def finish(self, activity: str = "done") -> None:
        self.activity = activity
        self._publish(100, force=True)

    def _publish(self, percent: int, force: bool = False) -> None:
        percent = max(0, min(100, int(percent)))
        if force:
            if percent == self.last_percent and self.activity == self._last_activity:
                return
        elif percent <= self.last_percent:
            return
        self.last_percent = percent
        self._last_activity = self.activity
        self.emit(percent, self.activity)


class ProgressTracker:
    """Caller-side tqdm bar showing a job's percent complete.

    In non-TTY environments (CI) the bar is disabled to avoid ANSI spam.
    """

    def __init__(self, *, description: str = "Generating report") -> None:
        self.description = description
        self.current = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=100,
                desc=description,
                unit="%",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def update(self, percent: int, activity: str = "") -> None:
        """Move the bar to ``percent`` (monotonic; regressions are ignored)."""
        percent = max(0, min(100, int(percent)))
        delta = percent - self.current
        if delta <= 0:
            return
        self.current = percent
        if self.enabled and self.pbar is not None:
            self.pbar.update(delta)
            if activity:
                self.pbar.set_description(f"{self.description} ({activity})")

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
