"""Best-effort progress reporting for completed iterations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from autosearch.models import RunOutcome

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressObserver(Protocol):
    """Receives each run outcome right after it is recorded."""

    def report(self, outcome: RunOutcome) -> None: ...  # noqa: D102


class ProgressReporter:
    """Forwards outcomes to an optional observer, swallowing its failures.

    Observer exceptions are logged and never propagate, so a broken progress
    sink cannot end or alter an experiment.
    """

    def __init__(self, observer: ProgressObserver | None = None) -> None:
        self.observer = observer
        self.failures = 0

    def notify(self, outcome: RunOutcome) -> None:
        """Deliver *outcome* to the observer, if any."""
        if self.observer is None:
            return
        try:
            self.observer.report(outcome)
        except Exception:
            self.failures += 1
            logger.error(
                "Progress report callback raised for iteration %d",
                outcome.iteration,
                exc_info=True,
            )


class LoggingObserver:
    """Observer that writes one summary line per completed iteration."""

    def __init__(self, metric_name: str = "score") -> None:
        self.metric_name = metric_name

    def report(self, outcome: RunOutcome) -> None:
        if outcome.succeeded:
            logger.info(
                "Iteration %d | %s | %s=%s | %.1fs",
                outcome.iteration,
                outcome.candidate,
                self.metric_name,
                outcome.score,
                outcome.duration_seconds,
            )
        else:
            logger.info(
                "Iteration %d | %s | failed: %.200s | %.1fs",
                outcome.iteration,
                outcome.candidate,
                outcome.error,
                outcome.duration_seconds,
            )
