"""Wall-clock budget controller for a single experiment run.

``BudgetController`` owns the deadline timer of one run; there is no
process-wide timer state. When the deadline fires, in-flight execution
contexts are cancelled only if the ledger already holds a successful run.
Otherwise the expiry is deferred: the driver re-checks it at every iteration
boundary via ``check_expired()`` and the run ends once a success exists.

A budget of ``0`` seconds is a single-iteration budget, not "no timeout":
the controller reports expiry immediately and the driver stops after its
first iteration.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autosearch.context import ContextRegistry
    from autosearch.ledger import RunHistory

logger = logging.getLogger(__name__)


class BudgetError(ValueError):
    """The time budget is invalid or the controller was misused."""


class BudgetController:
    """Deadline timer plus cancellation of in-flight contexts.

    Attributes:
        history: Ledger consulted for successful runs.
        registry: In-flight contexts to cancel on expiry.
    """

    def __init__(self, history: RunHistory, registry: ContextRegistry) -> None:
        self.history = history
        self.registry = registry
        self._max_seconds: float | None = None
        self._armed_at: float | None = None
        self._timer: threading.Timer | None = None
        self._deadline_passed = threading.Event()
        self._expired = threading.Event()
        self._expire_lock = threading.Lock()

    @property
    def expired(self) -> bool:
        """Whether the budget is spent and the run must stop on time grounds."""
        return self._expired.is_set()

    @property
    def deadline_passed(self) -> bool:
        """Whether the wall-clock deadline has elapsed (expired or deferred)."""
        return self._deadline_passed.is_set()

    def arm(self, max_seconds: float | None) -> None:
        """Start the budget.

        Fractional seconds are allowed. ``None`` arms no timer, so the
        budget never expires on time grounds.

        Args:
            max_seconds: Wall-clock budget; ``0`` expires immediately.

        Raises:
            BudgetError: If the budget is negative, not finite, or the
                controller is already armed.
        """
        if self._armed_at is not None:
            msg = "Budget controller is already armed"
            raise BudgetError(msg)
        if max_seconds is None:
            self._armed_at = time.monotonic()
            logger.debug("Budget armed without a time limit")
            return
        if isinstance(max_seconds, bool) or not isinstance(max_seconds, (int, float)):
            msg = f"Time budget must be a number, got {type(max_seconds).__name__}"
            raise BudgetError(msg)
        if not math.isfinite(max_seconds) or max_seconds < 0:
            msg = f"Time budget must be a finite number >= 0, got {max_seconds}"
            raise BudgetError(msg)

        self._max_seconds = max_seconds
        self._armed_at = time.monotonic()

        if max_seconds == 0:
            self._deadline_passed.set()
            self._expired.set()
            logger.info("Time budget is 0s; a single iteration will be run")
            return

        timer = threading.Timer(max_seconds, self._on_deadline)
        timer.name = "autosearch-budget"
        timer.daemon = True
        self._timer = timer
        timer.start()
        logger.debug("Budget armed: %.1fs", max_seconds)

    def disarm(self) -> None:
        """Cancel a pending deadline timer. Idempotent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def check_expired(self) -> bool:
        """Re-evaluate a deferred expiry from the driver thread.

        Returns:
            True if the budget is expired.
        """
        if self._expired.is_set():
            return True
        if self._deadline_passed.is_set() and self.history.count_succeeded() > 0:
            self._expire()
        return self._expired.is_set()

    def elapsed(self) -> float:
        """Seconds since ``arm()``; 0.0 when not armed."""
        if self._armed_at is None:
            return 0.0
        return time.monotonic() - self._armed_at

    def _on_deadline(self) -> None:
        """Timer callback: expire now if a run succeeded, else defer."""
        self._deadline_passed.set()
        if self.history.count_succeeded() > 0:
            self._expire()
        else:
            logger.warning(
                "Allocated time of %s seconds elapsed before any successful run; "
                "waiting for the first success before ending the experiment",
                self._max_seconds,
            )

    def _expire(self) -> None:
        """Mark the budget expired and cancel in-flight contexts exactly once."""
        with self._expire_lock:
            if self._expired.is_set():
                return
            self._expired.set()
        logger.warning(
            "Allocated time for experiment of %s seconds has elapsed with %d runs. "
            "Ending experiment...",
            self._max_seconds,
            len(self.history),
        )
        cancelled = self.registry.cancel_all()
        if cancelled:
            logger.info("Cancelled %d in-flight execution context(s)", cancelled)
