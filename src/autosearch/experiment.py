"""Experiment driver: the budget-constrained search loop.

Provides ``Experiment`` and the ``run_experiment()`` convenience wrapper as
the top-level entry points. Each iteration asks the suggester for the next
candidate, evaluates it in a fresh execution context registered with the
budget controller, records the outcome, reports progress, and checks the
stopping criteria. The loop ends with an explicit ``StopReason``; the only
error raised mid-run is ``ExperimentAbortedError`` when the first three
attempts all fail.

Also hosts the ambient plumbing shared by the CLI: ``AUTOSEARCH_*``
environment overrides for ``ExperimentSettings`` and ``configure_logging``.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
import secrets
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from autosearch.budget import BudgetController
from autosearch.context import ContextRegistry, ExecutionCancelledError, ExecutionContext
from autosearch.ledger import RunHistory
from autosearch.models import (
    Candidate,
    ExperimentResult,
    ExperimentSettings,
    RunOutcome,
    StopReason,
)
from autosearch.reporting import ProgressObserver, ProgressReporter
from autosearch.scoring import MetricsAgent, select_best_run

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Abort when this many attempts have been made and none succeeded. Counted
# from the start of the experiment, not as a rolling window.
_ABORT_AFTER_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Suggester(Protocol):
    """Proposes the next candidate from the accumulated history.

    Must be deterministic given identical history and configuration.
    Returning ``None`` signals that the search space is exhausted.
    """

    def suggest(self, history: RunHistory) -> Candidate | None: ...  # noqa: D102


@runtime_checkable
class Runner(Protocol):
    """Evaluates one candidate inside an execution context.

    Ordinary evaluation failures are reported as ``succeeded=False``; the
    runner observes ``context.cancelled`` and returns promptly once set.
    """

    def evaluate(  # noqa: D102
        self, candidate: Candidate, context: ExecutionContext
    ) -> RunOutcome: ...


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class ExperimentError(Exception):
    """Experiment failure with diagnostic context.

    Attributes:
        diagnostics: Structured diagnostic information about the failure.
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any]) -> None:
        """Initialize with a message and structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context (elapsed time, run counts, etc.).
        """
        super().__init__(message)
        self.diagnostics = diagnostics


class ExperimentAbortedError(ExperimentError):
    """The first attempts of the experiment all failed.

    Signals a systematically broken configuration or environment rather
    than ordinary per-candidate noise.

    Attributes:
        outcomes: The failed outcomes recorded before aborting.
        last_error: Failure detail of the most recent attempt.
    """

    def __init__(
        self,
        message: str,
        *,
        diagnostics: dict[str, Any],
        outcomes: Sequence[RunOutcome],
        last_error: str | None,
    ) -> None:
        super().__init__(message, diagnostics=diagnostics)
        self.outcomes = list(outcomes)
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "AUTOSEARCH_MAX_TIME": "max_experiment_time_seconds",
    "AUTOSEARCH_MAX_CANDIDATES": "max_candidates",
    "AUTOSEARCH_LOG_LEVEL": "log_level",
    "AUTOSEARCH_SEED": "seed",
}
"""Maps environment variable names to ExperimentSettings field names."""


def apply_env_overrides(settings: ExperimentSettings) -> ExperimentSettings:
    """Apply ``AUTOSEARCH_*`` env var overrides to *settings*.

    Environment variables override **default** field values but do **not**
    override values explicitly set in the ``ExperimentSettings`` constructor.
    A field is considered explicitly set when its value differs from the
    default for that field. Unparseable or out-of-range values are ignored.

    Args:
        settings: The experiment settings to apply overrides to.

    Returns:
        New ``ExperimentSettings`` with env var overrides applied.
    """
    defaults = ExperimentSettings()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if getattr(settings, field_name) != getattr(defaults, field_name):
            continue

        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return settings

    return settings.model_copy(update=overrides)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string into the type expected by *field_name*.

    Returns:
        The parsed value, or ``None`` if parsing fails or the value would
        violate the settings validators.
    """
    if field_name == "log_level":
        return raw

    if field_name == "max_experiment_time_seconds":
        try:
            seconds = float(raw)
        except ValueError:
            return None
        if not math.isfinite(seconds) or seconds < 0:
            return None
        return seconds

    try:
        value = int(raw)
    except ValueError:
        return None

    if field_name == "max_candidates" and value < 1:
        return None
    return value


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(settings: ExperimentSettings) -> None:
    """Configure Python logging for autosearch.

    Sets up the ``"autosearch"`` logger with a console handler and an
    optional file handler. Idempotent: repeated calls do not duplicate
    handlers.

    Args:
        settings: Settings providing ``log_level`` and optional ``log_file``.
    """
    root = logging.getLogger("autosearch")
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    # FileHandler subclasses StreamHandler, so match the console type exactly
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(console)

    if settings.log_file is not None:
        target = str(Path(settings.log_file).resolve())
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == target
            for h in root.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            root.addHandler(file_handler)


def create_experiment_directory(cache_directory: str | None) -> str | None:
    """Create a fresh ``experiment_<random>`` directory under *cache_directory*.

    Args:
        cache_directory: Root directory, or None to skip artifact storage.

    Returns:
        Absolute path of the created directory, or None.
    """
    if cache_directory is None:
        return None
    target = Path(cache_directory) / f"experiment_{secrets.token_hex(4)}"
    target.mkdir(parents=True, exist_ok=True)
    return str(target.resolve())


# ---------------------------------------------------------------------------
# Experiment driver
# ---------------------------------------------------------------------------


class Experiment:
    """Anytime search loop bounded by time, candidate count, and cancellation.

    One instance drives exactly one run: ``run()`` is not re-entrant and
    raises ``ExperimentError`` when called a second time.

    Attributes:
        suggester: Proposes candidates from the history.
        runner: Evaluates candidates inside execution contexts.
        metrics_agent: Decides whether a score is perfect.
        settings: Budget configuration for this run.
        history: Ledger of outcomes recorded so far.
    """

    def __init__(
        self,
        suggester: Suggester,
        runner: Runner,
        metrics_agent: MetricsAgent,
        settings: ExperimentSettings | None = None,
        observer: ProgressObserver | None = None,
    ) -> None:
        self.suggester = suggester
        self.runner = runner
        self.metrics_agent = metrics_agent
        self.settings = settings if settings is not None else ExperimentSettings()
        self.history = RunHistory()
        self.registry = ContextRegistry()
        self.budget = BudgetController(self.history, self.registry)
        self.reporter = ProgressReporter(observer)
        self.experiment_directory: str | None = None
        self._started = False
        self._start_time: float | None = None

    def run(self) -> ExperimentResult:
        """Execute the search loop until a stop condition is met.

        Returns:
            ``ExperimentResult`` with every outcome in order, the stop
            reason, and the best successful run.

        Raises:
            ExperimentError: If the experiment was already run.
            BudgetError: If the time budget is invalid (before any iteration).
            ExperimentAbortedError: If the first three attempts all failed.
        """
        if self._started:
            msg = "Experiment.run() may only be called once per instance"
            raise ExperimentError(msg, diagnostics=self._diagnostics())
        self._started = True

        settings = self.settings
        self.budget.arm(settings.max_experiment_time_seconds)
        self._start_time = time.monotonic()
        try:
            self.experiment_directory = create_experiment_directory(
                settings.cache_directory
            )
            logger.info(
                "Experiment start: time_limit=%ss, max_candidates=%s, direction=%s, seed=%d",
                settings.max_experiment_time_seconds,
                settings.max_candidates,
                settings.metric_direction,
                settings.seed,
            )
            stop_reason = self._loop()
        finally:
            self.budget.disarm()

        outcomes = list(self.history.all())
        best_run = select_best_run(outcomes, settings.metric_direction)
        total = time.monotonic() - self._start_time
        logger.info(
            "Experiment complete | stop_reason=%s | runs=%d | succeeded=%d | best=%s | %.1fs",
            stop_reason,
            len(outcomes),
            self.history.count_succeeded(),
            best_run.score if best_run is not None else None,
            total,
        )
        return ExperimentResult(
            outcomes=outcomes,
            stop_reason=stop_reason,
            best_run=best_run,
            total_duration_seconds=total,
            experiment_directory=self.experiment_directory,
        )

    def _loop(self) -> StopReason:
        """Run iterations until one of the stop conditions holds."""
        while True:
            stop_reason = self._check_stop()
            if stop_reason is not None:
                return stop_reason

            iteration = len(self.history) + 1
            iteration_start = time.monotonic()
            candidate = self.suggester.suggest(self.history)
            inference_seconds = time.monotonic() - iteration_start

            if candidate is None:
                logger.info(
                    "No candidate returned at iteration %d; search space exhausted",
                    iteration,
                )
                return StopReason.SEARCH_SPACE_EMPTY

            logger.debug("Evaluating pipeline %s", candidate)
            outcome = self._evaluate(candidate, iteration)
            outcome = outcome.model_copy(
                update={
                    "iteration": iteration,
                    "duration_seconds": time.monotonic() - iteration_start,
                    "inference_seconds": inference_seconds,
                }
            )

            self.history.append(outcome)
            logger.debug(
                "%d\t%s\t%.3fs\t%s",
                len(self.history),
                outcome.score,
                outcome.duration_seconds,
                candidate,
            )
            self.reporter.notify(outcome)

            if outcome.succeeded and self.metrics_agent.is_perfect(outcome.score):
                logger.info(
                    "Perfect score %s reached at iteration %d; stopping",
                    outcome.score,
                    iteration,
                )
                return StopReason.CONVERGED

            if (
                len(self.history) == _ABORT_AFTER_ATTEMPTS
                and self.history.count_succeeded() == 0
            ):
                self._abort()

    def _check_stop(self) -> StopReason | None:
        """Evaluate the iteration-boundary stop conditions.

        The time budget is only consulted once an iteration has run, so a
        zero-second budget still performs exactly one iteration.
        """
        settings = self.settings
        event = settings.cancellation_event
        if event is not None and event.is_set():
            logger.info("Cancellation requested; stopping after %d runs", len(self.history))
            return StopReason.EXTERNALLY_CANCELLED
        if self.history and self.budget.check_expired():
            return StopReason.TIME_EXPIRED
        if settings.max_candidates is not None and len(self.history) >= settings.max_candidates:
            logger.info("Candidate limit of %d reached", settings.max_candidates)
            return StopReason.EXHAUSTED
        return None

    def _evaluate(self, candidate: Candidate, iteration: int) -> RunOutcome:
        """Evaluate *candidate* in a fresh, registered execution context.

        Exceptions raised by the runner are recorded as failed outcomes. The
        context is unregistered and finished whatever the result.
        """
        context = ExecutionContext.create(
            self.settings.seed, iteration, self.experiment_directory
        )
        self.registry.add(context)
        # The deadline may have fired while the suggester ran
        if self.budget.expired and self.history.count_succeeded() > 0:
            context.cancel()
        try:
            outcome = self.runner.evaluate(candidate, context)
        except ExecutionCancelledError as exc:
            logger.warning("Iteration %d cancelled: %s", iteration, exc)
            return RunOutcome(candidate=candidate, succeeded=False, error=str(exc))
        except Exception as exc:
            logger.warning(
                "Runner raised for iteration %d (%s)", iteration, candidate, exc_info=True
            )
            return RunOutcome(
                candidate=candidate,
                succeeded=False,
                error=f"{type(exc).__name__}: {exc}",
            )
        finally:
            self.registry.remove(context)
            context.finish()

        if not isinstance(outcome, RunOutcome):
            msg = f"Runner returned {type(outcome).__name__}, expected RunOutcome"
            raise ExperimentError(msg, diagnostics=self._diagnostics())
        return outcome

    def _abort(self) -> None:
        """Raise ``ExperimentAbortedError`` for the failed first attempts."""
        last = self.history.last()
        last_error = last.error if last is not None else None
        logger.error(
            "First %d runs all failed; aborting experiment. Last error: %s",
            _ABORT_AFTER_ATTEMPTS,
            last_error,
        )
        msg = f"Training failed with the exception: {last_error}"
        raise ExperimentAbortedError(
            msg,
            diagnostics=self._diagnostics(),
            outcomes=self.history.all(),
            last_error=last_error,
        )

    def _diagnostics(self) -> dict[str, Any]:
        """Structured context attached to experiment errors."""
        elapsed = 0.0 if self._start_time is None else time.monotonic() - self._start_time
        return {
            "elapsed_seconds": elapsed,
            "runs": len(self.history),
            "succeeded": self.history.count_succeeded(),
            "budget_expired": self.budget.expired,
        }


def run_experiment(
    suggester: Suggester,
    runner: Runner,
    metrics_agent: MetricsAgent,
    settings: ExperimentSettings | None = None,
    observer: ProgressObserver | None = None,
) -> ExperimentResult:
    """Build an ``Experiment`` and run it once.

    Args:
        suggester: Proposes candidates from the history.
        runner: Evaluates candidates.
        metrics_agent: Perfect-score classifier.
        settings: Budget configuration; defaults to ``ExperimentSettings()``.
        observer: Optional progress sink.

    Returns:
        The completed ``ExperimentResult``.

    Raises:
        BudgetError: If the time budget is invalid.
        ExperimentAbortedError: If the first three attempts all failed.
    """
    return Experiment(suggester, runner, metrics_agent, settings, observer).run()
