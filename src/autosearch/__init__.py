"""autosearch: anytime, budget-constrained search over candidate pipelines."""

from autosearch.budget import BudgetController, BudgetError
from autosearch.context import ContextRegistry, ExecutionCancelledError, ExecutionContext
from autosearch.experiment import (
    Experiment,
    ExperimentAbortedError,
    ExperimentError,
    Runner,
    Suggester,
    run_experiment,
)
from autosearch.ledger import RunHistory
from autosearch.models import (
    Candidate,
    ExperimentResult,
    ExperimentSettings,
    MetricDirection,
    RunOutcome,
    StopReason,
)
from autosearch.reporting import ProgressObserver, ProgressReporter
from autosearch.scoring import MetricsAgent, ThresholdMetricsAgent

__version__ = "0.1.0"

__all__ = [
    "BudgetController",
    "BudgetError",
    "Candidate",
    "ContextRegistry",
    "ExecutionCancelledError",
    "ExecutionContext",
    "Experiment",
    "ExperimentAbortedError",
    "ExperimentError",
    "ExperimentResult",
    "ExperimentSettings",
    "MetricDirection",
    "MetricsAgent",
    "ProgressObserver",
    "ProgressReporter",
    "Runner",
    "RunHistory",
    "RunOutcome",
    "StopReason",
    "Suggester",
    "ThresholdMetricsAgent",
    "run_experiment",
]
