"""Shared fixtures and stub collaborators for the autosearch test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
import logging
from typing import Any

from autosearch.context import ExecutionContext
from autosearch.ledger import RunHistory
from autosearch.models import Candidate, ExperimentSettings, RunOutcome
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_candidate(**overrides: Any) -> Candidate:
    """Build a valid Candidate with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed Candidate instance.
    """
    defaults: dict[str, Any] = {
        "name": "lightgbm",
        "params": {"num_leaves": 31},
    }
    defaults.update(overrides)
    return Candidate(**defaults)


def make_outcome(**overrides: Any) -> RunOutcome:
    """Build a valid successful RunOutcome with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunOutcome instance.
    """
    defaults: dict[str, Any] = {
        "candidate": make_candidate(),
        "score": 0.85,
        "succeeded": True,
    }
    defaults.update(overrides)
    return RunOutcome(**defaults)


def make_failure(**overrides: Any) -> RunOutcome:
    """Build a failed RunOutcome with sensible defaults."""
    defaults: dict[str, Any] = {
        "candidate": make_candidate(),
        "score": None,
        "succeeded": False,
        "error": "ValueError: bad input",
    }
    defaults.update(overrides)
    return RunOutcome(**defaults)


def make_settings(**overrides: Any) -> ExperimentSettings:
    """Build ExperimentSettings with no time limit and a candidate cap.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ExperimentSettings instance.
    """
    defaults: dict[str, Any] = {
        "max_experiment_time_seconds": None,
        "max_candidates": 5,
    }
    defaults.update(overrides)
    return ExperimentSettings(**defaults)


# ---------------------------------------------------------------------------
# Stub collaborators
# ---------------------------------------------------------------------------


class CountingSuggester:
    """Returns ``candidate_<n>`` forever, or ``None`` from iteration *empty_at*."""

    def __init__(self, empty_at: int | None = None) -> None:
        self.empty_at = empty_at
        self.calls = 0

    def suggest(self, history: RunHistory) -> Candidate | None:
        self.calls += 1
        iteration = len(history) + 1
        if self.empty_at is not None and iteration >= self.empty_at:
            return None
        return Candidate(name=f"candidate_{iteration}", params={"index": iteration})


class ScriptedRunner:
    """Replays a list of ``(succeeded, score)`` pairs, repeating the last one.

    Records every context it was handed so tests can inspect isolation and
    cancellation.
    """

    def __init__(
        self,
        results: list[tuple[bool, float | None]] | None = None,
        hook: Callable[[Candidate, ExecutionContext], None] | None = None,
    ) -> None:
        self.results = results if results is not None else [(True, 0.5)]
        self.hook = hook
        self.contexts: list[ExecutionContext] = []

    def evaluate(self, candidate: Candidate, context: ExecutionContext) -> RunOutcome:
        self.contexts.append(context)
        if self.hook is not None:
            self.hook(candidate, context)
        index = min(len(self.contexts), len(self.results)) - 1
        succeeded, score = self.results[index]
        if not succeeded:
            return RunOutcome(
                candidate=candidate,
                succeeded=False,
                error=f"failure #{len(self.contexts)}",
            )
        return RunOutcome(candidate=candidate, score=score, succeeded=True)


class NeverPerfect:
    """Metrics agent that never reports a perfect score."""

    def is_perfect(self, score: float | None) -> bool:  # noqa: ARG002
        return False


class PerfectAt:
    """Metrics agent that reports scores >= *threshold* as perfect."""

    def __init__(self, threshold: float) -> None:
        self.threshold = threshold

    def is_perfect(self, score: float | None) -> bool:
        return score is not None and score >= self.threshold


class RecordingObserver:
    """Progress observer that records every outcome it receives."""

    def __init__(self) -> None:
        self.outcomes: list[RunOutcome] = []

    def report(self, outcome: RunOutcome) -> None:
        self.outcomes.append(outcome)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def history() -> RunHistory:
    """Return an empty ledger."""
    return RunHistory()


@pytest.fixture()
def observer() -> RecordingObserver:
    """Return a fresh recording observer."""
    return RecordingObserver()


@pytest.fixture(autouse=True)
def _reset_autosearch_logger() -> Iterator[None]:
    """Remove handlers added by ``configure_logging`` between tests."""
    root = logging.getLogger("autosearch")
    before = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
