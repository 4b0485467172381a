"""Score parsing, comparison, and perfect-score classification.

Provides ``parse_score`` regex extraction for script-backed candidates, two
comparison functions (``is_improvement``, ``is_improvement_or_equal``) that
respect ``MetricDirection``, the ``MetricsAgent`` protocol with a threshold
implementation, and ``select_best_run`` for picking an experiment's best
outcome.
"""

from __future__ import annotations

from collections.abc import Iterable
import math
import re
from typing import Protocol, runtime_checkable

from autosearch.models import MetricDirection, RunOutcome

_SCORE_PATTERN: re.Pattern[str] = re.compile(
    r"Final Validation Performance:\s*([\d.eE+-]+)"
)


@runtime_checkable
class MetricsAgent(Protocol):
    """Classifies a score as perfect, which ends the search early."""

    def is_perfect(self, score: float | None) -> bool: ...  # noqa: D102


class ThresholdMetricsAgent:
    """Treats any score at or beyond ``perfect_score`` as perfect.

    With ``MAXIMIZE`` a score is perfect when ``score >= perfect_score``; with
    ``MINIMIZE`` when ``score <= perfect_score``. A ``None`` threshold means
    no score is ever perfect. Missing and non-finite scores are never perfect.

    Attributes:
        direction: Whether the metric is maximized or minimized.
        perfect_score: Threshold score, or None.
    """

    def __init__(
        self,
        direction: MetricDirection,
        perfect_score: float | None = None,
    ) -> None:
        self.direction = direction
        self.perfect_score = perfect_score

    def is_perfect(self, score: float | None) -> bool:
        if self.perfect_score is None or score is None or not math.isfinite(score):
            return False
        return is_improvement_or_equal(score, self.perfect_score, self.direction)


def parse_score(stdout: str) -> float | None:
    r"""Extract the validation score from script stdout.

    Matches ``Final Validation Performance:\s*([\d.eE+-]+)`` and returns the
    **last** match as a float. Returns ``None`` when no match is found or
    float conversion fails.

    Args:
        stdout: Full standard output from a candidate script execution.

    Returns:
        The parsed score as a float, or None if the pattern is not found.
    """
    matches = _SCORE_PATTERN.findall(stdout)
    if not matches:
        return None
    try:
        return float(matches[-1])
    except ValueError:
        return None


def is_improvement(
    new_score: float,
    old_score: float,
    direction: MetricDirection,
) -> bool:
    """Check if *new_score* is strictly better than *old_score*.

    Args:
        new_score: The candidate score to evaluate.
        old_score: The score to compare against.
        direction: Whether to maximize or minimize the metric.

    Returns:
        True if *new_score* is strictly better than *old_score*.
    """
    if direction == MetricDirection.MAXIMIZE:
        return new_score > old_score
    return new_score < old_score


def is_improvement_or_equal(
    new_score: float,
    old_score: float,
    direction: MetricDirection,
) -> bool:
    """Check if *new_score* is better than or equal to *old_score*.

    Args:
        new_score: The candidate score to evaluate.
        old_score: The score to compare against.
        direction: Whether to maximize or minimize the metric.

    Returns:
        True if *new_score* is at least as good as *old_score*.
    """
    if direction == MetricDirection.MAXIMIZE:
        return new_score >= old_score
    return new_score <= old_score


def select_best_run(
    outcomes: Iterable[RunOutcome],
    direction: MetricDirection,
) -> RunOutcome | None:
    """Return the best successful outcome with a finite score.

    Uses strict ``is_improvement`` so that ties keep the earliest outcome.

    Args:
        outcomes: Outcomes in chronological order.
        direction: Whether to maximize or minimize the metric.

    Returns:
        The best outcome, or None when no outcome qualifies.
    """
    best: RunOutcome | None = None
    for outcome in outcomes:
        if not outcome.succeeded or outcome.score is None:
            continue
        if not math.isfinite(outcome.score):
            continue
        if best is None or is_improvement(outcome.score, best.score, direction):  # type: ignore[arg-type]
            best = outcome
    return best
