"""Core data models for the autosearch experiment loop.

Defines the shared Pydantic models and enums used by every other module:
candidates, per-iteration run outcomes, experiment settings (the budget
configuration), stop reasons, and the final experiment result.
"""

from __future__ import annotations

from enum import StrEnum
import math
import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MetricDirection(StrEnum):
    """Whether the optimizing metric should be maximized or minimized."""

    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


class StopReason(StrEnum):
    """Terminal classification explaining why the experiment loop ended.

    Values are mutually exclusive; exactly one is attached to every
    ``ExperimentResult``. ``ABORTED`` is never returned from a normal run
    because a breached failure threshold raises instead.
    """

    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    TIME_EXPIRED = "time_expired"
    EXTERNALLY_CANCELLED = "externally_cancelled"
    SEARCH_SPACE_EMPTY = "search_space_empty"
    ABORTED = "aborted"


class Candidate(BaseModel):
    """A pipeline configuration produced by a suggester.

    Attributes:
        name: Human-readable identifier of the pipeline.
        params: Hyperparameters or other structured configuration.
        content: Optional Python source for script-backed candidates.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    params: dict[str, Any] = Field(default_factory=dict)
    content: str | None = None

    @field_validator("name")
    @classmethod
    def _name_must_be_nonempty(cls, v: str) -> str:
        """Validate that the candidate name is not blank."""
        if not v.strip():
            msg = "Candidate name must not be empty"
            raise ValueError(msg)
        return v

    def __str__(self) -> str:
        if not self.params:
            return self.name
        rendered = ", ".join(f"{k}={v!r}" for k, v in sorted(self.params.items()))
        return f"{self.name}({rendered})"


class RunOutcome(BaseModel):
    """Recorded result of evaluating one candidate.

    Created exactly once per iteration and never mutated afterwards; the
    driver stamps timing details onto a copy before appending it.

    Attributes:
        candidate: The candidate that was evaluated.
        iteration: 1-based iteration number within the experiment.
        score: Optimizing metric value (None when evaluation failed).
        succeeded: Whether the evaluation produced a usable result.
        error: Failure detail for unsuccessful runs.
        duration_seconds: Wall-clock time of the whole iteration.
        inference_seconds: Time the suggester took to propose the candidate.
    """

    model_config = ConfigDict(frozen=True)

    candidate: Candidate
    iteration: int = 0
    score: float | None = None
    succeeded: bool
    error: str | None = None
    duration_seconds: float = 0.0
    inference_seconds: float = 0.0


class ExperimentSettings(BaseModel):
    """Budget configuration and ambient settings for one experiment run.

    Attributes:
        max_experiment_time_seconds: Wall-clock budget in seconds, or None
            for no time limit. ``0`` allows exactly one iteration before the
            run stops on time grounds.
        max_candidates: Maximum number of candidates to evaluate, or None
            for no count limit.
        cancellation_event: External cancellation signal, checked at every
            iteration boundary.
        metric_direction: Whether higher or lower scores are better.
        seed: Root seed from which per-iteration seeds are derived.
        cache_directory: Optional root under which an experiment directory
            is created for candidate artifacts.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_experiment_time_seconds: float | None = 600
    max_candidates: int | None = None
    cancellation_event: threading.Event | None = Field(default=None, exclude=True)
    metric_direction: MetricDirection = MetricDirection.MAXIMIZE
    seed: int = 0
    cache_directory: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("max_experiment_time_seconds")
    @classmethod
    def _time_must_be_non_negative(cls, v: float | None) -> float | None:
        """Validate that the time budget is finite and >= 0 when set."""
        if v is not None and (not math.isfinite(v) or v < 0):
            msg = "max_experiment_time_seconds must be a finite number >= 0"
            raise ValueError(msg)
        return v

    @field_validator("max_candidates")
    @classmethod
    def _candidates_must_be_positive(cls, v: int | None) -> int | None:
        """Validate that the candidate limit is >= 1 when set."""
        if v is not None and v < 1:
            msg = "max_candidates must be >= 1"
            raise ValueError(msg)
        return v


class ExperimentResult(BaseModel):
    """Outcome of a completed experiment run.

    Attributes:
        outcomes: Every run outcome in chronological order.
        stop_reason: Why the loop terminated.
        best_run: Best successful outcome, or None if nothing succeeded.
        total_duration_seconds: Wall-clock time of the whole run.
        experiment_directory: Directory holding candidate artifacts, if any.
    """

    model_config = ConfigDict(frozen=True)

    outcomes: list[RunOutcome]
    stop_reason: StopReason
    best_run: RunOutcome | None = None
    total_duration_seconds: float = 0.0
    experiment_directory: str | None = None


class ExperimentDefinition(BaseModel):
    """Declarative experiment loaded from a YAML file by the CLI.

    Attributes:
        name: Experiment identifier used in logs and summaries.
        metric_name: Name of the optimizing metric.
        perfect_score: Score at which the search converges, or None.
        candidate_timeout_seconds: Per-candidate execution limit for
            script-backed candidates.
        candidates: Non-empty list of candidates, evaluated in order.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "experiment"
    metric_name: str = "score"
    perfect_score: float | None = None
    candidate_timeout_seconds: int = 3600
    candidates: list[Candidate]

    @field_validator("candidates")
    @classmethod
    def _candidates_must_be_nonempty(cls, v: list[Candidate]) -> list[Candidate]:
        """Validate that the candidate list contains at least one entry."""
        if len(v) < 1:
            msg = "candidates list must contain at least 1 entry"
            raise ValueError(msg)
        return v

    @field_validator("candidate_timeout_seconds")
    @classmethod
    def _timeout_must_be_positive(cls, v: int) -> int:
        """Validate that the per-candidate timeout is >= 1."""
        if v < 1:
            msg = "candidate_timeout_seconds must be >= 1"
            raise ValueError(msg)
        return v
