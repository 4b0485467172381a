"""Tests for the core data models.

Validates field defaults, validators, immutability, and string rendering of
``Candidate``, ``RunOutcome``, ``ExperimentSettings``, ``ExperimentResult``,
and ``ExperimentDefinition``.
"""

from __future__ import annotations

import threading

from autosearch.models import (
    Candidate,
    ExperimentDefinition,
    ExperimentResult,
    ExperimentSettings,
    MetricDirection,
    StopReason,
)
from hypothesis import given, strategies as st
from pydantic import ValidationError
import pytest

from tests.conftest import make_candidate, make_outcome


@pytest.mark.unit
class TestEnums:
    """String values of the enums are stable."""

    def test_metric_direction_values(self) -> None:
        assert MetricDirection.MAXIMIZE == "maximize"
        assert MetricDirection.MINIMIZE == "minimize"

    def test_stop_reasons_are_distinct(self) -> None:
        values = [reason.value for reason in StopReason]
        assert len(values) == len(set(values)) == 6


@pytest.mark.unit
class TestCandidate:
    """Candidate validation and rendering."""

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError, match="must not be empty"):
            Candidate(name=name)

    def test_frozen(self) -> None:
        candidate = make_candidate()
        with pytest.raises(ValidationError):
            candidate.name = "other"  # type: ignore[misc]

    def test_str_without_params(self) -> None:
        assert str(Candidate(name="ridge")) == "ridge"

    def test_str_sorts_params(self) -> None:
        candidate = Candidate(name="lgbm", params={"b": 2, "a": "x"})
        assert str(candidate) == "lgbm(a='x', b=2)"

    @given(name=st.text(min_size=1).filter(lambda s: s.strip()))
    def test_non_blank_names_accepted(self, name: str) -> None:
        assert Candidate(name=name).name == name


@pytest.mark.unit
class TestRunOutcome:
    """RunOutcome defaults and immutability."""

    def test_defaults(self) -> None:
        outcome = make_outcome()
        assert outcome.iteration == 0
        assert outcome.error is None
        assert outcome.duration_seconds == 0.0
        assert outcome.inference_seconds == 0.0

    def test_frozen(self) -> None:
        outcome = make_outcome()
        with pytest.raises(ValidationError):
            outcome.score = 1.0  # type: ignore[misc]

    def test_model_copy_stamps_without_mutating(self) -> None:
        original = make_outcome()
        stamped = original.model_copy(update={"iteration": 4})
        assert stamped.iteration == 4
        assert original.iteration == 0


@pytest.mark.unit
class TestExperimentSettings:
    """ExperimentSettings validators and serialisation."""

    def test_defaults(self) -> None:
        settings = ExperimentSettings()
        assert settings.max_experiment_time_seconds == 600
        assert settings.max_candidates is None
        assert settings.cancellation_event is None
        assert settings.metric_direction == MetricDirection.MAXIMIZE
        assert settings.seed == 0
        assert settings.log_level == "INFO"

    def test_zero_time_allowed(self) -> None:
        assert ExperimentSettings(max_experiment_time_seconds=0).max_experiment_time_seconds == 0

    def test_negative_time_rejected(self) -> None:
        with pytest.raises(ValidationError, match="finite number >= 0"):
            ExperimentSettings(max_experiment_time_seconds=-1)

    def test_unbounded_time_allowed(self) -> None:
        assert ExperimentSettings(max_experiment_time_seconds=None).max_experiment_time_seconds is None

    def test_fractional_time_allowed(self) -> None:
        assert ExperimentSettings(max_experiment_time_seconds=0.5).max_experiment_time_seconds == 0.5

    @pytest.mark.parametrize("value", [float("inf"), float("nan")])
    def test_non_finite_time_rejected(self, value: float) -> None:
        with pytest.raises(ValidationError, match="finite number >= 0"):
            ExperimentSettings(max_experiment_time_seconds=value)

    @pytest.mark.parametrize("value", [0, -3])
    def test_non_positive_candidates_rejected(self, value: int) -> None:
        with pytest.raises(ValidationError, match="max_candidates must be >= 1"):
            ExperimentSettings(max_candidates=value)

    def test_accepts_event(self) -> None:
        event = threading.Event()
        settings = ExperimentSettings(cancellation_event=event)
        assert settings.cancellation_event is event

    def test_event_excluded_from_dump(self) -> None:
        settings = ExperimentSettings(cancellation_event=threading.Event())
        assert "cancellation_event" not in settings.model_dump()

    def test_direction_from_string(self) -> None:
        settings = ExperimentSettings(metric_direction="minimize")  # type: ignore[arg-type]
        assert settings.metric_direction == MetricDirection.MINIMIZE


@pytest.mark.unit
class TestExperimentResult:
    """ExperimentResult construction."""

    def test_minimal(self) -> None:
        result = ExperimentResult(outcomes=[], stop_reason=StopReason.EXHAUSTED)
        assert result.best_run is None
        assert result.experiment_directory is None


@pytest.mark.unit
class TestExperimentDefinition:
    """ExperimentDefinition validators."""

    def test_defaults(self) -> None:
        definition = ExperimentDefinition(candidates=[make_candidate()])
        assert definition.name == "experiment"
        assert definition.metric_name == "score"
        assert definition.perfect_score is None
        assert definition.candidate_timeout_seconds == 3600

    def test_empty_candidates_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 1 entry"):
            ExperimentDefinition(candidates=[])

    def test_zero_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="candidate_timeout_seconds"):
            ExperimentDefinition(candidates=[make_candidate()], candidate_timeout_seconds=0)

    def test_candidates_from_dicts(self) -> None:
        definition = ExperimentDefinition(
            candidates=[{"name": "a", "params": {"k": 1}}],  # type: ignore[list-item]
        )
        assert definition.candidates[0] == Candidate(name="a", params={"k": 1})
