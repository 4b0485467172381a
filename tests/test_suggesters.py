"""Tests for the sequential and random-search suggesters."""

from __future__ import annotations

from autosearch.experiment import Suggester
from autosearch.ledger import RunHistory
from autosearch.models import Candidate
from autosearch.suggesters import RandomSearchSuggester, SequentialSuggester
from hypothesis import given, settings, strategies as st
import pytest

from tests.conftest import make_failure, make_outcome

_GRID = {"num_leaves": [15, 31, 63], "learning_rate": [0.05, 0.1]}


@pytest.mark.unit
class TestSequentialSuggester:
    """SequentialSuggester walks its list in order."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(SequentialSuggester([]), Suggester)

    def test_walks_in_order_then_none(self, history: RunHistory) -> None:
        candidates = [Candidate(name=f"c{i}") for i in range(3)]
        suggester = SequentialSuggester(candidates)

        proposed = []
        while (candidate := suggester.suggest(history)) is not None:
            proposed.append(candidate)
            history.append(make_outcome(candidate=candidate))

        assert proposed == candidates

    def test_empty_list_returns_none(self, history: RunHistory) -> None:
        assert SequentialSuggester([]).suggest(history) is None

    def test_failures_still_advance(self, history: RunHistory) -> None:
        """Position depends on history length, not on success."""
        suggester = SequentialSuggester([Candidate(name="a"), Candidate(name="b")])
        history.append(make_failure(candidate=Candidate(name="a")))
        assert suggester.suggest(history) == Candidate(name="b")


@pytest.mark.unit
class TestRandomSearchSuggester:
    """RandomSearchSuggester samples the grid without replacement."""

    def test_size(self) -> None:
        assert RandomSearchSuggester("lgbm", _GRID).size == 6

    def test_empty_grid_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least one parameter"):
            RandomSearchSuggester("lgbm", {})

    def test_empty_values_rejected(self) -> None:
        with pytest.raises(ValueError, match="'depth' has no values"):
            RandomSearchSuggester("lgbm", {"depth": []})

    def test_covers_grid_without_repeats(self, history: RunHistory) -> None:
        suggester = RandomSearchSuggester("lgbm", _GRID, seed=7)
        seen = []
        while (candidate := suggester.suggest(history)) is not None:
            assert candidate.name == "lgbm"
            assert candidate.params not in seen
            seen.append(candidate.params)
            history.append(make_outcome(candidate=candidate))

        assert len(seen) == 6

    @given(seed=st.integers(min_value=0, max_value=10_000), steps=st.integers(0, 5))
    @settings(max_examples=30)
    def test_deterministic_for_identical_history(self, seed: int, steps: int) -> None:
        """Two suggesters with the same seed agree on every step."""
        first = RandomSearchSuggester("lgbm", _GRID, seed=seed)
        second = RandomSearchSuggester("lgbm", _GRID, seed=seed)
        history = RunHistory()
        for _ in range(steps):
            candidate = first.suggest(history)
            assert candidate == second.suggest(history)
            assert candidate is not None
            history.append(make_failure(candidate=candidate))

    def test_ignores_other_candidate_names(self, history: RunHistory) -> None:
        """Outcomes of differently named candidates do not shrink the grid."""
        suggester = RandomSearchSuggester("lgbm", {"depth": [3]})
        history.append(make_outcome(candidate=Candidate(name="xgb", params={"depth": 3})))
        assert suggester.suggest(history) == Candidate(name="lgbm", params={"depth": 3})
