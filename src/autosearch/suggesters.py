"""Reference suggesters for the experiment loop.

Both suggesters are pure functions of the history length plus their static
configuration, so identical histories always yield identical candidates.

``SequentialSuggester`` walks a fixed list of candidates in order.
``RandomSearchSuggester`` samples parameter sets from a discrete grid without
replacement, seeding its generator from the root seed and the history length.
"""

from __future__ import annotations

import itertools
import logging
import random
from typing import TYPE_CHECKING, Any

from autosearch.models import Candidate

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from autosearch.ledger import RunHistory

logger = logging.getLogger(__name__)


class SequentialSuggester:
    """Proposes ``candidates[len(history)]`` until the list runs out."""

    def __init__(self, candidates: Sequence[Candidate]) -> None:
        self.candidates = tuple(candidates)

    def suggest(self, history: RunHistory) -> Candidate | None:
        index = len(history)
        if index >= len(self.candidates):
            return None
        return self.candidates[index]


class RandomSearchSuggester:
    """Uniform random search over the cartesian product of a parameter grid.

    Parameter sets already present in the history are never proposed again;
    ``None`` is returned once every combination has been tried.

    Attributes:
        name: Candidate name attached to every proposal.
        grid: Mapping of parameter name to its allowed values.
        seed: Root seed for sampling.
    """

    def __init__(
        self,
        name: str,
        grid: Mapping[str, Sequence[Any]],
        seed: int = 0,
    ) -> None:
        if not grid:
            msg = "grid must contain at least one parameter"
            raise ValueError(msg)
        for key, values in grid.items():
            if len(values) < 1:
                msg = f"grid parameter {key!r} has no values"
                raise ValueError(msg)
        self.name = name
        self.grid = {key: list(values) for key, values in grid.items()}
        self.seed = seed
        keys = sorted(self.grid)
        self._space: list[dict[str, Any]] = [
            dict(zip(keys, combo, strict=True))
            for combo in itertools.product(*(self.grid[k] for k in keys))
        ]

    @property
    def size(self) -> int:
        """Number of distinct parameter sets in the grid."""
        return len(self._space)

    def suggest(self, history: RunHistory) -> Candidate | None:
        tried = [
            outcome.candidate.params
            for outcome in history
            if outcome.candidate.name == self.name
        ]
        remaining = [params for params in self._space if params not in tried]
        if not remaining:
            logger.debug("Grid of %d parameter sets exhausted", len(self._space))
            return None
        rng = random.Random(self.seed + len(history))
        return Candidate(name=self.name, params=rng.choice(remaining))
