"""Append-only history of run outcomes.

``RunHistory`` is the ledger consulted by suggesters and by the driver's
stopping checks. Insertion order is chronological order; entries are never
re-sorted or pruned during a run. Only the driver thread appends, so the
ledger itself carries no lock. The budget timer reads the success counter,
which is a single int rebound atomically under the GIL.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autosearch.models import RunOutcome

if TYPE_CHECKING:
    from collections.abc import Iterator


class RunHistory:
    """Ordered, append-only record of ``RunOutcome`` values."""

    def __init__(self) -> None:
        self._outcomes: list[RunOutcome] = []
        self._succeeded = 0

    def append(self, outcome: RunOutcome) -> None:
        """Record *outcome* as the newest entry.

        Raises:
            TypeError: If *outcome* is not a ``RunOutcome``.
        """
        if not isinstance(outcome, RunOutcome):
            msg = f"Expected RunOutcome, got {type(outcome).__name__}"
            raise TypeError(msg)
        self._outcomes.append(outcome)
        if outcome.succeeded:
            self._succeeded += 1

    def all(self) -> tuple[RunOutcome, ...]:
        """Return every outcome in chronological order."""
        return tuple(self._outcomes)

    def count_succeeded(self) -> int:
        """Return the number of successful outcomes (constant time)."""
        return self._succeeded

    def last(self) -> RunOutcome | None:
        """Return the most recent outcome, or None when empty."""
        return self._outcomes[-1] if self._outcomes else None

    def __len__(self) -> int:
        return len(self._outcomes)

    def __iter__(self) -> Iterator[RunOutcome]:
        return iter(tuple(self._outcomes))

    def __bool__(self) -> bool:
        return bool(self._outcomes)
