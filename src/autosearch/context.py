"""Isolated, cancellable execution contexts and the in-flight context registry.

Each iteration of the experiment loop evaluates its candidate inside a fresh
``ExecutionContext``. A context owns its own cancellation flag, so cancelling
one context can never cancel the user's own state or any other context.
Cancellation is cooperative: runners poll ``cancelled`` (or block on
``wait_cancelled``) and return a failed outcome promptly.

``ContextRegistry`` is the set of contexts currently being evaluated. It is
shared between the driver thread and the budget timer thread, so every
operation on it holds a single lock.
"""

from __future__ import annotations

import logging
from pathlib import Path
import random
import threading

logger = logging.getLogger(__name__)

_SEED_SPACE = 2**32


class ExecutionCancelledError(Exception):
    """Raised by ``ExecutionContext.raise_if_cancelled`` once cancelled."""


def derive_seed(root_seed: int, iteration: int) -> int:
    """Derive a deterministic per-iteration seed from the root seed.

    The same ``(root_seed, iteration)`` pair always maps to the same seed,
    so repeated experiments reproduce at the per-iteration level.

    Args:
        root_seed: Seed configured for the whole experiment.
        iteration: 1-based iteration number.

    Returns:
        A seed in ``[0, 2**32)``.
    """
    return random.Random(f"{root_seed}:{iteration}").randrange(_SEED_SPACE)


class ExecutionContext:
    """Disposable unit of work for a single candidate evaluation.

    Attributes:
        seed: Deterministic seed for this evaluation.
        iteration: 1-based iteration number.
        working_directory: Directory for candidate artifacts, or None.
    """

    def __init__(
        self,
        seed: int,
        iteration: int,
        working_directory: str | None = None,
    ) -> None:
        self.seed = seed
        self.iteration = iteration
        self.working_directory = working_directory
        self._cancel_event = threading.Event()
        self._finished = threading.Event()
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        root_seed: int,
        iteration: int,
        experiment_directory: str | None = None,
    ) -> ExecutionContext:
        """Build a context with a seed derived from *root_seed*.

        When *experiment_directory* is given, an ``iteration_<n>``
        subdirectory is created and used as the working directory.

        Args:
            root_seed: Experiment-wide root seed.
            iteration: 1-based iteration number.
            experiment_directory: Parent directory for per-iteration artifacts.

        Returns:
            A fresh, uncancelled context.
        """
        working_directory: str | None = None
        if experiment_directory is not None:
            work = Path(experiment_directory) / f"iteration_{iteration}"
            work.mkdir(parents=True, exist_ok=True)
            working_directory = str(work.resolve())
        return cls(derive_seed(root_seed, iteration), iteration, working_directory)

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._cancel_event.is_set()

    @property
    def finished(self) -> bool:
        """Whether the evaluation using this context has completed."""
        return self._finished.is_set()

    def cancel(self) -> None:
        """Request cooperative cancellation.

        Safe to call any number of times; a no-op once the context finished.
        """
        with self._lock:
            if self._finished.is_set() or self._cancel_event.is_set():
                return
            self._cancel_event.set()
        logger.debug("Execution context cancelled: iteration=%d", self.iteration)

    def finish(self) -> None:
        """Mark the evaluation as complete; later ``cancel()`` calls are ignored."""
        with self._lock:
            self._finished.set()

    def wait_cancelled(self, timeout: float | None = None) -> bool:
        """Block until cancellation is requested or *timeout* elapses.

        Returns:
            True if the context was cancelled.
        """
        return self._cancel_event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise ``ExecutionCancelledError`` if cancellation was requested."""
        if self._cancel_event.is_set():
            msg = f"Execution of iteration {self.iteration} was cancelled"
            raise ExecutionCancelledError(msg)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(iteration={self.iteration}, seed={self.seed}, "
            f"cancelled={self.cancelled}, finished={self.finished})"
        )


class ContextRegistry:
    """Lock-guarded set of in-flight execution contexts."""

    def __init__(self) -> None:
        self._contexts: set[ExecutionContext] = set()
        self._lock = threading.Lock()

    def add(self, context: ExecutionContext) -> None:
        """Register a context whose evaluation is starting."""
        with self._lock:
            self._contexts.add(context)

    def remove(self, context: ExecutionContext) -> None:
        """Unregister a context; unknown contexts are ignored."""
        with self._lock:
            self._contexts.discard(context)

    def cancel_all(self) -> int:
        """Cancel every registered context and clear the set.

        Returns:
            Number of contexts that were registered.
        """
        with self._lock:
            contexts = list(self._contexts)
            self._contexts.clear()
            for context in contexts:
                context.cancel()
        return len(contexts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    def __contains__(self, context: object) -> bool:
        with self._lock:
            return context in self._contexts
