"""CLI entry point for autosearch.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``autosearch = "autosearch.cli:main"``. Parses
command-line arguments, loads the experiment and settings YAML files, wires
the reference collaborators (sequential suggester, script runner, threshold
metrics agent, logging observer), and runs the experiment. SIGINT and
SIGTERM set the external cancellation signal, so the run ends at the next
iteration boundary with the outcomes gathered so far.
"""

from __future__ import annotations

import argparse
import contextlib
from pathlib import Path
import signal
import sys
import threading
from typing import TYPE_CHECKING, Any

import yaml

from autosearch.execution import ScriptRunner
from autosearch.experiment import (
    ExperimentError,
    apply_env_overrides,
    configure_logging,
    run_experiment,
)
from autosearch.models import ExperimentDefinition, ExperimentResult, ExperimentSettings
from autosearch.reporting import LoggingObserver
from autosearch.scoring import ThresholdMetricsAgent
from autosearch.suggesters import SequentialSuggester

if TYPE_CHECKING:
    from collections.abc import Iterator


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser`` with ``--experiment`` and ``--config`` flags.
    """
    parser = argparse.ArgumentParser(
        prog="autosearch",
        description="autosearch: budget-constrained search over candidate pipelines.",
    )
    parser.add_argument(
        "--experiment",
        required=True,
        help="Path to the experiment definition YAML file.",
    )
    parser.add_argument(
        "--config",
        required=False,
        default=None,
        help="Path to an optional ExperimentSettings YAML file.",
    )
    return parser


def _load_yaml(path: str, label: str) -> dict[str, Any]:
    """Load and validate a YAML file as a dict.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages (e.g., "experiment").

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a mapping.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def load_experiment_file(path: str) -> ExperimentDefinition:
    """Load an experiment definition from YAML.

    Candidates may inline their source under ``content`` or reference a
    file under ``script``; script paths are resolved relative to the YAML
    file and read into ``content``.

    Args:
        path: Path to the experiment YAML file.

    Returns:
        The validated ``ExperimentDefinition``.

    Raises:
        FileNotFoundError: If the YAML file or a referenced script is missing.
        ValueError: If the YAML is malformed or fails validation.
    """
    data = _load_yaml(path, "experiment")
    base_dir = Path(path).parent
    candidates = data.get("candidates")
    if isinstance(candidates, list):
        data["candidates"] = [_resolve_script(entry, base_dir) for entry in candidates]
    return ExperimentDefinition(**data)


def _resolve_script(entry: Any, base_dir: Path) -> Any:
    """Replace a candidate's ``script`` reference with the file's content."""
    if not isinstance(entry, dict) or "script" not in entry:
        return entry
    resolved = dict(entry)
    script_path = base_dir / str(resolved.pop("script"))
    if not script_path.is_file():
        msg = f"candidate script not found: {script_path}"
        raise FileNotFoundError(msg)
    resolved["content"] = script_path.read_text(encoding="utf-8")
    return resolved


@contextlib.contextmanager
def _cancel_on_signals(event: threading.Event) -> Iterator[None]:
    """Set *event* on SIGINT/SIGTERM for the duration of the block."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ARG001
        event.set()

    originals: dict[int, Any] = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            originals[sig] = signal.signal(sig, _handler)
        except (OSError, ValueError):
            # Not on the main thread or signal unavailable on this platform
            pass
    try:
        yield
    finally:
        for sig, handler in originals.items():
            with contextlib.suppress(OSError, ValueError):
                signal.signal(sig, handler)


def _print_startup_summary(
    definition: ExperimentDefinition, settings: ExperimentSettings
) -> None:
    """Print a startup summary banner to stdout."""
    sep = "=" * 60
    print(sep)
    print("autosearch")
    print(sep)
    print(f"  Experiment:   {definition.name}")
    print(f"  Metric:       {definition.metric_name} ({settings.metric_direction})")
    print(f"  Perfect at:   {definition.perfect_score}")
    print(f"  Candidates:   {len(definition.candidates)}")
    seconds = settings.max_experiment_time_seconds
    time_limit = "none" if seconds is None else f"{seconds}s"
    print(f"  Time limit:   {time_limit}")
    print(f"  Max runs:     {settings.max_candidates}")
    print(f"  Seed:         {settings.seed}")
    print(sep)


def _print_result(definition: ExperimentDefinition, result: ExperimentResult) -> None:
    """Print the experiment result summary to stdout."""
    succeeded = sum(1 for outcome in result.outcomes if outcome.succeeded)
    print("Experiment completed.")
    print(f"Stop reason: {result.stop_reason}")
    print(f"Runs: {len(result.outcomes)} ({succeeded} succeeded)")
    print(f"Total duration: {result.total_duration_seconds:.1f}s")
    if result.best_run is not None:
        print(
            f"Best run: {result.best_run.candidate} "
            f"({definition.metric_name}={result.best_run.score})"
        )
    if result.experiment_directory is not None:
        print(f"Artifacts: {result.experiment_directory}")


def main() -> int:
    """Entry point for the autosearch CLI application.

    Returns:
        Exit code: 0 on a normal stop, 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args()

    cancel = threading.Event()
    try:
        definition = load_experiment_file(args.experiment)

        settings_data: dict[str, Any] = {}
        if args.config is not None:
            settings_data = _load_yaml(args.config, "config")
        settings = ExperimentSettings(**settings_data)
        settings = apply_env_overrides(settings)
        settings = settings.model_copy(update={"cancellation_event": cancel})

        configure_logging(settings)
        _print_startup_summary(definition, settings)

        with _cancel_on_signals(cancel):
            result = run_experiment(
                SequentialSuggester(definition.candidates),
                ScriptRunner(timeout_seconds=definition.candidate_timeout_seconds),
                ThresholdMetricsAgent(settings.metric_direction, definition.perfect_score),
                settings,
                LoggingObserver(definition.metric_name),
            )
        _print_result(definition, result)

    except ExperimentError as exc:
        print(f"Experiment error: {exc}", file=sys.stderr)
        print(f"Diagnostics: {exc.diagnostics}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
