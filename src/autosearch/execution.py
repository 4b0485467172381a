"""Script execution harness: a subprocess-backed reference runner.

Provides functions for validating and writing candidate scripts to disk,
building subprocess environment variables, and running scripts as async
subprocesses with timeout enforcement, cooperative cancellation, and output
capture. ``ScriptRunner`` ties these together into a synchronous ``Runner``
for script-backed candidates: the driver blocks on it while a background
budget timer may cancel the execution context, which kills the subprocess
group.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
import re
import signal
import sys
import tempfile
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from autosearch.models import RunOutcome
from autosearch.scoring import parse_score

if TYPE_CHECKING:
    from collections.abc import Callable

    from autosearch.context import ExecutionContext
    from autosearch.models import Candidate

logger = logging.getLogger(__name__)

# Seed-setting code injected at the top of every candidate script.
_SEED_PREAMBLE = """\
import random as _rng; _rng.seed({seed})
try:
    import numpy as _np_seed; _np_seed.random.seed({seed})
except ImportError:
    pass
try:
    import torch as _torch_seed; _torch_seed.manual_seed({seed})
except ImportError:
    pass
"""


def build_execution_env(seed: int | None = None) -> dict[str, str]:
    """Build environment variables for script execution.

    Returns a copy of the current environment with ``PYTHONUNBUFFERED=1``
    and ``PYTHONHASHSEED`` set to *seed* (``0`` when no seed is given).

    Args:
        seed: Per-iteration seed, or ``None``.

    Returns:
        A new dict suitable for passing as ``env`` to a subprocess.
    """
    env = dict(os.environ)
    env["PYTHONUNBUFFERED"] = "1"
    env["PYTHONHASHSEED"] = str(seed if seed is not None else 0)
    return env


# ---------------------------------------------------------------------------
# Forbidden exit-call patterns
# ---------------------------------------------------------------------------

_FORBIDDEN_EXIT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bexit\s*\("),
    re.compile(r"\bsys\.exit\s*\("),
    re.compile(r"\bos\._exit\s*\("),
    re.compile(r"\bquit\s*\("),
]


def validate_script_content(content: str) -> None:
    """Validate script content before writing to disk.

    Checks that content is non-empty after stripping and does not contain
    forbidden exit calls (``exit()``, ``sys.exit()``, ``os._exit()``,
    ``quit()``).

    Args:
        content: Python source code to validate.

    Raises:
        ValueError: If content is empty or contains forbidden exit calls.
    """
    if not content.strip():
        msg = "Script content is empty after stripping whitespace"
        raise ValueError(msg)

    for pattern in _FORBIDDEN_EXIT_PATTERNS:
        match = pattern.search(content)
        if match:
            msg = f"Script contains forbidden call: {match.group()!r}"
            raise ValueError(msg)


def write_script(
    content: str,
    working_dir: str,
    filename: str = "candidate.py",
) -> str:
    """Write a candidate script to disk with pre-validation.

    Overwrites any existing file at ``{working_dir}/{filename}``.

    Args:
        content: The script source to write.
        working_dir: Directory in which to create the script file.
        filename: Name of the script file.

    Returns:
        The absolute path to the written file.

    Raises:
        ValueError: If content is empty or contains forbidden exit calls.
    """
    validate_script_content(content)

    target = Path(working_dir) / filename
    target.write_text(content, encoding="utf-8")
    return str(target.resolve())


# ---------------------------------------------------------------------------
# Async script execution
# ---------------------------------------------------------------------------

_SIGKILL_GRACE_SECONDS = 5
_CANCEL_POLL_SECONDS = 0.1


class ExecutionRawResult(BaseModel):
    """Raw output captured from a subprocess script execution.

    Attributes:
        stdout: Full standard output from the subprocess.
        stderr: Full standard error from the subprocess.
        exit_code: Process exit code (0 = success, -1 = killed).
        duration_seconds: Wall-clock execution time in seconds.
        timed_out: Whether execution was killed due to timeout.
        cancelled: Whether execution was killed due to cancellation.
    """

    model_config = ConfigDict(frozen=True)

    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    timed_out: bool
    cancelled: bool = False


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Send SIGTERM to the process group, escalating to SIGKILL after grace period.

    Args:
        proc: The asyncio subprocess to kill.
    """
    pid = proc.pid
    if pid is None:
        return

    try:
        pgid = os.getpgid(pid)
    except (OSError, ProcessLookupError):
        return

    try:
        os.killpg(pgid, signal.SIGTERM)
    except (OSError, ProcessLookupError):
        return

    try:
        await asyncio.wait_for(proc.wait(), timeout=_SIGKILL_GRACE_SECONDS)
    except TimeoutError:
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            await proc.wait()


async def execute_script(
    script_path: str,
    working_dir: str,
    timeout_seconds: float,
    env: dict[str, str] | None = None,
    is_cancelled: Callable[[], bool] | None = None,
) -> ExecutionRawResult:
    """Execute a Python script as an async subprocess.

    Runs ``python {script_path}`` with ``cwd`` set to *working_dir* in its
    own process group, captures stdout and stderr separately, and records
    wall-clock duration. While the script runs, *is_cancelled* is polled;
    on cancellation or timeout the whole process group is terminated and
    whatever output was buffered is still returned.

    Args:
        script_path: Absolute path to the Python script to execute.
        working_dir: Working directory for the subprocess.
        timeout_seconds: Maximum seconds before the script is killed.
        env: Environment variables for the subprocess, or ``None`` to
            inherit the current environment.
        is_cancelled: Optional cancellation probe.

    Returns:
        An ``ExecutionRawResult`` containing captured output, exit code,
        duration, and timeout/cancellation status.
    """
    start = time.monotonic()
    deadline = start + timeout_seconds

    proc = await asyncio.create_subprocess_exec(
        sys.executable,
        script_path,
        cwd=working_dir,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        start_new_session=True,
    )

    timed_out = False
    cancelled = False
    communicate_task = asyncio.ensure_future(proc.communicate())
    while not communicate_task.done():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            timed_out = True
            break
        if is_cancelled is not None and is_cancelled():
            cancelled = True
            break
        # asyncio.wait leaves the task running on timeout
        await asyncio.wait({communicate_task}, timeout=min(_CANCEL_POLL_SECONDS, remaining))

    if timed_out or cancelled:
        await _kill_process_group(proc)
    stdout_bytes, stderr_bytes = await communicate_task

    duration = time.monotonic() - start

    stdout_str = stdout_bytes.decode("utf-8", errors="replace")
    stderr_str = stderr_bytes.decode("utf-8", errors="replace")

    if timed_out or cancelled:
        exit_code = -1
    else:
        exit_code = proc.returncode if proc.returncode is not None else -1

    return ExecutionRawResult(
        stdout=stdout_str,
        stderr=stderr_str,
        exit_code=exit_code,
        duration_seconds=duration,
        timed_out=timed_out,
        cancelled=cancelled,
    )


def _tail(text: str, max_lines: int = 20) -> str:
    """Return the last *max_lines* non-empty lines of *text*."""
    lines = [line for line in text.splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])


# ---------------------------------------------------------------------------
# Script runner
# ---------------------------------------------------------------------------


class ScriptRunner:
    """Runs script-backed candidates in a subprocess and parses their score.

    The candidate's ``content`` is prefixed with a seed preamble using the
    context seed, written to the context's working directory (or a
    temporary directory), and executed. The score is parsed from the last
    ``Final Validation Performance: <float>`` line on stdout.

    Attributes:
        timeout_seconds: Per-candidate execution limit.
        filename: Name of the script file written for each candidate.
    """

    def __init__(self, timeout_seconds: float = 3600, filename: str = "candidate.py") -> None:
        self.timeout_seconds = timeout_seconds
        self.filename = filename

    def evaluate(self, candidate: Candidate, context: ExecutionContext) -> RunOutcome:
        if candidate.content is None:
            return _failed(candidate, "Candidate has no script content")
        try:
            validate_script_content(candidate.content)
        except ValueError as exc:
            return _failed(candidate, str(exc))
        if context.cancelled:
            return _failed(candidate, "Execution cancelled before start")

        content = _SEED_PREAMBLE.format(seed=context.seed) + candidate.content
        if context.working_directory is not None:
            return self._run_in(candidate, context, content, context.working_directory)
        with tempfile.TemporaryDirectory(prefix="autosearch_") as work_dir:
            return self._run_in(candidate, context, content, work_dir)

    def _run_in(
        self,
        candidate: Candidate,
        context: ExecutionContext,
        content: str,
        work_dir: str,
    ) -> RunOutcome:
        script_path = write_script(content, work_dir, self.filename)
        logger.info(
            "Execution start: iteration=%d, candidate=%s, timeout=%.0fs",
            context.iteration,
            candidate.name,
            self.timeout_seconds,
        )
        raw = asyncio.run(
            execute_script(
                script_path,
                work_dir,
                self.timeout_seconds,
                env=build_execution_env(context.seed),
                is_cancelled=lambda: context.cancelled,
            )
        )
        logger.info(
            "Execution complete: iteration=%d, exit_code=%d, timed_out=%s, "
            "cancelled=%s, duration=%.1fs",
            context.iteration,
            raw.exit_code,
            raw.timed_out,
            raw.cancelled,
            raw.duration_seconds,
        )
        return self._to_outcome(candidate, raw)

    def _to_outcome(self, candidate: Candidate, raw: ExecutionRawResult) -> RunOutcome:
        if raw.cancelled:
            return _failed(candidate, "Execution cancelled", raw.duration_seconds)
        if raw.timed_out:
            return _failed(
                candidate,
                f"Execution timed out after {self.timeout_seconds}s",
                raw.duration_seconds,
            )
        if raw.exit_code != 0:
            detail = _tail(raw.stderr) or f"exit code {raw.exit_code}"
            return _failed(candidate, detail, raw.duration_seconds)
        score = parse_score(raw.stdout)
        if score is None:
            return _failed(candidate, "No score found in script output", raw.duration_seconds)
        return RunOutcome(
            candidate=candidate,
            score=score,
            succeeded=True,
            duration_seconds=raw.duration_seconds,
        )


def _failed(candidate: Candidate, error: str, duration: float = 0.0) -> RunOutcome:
    """Build a failed ``RunOutcome`` with *error* as failure detail."""
    return RunOutcome(
        candidate=candidate,
        succeeded=False,
        error=error,
        duration_seconds=duration,
    )
