from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Callable, Mapping, Sequence

from ..errors import SpawnError
from .types import StepResult

logger = logging.getLogger(__name__)

# Grace period for collecting leftover output after the process group is killed.
DRAIN_SECONDS = 1.0
TRUNCATION_MARKER = "\n[output truncated]"


def _decode(raw: bytes | None, max_bytes: int) -> str:
    """Decode captured bytes lossily, truncating past `max_bytes`.

    Example:
        ```python
        text = _decode(b"hi\\xff", max_bytes=1024)
        ```
    """
    if not raw:
        return ""
    if len(raw) > max_bytes:
        return raw[:max_bytes].decode("utf-8", errors="replace") + TRUNCATION_MARKER
    return raw.decode("utf-8", errors="replace")


def _kill_group(proc: subprocess.Popen[bytes]) -> None:
    """Kill the process group led by `proc`, falling back to the process itself.

    Example:
        ```python
        _kill_group(proc)
        ```
    """
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        proc.kill()


def run_process(
    argv: Sequence[str],
    *,
    cwd: str | os.PathLike[str],
    timeout_seconds: float,
    max_output_bytes: int,
    env: Mapping[str, str] | None = None,
    user: str | None = None,
    on_spawn: Callable[[int], None] | None = None,
    on_timeout: Callable[[], None] | None = None,
) -> StepResult:
    """Run one external command to completion or to its deadline.

    Standard input is closed. The child leads a new session so that a timeout
    kills its whole process tree. `on_spawn` receives the child pid right after
    start; `on_timeout` runs after the tree has been killed, for sandboxes that
    own resources outside the tree (e.g. a detached container).

    Raises `SpawnError` when the program cannot be started.

    Example:
        ```python
        step = run_process(["python3", "main.py"], cwd="/tmp/run", timeout_seconds=5, max_output_bytes=131072)
        ```
    """
    if not argv:
        raise ValueError("argv must not be empty")
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(Path(cwd)),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
            user=user,
            start_new_session=True,
        )
    except OSError as exc:
        raise SpawnError(argv[0], exc) from exc

    if on_spawn is not None:
        try:
            on_spawn(proc.pid)
        except OSError as exc:
            _kill_group(proc)
            proc.communicate()
            raise SpawnError(argv[0], exc) from exc

    timed_out = False
    try:
        stdout, stderr = proc.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_group(proc)
        if on_timeout is not None:
            on_timeout()
        try:
            stdout, stderr = proc.communicate(timeout=DRAIN_SECONDS)
        except subprocess.TimeoutExpired as exc:
            # A descendant escaped the group and still holds the pipes.
            proc.kill()
            proc.wait()
            stdout, stderr = exc.stdout, exc.stderr

    elapsed = time.monotonic() - started
    logger.debug(
        "Process %s finished in %.3fs (exit=%s, timed_out=%s)",
        argv[0],
        elapsed,
        proc.returncode,
        timed_out,
    )
    return StepResult(
        stdout=_decode(stdout, max_output_bytes),
        stderr=_decode(stderr, max_output_bytes),
        exit_code=None if timed_out else proc.returncode,
        timed_out=timed_out,
    )
