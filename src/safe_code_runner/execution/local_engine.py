from __future__ import annotations

import logging
import os
from typing import Any

from ..languages import CommandSpec
from ..workspace import Workspace
from .process import run_process
from .types import ExecutionLimits, StepResult

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

logger = logging.getLogger(__name__)

# Written files larger than this are refused by the kernel.
MAX_FILE_BYTES = 64 * 1024 * 1024
_SAFE_ENV_KEYS = ("PATH", "LANG", "LC_ALL", "HOME", "TMPDIR", "JAVA_HOME")


def _child_env(workspace: Workspace) -> dict[str, str]:
    """Build a minimal environment for a submitted program.

    Example:
        ```python
        env = _child_env(ws)
        ```
    """
    env = {key: os.environ[key] for key in _SAFE_ENV_KEYS if key in os.environ}
    env["HOME"] = str(workspace.directory)
    env["TMPDIR"] = str(workspace.directory)
    return env


def _lower_limit(pid: int, which: int, value: int) -> None:
    _, hard = _resource.prlimit(pid, which)
    if hard != _resource.RLIM_INFINITY:
        value = min(value, hard)
    _resource.prlimit(pid, which, (value, value))


class LocalSandbox:
    """Run commands directly on the host, optionally as a restricted user.

    The child gets a scrubbed environment, its own session, and kernel limits on
    CPU time, written file size and (when dropping privileges) process count.

    Example:
        ```python
        sandbox = LocalSandbox(run_as_user="sandbox")
        ```
    """

    name = "local"

    def __init__(self, *, run_as_user: str | None = None, limit_memory: bool = False) -> None:
        """Configure privilege drop and optional address-space limiting.

        `limit_memory` is off by default because managed runtimes such as the JVM
        and V8 reserve far more virtual memory than they use.

        Example:
            ```python
            sandbox = LocalSandbox(limit_memory=True)
            ```
        """
        self._run_as_user = run_as_user
        self._limit_memory = limit_memory

    def execute(
        self,
        command: CommandSpec,
        workspace: Workspace,
        limits: ExecutionLimits,
    ) -> StepResult:
        """Run one step with the workspace directory as working directory.

        Example:
            ```python
            step = sandbox.execute(profile.run_step, ws, config.limits())
            ```
        """
        argv = command.render(workspace.paths())
        logger.debug("Local step %s in %s", argv, workspace.directory)
        return run_process(
            argv,
            cwd=workspace.directory,
            timeout_seconds=limits.timeout_seconds,
            max_output_bytes=limits.max_output_bytes,
            env=_child_env(workspace),
            user=self._run_as_user,
            on_spawn=lambda pid: self._apply_limits(pid, limits),
        )

    def _apply_limits(self, pid: int, limits: ExecutionLimits) -> None:
        """Set rlimits on a freshly spawned child where the platform allows it.

        Example:
            ```python
            sandbox._apply_limits(proc.pid, limits)
            ```
        """
        if _resource is None or not hasattr(_resource, "prlimit"):
            return
        cpu_seconds = int(limits.timeout_seconds) + 1
        try:
            _lower_limit(pid, _resource.RLIMIT_CPU, cpu_seconds)
            _lower_limit(pid, _resource.RLIMIT_FSIZE, MAX_FILE_BYTES)
            if self._limit_memory:
                _lower_limit(pid, _resource.RLIMIT_AS, limits.memory_limit_mb * 1024 * 1024)
            if self._run_as_user:
                # RLIMIT_NPROC counts every process of the user, so only a dedicated account gets it.
                _lower_limit(pid, _resource.RLIMIT_NPROC, limits.pids_limit)
        except ProcessLookupError:
            pass
