from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from safe_code_runner import RunnerConfig
from safe_code_runner.execution.types import ExecutionLimits, StepResult
from safe_code_runner.languages import CommandSpec
from safe_code_runner.workspace import Workspace


class ScriptedSandbox:
    """Thread-safe fake sandbox returning queued step results."""

    name = "scripted"

    def __init__(
        self,
        results: list[StepResult] | None = None,
        *,
        default: StepResult | None = None,
        delay: float = 0.0,
        side_effect: Callable[[CommandSpec, Workspace], None] | None = None,
    ) -> None:
        self._results = list(results or [])
        self._default = default or StepResult(stdout="", stderr="", exit_code=0, timed_out=False)
        self._delay = delay
        self._side_effect = side_effect
        self._lock = threading.Lock()
        self.calls: list[tuple[CommandSpec, Workspace, ExecutionLimits]] = []
        self.active = 0
        self.max_active = 0

    def execute(self, command: CommandSpec, workspace: Workspace, limits: ExecutionLimits) -> StepResult:
        with self._lock:
            self.calls.append((command, workspace, limits))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            result = self._results.pop(0) if self._results else self._default
        try:
            if self._side_effect is not None:
                self._side_effect(command, workspace)
            if self._delay:
                time.sleep(self._delay)
            return result
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    return tmp_path / "runs"


@pytest.fixture
def python_config(staging_root: Path) -> RunnerConfig:
    """Config that runs Python through the interpreter running the tests."""
    return RunnerConfig(
        staging_root=str(staging_root),
        timeout_seconds=5,
        programs={"python3": sys.executable},
    )
