from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to an unsuccessful execution outcome."""

    UNSUPPORTED_LANGUAGE = "unsupported_language"
    WORKSPACE_IO = "workspace_io"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    TIMED_OUT = "timed_out"
    INFRASTRUCTURE = "infrastructure"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One caller submission: a language tag and the source to run.

    Example:
        ```python
        req = ExecutionRequest(language="python", source="print('hi')")
        ```
    """

    language: str
    source: str


@dataclass(frozen=True, slots=True)
class ExecutionLimits:
    """Per-step resource bounds handed to a sandbox.

    Example:
        ```python
        limits = ExecutionLimits(timeout_seconds=5, memory_limit_mb=100, cpus=0.5, pids_limit=50, max_output_bytes=131072)
        ```
    """

    timeout_seconds: float
    memory_limit_mb: int
    cpus: float
    pids_limit: int
    max_output_bytes: int


@dataclass(frozen=True, slots=True)
class StepResult:
    """Raw result of one build or run step.

    `exit_code` is None when the step was killed at its deadline.

    Example:
        ```python
        step = StepResult(stdout="hi\\n", stderr="", exit_code=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    exit_code: int | None
    timed_out: bool


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Structured result returned for one request.

    Example:
        ```python
        out = ExecutionOutcome(language="python", stdout="hi\\n", stderr="", exit_status=0)
        ```
    """

    language: str
    stdout: str
    stderr: str
    exit_status: int | None = None
    error_kind: ErrorKind | None = None
    wall_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @property
    def timed_out(self) -> bool:
        return self.error_kind is ErrorKind.TIMED_OUT
