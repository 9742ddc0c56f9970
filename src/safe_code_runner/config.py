from __future__ import annotations

import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .execution.types import ExecutionLimits


def _default_config_path() -> Path:
    """Return bundled default runner config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a config TOML file and return its `[runner]` table.

    Example:
        ```python
        raw = _read_config_toml(Path("/etc/safe-code-runner.toml"))
        ```
    """
    if not path.exists():
        return {
            "concurrency": 100,
            "timeout_seconds": 5,
            "build_timeout_seconds": 10,
            "max_output_kb": 128,
            "memory_limit_mb": 100,
            "cpus": 0.5,
            "pids_limit": 50,
            "container_runtime": "docker",
            "container_languages": [],
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    runner_obj = raw.get("runner", raw)
    if not isinstance(runner_obj, dict):
        raise ValueError("Runner config must be a TOML table")
    return runner_obj


def _str_table(value: Any, field_name: str) -> dict[str, str]:
    """Validate a TOML table whose values are all strings.

    Example:
        ```python
        images = _str_table({"python": "code-runner-python"}, "images")
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' must be a table of strings")
    out: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out[str(key)] = item
    return out


def _list_of_str(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{field_name}' must be a list of strings")
    return list(value)


_DEFAULT_RAW = _read_config_toml(_default_config_path())
DEFAULT_CONCURRENCY = int(_DEFAULT_RAW.get("concurrency", 100))
DEFAULT_TIMEOUT_SECONDS = float(_DEFAULT_RAW.get("timeout_seconds", 5))
DEFAULT_BUILD_TIMEOUT_SECONDS = float(_DEFAULT_RAW.get("build_timeout_seconds", 10))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_RAW.get("max_output_kb", 128))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_RAW.get("memory_limit_mb", 100))
DEFAULT_CPUS = float(_DEFAULT_RAW.get("cpus", 0.5))
DEFAULT_PIDS_LIMIT = int(_DEFAULT_RAW.get("pids_limit", 50))
DEFAULT_CONTAINER_RUNTIME = str(_DEFAULT_RAW.get("container_runtime", "docker"))
DEFAULT_IMAGES = _str_table(_DEFAULT_RAW.get("images"), "images")
DEFAULT_STAGING_ROOT = str(Path(tempfile.gettempdir()) / "safe-code-runner")


@dataclass(slots=True)
class RunnerConfig:
    """Startup configuration for the orchestrator and its sandboxes.

    Example:
        ```python
        config = RunnerConfig(concurrency=8, timeout_seconds=2)
        ```
    """

    concurrency: int = DEFAULT_CONCURRENCY
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    build_timeout_seconds: float = DEFAULT_BUILD_TIMEOUT_SECONDS
    staging_root: str = DEFAULT_STAGING_ROOT
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    cpus: float = DEFAULT_CPUS
    pids_limit: int = DEFAULT_PIDS_LIMIT
    run_as_user: str | None = None
    container_runtime: str = DEFAULT_CONTAINER_RUNTIME
    container_languages: list[str] = field(default_factory=list)
    images: dict[str, str] = field(default_factory=lambda: DEFAULT_IMAGES.copy())
    programs: dict[str, str] = field(default_factory=dict)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric bounds after dataclass initialization.

        Example:
            ```python
            RunnerConfig(concurrency=0)  # raises ValueError
            ```
        """
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.timeout_seconds <= 0 or self.build_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_output_kb < 1:
            raise ValueError("max_output_kb must be at least 1")
        if self.memory_limit_mb < 1 or self.pids_limit < 1 or self.cpus <= 0:
            raise ValueError("memory_limit_mb, cpus and pids_limit must be positive")
        if not self.staging_root.strip():
            raise ValueError("staging_root must be a non-empty path")

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerConfig":
        """Create a config instance from a TOML file.

        Example:
            ```python
            config = RunnerConfig.from_file("/etc/safe-code-runner.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ValueError(f"Config file not found: {config_path}")
        raw = _read_config_toml(path)
        run_as_user = raw.get("run_as_user")
        return cls(
            concurrency=int(raw.get("concurrency", DEFAULT_CONCURRENCY)),
            timeout_seconds=float(raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            build_timeout_seconds=float(
                raw.get("build_timeout_seconds", DEFAULT_BUILD_TIMEOUT_SECONDS)
            ),
            staging_root=str(raw.get("staging_root", DEFAULT_STAGING_ROOT)),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            cpus=float(raw.get("cpus", DEFAULT_CPUS)),
            pids_limit=int(raw.get("pids_limit", DEFAULT_PIDS_LIMIT)),
            run_as_user=str(run_as_user) if run_as_user else None,
            container_runtime=str(raw.get("container_runtime", DEFAULT_CONTAINER_RUNTIME)),
            container_languages=_list_of_str(
                raw.get("container_languages", []), "container_languages"
            ),
            images={**DEFAULT_IMAGES, **_str_table(raw.get("images"), "images")},
            programs=_str_table(raw.get("programs"), "programs"),
            config_path=config_path,
        )

    def limits(self, *, build: bool = False) -> ExecutionLimits:
        """Return per-step limits for a build or run step.

        Example:
            ```python
            limits = config.limits(build=True)
            ```
        """
        return ExecutionLimits(
            timeout_seconds=self.build_timeout_seconds if build else self.timeout_seconds,
            memory_limit_mb=self.memory_limit_mb,
            cpus=self.cpus,
            pids_limit=self.pids_limit,
            max_output_bytes=self.max_output_kb * 1024,
        )
