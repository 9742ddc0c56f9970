from __future__ import annotations

import asyncio

from .config import RunnerConfig
from .execution.docker_engine import ContainerSandbox
from .execution.local_engine import LocalSandbox
from .execution.types import ExecutionOutcome, ExecutionRequest
from .languages import LanguageRegistry
from .orchestrator import Orchestrator
from .workspace import WorkspaceManager


def _resolve_config(config: RunnerConfig | None, config_file: str | None) -> RunnerConfig:
    """Resolve the effective runner config.

    Example:
        ```python
        config = _resolve_config(None, "/etc/safe-code-runner.toml")
        ```
    """
    if config is not None and config_file is not None:
        raise ValueError("Provide either 'config' or 'config_file', not both")
    if config_file is not None:
        return RunnerConfig.from_file(config_file)
    return config or RunnerConfig()


def build_orchestrator(config: RunnerConfig | None = None, config_file: str | None = None) -> Orchestrator:
    """Wire registry, workspace manager and sandboxes from one config.

    The container sandbox is only attached when at least one language is
    delegated to a runner image.

    Example:
        ```python
        orchestrator = build_orchestrator(RunnerConfig(container_languages=["*"]))
        ```
    """
    resolved = _resolve_config(config, config_file)
    registry = LanguageRegistry(
        delegated=resolved.container_languages,
        images=resolved.images,
        programs=resolved.programs,
    )
    container_sandbox = None
    if any(profile.delegated for profile in registry.profiles()):
        container_sandbox = ContainerSandbox(runtime=resolved.container_runtime)
    return Orchestrator(
        config=resolved,
        registry=registry,
        workspaces=WorkspaceManager(resolved.staging_root, owner=resolved.run_as_user),
        local_sandbox=LocalSandbox(run_as_user=resolved.run_as_user),
        container_sandbox=container_sandbox,
    )


def run_code(
    language: str,
    source: str,
    config: RunnerConfig | None = None,
    config_file: str | None = None,
) -> ExecutionOutcome:
    """Execute one snippet synchronously and return its outcome.

    Builds a short-lived orchestrator; long-running services should build one
    with `build_orchestrator` and await `Orchestrator.execute` instead.

    Example:
        ```python
        from safe_code_runner import run_code
        outcome = run_code("python", "print('hello')")
        assert outcome.stdout == "hello\\n"
        ```
    """
    orchestrator = build_orchestrator(config, config_file)
    try:
        return asyncio.run(orchestrator.execute(ExecutionRequest(language=language, source=source)))
    finally:
        orchestrator.close()
