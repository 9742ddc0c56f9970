from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from .types import ExecutionLimits, StepResult

if TYPE_CHECKING:
    from ..languages import CommandSpec
    from ..workspace import Workspace


class Sandbox(Protocol):
    """Isolation capability that runs one command against a staged workspace."""

    name: str

    def execute(
        self,
        command: CommandSpec,
        workspace: Workspace,
        limits: ExecutionLimits,
    ) -> StepResult:
        """Run one build or run step and return its raw result.

        Raises `SpawnError` (or another `InfrastructureError`) when the isolation
        mechanism itself fails.

        Example:
            ```python
            step = sandbox.execute(profile.run_step, workspace, config.limits())
            ```
        """
        ...
