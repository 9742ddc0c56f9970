from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import PurePosixPath

from ..languages import CommandSpec, Placeholder
from ..workspace import Workspace
from .process import run_process
from .types import ExecutionLimits, StepResult

logger = logging.getLogger(__name__)

CONTAINER_WORKDIR = PurePosixPath("/code")
CONTAINER_NAME_PREFIX = "safe-code-runner-"
MANAGED_LABEL = "safe_code_runner.managed=true"
# Upper bound on the forced removal that follows a timeout.
KILL_TIMEOUT_SECONDS = 1.5


def container_runtime_is_available(runtime: str = "docker") -> tuple[bool, str | None]:
    """Check the container CLI and daemon are reachable.

    Example:
        ```python
        ok, reason = container_runtime_is_available("docker")
        ```
    """
    if shutil.which(runtime) is None:
        return False, f"{runtime} CLI was not found. Install it and ensure it is on PATH."
    try:
        probe = subprocess.run(
            [runtime, "info", "--format", "{{.ServerVersion}}"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return False, f"{runtime} info timed out"
    if probe.returncode != 0:
        return False, f"{runtime} is installed but the daemon is not running or not accessible."
    return True, None


def container_image_is_available(image: str, runtime: str = "docker") -> bool:
    """Return whether a runner image exists locally.

    Example:
        ```python
        if not container_image_is_available("code-runner-c"):
            print("build the image first")
        ```
    """
    try:
        inspected = subprocess.run(
            [runtime, "image", "inspect", image],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError):
        return False
    return inspected.returncode == 0


class ContainerSandbox:
    """Delegate a step to a runner image under the container runtime.

    The staged source is mounted read-only at `/code/user.<ext>` whatever its
    host-side name; the image's entrypoint compiles and runs it.
    Each run gets a unique container name so a timeout can kill the container
    itself, not just the CLI process attached to it.

    Example:
        ```python
        sandbox = ContainerSandbox(runtime="docker")
        step = sandbox.execute(profile.run_step, ws, config.limits())
        ```
    """

    name = "container"

    def __init__(self, *, runtime: str = "docker") -> None:
        self._runtime = runtime

    def execute(
        self,
        command: CommandSpec,
        workspace: Workspace,
        limits: ExecutionLimits,
    ) -> StepResult:
        """Run one delegated step inside a fresh, network-less container.

        Example:
            ```python
            step = sandbox.execute(CommandSpec("code-runner-python"), ws, limits)
            ```
        """
        container_name = f"{CONTAINER_NAME_PREFIX}{workspace.id.hex}"
        argv = self.build_command(command, workspace, limits, container_name=container_name)
        logger.debug("Container step %s", argv)
        return run_process(
            argv,
            cwd=workspace.directory,
            timeout_seconds=limits.timeout_seconds,
            max_output_bytes=limits.max_output_bytes,
            on_timeout=lambda: self._kill(container_name),
        )

    def build_command(
        self,
        command: CommandSpec,
        workspace: Workspace,
        limits: ExecutionLimits,
        *,
        container_name: str,
    ) -> list[str]:
        """Return the full container CLI argv for a delegated step.

        Example:
            ```python
            argv = sandbox.build_command(spec, ws, limits, container_name="safe-code-runner-1")
            ```
        """
        container_source = CONTAINER_WORKDIR / self._container_source_name(workspace)
        mount = f"{workspace.source_path}:{container_source}:ro"
        image, *args = command.render(
            {
                Placeholder.SOURCE: str(container_source),
                Placeholder.WORKDIR: str(CONTAINER_WORKDIR),
                Placeholder.ARTIFACT: str(CONTAINER_WORKDIR / "prog"),
            }
        )
        return [
            self._runtime,
            "run",
            "--rm",
            "--name",
            container_name,
            "--label",
            MANAGED_LABEL,
            "--network",
            "none",
            f"--memory={limits.memory_limit_mb}m",
            f"--cpus={limits.cpus}",
            f"--pids-limit={limits.pids_limit}",
            "--cap-drop",
            "ALL",
            "--security-opt",
            "no-new-privileges",
            "-v",
            mount,
            "--workdir",
            str(CONTAINER_WORKDIR),
            image,
            *args,
        ]

    @staticmethod
    def _container_source_name(workspace: Workspace) -> str:
        # Runner images read their input from /code/user.<ext>.
        return f"user{workspace.source_path.suffix}"

    def _kill(self, container_name: str) -> None:
        """Force-remove a container left behind by a timed-out CLI.

        Example:
            ```python
            sandbox._kill("safe-code-runner-abc")
            ```
        """
        try:
            killed = subprocess.run(
                [self._runtime, "rm", "-f", container_name],
                capture_output=True,
                text=True,
                timeout=KILL_TIMEOUT_SECONDS,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("Failed to remove timed-out container %s: %s", container_name, exc)
            return
        if killed.returncode != 0:
            logger.warning(
                "Failed to remove timed-out container %s: %s",
                container_name,
                killed.stderr.strip(),
            )
