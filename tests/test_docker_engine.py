import logging
import subprocess
import time
from pathlib import Path
from typing import Any

import pytest

from safe_code_runner import ContainerSandbox, LanguageRegistry
from safe_code_runner.execution import docker_engine
from safe_code_runner.execution.types import ExecutionLimits, StepResult
from safe_code_runner.workspace import WorkspaceManager

LIMITS = ExecutionLimits(timeout_seconds=5, memory_limit_mb=100, cpus=0.5, pids_limit=50, max_output_bytes=1024)
REGISTRY = LanguageRegistry(delegated=["*"])


def test_build_command_applies_resource_flags_and_mounts_source(staging_root: Path) -> None:
    profile = REGISTRY.resolve("python")
    ws = WorkspaceManager(staging_root).stage("print(1)", profile)
    argv = ContainerSandbox().build_command(profile.run_step, ws, LIMITS, container_name="safe-code-runner-x")

    assert argv[:2] == ["docker", "run"]
    assert "--rm" in argv
    assert argv[argv.index("--name") + 1] == "safe-code-runner-x"
    assert argv[argv.index("--network") + 1] == "none"
    assert "--memory=100m" in argv
    assert "--cpus=0.5" in argv
    assert "--pids-limit=50" in argv
    assert argv[argv.index("--cap-drop") + 1] == "ALL"
    assert argv[argv.index("-v") + 1] == f"{ws.source_path}:/code/user.py:ro"
    assert argv[-1] == "code-runner-python"


def test_java_is_mounted_under_the_runner_image_name(staging_root: Path) -> None:
    profile = REGISTRY.resolve("java")
    ws = WorkspaceManager(staging_root).stage("class Main {}", profile)
    argv = ContainerSandbox(runtime="podman").build_command(profile.run_step, ws, LIMITS, container_name="c")
    assert argv[0] == "podman"
    assert ws.source_path.name == "Main.java"
    assert argv[argv.index("-v") + 1] == f"{ws.source_path}:/code/user.java:ro"
    assert argv[-1] == "code-runner-java"


def test_execute_names_container_after_workspace(staging_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    def _fake_run_process(argv: list[str], **kwargs: Any) -> StepResult:
        seen["argv"] = argv
        seen.update(kwargs)
        return StepResult(stdout="1\n", stderr="", exit_code=0, timed_out=False)

    monkeypatch.setattr(docker_engine, "run_process", _fake_run_process)
    profile = REGISTRY.resolve("python")
    ws = WorkspaceManager(staging_root).stage("print(1)", profile)
    result = ContainerSandbox().execute(profile.run_step, ws, LIMITS)

    assert result.stdout == "1\n"
    assert f"safe-code-runner-{ws.id.hex}" in seen["argv"]
    assert seen["timeout_seconds"] == 5
    assert seen["max_output_bytes"] == 1024


def test_timeout_removes_the_container(staging_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    removed: list[list[str]] = []

    def _fake_run_process(argv: list[str], **kwargs: Any) -> StepResult:
        kwargs["on_timeout"]()
        return StepResult(stdout="", stderr="", exit_code=None, timed_out=True)

    def _fake_subprocess_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        removed.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(docker_engine, "run_process", _fake_run_process)
    monkeypatch.setattr(docker_engine.subprocess, "run", _fake_subprocess_run)
    profile = REGISTRY.resolve("cpp")
    ws = WorkspaceManager(staging_root).stage("int main(){for(;;);}", profile)
    result = ContainerSandbox().execute(profile.run_step, ws, LIMITS)

    assert result.timed_out is True
    assert removed == [["docker", "rm", "-f", f"safe-code-runner-{ws.id.hex}"]]


def test_runtime_availability_reports_missing_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(docker_engine.shutil, "which", lambda name: None)
    ok, reason = docker_engine.container_runtime_is_available("docker")
    assert ok is False
    assert reason is not None and "not found" in reason


def test_hung_container_removal_is_bounded_and_logged(
    staging_root: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    seen: dict[str, Any] = {}

    def _fake_run_process(argv: list[str], **kwargs: Any) -> StepResult:
        kwargs["on_timeout"]()
        return StepResult(stdout="", stderr="", exit_code=None, timed_out=True)

    def _hung_rm(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        seen.update(kwargs)
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(docker_engine, "run_process", _fake_run_process)
    monkeypatch.setattr(docker_engine.subprocess, "run", _hung_rm)
    profile = REGISTRY.resolve("python")
    ws = WorkspaceManager(staging_root).stage("while True: pass", profile)

    with caplog.at_level(logging.WARNING, logger=docker_engine.__name__):
        result = ContainerSandbox().execute(profile.run_step, ws, LIMITS)

    assert result.timed_out is True
    assert seen["timeout"] == docker_engine.KILL_TIMEOUT_SECONDS
    assert "Failed to remove timed-out container" in caplog.text


def test_failed_container_removal_is_logged(
    staging_root: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def _fake_run_process(argv: list[str], **kwargs: Any) -> StepResult:
        kwargs["on_timeout"]()
        return StepResult(stdout="", stderr="", exit_code=None, timed_out=True)

    def _failing_rm(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(cmd, 1, "", "Error: daemon unavailable")

    monkeypatch.setattr(docker_engine, "run_process", _fake_run_process)
    monkeypatch.setattr(docker_engine.subprocess, "run", _failing_rm)
    profile = REGISTRY.resolve("python")
    ws = WorkspaceManager(staging_root).stage("while True: pass", profile)

    with caplog.at_level(logging.WARNING, logger=docker_engine.__name__):
        result = ContainerSandbox().execute(profile.run_step, ws, LIMITS)

    assert result.timed_out is True
    assert "daemon unavailable" in caplog.text


def test_slow_runtime_cannot_hold_a_timed_out_step_past_its_deadline(
    tmp_path: Path,
    staging_root: Path,
) -> None:
    runtime = tmp_path / "fake-runtime"
    runtime.write_text(
        "#!/bin/sh\n"
        'if [ "$1" = "rm" ]; then exec sleep 6; fi\n'
        "exec sleep 60\n",
        encoding="utf-8",
    )
    runtime.chmod(0o755)
    limits = ExecutionLimits(timeout_seconds=1, memory_limit_mb=100, cpus=0.5, pids_limit=50, max_output_bytes=1024)
    profile = REGISTRY.resolve("python")
    ws = WorkspaceManager(staging_root).stage("while True: pass", profile)

    started = time.monotonic()
    result = ContainerSandbox(runtime=str(runtime)).execute(profile.run_step, ws, limits)
    elapsed = time.monotonic() - started

    assert result.timed_out is True
    assert result.exit_code is None
    assert elapsed < 1 + 3


def test_image_check_uses_runtime_inspect(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def _inspect(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 1, "", "No such image")

    monkeypatch.setattr(docker_engine.subprocess, "run", _inspect)
    assert docker_engine.container_image_is_available("code-runner-c", "podman") is False
    assert calls == [["podman", "image", "inspect", "code-runner-c"]]
