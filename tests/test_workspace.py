import logging
import stat
from pathlib import Path

import pytest

from safe_code_runner import LanguageRegistry, WorkspaceIOError
from safe_code_runner import workspace as workspace_module
from safe_code_runner.languages import Placeholder
from safe_code_runner.workspace import WorkspaceManager

REGISTRY = LanguageRegistry()


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def test_stage_writes_source_with_restrictive_permissions(staging_root: Path) -> None:
    manager = WorkspaceManager(staging_root)
    ws = manager.stage("print('hi')\n", REGISTRY.resolve("python"))

    assert ws.directory.parent == staging_root
    assert ws.id.hex in ws.directory.name
    assert ws.id.hex in ws.source_path.name
    assert ws.source_path.suffix == ".py"
    assert ws.source_path.read_text(encoding="utf-8") == "print('hi')\n"
    assert _mode(ws.directory) == 0o700
    source_mode = _mode(ws.source_path)
    assert source_mode & 0o600 == 0o600
    assert source_mode & 0o111 == 0
    assert source_mode & 0o022 == 0
    assert ws.artifact_path is None


def test_compiled_profiles_get_an_artifact_path(staging_root: Path) -> None:
    ws = WorkspaceManager(staging_root).stage("int main(){}", REGISTRY.resolve("cpp"))
    assert ws.artifact_path is not None
    assert ws.artifact_path.parent == ws.directory
    assert not ws.artifact_path.exists()
    assert ws.paths()[Placeholder.ARTIFACT] == str(ws.artifact_path)


def test_java_source_uses_fixed_file_name(staging_root: Path) -> None:
    ws = WorkspaceManager(staging_root).stage("class Main {}", REGISTRY.resolve("java"))
    assert ws.source_path.name == "Main.java"
    assert ws.id.hex in ws.directory.name


def test_identical_sources_never_share_paths(staging_root: Path) -> None:
    manager = WorkspaceManager(staging_root)
    profile = REGISTRY.resolve("python")
    first = manager.stage("print(1)", profile)
    second = manager.stage("print(1)", profile)
    assert first.id != second.id
    assert first.directory != second.directory
    assert first.source_path != second.source_path


def test_dispose_removes_tree_and_is_idempotent(staging_root: Path) -> None:
    manager = WorkspaceManager(staging_root)
    ws = manager.stage("print(1)", REGISTRY.resolve("python"))
    (ws.directory / "extra.txt").write_text("left by build", encoding="utf-8")

    manager.dispose(ws)
    manager.dispose(ws)

    assert not ws.directory.exists()


def test_dispose_logs_and_swallows_failures(
    staging_root: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    manager = WorkspaceManager(staging_root)
    ws = manager.stage("print(1)", REGISTRY.resolve("python"))

    def _boom(path: Path) -> None:
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(workspace_module.shutil, "rmtree", _boom)
    with caplog.at_level(logging.WARNING, logger="safe_code_runner.workspace"):
        manager.dispose(ws)

    assert "Failed to remove workspace" in caplog.text


def test_staged_disposes_even_when_block_raises(staging_root: Path) -> None:
    manager = WorkspaceManager(staging_root)
    with pytest.raises(RuntimeError):
        with manager.staged("print(1)", REGISTRY.resolve("python")) as ws:
            directory = ws.directory
            raise RuntimeError("step failed")
    assert not directory.exists()


def test_stage_fails_when_root_is_not_a_directory(tmp_path: Path) -> None:
    root = tmp_path / "not-a-dir"
    root.write_text("occupied", encoding="utf-8")
    with pytest.raises(WorkspaceIOError, match="staging directory"):
        WorkspaceManager(root).stage("print(1)", REGISTRY.resolve("python"))


def test_stage_cleans_up_when_source_write_fails(staging_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    real_open = workspace_module.os.open

    def _denied(path, flags, mode=0o777, *, dir_fd=None):  # type: ignore[no-untyped-def]
        if str(path).endswith(".py"):
            raise PermissionError(13, "Permission denied")
        return real_open(path, flags, mode, dir_fd=dir_fd)

    monkeypatch.setattr(workspace_module.os, "open", _denied)
    with pytest.raises(WorkspaceIOError, match="Failed to stage source"):
        WorkspaceManager(staging_root).stage("print(1)", REGISTRY.resolve("python"))
    monkeypatch.undo()

    assert list(staging_root.iterdir()) == []


def test_stage_fails_for_unknown_owner(staging_root: Path) -> None:
    manager = WorkspaceManager(staging_root, owner="no-such-user-safe-code-runner")
    with pytest.raises(WorkspaceIOError):
        manager.stage("print(1)", REGISTRY.resolve("python"))
    assert list(staging_root.iterdir()) == []


def test_stage_rejects_source_that_cannot_be_encoded(staging_root: Path) -> None:
    source = "print('\ud800')"
    with pytest.raises(WorkspaceIOError, match="Failed to stage source"):
        WorkspaceManager(staging_root).stage(source, REGISTRY.resolve("python"))
    assert list(staging_root.iterdir()) == []
