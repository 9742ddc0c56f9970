from __future__ import annotations

import contextlib
import logging
import os
import pwd
import shutil
import stat
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import WorkspaceIOError
from .languages import LanguageProfile, Placeholder

logger = logging.getLogger(__name__)

DIRECTORY_MODE = stat.S_IRWXU
SOURCE_MODE = stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH


@dataclass(frozen=True, slots=True)
class Workspace:
    """Per-execution staging directory holding the submitted source.

    Example:
        ```python
        ws = manager.stage("print(1)", profile)
        print(ws.source_path)
        ```
    """

    id: uuid.UUID
    directory: Path
    source_path: Path
    artifact_path: Path | None

    def paths(self) -> dict[Placeholder, str]:
        """Return host paths for command placeholder substitution.

        Example:
            ```python
            argv = profile.run_step.render(ws.paths())
            ```
        """
        mapping = {
            Placeholder.SOURCE: str(self.source_path),
            Placeholder.WORKDIR: str(self.directory),
        }
        if self.artifact_path is not None:
            mapping[Placeholder.ARTIFACT] = str(self.artifact_path)
        return mapping


class WorkspaceManager:
    """Create and remove per-execution staging directories under one root.

    Example:
        ```python
        manager = WorkspaceManager("/tmp/safe-code-runner")
        with manager.staged("print(1)", profile) as ws:
            ...
        ```
    """

    def __init__(self, root: str | os.PathLike[str], *, owner: str | None = None) -> None:
        """Configure the staging root and an optional directory owner.

        `owner` names the restricted account that runs submitted code; the staging
        directory is handed to it so build steps can write their artifacts.

        Example:
            ```python
            manager = WorkspaceManager("/srv/runs", owner="sandbox")
            ```
        """
        self._root = Path(root)
        self._owner = owner

    @property
    def root(self) -> Path:
        return self._root

    def stage(self, source: str, profile: LanguageProfile) -> Workspace:
        """Write source into a freshly named directory and return its workspace.

        Raises `WorkspaceIOError` when any filesystem step fails; a partially
        created directory is removed before raising.

        Example:
            ```python
            ws = manager.stage("int main(){}", registry.resolve("cpp"))
            ```
        """
        run_id = uuid.uuid4()
        directory = self._root / f"run_{run_id.hex}"
        source_name = profile.source_filename or f"user_{run_id.hex}.{profile.file_extension}"
        source_path = directory / source_name
        artifact_path = directory / f"prog_{run_id.hex}" if profile.build_steps else None
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            directory.mkdir(mode=DIRECTORY_MODE)
        except OSError as exc:
            raise WorkspaceIOError(f"Failed to create staging directory {directory}: {exc}") from exc

        try:
            os.chmod(directory, DIRECTORY_MODE)
            payload = source.encode("utf-8")
            fd = os.open(source_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, SOURCE_MODE)
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.chmod(source_path, SOURCE_MODE)
            if self._owner:
                self._hand_over(directory, source_path)
        except (OSError, KeyError, UnicodeError) as exc:
            self._remove(directory)
            raise WorkspaceIOError(f"Failed to stage source in {directory}: {exc}") from exc

        workspace = Workspace(run_id, directory, source_path, artifact_path)
        logger.debug("Staged workspace %s (%d bytes)", run_id, len(source))
        return workspace

    def dispose(self, workspace: Workspace) -> None:
        """Remove a workspace tree. Never raises; failures are logged.

        Example:
            ```python
            manager.dispose(ws)
            manager.dispose(ws)  # second call is a no-op
            ```
        """
        self._remove(workspace.directory)

    @contextlib.contextmanager
    def staged(self, source: str, profile: LanguageProfile) -> Iterator[Workspace]:
        """Stage a workspace for the duration of a `with` block.

        Example:
            ```python
            with manager.staged(code, profile) as ws:
                sandbox.execute(profile.run_step, ws, limits)
            ```
        """
        workspace = self.stage(source, profile)
        try:
            yield workspace
        finally:
            self.dispose(workspace)

    def _hand_over(self, directory: Path, source_path: Path) -> None:
        account = pwd.getpwnam(str(self._owner))
        os.chown(directory, account.pw_uid, account.pw_gid)
        os.chown(source_path, account.pw_uid, account.pw_gid)

    def _remove(self, directory: Path) -> None:
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            logger.warning("Failed to remove workspace %s: %s", directory, exc)
