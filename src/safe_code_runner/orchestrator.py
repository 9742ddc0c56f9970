from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from .admission import AdmissionController
from .config import RunnerConfig
from .errors import InfrastructureError, UnsupportedLanguageError, WorkspaceIOError
from .execution.engine import Sandbox
from .execution.types import ErrorKind, ExecutionOutcome, ExecutionRequest, StepResult
from .languages import LanguageProfile, LanguageRegistry
from .tracker import InvocationTracker
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class Orchestrator:
    """Turn a (language, source) request into a sandboxed, bounded execution.

    Per request: resolve the language, count it, wait for an admission slot,
    stage a workspace, run the profile's build steps then its run step through
    the matching sandbox, and return one `ExecutionOutcome`. The workspace and
    the slot are released on every exit path. Blocking subprocess work runs on
    worker threads so the event loop stays responsive.

    Example:
        ```python
        orchestrator = Orchestrator(
            config=RunnerConfig(),
            registry=LanguageRegistry(),
            workspaces=WorkspaceManager("/tmp/safe-code-runner"),
            local_sandbox=LocalSandbox(),
        )
        outcome = await orchestrator.execute(ExecutionRequest("python", "print(1)"))
        ```
    """

    def __init__(
        self,
        *,
        config: RunnerConfig,
        registry: LanguageRegistry,
        workspaces: WorkspaceManager,
        local_sandbox: Sandbox,
        container_sandbox: Sandbox | None = None,
        admission: AdmissionController | None = None,
        tracker: InvocationTracker | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._workspaces = workspaces
        self._local_sandbox = local_sandbox
        self._container_sandbox = container_sandbox
        self._admission = admission or AdmissionController(config.concurrency)
        self._tracker = tracker or InvocationTracker()
        self._executor = ThreadPoolExecutor(
            max_workers=self._admission.capacity,
            thread_name_prefix="safe-code-runner",
        )

    @property
    def registry(self) -> LanguageRegistry:
        return self._registry

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def tracker(self) -> InvocationTracker:
        return self._tracker

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Run one request end to end and classify the result.

        Never raises for a request-level failure: unsupported languages,
        staging faults, compile errors, timeouts and infrastructure faults all
        come back as an outcome with `error_kind` set.

        Example:
            ```python
            outcome = await orchestrator.execute(ExecutionRequest("cpp", source))
            if outcome.error_kind is ErrorKind.COMPILE_ERROR:
                print(outcome.stderr)
            ```
        """
        started = time.monotonic()
        try:
            profile = self._registry.resolve(request.language)
        except UnsupportedLanguageError as exc:
            logger.info("Rejected request for unsupported language %r", request.language)
            return ExecutionOutcome(
                language=request.language,
                stdout="",
                stderr=str(exc),
                error_kind=ErrorKind.UNSUPPORTED_LANGUAGE,
            )

        self._tracker.record(profile.id)
        logger.info("Accepted %s request (%d bytes)", profile.id, len(request.source))

        async with self._admission.slot():
            try:
                loop = asyncio.get_running_loop()
                outcome = await loop.run_in_executor(
                    self._executor, self._run_pipeline, profile, request.source
                )
            except WorkspaceIOError as exc:
                logger.error("Workspace failure for %s request: %s", profile.id, exc)
                outcome = self._failure(profile, str(exc), ErrorKind.WORKSPACE_IO)
            except InfrastructureError as exc:
                logger.exception("Infrastructure failure for %s request", profile.id)
                outcome = self._failure(profile, str(exc), ErrorKind.INFRASTRUCTURE)
            except Exception as exc:
                logger.exception("Unexpected failure for %s request", profile.id)
                outcome = self._failure(profile, f"Internal error: {exc}", ErrorKind.INFRASTRUCTURE)

        return ExecutionOutcome(
            language=outcome.language,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_status=outcome.exit_status,
            error_kind=outcome.error_kind,
            wall_ms=_elapsed_ms(started),
        )

    async def execute_many(self, requests: Sequence[ExecutionRequest]) -> list[ExecutionOutcome]:
        """Run several requests concurrently, preserving input order in the result.

        Example:
            ```python
            outcomes = await orchestrator.execute_many([req_a, req_b])
            ```
        """
        return list(await asyncio.gather(*(self.execute(request) for request in requests)))

    def close(self) -> None:
        """Wait for in-flight pipelines and stop the worker threads.

        Example:
            ```python
            orchestrator.close()
            ```
        """
        self._executor.shutdown(wait=True)

    def _sandbox_for(self, profile: LanguageProfile) -> Sandbox:
        if not profile.delegated:
            return self._local_sandbox
        if self._container_sandbox is None:
            raise InfrastructureError(
                f"Language '{profile.id}' is delegated but no container sandbox is configured"
            )
        return self._container_sandbox

    def _run_pipeline(self, profile: LanguageProfile, source: str) -> ExecutionOutcome:
        """Stage, build and run synchronously; called on a worker thread.

        Example:
            ```python
            outcome = orchestrator._run_pipeline(profile, "print(1)")
            ```
        """
        sandbox = self._sandbox_for(profile)
        with self._workspaces.staged(source, profile) as workspace:
            build_limits = self._config.limits(build=True)
            for step in profile.build_steps:
                result = sandbox.execute(step, workspace, build_limits)
                if result.timed_out:
                    logger.info("Build step for %s timed out (%s)", profile.id, workspace.id)
                    return self._timed_out(profile, result, build_limits.timeout_seconds)
                if result.exit_code != 0:
                    logger.info("Build step for %s failed with exit %s", profile.id, result.exit_code)
                    return ExecutionOutcome(
                        language=profile.id,
                        stdout=result.stdout,
                        stderr=result.stderr or result.stdout,
                        exit_status=result.exit_code,
                        error_kind=ErrorKind.COMPILE_ERROR,
                    )

            run_limits = self._config.limits()
            result = sandbox.execute(profile.run_step, workspace, run_limits)
            if result.timed_out:
                logger.info("Run step for %s timed out (%s)", profile.id, workspace.id)
                return self._timed_out(profile, result, run_limits.timeout_seconds)
            return ExecutionOutcome(
                language=profile.id,
                stdout=result.stdout,
                stderr=result.stderr,
                exit_status=result.exit_code,
                error_kind=None if result.exit_code == 0 else ErrorKind.RUNTIME_ERROR,
            )

    @staticmethod
    def _timed_out(profile: LanguageProfile, result: StepResult, timeout: float) -> ExecutionOutcome:
        notice = f"Execution timed out after {timeout:g}s"
        stderr = f"{result.stderr.rstrip()}\n{notice}" if result.stderr.strip() else notice
        return ExecutionOutcome(
            language=profile.id,
            stdout=result.stdout,
            stderr=stderr,
            exit_status=None,
            error_kind=ErrorKind.TIMED_OUT,
        )

    @staticmethod
    def _failure(profile: LanguageProfile, message: str, kind: ErrorKind) -> ExecutionOutcome:
        return ExecutionOutcome(language=profile.id, stdout="", stderr=message, error_kind=kind)
