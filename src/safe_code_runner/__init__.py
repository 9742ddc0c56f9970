from .admission import AdmissionController, AdmissionPermit
from .config import RunnerConfig
from .errors import (
    CodeRunnerError,
    InfrastructureError,
    SpawnError,
    UnsupportedLanguageError,
    WorkspaceIOError,
)
from .execution.docker_engine import ContainerSandbox
from .execution.local_engine import LocalSandbox
from .execution.types import ErrorKind, ExecutionOutcome, ExecutionRequest
from .languages import Language, LanguageRegistry
from .orchestrator import Orchestrator
from .runner import build_orchestrator, run_code
from .tracker import InvocationTracker

__all__ = [
    "AdmissionController",
    "AdmissionPermit",
    "CodeRunnerError",
    "ContainerSandbox",
    "ErrorKind",
    "ExecutionOutcome",
    "ExecutionRequest",
    "InfrastructureError",
    "InvocationTracker",
    "Language",
    "LanguageRegistry",
    "LocalSandbox",
    "Orchestrator",
    "RunnerConfig",
    "SpawnError",
    "UnsupportedLanguageError",
    "WorkspaceIOError",
    "build_orchestrator",
    "run_code",
]
