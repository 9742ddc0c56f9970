from .engine import Sandbox
from .types import ErrorKind, ExecutionLimits, ExecutionOutcome, ExecutionRequest, StepResult

__all__ = [
    "ErrorKind",
    "ExecutionLimits",
    "ExecutionOutcome",
    "ExecutionRequest",
    "Sandbox",
    "StepResult",
]
