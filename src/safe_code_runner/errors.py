from __future__ import annotations


class CodeRunnerError(Exception):
    """Base class for failures raised by safe-code-runner components.

    Example:
        ```python
        try:
            registry.resolve("cobol")
        except CodeRunnerError as exc:
            print(exc)
        ```
    """


class UnsupportedLanguageError(CodeRunnerError):
    """Raised when a language identifier has no registered profile.

    Example:
        ```python
        raise UnsupportedLanguageError("cobol")
        ```
    """

    def __init__(self, language: str) -> None:
        super().__init__(f"Unsupported language: {language}")
        self.language = language


class WorkspaceIOError(CodeRunnerError):
    """Raised when a staging directory cannot be created or written."""


class InfrastructureError(CodeRunnerError):
    """Raised for host-side faults that are not attributable to submitted code."""


class SpawnError(InfrastructureError):
    """Raised when an external program cannot be started.

    Example:
        ```python
        raise SpawnError("g++", FileNotFoundError(2, "No such file"))
        ```
    """

    def __init__(self, program: str, cause: OSError) -> None:
        super().__init__(f"Failed to start '{program}': {cause.strerror or cause}")
        self.program = program
