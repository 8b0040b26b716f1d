"""
Errors
======
Exception types raised inside the pipeline. None of them escape
Orchestrator.handle_incident: each boundary converts them into a
structured result (ProviderResponse, TestResult, ApplyResult, FixResult).
"""


class AgentError(Exception):
    """Base class for all incident agent errors."""


class SandboxError(AgentError):
    """The sandbox could not produce a test outcome."""


class SandboxTimeout(SandboxError):
    """A sandboxed command exceeded its wall-clock budget."""

    def __init__(self, command: str, timeout_seconds: float) -> None:
        super().__init__(f"Command timed out after {timeout_seconds:g}s: {command}")
        self.command = command
        self.timeout_seconds = timeout_seconds


class OutputLimitExceeded(SandboxError):
    """A sandboxed command produced more output than allowed."""

    def __init__(self, command: str, limit_bytes: int) -> None:
        super().__init__(f"Command output exceeded {limit_bytes} bytes: {command}")
        self.command = command
        self.limit_bytes = limit_bytes


class VCSOperationError(AgentError):
    """A git primitive failed (dirty tree, apply conflict, push rejected...)."""

    def __init__(self, operation: str, detail: str = "") -> None:
        message = f"git {operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail
