"""Outcomes of a sandboxed run other than captured stdout."""

from __future__ import annotations

MAX_ERROR_LENGTH = 500


def _clip(message: str) -> str:
    message = (message or "").strip()
    if len(message) > MAX_ERROR_LENGTH:
        return message[: MAX_ERROR_LENGTH - 3] + "..."
    return message


class ExecutionError(Exception):
    """Base error for a single sandboxed execution."""


class LanguageNotRunnable(ExecutionError):
    """No executor is registered for the requested language."""

    def __init__(self, language: str) -> None:
        self.language = language
        super().__init__(f"Language '{language}' is not runnable in this environment")


class ResourceLimitExceeded(ExecutionError):
    """The isolation layer stopped the guest for exceeding its envelope."""

    TIME = "time"
    MEMORY = "memory"

    def __init__(self, kind: str, message: str = "") -> None:
        if kind not in {self.TIME, self.MEMORY}:
            raise ValueError(f"Unknown resource limit kind '{kind}'")
        self.kind = kind
        if not message:
            message = "Time limit exceeded" if kind == self.TIME else "Memory limit exceeded"
        super().__init__(_clip(message))

    @property
    def is_timeout(self) -> bool:
        return self.kind == self.TIME


class GuestRuntimeError(ExecutionError):
    """The guest raised or crashed; only its last error line is kept."""

    def __init__(self, message: str) -> None:
        super().__init__(_clip(message) or "Runtime error")


class SandboxInfrastructureError(ExecutionError):
    """An isolation context could not be created or disposed."""


__all__ = [
    "ExecutionError",
    "GuestRuntimeError",
    "LanguageNotRunnable",
    "ResourceLimitExceeded",
    "SandboxInfrastructureError",
]
