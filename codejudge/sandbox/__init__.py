"""Isolated, resource-capped execution of untrusted submissions."""

from .base import ExecutionLimits, IsolationContext, Language, LanguageExecutor
from .errors import (
    ExecutionError,
    GuestRuntimeError,
    LanguageNotRunnable,
    ResourceLimitExceeded,
    SandboxInfrastructureError,
)
from .executor import SandboxExecutor, build_sandbox, get_sandbox
from .pool import SandboxPool

__all__ = [
    "ExecutionError",
    "ExecutionLimits",
    "GuestRuntimeError",
    "IsolationContext",
    "Language",
    "LanguageExecutor",
    "LanguageNotRunnable",
    "ResourceLimitExceeded",
    "SandboxExecutor",
    "SandboxInfrastructureError",
    "SandboxPool",
    "build_sandbox",
    "get_sandbox",
]
