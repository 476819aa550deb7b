from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from .errors import ExecutionError, SandboxInfrastructureError

_LOGGER = logging.getLogger(__name__)

DEFAULT_MEMORY_MB = 128
DEFAULT_TIMEOUT_MS = 5000


class Language(str, enum.Enum):
    javascript = "javascript"
    python = "python"
    java = "java"
    cpp = "cpp"


@dataclass(frozen=True, slots=True)
class ExecutionLimits:
    memory_mb: int = DEFAULT_MEMORY_MB
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        if self.memory_mb <= 0:
            raise ValueError("memory_mb must be positive")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def cpu_seconds(self) -> int:
        """CPU-time backstop, one second above the wall-clock limit."""
        return math.ceil(self.timeout_seconds) + 1

    @property
    def memory_bytes(self) -> int:
        return self.memory_mb * 1024 * 1024


class IsolationContext:
    """One disposable environment for exactly one guest run.

    Use it as ``async with``: entering provisions the environment and
    leaving disposes it on every exit path, including timeouts and
    cancellation.
    """

    def __init__(self, limits: ExecutionLimits) -> None:
        self.limits = limits
        self._entered = False
        self._disposed = False
        self._used = False

    async def __aenter__(self) -> "IsolationContext":
        try:
            await self._setup()
        except ExecutionError:
            await self._safe_release()
            raise
        except Exception as exc:
            await self._safe_release()
            raise SandboxInfrastructureError(f"Could not create isolation context: {exc}") from exc
        self._entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.dispose()
        return False

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def run(self, code: str, stdin: str, *, entry_point: str = "solve") -> str:
        if not self._entered or self._disposed:
            raise SandboxInfrastructureError("Isolation context is not active")
        if self._used:
            raise SandboxInfrastructureError("Isolation context already ran a program")
        self._used = True
        return await self._run(code, stdin, entry_point=entry_point)

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        try:
            await self._release()
        except Exception as exc:
            raise SandboxInfrastructureError(f"Could not dispose isolation context: {exc}") from exc

    async def _safe_release(self) -> None:
        self._disposed = True
        try:
            await self._release()
        except Exception as exc:  # pragma: no cover - original error wins
            _LOGGER.warning("Releasing a half-created isolation context failed: %s", exc)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------
    async def _setup(self) -> None:
        return None

    async def _run(self, code: str, stdin: str, *, entry_point: str) -> str:  # pragma: no cover
        raise NotImplementedError

    async def _release(self) -> None:
        return None


class LanguageExecutor:
    """Runs guest programs of one language on one isolation backend."""

    backend_name = "base"
    language: Language

    def open_context(self, limits: ExecutionLimits) -> IsolationContext:  # pragma: no cover
        raise NotImplementedError

    async def health(self) -> dict[str, Any]:
        return {"status": "ok"}

    def describe(self) -> dict[str, Optional[str]]:
        return {"language": self.language.value, "backend": self.backend_name}
