from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Union

import docker

from codejudge.config import Settings, get_settings

from .base import ExecutionLimits, IsolationContext, Language, LanguageExecutor
from .docker_executor import DockerExecutor
from .errors import LanguageNotRunnable
from .harness import NODE_RUNTIME, PYTHON_RUNTIME
from .pool import SandboxPool
from .subprocess_executor import NamespaceJail, SandboxAccounts, SubprocessExecutor

_LOGGER = logging.getLogger(__name__)

RUNNERS = {"docker", "local", "remote-docker", "subprocess"}


def _coerce_language(language: Union[str, Language]) -> Language:
    if isinstance(language, Language):
        return language
    try:
        return Language(str(language).strip().lower())
    except ValueError:
        raise LanguageNotRunnable(str(language)) from None


class SandboxExecutor:
    """Language registry plus the shared slot pool.

    ``execute`` is the single-call contract; ``isolate`` hands out the
    scoped guard so callers can time and classify each run themselves.
    """

    def __init__(
        self,
        executors: Iterable[LanguageExecutor] = (),
        *,
        pool: Optional[SandboxPool] = None,
        default_limits: Optional[ExecutionLimits] = None,
        runner: str = "custom",
    ) -> None:
        self.pool = pool or SandboxPool(4)
        self.default_limits = default_limits or ExecutionLimits()
        self.runner = runner
        self._executors: dict[Language, LanguageExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: LanguageExecutor) -> None:
        self._executors[executor.language] = executor

    def runnable_languages(self) -> list[str]:
        return sorted(language.value for language in self._executors)

    def executor_for(self, language: Union[str, Language]) -> LanguageExecutor:
        key = _coerce_language(language)
        executor = self._executors.get(key)
        if executor is None:
            raise LanguageNotRunnable(key.value)
        return executor

    @asynccontextmanager
    async def isolate(
        self,
        language: Union[str, Language],
        limits: Optional[ExecutionLimits] = None,
    ) -> AsyncIterator[IsolationContext]:
        executor = self.executor_for(language)
        async with self.pool.slot():
            async with executor.open_context(limits or self.default_limits) as context:
                yield context

    async def execute(
        self,
        code: str,
        language: Union[str, Language],
        stdin: str,
        limits: Optional[ExecutionLimits] = None,
        *,
        entry_point: str = "solve",
    ) -> str:
        async with self.isolate(language, limits) as context:
            return await context.run(code, stdin, entry_point=entry_point)

    async def health(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "runner": self.runner,
            "pool": {"size": self.pool.size, "in_use": self.pool.in_use},
            "languages": {},
        }
        healthy = bool(self._executors)
        for language, executor in sorted(self._executors.items(), key=lambda item: item[0].value):
            report = {**executor.describe(), **await executor.health()}
            healthy = healthy and report.get("status") == "ok"
            status["languages"][language.value] = report
        status["status"] = "ok" if healthy else "degraded"
        return status


def _docker_client_factory(settings: Settings) -> Callable[[], Any]:
    if settings.sandbox_runner in {"docker", "local"}:
        return docker.from_env

    base_url = settings.docker_host
    if not base_url:
        raise RuntimeError("SANDBOX_DOCKER_HOST must be set for the remote-docker runner")

    def _remote_client():
        if not settings.docker_tls_verify:
            return docker.DockerClient(base_url=base_url)
        from docker import tls

        if settings.docker_tls_cert and settings.docker_tls_key:
            tls_config = tls.TLSConfig(
                client_cert=(settings.docker_tls_cert, settings.docker_tls_key),
                ca_cert=settings.docker_tls_ca_cert,
                verify=True,
            )
        else:
            tls_config = tls.TLSConfig(ca_cert=settings.docker_tls_ca_cert, verify=True)
        return docker.DockerClient(base_url=base_url, tls=tls_config)

    return _remote_client


def build_sandbox(settings: Optional[Settings] = None) -> SandboxExecutor:
    settings = settings or get_settings()
    runner = settings.sandbox_runner
    if runner not in RUNNERS:
        raise RuntimeError(f"Unsupported sandbox runner '{runner}'")

    sandbox = SandboxExecutor(
        pool=SandboxPool(settings.max_concurrency),
        default_limits=ExecutionLimits(
            memory_mb=settings.default_memory_mb,
            timeout_ms=settings.default_timeout_ms,
        ),
        runner=runner,
    )

    if runner == "subprocess":
        accounts = SandboxAccounts.for_host(settings.sandbox_first_uid, settings.max_concurrency)
        jail = _subprocess_jail(settings, accounts)
        options = {
            "max_output_bytes": settings.max_output_bytes,
            "jail": jail,
            "accounts": accounts,
            "process_limit": settings.pids_limit,
        }
        python = SubprocessExecutor(
            PYTHON_RUNTIME,
            executable=settings.python_executable or os.path.realpath(sys.executable),
            **options,
        )
        node = SubprocessExecutor(NODE_RUNTIME, executable=settings.node_executable, **options)
        for executor in (python, node):
            if executor.available:
                sandbox.register(executor)
            else:
                _LOGGER.warning(
                    "No %s executable found; %s submissions will not be runnable",
                    executor.runtime.default_executable,
                    executor.language.value,
                )
        return sandbox

    factory = _docker_client_factory(settings)
    for runtime, image in ((PYTHON_RUNTIME, settings.python_image), (NODE_RUNTIME, settings.node_image)):
        sandbox.register(
            DockerExecutor(
                runtime,
                image=image,
                client_factory=factory,
                pids_limit=settings.pids_limit,
                max_output_bytes=settings.max_output_bytes,
            )
        )
    return sandbox


_sandbox: Optional[SandboxExecutor] = None


def get_sandbox() -> SandboxExecutor:
    global _sandbox
    if _sandbox is None:
        _sandbox = build_sandbox()
        _LOGGER.info(
            "Sandbox runner '%s' ready for %s",
            _sandbox.runner,
            ", ".join(_sandbox.runnable_languages()) or "no languages",
        )
    return _sandbox


__all__ = ["SandboxExecutor", "build_sandbox", "get_sandbox"]
