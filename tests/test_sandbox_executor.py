import asyncio

import pytest

from codejudge.config import Settings
from codejudge.sandbox import (
    ExecutionLimits,
    GuestRuntimeError,
    IsolationContext,
    Language,
    LanguageNotRunnable,
    SandboxInfrastructureError,
    SandboxPool,
    build_sandbox,
)
from codejudge.sandbox.docker_executor import DockerExecutor
from codejudge.sandbox.subprocess_executor import SubprocessExecutor


def test_execution_limits_validate_and_derive():
    limits = ExecutionLimits(memory_mb=64, timeout_ms=1500)
    assert limits.timeout_seconds == 1.5
    assert limits.cpu_seconds == 3
    assert limits.memory_bytes == 64 * 1024 * 1024
    with pytest.raises(ValueError):
        ExecutionLimits(memory_mb=0)
    with pytest.raises(ValueError):
        ExecutionLimits(timeout_ms=-1)


def test_pool_rejects_non_positive_size():
    with pytest.raises(ValueError):
        SandboxPool(0)


def test_pool_caps_concurrency_and_releases_on_error():
    async def _run():
        pool = SandboxPool(2)
        peak = 0

        async def _use(fail: bool):
            nonlocal peak
            async with pool.slot():
                peak = max(peak, pool.in_use)
                await asyncio.sleep(0.01)
                if fail:
                    raise RuntimeError("boom")

        results = await asyncio.gather(*(_use(i % 2 == 0) for i in range(6)), return_exceptions=True)
        assert sum(isinstance(r, RuntimeError) for r in results) == 3
        assert peak == 2
        assert pool.in_use == 0
        assert pool.available == 2

    asyncio.run(_run())


@pytest.mark.anyio("asyncio")
async def test_execute_disposes_context_on_success_and_error(scripted_sandbox):
    sandbox, executor = scripted_sandbox({"ok": "fine", "bad": GuestRuntimeError("ValueError: nope")})

    assert await sandbox.execute("code", "python", "ok") == "fine"
    with pytest.raises(GuestRuntimeError):
        await sandbox.execute("code", Language.python, "bad")

    assert len(executor.released) == 2
    assert all(context.disposed for context in executor.opened)
    assert sandbox.pool.in_use == 0


@pytest.mark.anyio("asyncio")
async def test_execute_disposes_context_when_cancelled(scripted_sandbox):
    async def _hang():
        await asyncio.sleep(3600)

    sandbox, executor = scripted_sandbox({"hang": _hang})

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(sandbox.execute("code", "python", "hang"), timeout=0.05)

    assert len(executor.released) == 1
    assert sandbox.pool.in_use == 0


@pytest.mark.anyio("asyncio")
async def test_context_runs_exactly_once(scripted_sandbox):
    sandbox, _ = scripted_sandbox({"x": "1"})

    async with sandbox.isolate("python") as context:
        await context.run("code", "x")
        with pytest.raises(SandboxInfrastructureError):
            await context.run("code", "x")

    with pytest.raises(SandboxInfrastructureError):
        await context.run("code", "x")


@pytest.mark.anyio("asyncio")
async def test_failed_setup_becomes_infrastructure_error():
    released = []

    class _Broken(IsolationContext):
        async def _setup(self):
            raise OSError("disk full")

        async def _release(self):
            released.append(True)

    with pytest.raises(SandboxInfrastructureError, match="disk full"):
        async with _Broken(ExecutionLimits()):
            pass
    assert released == [True]


@pytest.mark.anyio("asyncio")
async def test_unknown_and_unregistered_languages_are_not_runnable(scripted_sandbox):
    sandbox, _ = scripted_sandbox({})

    with pytest.raises(LanguageNotRunnable):
        await sandbox.execute("code", "cobol", "")
    with pytest.raises(LanguageNotRunnable, match="cpp"):
        await sandbox.execute("code", "cpp", "")


@pytest.mark.anyio("asyncio")
async def test_health_reports_languages_and_pool(scripted_sandbox):
    sandbox, _ = scripted_sandbox({})

    report = await sandbox.health()

    assert report["status"] == "ok"
    assert report["runner"] == "scripted"
    assert report["pool"] == {"size": 4, "in_use": 0}
    assert report["languages"]["python"]["backend"] == "scripted"


def test_build_sandbox_docker_registers_python_and_node():
    settings = Settings(sandbox_runner="docker", max_concurrency=3, default_timeout_ms=1000)
    sandbox = build_sandbox(settings)

    assert sandbox.runnable_languages() == ["javascript", "python"]
    assert isinstance(sandbox.executor_for("python"), DockerExecutor)
    assert sandbox.executor_for("javascript").image == "node:20-alpine"
    assert sandbox.pool.size == 3
    assert sandbox.default_limits.timeout_ms == 1000


def test_build_sandbox_subprocess_uses_local_python():
    sandbox = build_sandbox(
        Settings(sandbox_runner="subprocess", subprocess_isolation="host", node_executable="/nonexistent/node")
    )

    assert sandbox.runnable_languages() == ["python"]
    python = sandbox.executor_for("python")
    assert isinstance(python, SubprocessExecutor)
    assert python.describe()["isolation"] == "host"
    assert python.process_limit == 64


def test_build_sandbox_refuses_namespace_isolation_without_bubblewrap():
    settings = Settings(sandbox_runner="subprocess", bwrap_executable="/nonexistent/bwrap")

    with pytest.raises(RuntimeError, match="bwrap"):
        build_sandbox(settings)
    with pytest.raises(RuntimeError, match="chroot"):
        build_sandbox(Settings(sandbox_runner="subprocess", subprocess_isolation="chroot"))


def test_build_sandbox_rejects_unknown_runner_and_missing_remote_host():
    with pytest.raises(RuntimeError):
        build_sandbox(Settings(sandbox_runner="firecracker"))
    with pytest.raises(RuntimeError, match="SANDBOX_DOCKER_HOST"):
        build_sandbox(Settings(sandbox_runner="remote-docker"))
