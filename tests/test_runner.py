import asyncio
from types import SimpleNamespace

import pytest

from codejudge.models.submission import SubmissionStatus
from codejudge.sandbox import (
    ExecutionLimits,
    GuestRuntimeError,
    LanguageNotRunnable,
    ResourceLimitExceeded,
    SandboxInfrastructureError,
)
from codejudge.services.grading import grade
import codejudge.services.runner as runner_module
from codejudge.services.runner import TestCaseRunner, outputs_match


def _case(stdin, expected, *, sample=False, weight=50):
    return SimpleNamespace(input=stdin, expected_output=expected, is_sample=sample, weight=weight)


def test_outputs_match_ignores_surrounding_whitespace_only():
    assert outputs_match("15\n", "15")
    assert outputs_match("  a b \n", "a b")
    assert not outputs_match("a  b", "a b")


@pytest.mark.anyio("asyncio")
async def test_runtime_error_is_recorded_and_later_cases_still_run(scripted_sandbox):
    sandbox, executor = scripted_sandbox(
        {"1": GuestRuntimeError("ZeroDivisionError: division by zero"), "2": "4\n"}
    )
    cases = [_case("1", "2"), _case("2", "4")]

    result = await TestCaseRunner(sandbox).run("code", "python", cases)

    first, second = result.cases
    assert not first.passed
    assert first.error == "ZeroDivisionError: division by zero"
    assert first.actual_output is None
    assert second.passed
    assert second.actual_output == "4\n"
    assert result.had_runtime_error
    assert not result.had_timeout
    assert grade(result, cases).status == SubmissionStatus.runtime_error
    assert len(executor.released) == 2


@pytest.mark.anyio("asyncio")
async def test_timeout_is_a_resource_limit_not_a_runtime_error(scripted_sandbox):
    sandbox, _ = scripted_sandbox(
        {"loop": ResourceLimitExceeded(ResourceLimitExceeded.TIME, "Time limit of 100 ms exceeded"), "ok": "1"}
    )
    cases = [_case("loop", "1"), _case("ok", "1")]

    result = await TestCaseRunner(sandbox).run("code", "python", cases)

    assert result.had_timeout
    assert not result.had_runtime_error
    assert result.cases[0].limit_exceeded == "time"
    assert result.cases[0].error == "Time limit of 100 ms exceeded"
    assert grade(result, cases).status == SubmissionStatus.time_limit_exceeded


@pytest.mark.anyio("asyncio")
async def test_average_time_only_counts_successful_cases(scripted_sandbox, monkeypatch):
    sandbox, _ = scripted_sandbox({"a": "x", "b": GuestRuntimeError("boom"), "c": "y"})
    ticks = iter([0.0, 0.010, 1.0, 5.0, 5.030])
    monkeypatch.setattr(runner_module, "time", SimpleNamespace(perf_counter=lambda: next(ticks)))

    result = await TestCaseRunner(sandbox).run("code", "python", [_case("a", "x"), _case("b", "x"), _case("c", "y")])

    assert [case.execution_time for case in result.cases] == [10, None, 30]
    assert result.avg_time_ms == 20


@pytest.mark.anyio("asyncio")
async def test_execution_time_excludes_waiting_for_a_sandbox_slot(scripted_sandbox):
    sandbox, _ = scripted_sandbox({"1": "1"}, pool_size=1)
    occupied = asyncio.Event()

    async def _hold_the_only_slot():
        async with sandbox.pool.slot():
            occupied.set()
            await asyncio.sleep(0.3)

    holder = asyncio.create_task(_hold_the_only_slot())
    await occupied.wait()

    result = await TestCaseRunner(sandbox).run("code", "python", [_case("1", "1")])
    await holder

    assert result.cases[0].passed
    assert result.cases[0].execution_time < 200


@pytest.mark.anyio("asyncio")
async def test_limits_and_entry_point_reach_every_context(scripted_sandbox):
    sandbox, executor = scripted_sandbox({"1": "1", "2": "2"})
    limits = ExecutionLimits(memory_mb=64, timeout_ms=750)

    await TestCaseRunner(sandbox).run("code", "python", [_case("1", "1"), _case("2", "2")], limits, entry_point="answer")

    assert [call[2] for call in executor.calls] == ["answer", "answer"]
    assert all(call[3] == limits for call in executor.calls)


@pytest.mark.anyio("asyncio")
async def test_parallel_cases_keep_input_order(scripted_sandbox):
    def _delayed(value, delay):
        async def _outcome():
            await asyncio.sleep(delay)
            return value

        return _outcome

    sandbox, executor = scripted_sandbox(
        {"1": _delayed("1", 0.05), "2": _delayed("2", 0.0), "3": _delayed("3", 0.02)}
    )
    runner = TestCaseRunner(sandbox, max_parallel_cases=3)

    result = await runner.run("code", "python", [_case("1", "1"), _case("2", "2"), _case("3", "3")])

    assert [case.test_case_number for case in result.cases] == [1, 2, 3]
    assert [case.actual_output for case in result.cases] == ["1", "2", "3"]
    assert len(executor.released) == 3
    assert sandbox.pool.in_use == 0


@pytest.mark.anyio("asyncio")
async def test_infrastructure_failure_aborts_the_run(scripted_sandbox):
    sandbox, executor = scripted_sandbox(
        {"1": "1", "2": SandboxInfrastructureError("docker went away"), "3": "3"}
    )

    with pytest.raises(SandboxInfrastructureError):
        await TestCaseRunner(sandbox).run("code", "python", [_case("1", "1"), _case("2", "2"), _case("3", "3")])

    # Cases after the failure never start, and every opened context is released.
    assert len(executor.opened) == 2
    assert len(executor.released) == 2
    assert sandbox.pool.in_use == 0


@pytest.mark.anyio("asyncio")
async def test_unregistered_language_fails_before_any_case(scripted_sandbox):
    sandbox, executor = scripted_sandbox({"1": "1"})

    with pytest.raises(LanguageNotRunnable):
        await TestCaseRunner(sandbox).run("code", "java", [_case("1", "1")])

    assert executor.opened == []


@pytest.mark.anyio("asyncio")
async def test_empty_case_list_is_rejected(scripted_sandbox):
    sandbox, _ = scripted_sandbox({})
    with pytest.raises(ValueError):
        await TestCaseRunner(sandbox).run("code", "python", [])
