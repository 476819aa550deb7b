from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from codejudge.sandbox import (
    ExecutionLimits,
    GuestRuntimeError,
    Language,
    ResourceLimitExceeded,
    SandboxExecutor,
)

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CaseResult:
    test_case_number: int
    passed: bool
    input: str
    expected_output: str
    actual_output: Optional[str] = None
    execution_time: Optional[int] = None
    error: Optional[str] = None
    limit_exceeded: Optional[str] = None

    @property
    def runtime_error(self) -> bool:
        return self.error is not None and self.limit_exceeded is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "test_case_number": self.test_case_number,
            "passed": self.passed,
            "input": self.input,
            "expected_output": self.expected_output,
        }
        for key in ("actual_output", "execution_time", "error", "limit_exceeded"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(slots=True)
class RunResult:
    cases: list[CaseResult] = field(default_factory=list)
    had_runtime_error: bool = False
    had_timeout: bool = False
    had_memory_limit: bool = False
    avg_time_ms: int = 0

    @property
    def passed_count(self) -> int:
        return sum(1 for case in self.cases if case.passed)

    @property
    def total(self) -> int:
        return len(self.cases)

    @property
    def first_error(self) -> Optional[str]:
        for case in self.cases:
            if case.error:
                return case.error
        return None

    @classmethod
    def from_cases(cls, cases: list[CaseResult]) -> "RunResult":
        timings = [case.execution_time for case in cases if case.execution_time is not None]
        return cls(
            cases=cases,
            had_runtime_error=any(case.runtime_error for case in cases),
            had_timeout=any(case.limit_exceeded == ResourceLimitExceeded.TIME for case in cases),
            had_memory_limit=any(case.limit_exceeded == ResourceLimitExceeded.MEMORY for case in cases),
            avg_time_ms=round(sum(timings) / len(timings)) if timings else 0,
        )


def outputs_match(actual: str, expected: str) -> bool:
    """Exact comparison after trimming surrounding whitespace."""
    return (actual or "").strip() == (expected or "").strip()


class TestCaseRunner:
    """Runs a submission once per test case, each in a fresh isolation context."""

    __test__ = False  # not a pytest class

    def __init__(self, sandbox: SandboxExecutor, *, max_parallel_cases: int = 1) -> None:
        self.sandbox = sandbox
        self.max_parallel_cases = max(1, max_parallel_cases)

    async def run(
        self,
        code: str,
        language: Language | str,
        test_cases: Sequence[Any],
        limits: Optional[ExecutionLimits] = None,
        *,
        entry_point: str = "solve",
    ) -> RunResult:
        cases = list(test_cases)
        if not cases:
            raise ValueError("At least one test case is required")

        # Fail before any case runs when the language has no executor.
        self.sandbox.executor_for(language)

        if self.max_parallel_cases == 1:
            results = []
            for number, case in enumerate(cases, start=1):
                results.append(
                    await self._run_case(number, case, code, language, limits, entry_point)
                )
        else:
            results = await self._run_parallel(cases, code, language, limits, entry_point)

        run_result = RunResult.from_cases(results)
        _LOGGER.info(
            "Ran %s submission: %s/%s cases passed (runtime_error=%s timeout=%s memory=%s)",
            getattr(language, "value", language),
            run_result.passed_count,
            run_result.total,
            run_result.had_runtime_error,
            run_result.had_timeout,
            run_result.had_memory_limit,
        )
        return run_result

    async def _run_parallel(self, cases, code, language, limits, entry_point) -> list[CaseResult]:
        gate = asyncio.Semaphore(self.max_parallel_cases)

        async def _bounded(number: int, case: Any) -> CaseResult:
            async with gate:
                return await self._run_case(number, case, code, language, limits, entry_point)

        tasks = [
            asyncio.ensure_future(_bounded(number, case))
            for number, case in enumerate(cases, start=1)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_case(
        self,
        number: int,
        case: Any,
        code: str,
        language: Language | str,
        limits: Optional[ExecutionLimits],
        entry_point: str,
    ) -> CaseResult:
        stdin = getattr(case, "input", "") or ""
        expected = getattr(case, "expected_output", "") or ""
        result = CaseResult(test_case_number=number, passed=False, input=stdin, expected_output=expected)

        try:
            async with self.sandbox.isolate(language, limits) as context:
                started = time.perf_counter()
                output = await context.run(code, stdin, entry_point=entry_point)
                elapsed = time.perf_counter() - started
        except ResourceLimitExceeded as exc:
            result.error = str(exc)
            result.limit_exceeded = exc.kind
            _LOGGER.debug("Case %s exceeded its %s limit", number, exc.kind)
            return result
        except GuestRuntimeError as exc:
            result.error = str(exc)
            _LOGGER.debug("Case %s raised: %s", number, exc)
            return result

        result.execution_time = int(elapsed * 1000)
        result.actual_output = output
        result.passed = outputs_match(output, expected)
        return result


__all__ = ["CaseResult", "RunResult", "TestCaseRunner", "outputs_match"]
