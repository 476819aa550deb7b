from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.config import get_settings
from codejudge.models.question import CodingQuestion
from codejudge.sandbox import ExecutionLimits, SandboxExecutor, get_sandbox
from codejudge.schemas import (
    CodeRunRequest,
    GradingRequest,
    GradingResponse,
    RunSamplesResponse,
    TestCaseIn,
)
from codejudge.services import practice, recorder
from codejudge.services.grading import grade
from codejudge.services.runner import TestCaseRunner

_LOGGER = logging.getLogger(__name__)

ALL_SAMPLES_PASSED = "All sample test cases passed!"
SOME_SAMPLES_FAILED = "Some test cases failed. Check the results below."


class JudgeError(Exception):
    """Base error for grading requests that cannot be judged."""


class LanguageNotSupported(JudgeError):
    def __init__(self, language: str) -> None:
        super().__init__(f"Language '{language}' is not supported for this question")
        self.language = language


class NoTestCases(JudgeError):
    def __init__(self, message: str = "No test cases found for this question") -> None:
        super().__init__(message)


def build_grading_request(
    question: CodingQuestion,
    payload: CodeRunRequest,
    *,
    samples_only: bool = False,
) -> GradingRequest:
    """Combine a stored question and a student's payload into a grading request."""

    language = payload.language.value
    if not question.supports(language):
        raise LanguageNotSupported(language)

    cases = [
        TestCaseIn.model_validate(case)
        for case in question.test_cases
        if case.is_sample or not samples_only
    ]
    if not cases:
        raise NoTestCases("No sample test cases found" if samples_only else "No test cases found for this question")

    return GradingRequest(
        question_id=question.id,
        code=payload.code,
        language=payload.language,
        test_cases=cases,
        test_attempt_id=getattr(payload, "test_attempt_id", None),
        is_practice=getattr(payload, "is_practice", False),
        time_limit_ms=question.time_limit_ms,
        memory_limit_mb=question.memory_limit_mb,
        entry_point=question.entry_point or "solve",
    )


class CodingJudge:
    def __init__(self, sandbox: SandboxExecutor, *, max_parallel_cases: int = 1) -> None:
        self.sandbox = sandbox
        self.runner = TestCaseRunner(sandbox, max_parallel_cases=max_parallel_cases)

    def limits_for(self, request: GradingRequest) -> ExecutionLimits:
        defaults = self.sandbox.default_limits
        return ExecutionLimits(
            memory_mb=request.memory_limit_mb or defaults.memory_mb,
            timeout_ms=request.time_limit_ms or defaults.timeout_ms,
        )

    async def _run(self, request: GradingRequest, cases: list[Any]):
        return await self.runner.run(
            request.code,
            request.language,
            cases,
            self.limits_for(request),
            entry_point=request.entry_point,
        )

    async def run_samples(self, request: GradingRequest) -> RunSamplesResponse:
        """Dry run against sample cases only. Nothing is persisted."""

        cases = [case for case in request.test_cases if case.is_sample]
        if not cases:
            raise NoTestCases("No sample test cases found")

        run_result = await self._run(request, cases)
        results = recorder.redact_results((case.to_dict() for case in run_result.cases), cases)
        all_passed = run_result.passed_count == run_result.total
        return RunSamplesResponse(
            output=ALL_SAMPLES_PASSED if all_passed else SOME_SAMPLES_FAILED,
            test_cases_passed=run_result.passed_count,
            total_test_cases=run_result.total,
            test_results=results,
        )

    async def submit(
        self,
        db: AsyncSession,
        *,
        student_id: int,
        request: GradingRequest,
    ) -> GradingResponse:
        cases = list(request.test_cases)
        if not cases:
            raise NoTestCases()

        run_result = await self._run(request, cases)
        grade_result = grade(run_result, cases)

        submission = await recorder.record(
            db,
            student_id=student_id,
            question_id=request.question_id,
            test_attempt_id=request.test_attempt_id,
            code=request.code,
            language=request.language.value,
            run_result=run_result,
            grade_result=grade_result,
            test_cases=cases,
        )
        # Built before the practice merge, which may roll the session back.
        response = GradingResponse(
            submission_id=submission.id,
            status=submission.status,
            test_cases_passed=submission.test_cases_passed,
            total_test_cases=submission.total_test_cases,
            score=submission.score,
            execution_time=submission.execution_time,
            test_results=submission.test_results,
        )

        if request.is_practice:
            await practice.upsert_progress(
                db,
                student_id=student_id,
                question_id=request.question_id,
                grade_result=grade_result,
            )
        return response


_judge: Optional[CodingJudge] = None


def get_judge() -> CodingJudge:
    global _judge
    if _judge is None:
        _judge = CodingJudge(
            get_sandbox(),
            max_parallel_cases=get_settings().max_parallel_cases,
        )
    return _judge


__all__ = [
    "ALL_SAMPLES_PASSED",
    "CodingJudge",
    "JudgeError",
    "LanguageNotSupported",
    "NoTestCases",
    "SOME_SAMPLES_FAILED",
    "build_grading_request",
    "get_judge",
]
