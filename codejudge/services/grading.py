"""Weighted scoring and submission status."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from codejudge.models.submission import SubmissionStatus
from codejudge.services.runner import RunResult


@dataclass(frozen=True, slots=True)
class GradeResult:
    status: SubmissionStatus
    score: int
    cases_passed: int
    total_cases: int

    @property
    def accepted(self) -> bool:
        return self.status == SubmissionStatus.accepted


def weighted_score(earned: int, total: int) -> int:
    """
    Percentage of weight earned, rounded half up.
    Returns 0 when there is no weight to earn.
    """
    if total <= 0:
        return 0
    earned = min(max(earned, 0), total)
    return (200 * earned + total) // (2 * total)


def grade(run_result: RunResult, test_cases: Sequence[Any]) -> GradeResult:
    """Turn per-case outcomes into a score and a single status.

    Status precedence: accepted, runtime_error, time_limit_exceeded,
    memory_limit_exceeded, wrong_answer.
    """

    if not test_cases:
        raise ValueError("Cannot grade a run without test cases")
    if len(run_result.cases) != len(test_cases):
        raise ValueError("Run result does not match the test case list")

    weights = [int(getattr(case, "weight", 0) or 0) for case in test_cases]
    if any(weight < 0 for weight in weights):
        raise ValueError("Test case weights must be non-negative")

    earned = sum(weight for weight, case in zip(weights, run_result.cases) if case.passed)
    score = weighted_score(earned, sum(weights))

    passed = run_result.passed_count
    total = len(test_cases)
    if passed == total:
        status = SubmissionStatus.accepted
    elif run_result.had_runtime_error:
        status = SubmissionStatus.runtime_error
    elif run_result.had_timeout:
        status = SubmissionStatus.time_limit_exceeded
    elif run_result.had_memory_limit:
        status = SubmissionStatus.memory_limit_exceeded
    else:
        status = SubmissionStatus.wrong_answer

    return GradeResult(status=status, score=score, cases_passed=passed, total_cases=total)


__all__ = ["GradeResult", "grade", "weighted_score"]
