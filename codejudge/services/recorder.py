from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.models.submission import CodingSubmission
from codejudge.services.grading import GradeResult
from codejudge.services.runner import RunResult

_LOGGER = logging.getLogger(__name__)

HIDDEN_MARKER = "[Hidden]"
HISTORY_LIMIT = 10


def redact_results(results: Iterable[dict[str, Any]], test_cases: Sequence[Any]) -> list[dict[str, Any]]:
    """
    Replace input and expected output of every non-sample case with the marker.
    Pass/fail, timing and error fields are left untouched. Results whose case
    cannot be matched are treated as hidden.
    """
    redacted = []
    for item in results:
        entry = dict(item)
        index = int(entry.get("test_case_number", 0)) - 1
        case = test_cases[index] if 0 <= index < len(test_cases) else None
        if case is None or not getattr(case, "is_sample", False):
            entry["input"] = HIDDEN_MARKER
            entry["expected_output"] = HIDDEN_MARKER
        redacted.append(entry)
    return redacted


async def record(
    db: AsyncSession,
    *,
    student_id: int,
    question_id: int,
    code: str,
    language: str,
    run_result: RunResult,
    grade_result: GradeResult,
    test_cases: Sequence[Any],
    test_attempt_id: Optional[int] = None,
) -> CodingSubmission:
    """Insert one submission row. Stored results are already redacted."""

    submission = CodingSubmission(
        student_id=student_id,
        question_id=question_id,
        test_attempt_id=test_attempt_id,
        language=getattr(language, "value", language),
        code=code,
        status=grade_result.status.value,
        test_cases_passed=grade_result.cases_passed,
        total_test_cases=grade_result.total_cases,
        score=grade_result.score,
        execution_time=run_result.avg_time_ms,
        error_message=run_result.first_error,
        test_results=redact_results((case.to_dict() for case in run_result.cases), test_cases),
    )
    db.add(submission)
    await db.commit()
    await db.refresh(submission)

    _LOGGER.info(
        "Recorded submission %s for student %s on question %s: %s (%s/100)",
        submission.id,
        student_id,
        question_id,
        submission.status,
        submission.score,
    )
    return submission


async def list_submissions(
    db: AsyncSession,
    *,
    student_id: int,
    question_id: int,
    limit: int = HISTORY_LIMIT,
) -> list[CodingSubmission]:
    stmt = (
        select(CodingSubmission)
        .where(
            CodingSubmission.student_id == student_id,
            CodingSubmission.question_id == question_id,
        )
        .order_by(desc(CodingSubmission.submitted_at), desc(CodingSubmission.id))
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


__all__ = ["HIDDEN_MARKER", "list_submissions", "record", "redact_results"]
