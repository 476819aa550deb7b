from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.database import utcnow
from codejudge.models.practice import PracticeCodingProgress, PracticeStatus
from codejudge.models.question import CodingQuestion, Difficulty
from codejudge.services.grading import GradeResult

_LOGGER = logging.getLogger(__name__)


async def _locked_progress(
    db: AsyncSession, student_id: int, question_id: int
) -> Optional[PracticeCodingProgress]:
    stmt = (
        select(PracticeCodingProgress)
        .where(
            PracticeCodingProgress.student_id == student_id,
            PracticeCodingProgress.question_id == question_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_progress(
    db: AsyncSession,
    *,
    student_id: int,
    question_id: int,
    grade_result: GradeResult,
    now: Optional[datetime] = None,
) -> PracticeCodingProgress:
    """Merge one graded practice attempt into the student's progress row.

    The first attempt inserts the row. When two first attempts race, the
    loser hits the unique constraint and retries as an update.
    """

    now = now or utcnow()

    for retry in (False, True):
        progress = await _locked_progress(db, student_id, question_id)
        if progress is not None:
            progress.record_attempt(score=grade_result.score, accepted=grade_result.accepted, at=now)
            await db.commit()
            break

        progress = PracticeCodingProgress(
            student_id=student_id,
            question_id=question_id,
            status=PracticeStatus.attempted.value,
            best_score=0,
            attempts=0,
            last_attempted_at=now,
        )
        progress.record_attempt(score=grade_result.score, accepted=grade_result.accepted, at=now)
        db.add(progress)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if retry:
                raise
            _LOGGER.info(
                "Progress row for student %s question %s created concurrently; merging",
                student_id,
                question_id,
            )
            continue
        break

    await db.refresh(progress)
    return progress


async def practice_overview(db: AsyncSession, *, student_id: int) -> dict[str, Any]:
    """Every question with the student's derived progress, plus summary counts."""

    questions = (
        await db.execute(select(CodingQuestion).order_by(CodingQuestion.id))
    ).scalars().all()
    rows = (
        await db.execute(
            select(PracticeCodingProgress).where(PracticeCodingProgress.student_id == student_id)
        )
    ).scalars().all()
    progress_by_question = {row.question_id: row for row in rows}

    items = []
    for question in questions:
        progress = progress_by_question.get(question.id)
        items.append(
            {
                "id": question.id,
                "title": question.title,
                "difficulty": question.difficulty,
                "tags": list(question.tags or []),
                "status": progress.status if progress else PracticeStatus.not_attempted.value,
                "best_score": progress.best_score if progress else None,
                "attempts": progress.attempts if progress else 0,
                "solved_at": progress.solved_at if progress else None,
            }
        )

    stats: dict[str, int] = {
        "total": len(items),
        "solved": sum(1 for item in items if item["status"] == PracticeStatus.solved.value),
        "attempted": sum(1 for item in items if item["status"] == PracticeStatus.attempted.value),
    }
    for difficulty in Difficulty:
        stats[difficulty.value] = sum(1 for item in items if item["difficulty"] == difficulty.value)
    return {"questions": items, "stats": stats}


__all__ = ["practice_overview", "upsert_progress"]
