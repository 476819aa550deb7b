from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from codejudge.auth_token import CurrentUser, get_current_user
from codejudge.database import get_db
from codejudge.models.question import CodingQuestion
from codejudge.rate_limiter import RateLimitExceeded, get_submission_rate_limiter
from codejudge.sandbox import LanguageNotRunnable, SandboxInfrastructureError
from codejudge.schemas import (
    CodeRunRequest,
    CodeSubmitRequest,
    GradingResponse,
    PracticeOverview,
    RunSamplesResponse,
    SubmissionRead,
)
from codejudge.services import practice, recorder
from codejudge.services.judge import CodingJudge, JudgeError, build_grading_request, get_judge

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/coding", tags=["Coding"])


async def _load_question(db: AsyncSession, question_id: int) -> CodingQuestion:
    question = await db.get(CodingQuestion, question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


@router.post("/run", response_model=RunSamplesResponse, response_model_exclude_none=True)
async def run_code(
    payload: CodeRunRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    judge: CodingJudge = Depends(get_judge),
):
    """Dry run against the question's sample cases. Nothing is stored."""

    question = await _load_question(db, payload.question_id)
    try:
        request = build_grading_request(question, payload, samples_only=True)
        return await judge.run_samples(request)
    except (JudgeError, LanguageNotRunnable) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SandboxInfrastructureError as exc:
        _LOGGER.error("Sandbox unavailable for run by user %s: %s", user.id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Code execution is temporarily unavailable",
        ) from exc
    except Exception as exc:
        _LOGGER.exception("Code run failed for user %s on question %s", user.id, payload.question_id)
        raise HTTPException(status_code=500, detail="Code execution failed") from exc


@router.post("/submit", response_model=GradingResponse, response_model_exclude_none=True)
async def submit_code(
    payload: CodeSubmitRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    judge: CodingJudge = Depends(get_judge),
):
    limiter = get_submission_rate_limiter()
    if limiter:
        try:
            await limiter.check(f"user:{user.id}")
        except RateLimitExceeded as exc:
            _LOGGER.info("Submission rate limit hit for user %s", user.id)
            raise HTTPException(status_code=429, detail="Too many submissions. Please slow down.") from exc

    question = await _load_question(db, payload.question_id)
    try:
        request = build_grading_request(question, payload)
        return await judge.submit(db, student_id=user.id, request=request)
    except (JudgeError, LanguageNotRunnable) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SandboxInfrastructureError as exc:
        _LOGGER.error("Sandbox unavailable for submission by user %s: %s", user.id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Code execution is temporarily unavailable",
        ) from exc
    except Exception as exc:
        _LOGGER.exception("Submission failed for user %s on question %s", user.id, payload.question_id)
        raise HTTPException(status_code=500, detail="Failed to submit code") from exc


@router.get(
    "/submissions/{question_id}",
    response_model=List[SubmissionRead],
    response_model_exclude_none=True,
)
async def my_submissions(
    question_id: int,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """The caller's latest submissions for one question, newest first."""

    return await recorder.list_submissions(db, student_id=user.id, question_id=question_id)


@router.get("/practice/questions", response_model=PracticeOverview)
async def practice_questions(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return await practice.practice_overview(db, student_id=user.id)
