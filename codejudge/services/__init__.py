"""Grading pipeline: run test cases, score, record, track practice."""

from .grading import GradeResult, grade, weighted_score
from .runner import CaseResult, RunResult, TestCaseRunner
from . import practice, recorder
from .judge import (
    CodingJudge,
    JudgeError,
    LanguageNotSupported,
    NoTestCases,
    build_grading_request,
    get_judge,
)

__all__ = [
    "CaseResult",
    "CodingJudge",
    "GradeResult",
    "JudgeError",
    "LanguageNotSupported",
    "NoTestCases",
    "RunResult",
    "TestCaseRunner",
    "build_grading_request",
    "get_judge",
    "grade",
    "practice",
    "recorder",
    "weighted_score",
]
