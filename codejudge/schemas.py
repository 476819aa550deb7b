# codejudge/schemas.py
# ------------------------------------------------------------
# Pydantic v2 schemas, organized by domain
# ------------------------------------------------------------
from datetime import datetime
import re
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from codejudge.sandbox import Language


MAX_CODE_LENGTH = 65536
_ENTRY_POINT_RE = r"^[A-Za-z_][A-Za-z0-9_]*$"
_NUL_RE = re.compile(r"\x00")


def _clean_code(value: str) -> str:
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _NUL_RE.sub("", value)
    if not cleaned.strip():
        raise ValueError("Code cannot be empty")
    return cleaned


# ============================================================
# Grading input
# ============================================================

class TestCaseIn(BaseModel):
    __test__ = False  # not a pytest class

    input: str = ""
    expected_output: str
    is_sample: bool = False
    weight: int = Field(default=10, ge=0)

    model_config = ConfigDict(from_attributes=True)


class CodeRunRequest(BaseModel):
    question_id: int
    code: str = Field(max_length=MAX_CODE_LENGTH)
    language: Language

    @field_validator("code")
    @classmethod
    def _clean(cls, value: str) -> str:
        return _clean_code(value)


class CodeSubmitRequest(CodeRunRequest):
    test_attempt_id: Optional[int] = None
    is_practice: bool = False


class GradingRequest(BaseModel):
    question_id: int
    code: str = Field(max_length=MAX_CODE_LENGTH)
    language: Language
    test_cases: List[TestCaseIn] = Field(default_factory=list)
    test_attempt_id: Optional[int] = None
    is_practice: bool = False
    time_limit_ms: Optional[int] = Field(default=None, gt=0, le=60000)
    memory_limit_mb: Optional[int] = Field(default=None, gt=0, le=4096)
    entry_point: str = Field(default="solve", pattern=_ENTRY_POINT_RE)

    @field_validator("code")
    @classmethod
    def _clean(cls, value: str) -> str:
        return _clean_code(value)


# ============================================================
# Grading output
# ============================================================

class TestResultRead(BaseModel):
    __test__ = False  # not a pytest class

    test_case_number: int
    passed: bool
    input: str
    expected_output: str
    actual_output: Optional[str] = None
    execution_time: Optional[int] = None
    error: Optional[str] = None
    limit_exceeded: Optional[str] = None


class GradingResponse(BaseModel):
    submission_id: int
    status: str
    test_cases_passed: int
    total_test_cases: int
    score: int
    execution_time: int = 0
    test_results: List[TestResultRead]


class RunSamplesResponse(BaseModel):
    output: str
    test_cases_passed: int
    total_test_cases: int
    test_results: List[TestResultRead]


class SubmissionRead(BaseModel):
    id: int
    question_id: int
    test_attempt_id: Optional[int] = None
    language: str
    code: str
    status: str
    test_cases_passed: int
    total_test_cases: int
    score: int
    execution_time: int
    error_message: Optional[str] = None
    test_results: List[TestResultRead] = Field(default_factory=list)
    submitted_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# Practice
# ============================================================

class PracticeQuestionRead(BaseModel):
    id: int
    title: str
    difficulty: str
    tags: List[str] = Field(default_factory=list)
    status: str
    best_score: Optional[int] = None
    attempts: int = 0
    solved_at: Optional[datetime] = None


class PracticeStats(BaseModel):
    total: int
    solved: int
    attempted: int
    easy: int = 0
    medium: int = 0
    hard: int = 0


class PracticeOverview(BaseModel):
    questions: List[PracticeQuestionRead]
    stats: PracticeStats
