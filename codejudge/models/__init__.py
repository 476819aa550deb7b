"""ORM models; importing this package registers every table with ``Base``."""

from .practice import PracticeCodingProgress, PracticeStatus
from .question import CodingQuestion, CodingTestCase, Difficulty
from .submission import CodingSubmission, SubmissionStatus

__all__ = [
    "CodingQuestion",
    "CodingSubmission",
    "CodingTestCase",
    "Difficulty",
    "PracticeCodingProgress",
    "PracticeStatus",
    "SubmissionStatus",
]
