from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from codejudge.database import Base, utcnow


class PracticeStatus(str, enum.Enum):
    not_attempted = "not_attempted"  # derived only, never stored
    attempted = "attempted"
    solved = "solved"


class PracticeCodingProgress(Base):
    __tablename__ = "practice_coding_progress"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, nullable=False, index=True)
    question_id = Column(
        Integer,
        ForeignKey("coding_questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String(20), nullable=False, default=PracticeStatus.attempted.value, index=True)
    best_score = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    solved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "question_id", name="uq_practice_student_question"),
    )

    # ------------------------------------------------------------------
    # Monotonic merge
    # ------------------------------------------------------------------
    @property
    def is_solved(self) -> bool:
        return self.status == PracticeStatus.solved.value

    def record_attempt(self, *, score: int, accepted: bool, at: Optional[datetime] = None) -> None:
        """Fold one attempt into the row; never lowers best_score or clears solved_at."""

        at = at or utcnow()
        self.attempts = (self.attempts or 0) + 1
        self.best_score = max(self.best_score or 0, score)
        self.last_attempted_at = at
        if accepted and not self.is_solved:
            self.status = PracticeStatus.solved.value
            if self.solved_at is None:
                self.solved_at = at
