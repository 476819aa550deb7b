# codejudge/models/submission.py
import enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from codejudge.database import Base, utcnow


class SubmissionStatus(str, enum.Enum):
    accepted = "accepted"
    wrong_answer = "wrong_answer"
    runtime_error = "runtime_error"
    time_limit_exceeded = "time_limit_exceeded"
    memory_limit_exceeded = "memory_limit_exceeded"


class CodingSubmission(Base):
    """One graded execution event. Rows are inserted once and never updated."""

    __tablename__ = "coding_submissions"

    id = Column(Integer, primary_key=True, index=True)

    # Students and test attempts live in collaborator services
    student_id = Column(Integer, nullable=False, index=True)
    question_id = Column(
        Integer,
        ForeignKey("coding_questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    test_attempt_id = Column(Integer, nullable=True, index=True)

    language = Column(String(20), nullable=False)
    code = Column(Text, nullable=False)
    status = Column(String(32), nullable=False)
    test_cases_passed = Column(Integer, nullable=False, default=0)
    total_test_cases = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)
    execution_time = Column(Integer, nullable=False, default=0)  # average ms of successful cases
    error_message = Column(Text, nullable=True)

    # Already redacted: hidden cases carry the marker instead of their content
    test_results = Column(JSON, nullable=False, default=list)

    submitted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    question = relationship("CodingQuestion", back_populates="submissions", lazy="selectin")

    __table_args__ = (
        Index("ix_coding_submissions_student_question", "student_id", "question_id"),
        Index("ix_coding_submissions_question_time", "question_id", "submitted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CodingSubmission id={self.id} student={self.student_id} "
            f"question={self.question_id} status={self.status} score={self.score}>"
        )
