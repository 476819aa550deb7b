from __future__ import annotations

import enum

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer,
    String, Text,
)
from sqlalchemy.orm import relationship

from codejudge.database import Base, utcnow

DEFAULT_LANGUAGES = ["javascript", "python", "java", "cpp"]


class Difficulty(str, enum.Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class CodingQuestion(Base):
    __tablename__ = "coding_questions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    difficulty = Column(String(10), nullable=False, default=Difficulty.easy.value, index=True)
    tags = Column(JSON, nullable=False, default=list)
    constraints = Column(Text, nullable=False, default="")
    input_format = Column(Text, nullable=False, default="")
    output_format = Column(Text, nullable=False, default="")
    sample_input = Column(Text, nullable=False, default="")
    sample_output = Column(Text, nullable=False, default="")
    explanation = Column(Text, nullable=False, default="")

    # Per-run limits applied to every test case of this question
    time_limit_ms = Column(Integer, nullable=False, default=2000)
    memory_limit_mb = Column(Integer, nullable=False, default=256)
    supported_languages = Column(JSON, nullable=False, default=lambda: list(DEFAULT_LANGUAGES))
    entry_point = Column(String(64), nullable=False, default="solve")

    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    test_cases = relationship(
        "CodingTestCase",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="CodingTestCase.position",
        lazy="selectin",
    )
    submissions = relationship(
        "CodingSubmission",
        back_populates="question",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def supports(self, language: str) -> bool:
        languages = self.supported_languages or DEFAULT_LANGUAGES
        return language in languages

    def __repr__(self) -> str:
        return f"<CodingQuestion id={self.id} title={self.title!r} difficulty={self.difficulty}>"


class CodingTestCase(Base):
    __tablename__ = "coding_test_cases"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(
        Integer,
        ForeignKey("coding_questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    input = Column(Text, nullable=False, default="")
    expected_output = Column(Text, nullable=False)
    is_sample = Column(Boolean, nullable=False, default=False, index=True)
    weight = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    question = relationship("CodingQuestion", back_populates="test_cases")

    __table_args__ = (
        CheckConstraint("weight >= 0", name="ck_coding_test_cases_weight_non_negative"),
        Index("ix_coding_test_cases_question_position", "question_id", "position"),
    )
