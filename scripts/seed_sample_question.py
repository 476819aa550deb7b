import asyncio

from sqlalchemy import select

import codejudge.database as database
from codejudge.models import CodingQuestion, CodingTestCase

SAMPLE_QUESTION = {
    "title": "Sum of Two Numbers",
    "description": (
        "Write a function that takes two numbers as input and returns their sum.\n\n"
        "This is a simple problem to test the coding interface."
    ),
    "difficulty": "easy",
    "time_limit_ms": 5000,
    "memory_limit_mb": 256,
    "constraints": "1 <= a, b <= 1000",
    "input_format": "Two integers on separate lines",
    "output_format": "Single integer (sum of the two numbers)",
    "sample_input": "5\n10",
    "sample_output": "15",
    "explanation": "5 + 10 = 15",
    "supported_languages": ["javascript", "python"],
    "tags": ["easy", "math", "basics"],
}

SAMPLE_CASES = [
    ("5\n10", "15", True),
    ("100\n200", "300", False),
    ("0\n0", "0", False),
    ("999\n1", "1000", False),
    ("50\n50", "100", False),
]


async def main() -> None:
    """Create tables and seed the sample coding question (idempotent)."""

    await database.init_models()
    async with database.SessionLocal() as session:
        existing = await session.execute(
            select(CodingQuestion.id).where(CodingQuestion.title == SAMPLE_QUESTION["title"])
        )
        question_id = existing.scalar_one_or_none()
        if question_id is not None:
            print(f"Sample question already exists with ID: {question_id}")
            return

        question = CodingQuestion(**SAMPLE_QUESTION)
        question.test_cases = [
            CodingTestCase(position=index, input=stdin, expected_output=expected, is_sample=sample, weight=20)
            for index, (stdin, expected, sample) in enumerate(SAMPLE_CASES)
        ]
        session.add(question)
        await session.commit()
        print(f"Seeded sample question {question.id} with {len(SAMPLE_CASES)} test cases.")


if __name__ == "__main__":
    asyncio.run(main())
