import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from codejudge.auth_token import CurrentUser
from codejudge.models import CodingQuestion, CodingSubmission, CodingTestCase, PracticeCodingProgress
from codejudge.rate_limiter import RateLimiter, RateLimitExceeded
from codejudge.routes import coding as coding_routes
from codejudge.routes.coding import my_submissions, practice_questions, run_code, submit_code
from codejudge.sandbox import GuestRuntimeError, SandboxInfrastructureError
from codejudge.schemas import CodeRunRequest, CodeSubmitRequest
from codejudge.services.judge import ALL_SAMPLES_PASSED, SOME_SAMPLES_FAILED, CodingJudge
from codejudge.services.recorder import HIDDEN_MARKER

USER = CurrentUser(id=11, role="student")
CASES = [("5\n10", "15", True), ("100\n200", "300", False), ("0\n0", "0", False)]


@pytest.fixture(autouse=True)
def _no_rate_limit(monkeypatch):
    monkeypatch.setattr(coding_routes, "get_submission_rate_limiter", lambda: None)


async def _seed(db, *, languages=("python", "javascript")):
    question = CodingQuestion(
        title="Sum of Two Numbers",
        difficulty="easy",
        supported_languages=list(languages),
        time_limit_ms=1500,
        memory_limit_mb=64,
    )
    question.test_cases = [
        CodingTestCase(position=i, input=stdin, expected_output=out, is_sample=sample, weight=20)
        for i, (stdin, out, sample) in enumerate(CASES)
    ]
    db.add(question)
    await db.commit()
    return question


def _judge(scripted_sandbox, script):
    sandbox, executor = scripted_sandbox(script)
    return CodingJudge(sandbox), executor


@pytest.mark.anyio("asyncio")
async def test_run_uses_only_sample_cases_and_records_nothing(db_session, scripted_sandbox):
    question = await _seed(db_session)
    judge, executor = _judge(scripted_sandbox, {"5\n10": "15\n"})

    response = await run_code(
        CodeRunRequest(question_id=question.id, code="print(15)", language="python"),
        db=db_session,
        user=USER,
        judge=judge,
    )

    assert response.output == ALL_SAMPLES_PASSED
    assert response.total_test_cases == 1
    assert response.test_results[0].input == "5\n10"
    assert [call[1] for call in executor.calls] == ["5\n10"]
    assert executor.calls[0][3].timeout_ms == 1500
    assert await db_session.scalar(select(func.count()).select_from(CodingSubmission)) == 0


@pytest.mark.anyio("asyncio")
async def test_run_reports_failing_samples(db_session, scripted_sandbox):
    question = await _seed(db_session)
    judge, _ = _judge(scripted_sandbox, {"5\n10": "16"})

    response = await run_code(
        CodeRunRequest(question_id=question.id, code="print(16)", language="python"),
        db=db_session,
        user=USER,
        judge=judge,
    )

    assert response.output == SOME_SAMPLES_FAILED
    assert response.test_results[0].actual_output == "16"


@pytest.mark.anyio("asyncio")
async def test_submit_grades_records_and_redacts(db_session, scripted_sandbox):
    question = await _seed(db_session)
    judge, _ = _judge(
        scripted_sandbox,
        {"5\n10": "15", "100\n200": "300", "0\n0": GuestRuntimeError("ValueError: bad input")},
    )

    response = await submit_code(
        CodeSubmitRequest(question_id=question.id, code="...", language="python"),
        db=db_session,
        user=USER,
        judge=judge,
    )

    assert response.status == "runtime_error"
    assert response.score == 67
    assert response.test_cases_passed == 2
    assert response.total_test_cases == 3
    assert response.test_results[0].input == "5\n10"
    assert response.test_results[1].input == HIDDEN_MARKER
    assert response.test_results[2].expected_output == HIDDEN_MARKER
    assert response.test_results[2].error == "ValueError: bad input"

    stored = await db_session.get(CodingSubmission, response.submission_id)
    assert stored.student_id == USER.id
    assert stored.error_message == "ValueError: bad input"
    assert stored.test_results[1]["input"] == HIDDEN_MARKER

    # Not a practice submission.
    assert await db_session.scalar(select(func.count()).select_from(PracticeCodingProgress)) == 0


@pytest.mark.anyio("asyncio")
async def test_practice_submission_updates_progress_and_history(db_session, scripted_sandbox):
    question = await _seed(db_session)
    judge, _ = _judge(scripted_sandbox, {"5\n10": "15", "100\n200": "300", "0\n0": "0"})
    payload = CodeSubmitRequest(question_id=question.id, code="...", language="python", is_practice=True)

    response = await submit_code(payload, db=db_session, user=USER, judge=judge)
    assert response.status == "accepted"
    assert response.score == 100

    overview = await practice_questions(db=db_session, user=USER)
    assert overview["questions"][0]["status"] == "solved"
    assert overview["stats"]["solved"] == 1

    history = await my_submissions(question.id, db=db_session, user=USER)
    assert [row.id for row in history] == [response.submission_id]


@pytest.mark.anyio("asyncio")
async def test_unsupported_language_is_rejected(db_session, scripted_sandbox):
    question = await _seed(db_session, languages=("python",))
    judge, executor = _judge(scripted_sandbox, {})

    with pytest.raises(HTTPException) as excinfo:
        await submit_code(
            CodeSubmitRequest(question_id=question.id, code="...", language="javascript"),
            db=db_session,
            user=USER,
            judge=judge,
        )

    assert excinfo.value.status_code == 400
    assert executor.calls == []


@pytest.mark.anyio("asyncio")
async def test_supported_but_unrunnable_language_is_a_client_error(db_session, scripted_sandbox):
    question = await _seed(db_session, languages=("python", "java"))
    judge, _ = _judge(scripted_sandbox, {})

    with pytest.raises(HTTPException) as excinfo:
        await submit_code(
            CodeSubmitRequest(question_id=question.id, code="class Main {}", language="java"),
            db=db_session,
            user=USER,
            judge=judge,
        )

    assert excinfo.value.status_code == 400
    assert "not runnable" in excinfo.value.detail


@pytest.mark.anyio("asyncio")
async def test_question_without_cases_cannot_be_run(db_session, scripted_sandbox):
    question = CodingQuestion(title="Empty", supported_languages=["python"], test_cases=[])
    db_session.add(question)
    await db_session.commit()
    judge, _ = _judge(scripted_sandbox, {})

    with pytest.raises(HTTPException) as excinfo:
        await run_code(
            CodeRunRequest(question_id=question.id, code="print(1)", language="python"),
            db=db_session,
            user=USER,
            judge=judge,
        )
    assert excinfo.value.status_code == 400


@pytest.mark.anyio("asyncio")
async def test_infrastructure_failure_records_nothing(db_session, scripted_sandbox):
    question = await _seed(db_session)
    judge, _ = _judge(scripted_sandbox, {"5\n10": SandboxInfrastructureError("docker down")})

    with pytest.raises(HTTPException) as excinfo:
        await submit_code(
            CodeSubmitRequest(question_id=question.id, code="...", language="python"),
            db=db_session,
            user=USER,
            judge=judge,
        )

    assert excinfo.value.status_code == 503
    assert await db_session.scalar(select(func.count()).select_from(CodingSubmission)) == 0


@pytest.mark.anyio("asyncio")
async def test_missing_question_is_404(db_session, scripted_sandbox):
    judge, _ = _judge(scripted_sandbox, {})

    with pytest.raises(HTTPException) as excinfo:
        await run_code(
            CodeRunRequest(question_id=999, code="print(1)", language="python"),
            db=db_session,
            user=USER,
            judge=judge,
        )
    assert excinfo.value.status_code == 404


@pytest.mark.anyio("asyncio")
async def test_submissions_are_rate_limited(db_session, scripted_sandbox, monkeypatch):
    question = await _seed(db_session)
    judge, _ = _judge(scripted_sandbox, {"5\n10": "15", "100\n200": "300", "0\n0": "0"})
    limiter = RateLimiter(limit=1, window_seconds=60)
    monkeypatch.setattr(coding_routes, "get_submission_rate_limiter", lambda: limiter)
    payload = CodeSubmitRequest(question_id=question.id, code="...", language="python")

    await submit_code(payload, db=db_session, user=USER, judge=judge)
    with pytest.raises(HTTPException) as excinfo:
        await submit_code(payload, db=db_session, user=USER, judge=judge)

    assert excinfo.value.status_code == 429
    assert isinstance(excinfo.value.__cause__, RateLimitExceeded)
    assert excinfo.value.__cause__.key == f"user:{USER.id}"


def test_blank_code_is_rejected_by_schema():
    with pytest.raises(ValueError):
        CodeRunRequest(question_id=1, code="   \n", language="python")
