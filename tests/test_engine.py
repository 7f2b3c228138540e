import json
from datetime import datetime, timedelta

import httpx
import pytest

from app.assessment import models
from app.assessment.engine import AssessmentEngine
from app.assessment.errors import (
    AccessDeniedError, ContentNotFoundError, ExecutionTransportError, PersistenceError
)
from tests.conftest import NOW, make_assignment, make_judge


@pytest.fixture
def engine(store, fake_judge):
    return AssessmentEngine(store, make_judge(fake_judge), clock=lambda: NOW)


def make_submission(content_type=models.ContentType.TEST, content_id="TEST_1", **overrides):
    data = {"content_type": content_type, "content_id": content_id, "student_id": "stu_1", "answers": {}}
    data.update(overrides)
    return models.Submission(**data)

# ==================== GRADING ====================

@pytest.mark.asyncio
async def test_grade_submission_persists_result(engine, store):
    result = await engine.grade_submission(make_submission(answers={"q1": "C"}))

    assert result.result_id is not None
    assert result.score == 40
    assert result.submitted_at == NOW
    assert store.results[("stu_1", models.ContentType.TEST, "TEST_1")] == result


@pytest.mark.asyncio
async def test_resubmission_keeps_single_result(engine, store):
    first = await engine.grade_submission(make_submission(answers={"q1": "A"}))
    second = await engine.grade_submission(make_submission(answers={"q1": "C", "q2": "paris"}))

    assert len(store.results) == 1
    assert second.result_id == first.result_id
    assert store.results[("stu_1", models.ContentType.TEST, "TEST_1")].score == 60


@pytest.mark.asyncio
async def test_submission_is_stamped_on_arrival(store, fake_judge):
    after_window = datetime(2024, 3, 23, 9, 0)
    engine = AssessmentEngine(store, make_judge(fake_judge), clock=lambda: after_window)
    backdated = make_submission(
        models.ContentType.ASSIGNMENT, "ASG_1", submitted_at=datetime(2024, 3, 12)
    )

    result = await engine.grade_submission(backdated)

    assert result.submitted_at == after_window
    assert result.late is True
    assert result.status == models.ResultStatus.OVERDUE


@pytest.mark.asyncio
async def test_unknown_content_raises_not_found(engine):
    with pytest.raises(ContentNotFoundError):
        await engine.grade_submission(make_submission(content_id="NOPE"))


@pytest.mark.asyncio
async def test_student_must_be_enrolled(engine):
    with pytest.raises(AccessDeniedError):
        await engine.grade_submission(make_submission(student_id="stranger"))


@pytest.mark.asyncio
async def test_private_content_requires_assignment(engine, store):
    store.add_content(make_assignment(visibility="private", assigned_to=["stu_2"]))
    sub = make_submission(models.ContentType.ASSIGNMENT, "ASG_1")

    with pytest.raises(AccessDeniedError):
        await engine.grade_submission(sub)

    ok = await engine.grade_submission(sub.model_copy(update={"student_id": "stu_2"}))
    assert ok.assignment_id == "ASG_1"


@pytest.mark.asyncio
async def test_persistence_errors_propagate(engine, store):
    store.fail_with = PersistenceError("database unavailable")
    with pytest.raises(PersistenceError):
        await engine.grade_submission(make_submission())


@pytest.mark.asyncio
async def test_grading_never_calls_the_judge(engine, store, fake_judge):
    answer = json.dumps({"code": "print('hello')", "output": "hello"})
    result = await engine.grade_submission(make_submission(answers={"q3": answer}))
    assert result.answers[2].is_correct is True
    assert fake_judge.requests == []


@pytest.mark.asyncio
async def test_get_result(engine):
    with pytest.raises(ContentNotFoundError):
        await engine.get_result("stu_1", models.ContentType.TEST, "TEST_1")

    await engine.grade_submission(make_submission(answers={"q2": "Paris"}))
    result = await engine.get_result("stu_1", models.ContentType.TEST, "TEST_1")
    assert result.score == 20

# ==================== LEADERBOARD ====================

@pytest.mark.asyncio
async def test_leaderboard_from_graded_results(engine, store):
    store.enroll("stu_3", "COURSE_1")
    store.names = {"stu_3": "Grace"}
    await engine.grade_submission(make_submission(answers={"q1": "C"}, student_name="Ada"))
    await engine.grade_submission(make_submission(student_id="stu_2", answers={"q1": "C"}, student_name="Linus"))
    await engine.grade_submission(make_submission(student_id="stu_3", answers={"q2": "paris"}))

    entries = await engine.get_leaderboard(models.ContentType.TEST, "TEST_1", models.TimeRange.WEEK)

    assert [(e.student_name, e.rank) for e in entries] == [("Ada", 1), ("Linus", 1), ("Grace", 3)]

# ==================== TIME ====================

@pytest.mark.asyncio
async def test_remaining_time(engine):
    assert await engine.get_remaining_time("TEST_1", NOW - timedelta(minutes=25)) == 300


@pytest.mark.asyncio
async def test_remaining_time_for_untimed_test(engine, store):
    store.add_content(models.ContentItem(
        content_id="TEST_9", content_type=models.ContentType.TEST, course_id="COURSE_1"
    ))
    with pytest.raises(ValueError):
        await engine.get_remaining_time("TEST_9", NOW)


@pytest.mark.asyncio
async def test_window_status(engine, store):
    assert await engine.get_window_status("ASG_1") == models.WindowStatus.ACTIVE

    store.add_content(make_assignment(content_id="ASG_2", time_window=None, due_date=NOW - timedelta(days=1)))
    assert await engine.get_window_status("ASG_2") == models.WindowStatus.OVERDUE


@pytest.mark.asyncio
async def test_assignment_progress(engine, store):
    assert await engine.get_assignment_progress("stu_1", "ASG_1") == (
        models.AssignmentStatus.PENDING, "6 days left"
    )

    store.add_content(make_assignment(content_id="ASG_2", time_window=None, due_date=NOW - timedelta(days=1)))
    assert await engine.get_assignment_progress("stu_1", "ASG_2") == (
        models.AssignmentStatus.OVERDUE, "Overdue"
    )

    await engine.grade_submission(make_submission(models.ContentType.ASSIGNMENT, "ASG_2"))
    status, _ = await engine.get_assignment_progress("stu_1", "ASG_2")
    assert status == models.AssignmentStatus.COMPLETED


async def no_sleep(seconds):
    return None


@pytest.mark.asyncio
async def test_expired_attempt_is_graded_with_recorded_answers(engine, store):
    answers = {}
    countdown = await engine.start_test_attempt("stu_1", "TEST_1", answers, student_name="Ada")
    answers["q1"] = "C"
    answers["q2"] = "Paris"

    state = await countdown.run(sleep=no_sleep)

    assert state == models.TimerState.AUTO_SUBMITTED
    assert len(store.results) == 1
    result = store.results[("stu_1", models.ContentType.TEST, "TEST_1")]
    assert result.time_spent == 1800
    assert result.score == 60
    assert result.student_name == "Ada"
    assert countdown.outcome == result


@pytest.mark.asyncio
async def test_manual_submit_skips_auto_grading(engine, store):
    countdown = await engine.start_test_attempt("stu_1", "TEST_1", {}, remaining=10)
    countdown.tick()
    assert countdown.submit() is True

    assert await countdown.run(sleep=no_sleep) == models.TimerState.SUBMITTED
    assert store.results == {}


@pytest.mark.asyncio
async def test_attempt_requires_access_and_time_limit(engine, store):
    with pytest.raises(AccessDeniedError):
        await engine.start_test_attempt("stranger", "TEST_1", {})

    store.add_content(models.ContentItem(
        content_id="TEST_9", content_type=models.ContentType.TEST, course_id="COURSE_1"
    ))
    with pytest.raises(ValueError):
        await engine.start_test_attempt("stu_1", "TEST_9", {})

# ==================== CODE ====================

@pytest.mark.asyncio
async def test_run_code(engine, fake_judge):
    status = await engine.run_code("print('hello')", "python")
    assert status.output == "hello\n"
    assert fake_judge.submissions[0]["language_id"] == 71


@pytest.mark.asyncio
async def test_run_tests(engine):
    report = await engine.run_tests("print('hello')", "python", [
        models.TestCase(input="", expected_output="hello"),
        models.TestCase(input="", expected_output="bye"),
    ])
    assert (report.passed, report.total, report.score) == (1, 2, 50)


@pytest.mark.asyncio
async def test_judge_transport_errors_propagate(store):
    def handler(request):
        raise httpx.ConnectTimeout("judge unreachable", request=request)

    engine = AssessmentEngine(store, make_judge(handler), clock=lambda: NOW)
    with pytest.raises(ExecutionTransportError):
        await engine.run_code("x", "python")
