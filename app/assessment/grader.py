"""
Score aggregation: one Submission + its ContentItem -> one Result.

Pure and deterministic for a fixed `now`; persistence is the engine's job.
"""

from datetime import datetime
from typing import List, Optional

from app.assessment.clock import utcnow
from app.assessment.errors import QuestionValidationError
from app.assessment.models import (
    ContentItem, ContentType, QuestionResult, Result, ResultStatus, Submission, percentage
)
from app.assessment.validator import validate
from app.system.logger import get_logger

logger = get_logger("grader")


def calculate_score(answers: List[QuestionResult], max_score: int) -> int:
    """Percentage of available points earned, rounded half up."""
    earned = sum(a.points for a in answers)
    return percentage(earned, max_score)


def compute_time_spent(submission: Submission, content: ContentItem, submitted_at: datetime) -> Optional[int]:
    """Seconds spent: as reported, else derived from the start time. Never over the limit."""
    if submission.time_spent_seconds is not None:
        elapsed = submission.time_spent_seconds
    elif submission.started_at is not None:
        elapsed = max(0, int((submitted_at - submission.started_at).total_seconds()))
    else:
        return None

    if content.time_limit_minutes:
        # Auto-submitted tests can arrive a little after expiry
        elapsed = min(elapsed, content.time_limit_minutes * 60)
    return elapsed


def is_late(content: ContentItem, submitted_at: datetime) -> bool:
    if content.content_type != ContentType.ASSIGNMENT:
        return False
    deadline = content.deadline
    return deadline is not None and submitted_at > deadline


def _flagged(question_id: str, raw_answer, error: QuestionValidationError) -> QuestionResult:
    return QuestionResult(
        question_id=question_id,
        answer=raw_answer,
        is_correct=False,
        points=0,
        feedback=f"Answer could not be graded: {error}",
        flagged=True,
    )


def grade_answers(submission: Submission, content: ContentItem) -> List[QuestionResult]:
    results = []
    for index, question in enumerate(content.questions):
        key = question.key(index)
        raw_answer = submission.answers.get(key)
        try:
            results.append(validate(question, raw_answer, key))
        except QuestionValidationError as e:
            logger.warning(
                f"Question {key} of {content.content_type.value} {content.content_id} "
                f"flagged for student {submission.student_id}: {e}"
            )
            results.append(_flagged(key, raw_answer, e))
    return results


def grade(submission: Submission, content: ContentItem, now: Optional[datetime] = None) -> Result:
    """
    Grade a submission against its content item.

    Code answers are checked against the output they already carry; nothing
    is executed here. A question whose answer cannot be validated scores zero
    and is flagged instead of failing the whole submission.
    """
    if submission.content_id != content.content_id or submission.content_type != content.content_type:
        raise ValueError(
            f"Submission for {submission.content_type.value} {submission.content_id} "
            f"graded against {content.content_type.value} {content.content_id}"
        )

    submitted_at = submission.submitted_at or now or utcnow()
    answers = grade_answers(submission, content)
    max_score = content.max_points
    late = is_late(content, submitted_at)

    content_ref = (
        {"test_id": content.content_id}
        if content.content_type == ContentType.TEST
        else {"assignment_id": content.content_id}
    )

    return Result(
        student_id=submission.student_id,
        student_name=submission.student_name or "",
        course_id=content.course_id,
        type=content.content_type,
        title=content.title,
        answers=answers,
        score=calculate_score(answers, max_score),
        max_score=max_score,
        submitted_at=submitted_at,
        time_spent=compute_time_spent(submission, content, submitted_at),
        status=ResultStatus.OVERDUE if late else ResultStatus.COMPLETED,
        late=late,
        **content_ref,
    )
