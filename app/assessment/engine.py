"""
Assessment engine: the boundary the HTTP layer talks to.

Wires the store, the judge and the clock around the pure grading,
timer and ranking functions.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from app.assessment import config
from app.assessment.clock import Clock, to_naive_utc, utcnow
from app.assessment.errors import AccessDeniedError, ContentNotFoundError
from app.assessment.grader import grade
from app.assessment.judge_client import JudgeClient
from app.assessment.leaderboard import LeaderboardFilter, rank_results
from app.assessment.models import (
    AssignmentStatus, CodeRunReport, ContentItem, ContentType, ExecutionStatus, LeaderboardEntry,
    Result, Submission, TestCase, TimeRange, Visibility, WindowStatus
)
from app.assessment.timer import (
    TestTimer, assignment_status, days_remaining_label, remaining_seconds, window_status
)
from app.system.logger import get_logger

logger = get_logger("engine")


class AssessmentEngine:

    def __init__(self, store, judge: JudgeClient, clock: Clock = utcnow):
        self.store = store
        self.judge = judge
        self.clock = clock

    # ==================== CONTENT ACCESS ====================

    async def get_content(self, content_type: ContentType, content_id: str) -> ContentItem:
        content = await self.store.get_question_set_for_content(content_type, content_id)
        if content is None:
            raise ContentNotFoundError(f"{content_type.value.capitalize()} {content_id} not found")
        return content

    async def check_access(self, student_id: str, content: ContentItem):
        """Enrolled in the course, and on the assignee list for private content"""
        if not await self.store.is_student_enrolled(student_id, content.course_id):
            raise AccessDeniedError("Not enrolled in this course. Please enroll first.")
        if content.visibility == Visibility.PRIVATE and student_id not in content.assigned_to:
            raise AccessDeniedError(f"This {content.content_type.value} is not assigned to you")

    async def get_accessible_content(
        self,
        student_id: str,
        content_type: ContentType,
        content_id: str
    ) -> ContentItem:
        content = await self.get_content(content_type, content_id)
        await self.check_access(student_id, content)
        return content

    # ==================== GRADING ====================

    async def grade_submission(self, submission: Submission) -> Result:
        """
        Grade and persist. Resubmitting replaces the earlier result, so a
        failed attempt can simply be retried.

        The submission is stamped with the engine clock on arrival; lateness
        and leaderboard ordering never depend on a client timestamp.
        """
        submission = submission.model_copy(update={"submitted_at": self.clock()})
        content = await self.get_accessible_content(
            submission.student_id, submission.content_type, submission.content_id
        )

        result = grade(submission, content)
        if result.late:
            logger.info(
                f"Late submission from {submission.student_id} "
                f"on assignment {content.content_id}, accepted as overdue"
            )

        return await self.store.upsert_result(result)

    async def get_result(self, student_id: str, content_type: ContentType, content_id: str) -> Result:
        result = await self.store.get_results_by_student_and_content(student_id, content_type, content_id)
        if result is None:
            raise ContentNotFoundError(f"No result for {content_type.value} {content_id}")
        return result

    # ==================== LEADERBOARD ====================

    async def get_leaderboard(
        self,
        content_type: ContentType,
        content_id: Optional[str] = None,
        time_range: TimeRange = TimeRange.ALL,
        course_id: Optional[str] = None,
        limit: Optional[int] = config.LEADERBOARD_DEFAULT_LIMIT
    ) -> List[LeaderboardEntry]:
        results = await self.store.list_results(content_type, content_id, course_id)

        missing = sorted({r.student_id for r in results if not r.student_name})
        names = await self.store.get_student_names(missing) if missing else {}

        entries = rank_results(
            results,
            LeaderboardFilter(
                content_type=content_type,
                content_id=content_id,
                course_id=course_id,
                time_range=time_range,
            ),
            now=self.clock(),
            student_names=names,
            limit=limit,
        )
        logger.info(
            f"Leaderboard for {content_type.value} {content_id or '*'} ({time_range.value}): "
            f"{len(entries)} of {len(results)} results"
        )
        return entries

    # ==================== TIME ====================

    async def get_remaining_time(self, test_id: str, started_at: datetime) -> int:
        content = await self.get_content(ContentType.TEST, test_id)
        if not content.time_limit_minutes:
            raise ValueError(f"Test {test_id} has no time limit")
        return remaining_seconds(content.time_limit_minutes, to_naive_utc(started_at), self.clock())

    async def get_window_status(self, assignment_id: str) -> WindowStatus:
        content = await self.get_content(ContentType.ASSIGNMENT, assignment_id)
        if content.time_window:
            start, end = content.time_window.start_time, content.time_window.end_time
        else:
            start, end = None, content.due_date
        return window_status(start, end, self.clock())

    async def get_assignment_progress(self, student_id: str, assignment_id: str) -> Tuple[AssignmentStatus, str]:
        """Per-student status and the "N days left" label for an assignment"""
        content = await self.get_content(ContentType.ASSIGNMENT, assignment_id)
        result = await self.store.get_results_by_student_and_content(
            student_id, ContentType.ASSIGNMENT, assignment_id
        )
        now = self.clock()
        return (
            assignment_status(result is not None, content.deadline, now),
            days_remaining_label(content.deadline, now),
        )

    async def start_test_attempt(
        self,
        student_id: str,
        test_id: str,
        answers: Dict[str, Any],
        student_name: Optional[str] = None,
        remaining: Optional[int] = None
    ) -> TestTimer:
        """
        Start the countdown for one attempt at a timed test.

        `answers` is the live answer sheet; the caller keeps writing into it.
        When time runs out, whatever it holds at that moment is graded and
        saved, and the Result is left on `timer.outcome` once `run()` returns.
        """
        content = await self.get_accessible_content(student_id, ContentType.TEST, test_id)
        if not content.time_limit_minutes:
            raise ValueError(f"Test {test_id} has no time limit")

        async def auto_submit(time_spent: int) -> Result:
            logger.info(f"Auto-submitting test {test_id} for {student_id} after {time_spent}s")
            return await self.grade_submission(Submission(
                content_id=test_id,
                content_type=ContentType.TEST,
                student_id=student_id,
                student_name=student_name,
                answers=dict(answers),
                time_spent_seconds=time_spent,
            ))

        timer = TestTimer(content.time_limit_minutes, on_expire=auto_submit)
        timer.start(remaining)
        return timer

    # ==================== CODE EXECUTION ====================

    async def run_code(
        self,
        source_code: str,
        language: Union[str, int],
        stdin: str = ""
    ) -> ExecutionStatus:
        """Run once in the judge; the editor stores the output with the answer"""
        return await self.judge.execute(source_code, language, stdin)

    async def run_tests(
        self,
        source_code: str,
        language: Union[str, int],
        test_cases: List[TestCase]
    ) -> CodeRunReport:
        return await self.judge.run_test_cases(source_code, language, test_cases)
