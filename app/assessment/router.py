from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import Response
from datetime import datetime
from typing import Optional

from app.assessment import config
from app.assessment.dependencies import get_engine, get_current_user_id
from app.assessment.engine import AssessmentEngine
from app.assessment.errors import (
    AccessDeniedError, AssessmentError, ContentNotFoundError, ExecutionTimeoutError,
    ExecutionTransportError, PersistenceError
)
from app.assessment.judge_client import build_answer_envelope
from app.assessment.leaderboard import leaderboard_to_csv
from app.assessment.models import (
    CodeRunReport, CodeRunRequest, CodeRunResponse, CodeTestRequest, ContentType,
    LeaderboardResponse, RemainingTimeResponse, Result, Submission, SubmissionCreate,
    TimeRange, WindowStatusResponse
)
from app.assessment.timer import is_running_out
from app.system.logger import get_logger

logger = get_logger("router")

router = APIRouter(prefix="/assessment", tags=["Assessment"])

ERROR_STATUS = [
    (ContentNotFoundError, 404),
    (AccessDeniedError, 403),
    (ExecutionTimeoutError, 504),
    (ExecutionTransportError, 502),
    (PersistenceError, 503),
]


def to_http_exception(error: AssessmentError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            break
    else:
        status_code = 500

    if status_code >= 500:
        logger.error(f"{type(error).__name__}: {error}")
    return HTTPException(status_code=status_code, detail=str(error))

# ==================== SUBMISSIONS ====================

@router.post("/submissions", response_model=Result)
async def submit_answers(
    payload: SubmissionCreate,
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    """
    Grade a test or assignment submission and save the result.
    Submitting again replaces the previous result for this content.
    """
    submission = Submission(student_id=user_id, **payload.model_dump())
    try:
        return await engine.grade_submission(submission)
    except AssessmentError as e:
        raise to_http_exception(e) from e


@router.get("/results/{content_type}/{content_id}", response_model=Result)
async def get_my_result(
    content_type: ContentType,
    content_id: str,
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    """Get the caller's result for a test or assignment"""
    try:
        return await engine.get_result(user_id, content_type, content_id)
    except AssessmentError as e:
        raise to_http_exception(e) from e

# ==================== LEADERBOARD ====================

@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    content_type: ContentType = Query(ContentType.TEST),
    content_id: Optional[str] = Query(None),
    course_id: Optional[str] = Query(None),
    time_range: TimeRange = Query(TimeRange.ALL),
    limit: int = Query(config.LEADERBOARD_DEFAULT_LIMIT, ge=1, le=500),
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    try:
        entries = await engine.get_leaderboard(
            content_type, content_id, time_range, course_id=course_id, limit=limit
        )
    except AssessmentError as e:
        raise to_http_exception(e) from e

    return LeaderboardResponse(
        content_type=content_type,
        content_id=content_id,
        time_range=time_range,
        entries=entries
    )


@router.get("/leaderboard/export")
async def export_leaderboard(
    content_type: ContentType = Query(ContentType.TEST),
    content_id: Optional[str] = Query(None),
    course_id: Optional[str] = Query(None),
    time_range: TimeRange = Query(TimeRange.ALL),
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    """Full leaderboard as CSV"""
    try:
        entries = await engine.get_leaderboard(
            content_type, content_id, time_range, course_id=course_id, limit=None
        )
    except AssessmentError as e:
        raise to_http_exception(e) from e

    filename = f"leaderboard_{content_type.value}_{time_range.value}.csv"
    return Response(
        content=leaderboard_to_csv(entries),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )

# ==================== TIMERS ====================

@router.get("/tests/{test_id}/remaining-time", response_model=RemainingTimeResponse)
async def get_remaining_time(
    test_id: str,
    started_at: datetime = Query(...),
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    try:
        remaining = await engine.get_remaining_time(test_id, started_at)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AssessmentError as e:
        raise to_http_exception(e) from e

    return RemainingTimeResponse(
        test_id=test_id,
        remaining_seconds=remaining,
        running_out=is_running_out(remaining)
    )


@router.get("/assignments/{assignment_id}/window", response_model=WindowStatusResponse)
async def get_assignment_window(
    assignment_id: str,
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    try:
        status = await engine.get_window_status(assignment_id)
        progress, days_remaining = await engine.get_assignment_progress(user_id, assignment_id)
    except AssessmentError as e:
        raise to_http_exception(e) from e
    return WindowStatusResponse(
        assignment_id=assignment_id,
        status=status,
        progress=progress,
        days_remaining=days_remaining
    )

# ==================== CODE EXECUTION ====================

@router.post("/code/run", response_model=CodeRunResponse)
async def run_code(
    request: CodeRunRequest,
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    """
    Run code once in the judge. The returned `answer` is what the client
    stores for a code question; grading checks its output without re-running.
    """
    try:
        status = await engine.run_code(request.source_code, request.language, request.stdin)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AssessmentError as e:
        raise to_http_exception(e) from e

    return CodeRunResponse(
        output=status.output,
        status=status.description or status.state.value,
        state=status.state,
        execution_time_ms=status.time_ms,
        answer=build_answer_envelope(request.source_code, status)
    )


@router.post("/code/test", response_model=CodeRunReport)
async def run_code_tests(
    request: CodeTestRequest,
    engine: AssessmentEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id)
):
    """Run code against each test case"""
    try:
        return await engine.run_tests(request.source_code, request.language, request.test_cases)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AssessmentError as e:
        raise to_http_exception(e) from e
