"""
Leaderboard ranking over persisted results.

filter -> time range -> latest result per (student, content) -> sort ->
competition ranks (equal scores share a rank, the next score skips: 1,1,3,4).
"""

import csv
import io
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from app.assessment.models import ContentType, LeaderboardEntry, Result, TimeRange

UNKNOWN_STUDENT = "Unknown Student"

CSV_COLUMNS = [
    "rank", "student_id", "student_name", "course_id",
    "test_id", "assignment_id", "score", "completed_at",
]


class LeaderboardFilter(BaseModel):
    content_type: ContentType
    content_id: Optional[str] = None
    course_id: Optional[str] = None
    time_range: TimeRange = TimeRange.ALL


def _matches(result: Result, filter: LeaderboardFilter) -> bool:
    if result.type != filter.content_type:
        return False
    if filter.content_id and result.content_id != filter.content_id:
        return False
    if filter.course_id and result.course_id != filter.course_id:
        return False
    return True


def filter_by_time_range(results: Iterable[Result], time_range: TimeRange, now: datetime) -> List[Result]:
    """Keep results submitted within the range, measured back from `now` (inclusive)."""
    days = time_range.days
    if days is None:
        return list(results)
    cutoff = now - timedelta(days=days)
    return [r for r in results if r.submitted_at >= cutoff]


def latest_per_student(results: Iterable[Result]) -> List[Result]:
    """One result per (student, content item): the most recently submitted."""
    latest: Dict[Tuple[str, str], Result] = {}
    for result in results:
        key = (result.student_id, result.content_id)
        current = latest.get(key)
        if current is None or result.submitted_at > current.submitted_at:
            latest[key] = result
    return list(latest.values())


def assign_ranks(scores: List[int]) -> List[int]:
    """Competition ranks for scores already sorted descending."""
    ranks = []
    for index, score in enumerate(scores):
        if index > 0 and score == scores[index - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(index + 1)
    return ranks


def rank_results(
    results: Iterable[Result],
    filter: LeaderboardFilter,
    now: datetime,
    student_names: Optional[Dict[str, str]] = None,
    limit: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """
    Build an ordered leaderboard from raw results.

    Zero scores are ranked like any other. Within a tie the earlier
    submission is listed first, then student id, so output is stable.
    """
    student_names = student_names or {}

    candidates = [r for r in results if _matches(r, filter)]
    candidates = filter_by_time_range(candidates, filter.time_range, now)
    candidates = latest_per_student(candidates)
    candidates.sort(key=lambda r: (-r.score, r.submitted_at, r.student_id))

    ranks = assign_ranks([r.score for r in candidates])

    entries = [
        LeaderboardEntry(
            rank=rank,
            student_id=r.student_id,
            student_name=r.student_name or student_names.get(r.student_id) or UNKNOWN_STUDENT,
            course_id=r.course_id,
            test_id=r.test_id,
            assignment_id=r.assignment_id,
            score=r.score,
            completed_at=r.submitted_at,
        )
        for rank, r in zip(ranks, candidates)
    ]

    if limit is not None:
        entries = entries[:limit]
    return entries


def leaderboard_to_csv(entries: Iterable[LeaderboardEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for entry in entries:
        row = entry.model_dump()
        row["completed_at"] = entry.completed_at.isoformat()
        row["test_id"] = entry.test_id or ""
        row["assignment_id"] = entry.assignment_id or ""
        writer.writerow(row)
    return buffer.getvalue()
