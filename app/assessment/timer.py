"""
Countdown for timed tests and status for windowed assignments.

Tests tick once per second and auto-submit at zero. Assignments never tick:
their status is a pure function of the window and the current time, and it is
advisory only (late work is still graded).
"""

import asyncio
import inspect
import math
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from app.assessment import config
from app.assessment.models import AssignmentStatus, TimerState, WindowStatus
from app.system.logger import get_logger

logger = get_logger("timer")

# ==================== TIMED TESTS ====================

class TestTimer:
    """
    Countdown state machine for one attempt at a timed test.

    not_started -> running -> submitted (manual) | auto_submitted (expiry)

    on_expire(time_spent) is called exactly once, when the countdown reaches
    zero while running. It may be a coroutine function; run() awaits it.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        time_limit_minutes: int,
        on_expire: Optional[Callable[[int], Any]] = None,
    ):
        if time_limit_minutes <= 0:
            raise ValueError("time_limit_minutes must be positive")
        self.time_limit_minutes = time_limit_minutes
        self.total_seconds = time_limit_minutes * 60
        self.remaining = self.total_seconds
        self.state = TimerState.NOT_STARTED
        self.on_expire = on_expire
        self._expiry: Optional[Awaitable] = None
        self.outcome: Any = None  # whatever on_expire produced

    @property
    def time_spent(self) -> int:
        return self.total_seconds - self.remaining

    @property
    def is_finished(self) -> bool:
        return self.state in (TimerState.SUBMITTED, TimerState.AUTO_SUBMITTED)

    def start(self, remaining: Optional[int] = None) -> None:
        """Start the countdown, optionally resuming with `remaining` seconds left."""
        if self.state != TimerState.NOT_STARTED:
            raise RuntimeError(f"Timer already {self.state.value}")
        if remaining is not None:
            self.remaining = max(0, min(int(remaining), self.total_seconds))
        self.state = TimerState.RUNNING
        if self.remaining == 0:
            self._expire()

    def tick(self) -> bool:
        """Advance one second. Returns True when this tick ended the test."""
        if self.state != TimerState.RUNNING:
            return False
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            self._expire()
            return True
        return False

    def submit(self) -> bool:
        """Manual submission. Returns False if the attempt already ended."""
        if self.state != TimerState.RUNNING:
            return False
        self.state = TimerState.SUBMITTED
        logger.info(f"Test submitted manually after {self.time_spent}s")
        return True

    def _expire(self) -> None:
        if self.state != TimerState.RUNNING:
            return
        self.state = TimerState.AUTO_SUBMITTED
        logger.info(f"Time limit reached, auto-submitting after {self.time_spent}s")
        if self.on_expire is not None:
            outcome = self.on_expire(self.time_spent)
            if inspect.isawaitable(outcome):
                self._expiry = outcome
            else:
                self.outcome = outcome

    async def run(self, sleep: Callable[[float], Awaitable] = asyncio.sleep) -> TimerState:
        """Tick once per second until the attempt ends either way."""
        if self.state == TimerState.NOT_STARTED:
            self.start()
        while self.state == TimerState.RUNNING:
            await sleep(1)
            self.tick()
        if self._expiry is not None:
            expiry, self._expiry = self._expiry, None
            self.outcome = await expiry
        return self.state


def remaining_seconds(time_limit_minutes: int, started_at: datetime, now: datetime) -> int:
    """Seconds left on a test started at `started_at`, never negative."""
    total = time_limit_minutes * 60
    elapsed = max(0, int((now - started_at).total_seconds()))
    return max(0, total - elapsed)


def is_running_out(remaining: int, threshold: int = config.LOW_TIME_WARNING_SECONDS) -> bool:
    """True inside the low-time warning band (under five minutes by default)."""
    return 0 < remaining < threshold

# ==================== WINDOWED ASSIGNMENTS ====================

def window_status(start: Optional[datetime], end: Optional[datetime], now: datetime) -> WindowStatus:
    """Upcoming before start, active from start to end inclusive, overdue after."""
    if start is not None and now < start:
        return WindowStatus.UPCOMING
    if end is not None and now > end:
        return WindowStatus.OVERDUE
    return WindowStatus.ACTIVE


def assignment_status(has_result: bool, deadline: Optional[datetime], now: datetime) -> AssignmentStatus:
    if has_result:
        return AssignmentStatus.COMPLETED
    if deadline is not None and now > deadline:
        return AssignmentStatus.OVERDUE
    return AssignmentStatus.PENDING


def days_remaining_label(due: Optional[datetime], now: datetime) -> str:
    if due is None:
        return "No deadline"
    days = math.ceil((due - now).total_seconds() / 86400)
    if days < 0:
        return "Overdue"
    if days == 0:
        return "Due today"
    if days == 1:
        return "1 day left"
    return f"{days} days left"
