from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Annotated, List, Optional, Dict, Any, Union, Literal
from datetime import datetime
from enum import Enum

from app.assessment.clock import utcnow, to_naive_utc

# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MCQ = "mcq"
    FILL = "fill"
    CODE = "code"

class ContentType(str, Enum):
    TEST = "test"
    ASSIGNMENT = "assignment"

class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"

class ResultStatus(str, Enum):
    COMPLETED = "completed"
    OVERDUE = "overdue"

class ExecutionState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    FINISHED = "finished"
    ERRORED = "errored"

class WindowStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    OVERDUE = "overdue"

class AssignmentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"

class TimerState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"

class TimeRange(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"

    @property
    def days(self) -> Optional[int]:
        return {"week": 7, "month": 30, "year": 365}.get(self.value)

# ==================== QUESTION MODELS ====================

class _QuestionBase(BaseModel):
    question_id: Optional[str] = None
    text: str
    points: int = Field(1, ge=0)
    correct_answer: str

    @field_validator("correct_answer", mode="before")
    @classmethod
    def coerce_correct_answer(cls, v):
        # Numeric answers stored in Mongo are compared as strings
        if isinstance(v, bool):
            raise ValueError("correct_answer must be a string")
        if isinstance(v, (int, float)):
            return str(v)
        return v

    def key(self, index: int) -> str:
        """Stable surrogate key: the question id, else its position in the set."""
        return self.question_id or str(index)


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["mcq"] = "mcq"
    options: List[str]

    @field_validator("correct_answer")
    @classmethod
    def canonical_index(cls, v: str) -> str:
        v = v.strip()
        # "02" and "2" name the same option; store the form answers compare against
        if v.isascii() and v.isdigit():
            return str(int(v))
        return v

    @model_validator(mode="after")
    def check_correct_index(self):
        v = self.correct_answer
        if not (v.isascii() and v.isdigit()) or int(v) >= len(self.options):
            raise ValueError(
                f"correct_answer {v!r} does not resolve into {len(self.options)} options"
            )
        return self

    @property
    def correct_index(self) -> int:
        return int(self.correct_answer)

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


class FillInBlankQuestion(_QuestionBase):
    type: Literal["fill"] = "fill"


class TestCase(BaseModel):
    input: str = ""
    expected_output: str


class CodeQuestion(_QuestionBase):
    type: Literal["code"] = "code"
    code_template: str = ""
    test_cases: List[TestCase] = []
    language: Optional[str] = None


Question = Annotated[
    Union[MultipleChoiceQuestion, FillInBlankQuestion, CodeQuestion],
    Field(discriminator="type"),
]

# ==================== CONTENT MODELS ====================

class TimeWindow(BaseModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_order(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class ContentItem(BaseModel):
    """A test or assignment with its question set, as the engine consumes it."""
    content_id: str
    content_type: ContentType
    course_id: str
    title: str = ""
    questions: List[Question] = []
    time_limit_minutes: Optional[int] = Field(None, gt=0)  # tests only
    time_window: Optional[TimeWindow] = None  # assignments only
    due_date: Optional[datetime] = None
    visibility: Visibility = Visibility.PUBLIC
    assigned_to: List[str] = []

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @property
    def max_points(self) -> int:
        return sum(q.points for q in self.questions)

    @property
    def deadline(self) -> Optional[datetime]:
        if self.time_window:
            return self.time_window.end_time
        return self.due_date

# ==================== SUBMISSION MODELS ====================

class Submission(BaseModel):
    content_id: str
    content_type: ContentType
    student_id: str
    answers: Dict[str, Any] = {}  # question key -> raw answer
    submitted_at: Optional[datetime] = None  # stamped on arrival by the engine
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    started_at: Optional[datetime] = None
    student_name: Optional[str] = None

    @field_validator("submitted_at", "started_at")
    @classmethod
    def normalize_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

# ==================== RESULT MODELS ====================

class QuestionResult(BaseModel):
    question_id: str
    answer: Any = None
    is_correct: bool
    points: int = Field(0, ge=0)
    feedback: str = ""
    correct_answer: Any = None
    flagged: bool = False  # grading failed for this question only


class Result(BaseModel):
    result_id: Optional[str] = None
    student_id: str
    student_name: str = ""
    course_id: str
    test_id: Optional[str] = None
    assignment_id: Optional[str] = None
    type: ContentType
    title: str = ""
    answers: List[QuestionResult] = []
    score: int = Field(..., ge=0, le=100)  # percentage
    max_score: int = Field(..., ge=0)
    submitted_at: datetime
    time_spent: Optional[int] = None  # seconds
    status: ResultStatus = ResultStatus.COMPLETED
    late: bool = False

    @field_validator("submitted_at")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_content_reference(self):
        if self.type == ContentType.TEST:
            if not self.test_id or self.assignment_id:
                raise ValueError("test results carry test_id only")
        elif not self.assignment_id or self.test_id:
            raise ValueError("assignment results carry assignment_id only")
        return self

    @property
    def content_id(self) -> str:
        return self.test_id if self.type == ContentType.TEST else self.assignment_id


def percentage(earned: int, total: int) -> int:
    """Integer percentage rounded half up; 0 when there is nothing to earn."""
    if total <= 0:
        return 0
    return (200 * earned + total) // (2 * total)

# ==================== LEADERBOARD MODELS ====================

class LeaderboardEntry(BaseModel):
    rank: int
    student_id: str
    student_name: str
    course_id: str
    test_id: Optional[str] = None
    assignment_id: Optional[str] = None
    score: int
    completed_at: datetime

# ==================== EXECUTION MODELS ====================

NO_OUTPUT = "No output"


def normalize_output(
    stdout: Optional[str],
    stderr: Optional[str],
    compile_output: Optional[str],
) -> str:
    """First non-empty of stdout, stderr, compile output; else the sentinel."""
    return stdout or stderr or compile_output or NO_OUTPUT


class ExecutionHandle(BaseModel):
    token: str
    language_id: int
    submitted_at: datetime = Field(default_factory=utcnow)


class ExecutionStatus(BaseModel):
    state: ExecutionState
    status_id: Optional[int] = None
    description: str = ""
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    time_ms: Optional[float] = None

    @property
    def is_pending(self) -> bool:
        return self.state in (ExecutionState.QUEUED, ExecutionState.RUNNING)

    @property
    def output(self) -> str:
        return normalize_output(self.stdout, self.stderr, self.compile_output)


class TestCaseReport(BaseModel):
    input: str
    expected_output: str
    actual_output: str
    passed: bool
    status: str


class CodeRunReport(BaseModel):
    output: str
    passed: int
    total: int
    score: int  # percentage of passing test cases
    execution_time_ms: float = 0.0
    test_results: List[TestCaseReport] = []

# ==================== REQUEST / RESPONSE MODELS ====================

class SubmissionCreate(BaseModel):
    content_type: ContentType
    content_id: str
    answers: Dict[str, Any] = {}
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    started_at: Optional[datetime] = None
    student_name: Optional[str] = None


class CodeRunRequest(BaseModel):
    source_code: str
    language: Union[str, int] = "python"
    stdin: str = ""


class CodeTestRequest(BaseModel):
    source_code: str
    language: Union[str, int] = "python"
    test_cases: List[TestCase] = Field(..., min_length=1)


class CodeRunResponse(BaseModel):
    output: str
    status: str
    state: ExecutionState
    execution_time_ms: Optional[float] = None
    answer: str  # JSON envelope to store as the code question's answer


class RemainingTimeResponse(BaseModel):
    test_id: str
    remaining_seconds: int
    running_out: bool


class WindowStatusResponse(BaseModel):
    assignment_id: str
    status: WindowStatus
    progress: AssignmentStatus  # for the calling student
    days_remaining: str


class LeaderboardResponse(BaseModel):
    content_type: ContentType
    content_id: Optional[str] = None
    time_range: TimeRange
    entries: List[LeaderboardEntry]
