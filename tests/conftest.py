"""Shared fixtures: an in-memory store and a fake Judge0 behind httpx.MockTransport."""

import base64
import json
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest

from app.assessment.judge_client import JudgeClient
from app.assessment.models import ContentItem, ContentType, Result

NOW = datetime(2024, 3, 15, 12, 0, 0)

STATUS_DESCRIPTIONS = {
    1: "In Queue",
    2: "Processing",
    3: "Accepted",
    4: "Wrong Answer",
    6: "Compilation Error",
    11: "Runtime Error (NZEC)",
    13: "Internal Error",
    14: "Exec Format Error",
}


def b64(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def unb64(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return base64.b64decode(text).decode("utf-8")

# ==================== FAKE JUDGE ====================

class FakeJudge0:
    """
    Minimal Judge0: POST /submissions, GET /submissions/{token},
    DELETE /submissions/{token}, GET /about.

    `statuses` is the sequence of status ids successive polls of one token
    report (the last one repeats). `stdout` is a string or a function of stdin.
    """

    def __init__(
        self,
        statuses: Optional[List[int]] = None,
        stdout: Union[str, Callable[[str], str], None] = "",
        stderr: Optional[str] = None,
        compile_output: Optional[str] = None,
        time: Optional[str] = "0.012",
    ):
        self.statuses = statuses or [3]
        self.stdout = stdout
        self.stderr = stderr
        self.compile_output = compile_output
        self.time = time
        self.submissions: List[dict] = []
        self.poll_counts: Dict[str, int] = {}
        self.deleted: List[str] = []
        self.requests: List[httpx.Request] = []

    def _submit(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        token = f"tok-{len(self.submissions) + 1}"
        self.submissions.append({
            "token": token,
            "source_code": unb64(body["source_code"]),
            "stdin": unb64(body.get("stdin")) or "",
            "language_id": body["language_id"],
            "params": dict(request.url.params),
        })
        self.poll_counts[token] = 0
        return httpx.Response(201, json={"token": token})

    def _poll(self, token: str) -> httpx.Response:
        if token not in self.poll_counts:
            return httpx.Response(404, json={"error": "not found"})
        index = min(self.poll_counts[token], len(self.statuses) - 1)
        self.poll_counts[token] += 1
        status_id = self.statuses[index]

        body = {
            "status": {"id": status_id, "description": STATUS_DESCRIPTIONS.get(status_id, "Accepted")},
            "stdout": None, "stderr": None, "compile_output": None, "time": None,
        }
        if status_id > 2:
            stdin = next(s["stdin"] for s in self.submissions if s["token"] == token)
            stdout = self.stdout(stdin) if callable(self.stdout) else self.stdout
            body.update({
                "stdout": b64(stdout),
                "stderr": b64(self.stderr),
                "compile_output": b64(self.compile_output),
                "time": self.time,
            })
        return httpx.Response(200, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/submissions":
            return self._submit(request)
        if request.method == "GET" and path == "/about":
            return httpx.Response(200, json={"version": "1.13.1"})
        if path.startswith("/submissions/"):
            token = path.rsplit("/", 1)[-1]
            if request.method == "GET":
                return self._poll(token)
            if request.method == "DELETE":
                self.deleted.append(token)
                return httpx.Response(200, json={"token": token})
        return httpx.Response(404)

    @property
    def total_polls(self) -> int:
        return sum(self.poll_counts.values())


def make_judge(handler, **kwargs) -> JudgeClient:
    options = {
        "base_url": "https://judge.test",
        "api_key": "test-key",
        "host": "judge.test",
        "poll_interval": 0,
        "max_poll_attempts": 3,
        "raise_on_timeout": False,
    }
    options.update(kwargs)
    return JudgeClient(transport=httpx.MockTransport(handler), **options)

# ==================== FAKE STORE ====================

class FakeStore:
    """In-memory stand-in for MongoAssessmentStore with the same async API."""

    def __init__(self):
        self.contents: Dict[tuple, ContentItem] = {}
        self.enrollments = set()  # (student_id, course_id)
        self.results: Dict[tuple, Result] = {}
        self.names: Dict[str, str] = {}
        self.upserts = 0
        self.fail_with: Optional[Exception] = None

    def add_content(self, content: ContentItem) -> ContentItem:
        self.contents[(content.content_type, content.content_id)] = content
        return content

    def enroll(self, student_id: str, course_id: str):
        self.enrollments.add((student_id, course_id))

    def add_result(self, result: Result) -> Result:
        self.results[(result.student_id, result.type, result.content_id)] = result
        return result

    async def get_question_set_for_content(self, content_type, content_id):
        return self.contents.get((content_type, content_id))

    async def is_student_enrolled(self, student_id, course_id):
        return (student_id, course_id) in self.enrollments

    async def get_results_by_student_and_content(self, student_id, content_type, content_id):
        return self.results.get((student_id, content_type, content_id))

    async def upsert_result(self, result: Result) -> Result:
        if self.fail_with is not None:
            raise self.fail_with
        self.upserts += 1
        key = (result.student_id, result.type, result.content_id)
        existing = self.results.get(key)
        result_id = existing.result_id if existing else f"RES_{len(self.results) + 1:012d}"
        stored = result.model_copy(update={"result_id": result_id})
        self.results[key] = stored
        return stored

    async def list_results(self, content_type, content_id=None, course_id=None):
        return [
            r for r in self.results.values()
            if r.type == content_type
            and (not content_id or r.content_id == content_id)
            and (not course_id or r.course_id == course_id)
        ]

    async def get_student_names(self, student_ids):
        return {sid: self.names[sid] for sid in student_ids if sid in self.names}

    async def create_indexes(self):
        return None

# ==================== CONTENT FIXTURES ====================

def make_test(**overrides) -> ContentItem:
    data = {
        "content_id": "TEST_1",
        "content_type": ContentType.TEST,
        "course_id": "COURSE_1",
        "title": "Week 1 Quiz",
        "time_limit_minutes": 30,
        "questions": [
            {"question_id": "q1", "type": "mcq", "text": "Pick C", "options": ["A", "B", "C", "D"],
             "correct_answer": "2", "points": 2},
            {"question_id": "q2", "type": "fill", "text": "Capital of France?", "correct_answer": "Paris"},
            {"question_id": "q3", "type": "code", "text": "Print hello", "correct_answer": "hello",
             "points": 2},
        ],
    }
    data.update(overrides)
    return ContentItem(**data)


def make_assignment(**overrides) -> ContentItem:
    data = {
        "content_id": "ASG_1",
        "content_type": ContentType.ASSIGNMENT,
        "course_id": "COURSE_1",
        "title": "Loops",
        "time_window": {
            "start_time": datetime(2024, 3, 10, 9, 0, 0),
            "end_time": datetime(2024, 3, 20, 23, 59, 0),
        },
        "questions": [
            {"type": "fill", "text": "Keyword for a loop?", "correct_answer": "for"},
            {"type": "mcq", "text": "2 + 2?", "options": ["3", "4"], "correct_answer": 1},
        ],
    }
    data.update(overrides)
    return ContentItem(**data)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.add_content(make_test())
    store.add_content(make_assignment())
    store.enroll("stu_1", "COURSE_1")
    store.enroll("stu_2", "COURSE_1")
    return store


@pytest.fixture
def fake_judge() -> FakeJudge0:
    return FakeJudge0(statuses=[1, 2, 3], stdout="hello\n")
