"""
Judge0 execution client.

Submission is a single POST that returns a token; completion is observed by
polling GET /submissions/{token}. Handles live only as long as the polling
loop that owns them, and are discarded when a loop exits without a terminal
status.
"""

import asyncio
import base64
import binascii
import json
import re
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Union

import httpx

from app.assessment import config
from app.assessment.errors import ExecutionTimeoutError, ExecutionTransportError
from app.assessment.models import (
    CodeRunReport, ExecutionHandle, ExecutionState, ExecutionStatus,
    NO_OUTPUT, TestCase, TestCaseReport, normalize_output, percentage
)
from app.system.logger import get_logger

logger = get_logger("judge")

__all__ = [
    "JudgeClient", "LANGUAGE_IDS", "build_answer_envelope", "normalize_output",
    "parse_status", "prepare_source", "resolve_language_id",
]

LANGUAGE_IDS = {
    "python": 71,
    "javascript": 63,
    "java": 62,
    "cpp": 54,
    "c": 50,
}

# Judge0 status ids
PENDING_STATES = {1: ExecutionState.QUEUED, 2: ExecutionState.RUNNING}
ERRORED_STATUS_IDS = {13, 14}  # Internal Error, Exec Format Error

POLL_FIELDS = "stdout,stderr,compile_output,status,time"

# ==================== HELPERS ====================

def resolve_language_id(language: Union[str, int]) -> int:
    if isinstance(language, int) and not isinstance(language, bool):
        if language <= 0:
            raise ValueError(f"Invalid language id: {language}")
        return language
    key = str(language).strip().lower()
    if key.isdigit():
        return resolve_language_id(int(key))
    if key not in LANGUAGE_IDS:
        raise ValueError(f"Language must be one of: {sorted(LANGUAGE_IDS)}")
    return LANGUAGE_IDS[key]


def prepare_source(source_code: str, language_id: int) -> str:
    """Judge0 compiles Java as Main.java, so the public class has to be Main."""
    if language_id != LANGUAGE_IDS["java"]:
        return source_code
    match = re.search(r"public\s+class\s+(\w+)", source_code)
    if match and match.group(1) != "Main":
        return re.sub(r"public\s+class\s+\w+", "public class Main", source_code, count=1)
    return source_code


def build_answer_envelope(source_code: str, status: ExecutionStatus) -> str:
    """The JSON answer a code question stores: what ran and what it printed."""
    return json.dumps({"code": source_code, "output": status.output})


def _b64encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _b64decode(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        raise ExecutionTransportError(f"Judge returned malformed base64 output: {e}") from e


def parse_status(data: dict) -> ExecutionStatus:
    """Build an ExecutionStatus from a (base64 decoded) Judge0 submission body."""
    status = data.get("status")
    if not isinstance(status, dict) or not isinstance(status.get("id"), int):
        raise ExecutionTransportError("Judge response is missing a status id")

    status_id = status["id"]
    if status_id in PENDING_STATES:
        state = PENDING_STATES[status_id]
    elif status_id in ERRORED_STATUS_IDS:
        state = ExecutionState.ERRORED
    else:
        state = ExecutionState.FINISHED

    time_ms = None
    if data.get("time") is not None:
        try:
            time_ms = float(data["time"]) * 1000
        except (TypeError, ValueError):
            time_ms = None

    return ExecutionStatus(
        state=state,
        status_id=status_id,
        description=status.get("description") or "",
        stdout=data.get("stdout"),
        stderr=data.get("stderr"),
        compile_output=data.get("compile_output"),
        time_ms=time_ms,
    )


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise ExecutionTransportError("Judge returned a non-JSON body", response.status_code) from e
    if not isinstance(data, dict):
        raise ExecutionTransportError("Judge returned an unexpected body", response.status_code)
    return data


class _TrackedExecution:
    def __init__(self, handle: ExecutionHandle):
        self.handle = handle
        self.last_status: Optional[ExecutionStatus] = None

    @property
    def settled(self) -> bool:
        return self.last_status is not None and not self.last_status.is_pending

# ==================== CLIENT ====================

class JudgeClient:
    """Adapter to a Judge0 compatible sandbox: submit, poll, run to completion."""

    def __init__(
        self,
        base_url: str = config.JUDGE_API_URL,
        api_key: str = config.JUDGE_API_KEY,
        host: str = config.JUDGE_HOST,
        poll_interval: float = config.JUDGE_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = config.JUDGE_MAX_POLL_ATTEMPTS,
        raise_on_timeout: bool = config.JUDGE_RAISE_ON_TIMEOUT,
        request_timeout: float = config.JUDGE_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.host = host
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.raise_on_timeout = raise_on_timeout
        self.request_timeout = request_timeout
        self.transport = transport
        self._in_flight: Dict[str, ExecutionHandle] = {}

    @property
    def in_flight(self) -> List[str]:
        """Tokens currently owned by a polling loop."""
        return list(self._in_flight)

    def _headers(self) -> dict:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["x-rapidapi-key"] = self.api_key
        if self.host:
            headers["x-rapidapi-host"] = self.host
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.request_timeout,
            transport=self.transport,
        )

    # ---------- raw protocol ----------

    async def _submit(
        self,
        client: httpx.AsyncClient,
        source_code: str,
        language_id: int,
        stdin: str = "",
    ) -> ExecutionHandle:
        try:
            response = await client.post(
                "/submissions",
                params={"base64_encoded": "true", "wait": "false"},
                json={
                    "source_code": _b64encode(source_code),
                    "language_id": language_id,
                    "stdin": _b64encode(stdin or ""),
                },
            )
        except httpx.HTTPError as e:
            raise ExecutionTransportError(f"Failed to submit code to judge: {e}") from e

        if not response.is_success:
            raise ExecutionTransportError("Judge rejected the submission", response.status_code)

        token = _json_body(response).get("token")
        if not token or not isinstance(token, str):
            raise ExecutionTransportError("Judge did not return a submission token", response.status_code)

        logger.info(f"Submitted code to judge (language {language_id}), token {token}")
        return ExecutionHandle(token=token, language_id=language_id)

    async def _poll(self, client: httpx.AsyncClient, handle: ExecutionHandle) -> ExecutionStatus:
        try:
            response = await client.get(
                f"/submissions/{handle.token}",
                params={"base64_encoded": "true", "fields": POLL_FIELDS},
            )
        except httpx.HTTPError as e:
            raise ExecutionTransportError(f"Failed to get submission result from judge: {e}") from e

        if not response.is_success:
            raise ExecutionTransportError("Judge status request failed", response.status_code)

        data = _json_body(response)
        for field in ("stdout", "stderr", "compile_output"):
            data[field] = _b64decode(data.get(field))

        status = parse_status(data)
        logger.debug(f"Judge token {handle.token}: {status.state.value} ({status.description})")
        return status

    async def _discard(self, client: httpx.AsyncClient, handle: ExecutionHandle) -> None:
        """Best-effort delete of a submission nobody is waiting for any more."""
        try:
            response = await client.delete(f"/submissions/{handle.token}")
        except httpx.HTTPError as e:
            logger.warning(f"Could not discard judge token {handle.token}: {e}")
            return
        if not response.is_success:
            logger.warning(
                f"Judge refused to discard token {handle.token} (HTTP {response.status_code})"
            )

    @asynccontextmanager
    async def track(self, client: httpx.AsyncClient, handle: ExecutionHandle):
        """
        Own a handle for the duration of a polling loop.

        Whatever way the block exits (result, soft timeout, exception,
        cancellation), a handle that never reached a terminal status is
        logged and discarded.
        """
        tracked = _TrackedExecution(handle)
        self._in_flight[handle.token] = handle
        try:
            yield tracked
        finally:
            self._in_flight.pop(handle.token, None)
            if not tracked.settled:
                last = tracked.last_status.state.value if tracked.last_status else "unknown"
                logger.warning(f"Abandoning judge token {handle.token} (last state: {last})")
                await self._discard(client, handle)

    # ---------- public operations ----------

    async def ping(self) -> bool:
        """True when the judge answers GET /about."""
        try:
            async with self._client() as client:
                response = await client.get("/about", timeout=5.0)
        except httpx.HTTPError as e:
            logger.warning(f"Judge health check failed: {e}")
            return False
        return response.status_code == 200

    async def submit(self, source_code: str, language_id: int, stdin: str = "") -> ExecutionHandle:
        async with self._client() as client:
            return await self._submit(client, source_code, language_id, stdin)

    async def poll(self, handle: ExecutionHandle) -> ExecutionStatus:
        async with self._client() as client:
            return await self._poll(client, handle)

    async def run_to_completion(
        self,
        source_code: str,
        language_id: int,
        stdin: str = "",
    ) -> ExecutionStatus:
        """
        Submit and poll until the judge reports a terminal status.

        Polls at most max_poll_attempts times, poll_interval seconds apart.
        If the budget runs out while still queued/running, either raises
        ExecutionTimeoutError (raise_on_timeout) or returns the last status.
        """
        async with self._client() as client:
            handle = await self._submit(client, source_code, language_id, stdin)

            async with self.track(client, handle) as tracked:
                for attempt in range(1, self.max_poll_attempts + 1):
                    tracked.last_status = await self._poll(client, handle)
                    if not tracked.last_status.is_pending:
                        return tracked.last_status
                    if attempt < self.max_poll_attempts:
                        await asyncio.sleep(self.poll_interval)

                last_status = tracked.last_status
                if self.raise_on_timeout:
                    raise ExecutionTimeoutError(
                        f"Judge token {handle.token} still {last_status.state.value} "
                        f"after {self.max_poll_attempts} polls",
                        handle=handle,
                        last_status=last_status,
                    )

                logger.warning(
                    f"Poll budget exhausted for token {handle.token}; "
                    f"using last status ({last_status.state.value})"
                )
                return last_status

    async def execute(self, source_code: str, language: Union[str, int], stdin: str = "") -> ExecutionStatus:
        """Run source in the named language (or judge language id)."""
        language_id = resolve_language_id(language)
        return await self.run_to_completion(prepare_source(source_code, language_id), language_id, stdin)

    async def run_test_cases(
        self,
        source_code: str,
        language: Union[str, int],
        test_cases: List[TestCase],
    ) -> CodeRunReport:
        """
        Run the code once per test case, feeding the case input as stdin.

        Cases run one after another; the judge is shared with other tenants.
        """
        language_id = resolve_language_id(language)
        source = prepare_source(source_code, language_id)

        if not test_cases:
            status = await self.run_to_completion(source, language_id)
            return CodeRunReport(
                output=status.output, passed=0, total=0, score=0,
                execution_time_ms=status.time_ms or 0.0,
            )

        reports: List[TestCaseReport] = []
        total_time = 0.0
        first_output = None

        for case in test_cases:
            status = await self.run_to_completion(source, language_id, case.input)
            actual = status.output
            if first_output is None:
                first_output = actual
            total_time += status.time_ms or 0.0

            passed = (
                status.state == ExecutionState.FINISHED
                and actual.strip() == case.expected_output.strip()
            )
            reports.append(TestCaseReport(
                input=case.input,
                expected_output=case.expected_output,
                actual_output=actual,
                passed=passed,
                status=status.description or status.state.value,
            ))

        passed_count = sum(1 for r in reports if r.passed)
        return CodeRunReport(
            output=first_output or NO_OUTPUT,
            passed=passed_count,
            total=len(reports),
            score=percentage(passed_count, len(reports)),
            execution_time_ms=total_time,
            test_results=reports,
        )
