"""Exception classes for the assessment engine."""

from typing import Any, Optional


class AssessmentError(Exception):
    """Base exception for all assessment engine errors."""
    pass


class QuestionValidationError(AssessmentError):
    """A question definition or a submitted answer has an unusable shape.

    Recovered per question by the grader; never aborts a whole submission.
    """

    def __init__(self, message: str, question_id: Optional[str] = None):
        super().__init__(message)
        self.question_id = question_id

    def __str__(self) -> str:
        base = super().__str__()
        if self.question_id is not None:
            return f"{base} (Question: {self.question_id})"
        return base


class ExecutionError(AssessmentError):
    """Error talking to the external code judge."""
    pass


class ExecutionTransportError(ExecutionError):
    """Judge unreachable, or it answered with something we cannot use."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} (Status Code: {self.status_code})"
        return base


class ExecutionTimeoutError(ExecutionError):
    """Poll budget exhausted while the judge still reported queued/running."""

    def __init__(self, message: str, handle: Any = None, last_status: Any = None):
        super().__init__(message)
        self.handle = handle
        self.last_status = last_status


class PersistenceError(AssessmentError):
    """Storage collaborator failed. Propagated to the caller, never retried here."""
    pass


class ContentNotFoundError(AssessmentError):
    """The requested test or assignment does not exist."""
    pass


class AccessDeniedError(AssessmentError):
    """The student may not see or submit this content."""
    pass
