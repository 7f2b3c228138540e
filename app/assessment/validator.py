"""
Answer validation rules for mcq, fill-in-the-blank and code questions.

Every rule is pure: (question, raw answer) -> QuestionResult. Nothing here
talks to the judge; code answers arrive with the output already produced.
"""

import json
from typing import Any, Optional, Tuple

from app.assessment.errors import QuestionValidationError
from app.assessment.models import (
    CodeQuestion, FillInBlankQuestion, MultipleChoiceQuestion, QuestionResult
)

NO_ANSWER_FEEDBACK = "No answer submitted"
CORRECT_FEEDBACK = "Correct answer"


def _is_blank(raw_answer: Any) -> bool:
    return raw_answer is None or (isinstance(raw_answer, str) and not raw_answer.strip())


def _as_text(raw_answer: Any, question_id: str) -> str:
    """Scalar answers become strings; containers are not a usable mcq/fill answer."""
    if isinstance(raw_answer, str):
        return raw_answer
    if isinstance(raw_answer, (int, float)) and not isinstance(raw_answer, bool):
        return str(raw_answer)
    raise QuestionValidationError(
        f"Unsupported answer type {type(raw_answer).__name__}", question_id
    )


def _unanswered(question_id: str, correct_answer: Any) -> QuestionResult:
    return QuestionResult(
        question_id=question_id,
        answer=None,
        is_correct=False,
        points=0,
        feedback=NO_ANSWER_FEEDBACK,
        correct_answer=correct_answer,
    )

# ==================== MULTIPLE CHOICE ====================

def resolve_option_index(question: MultipleChoiceQuestion, answer: str) -> Optional[int]:
    """
    Map a submitted mcq answer to an option index.

    Option text wins (that is what the test page submits); otherwise an
    index string that lands inside the options is accepted.
    """
    if answer in question.options:
        return question.options.index(answer)

    # Canonical index strings only: "02" is not "2"
    candidate = answer.strip()
    if candidate.isascii() and candidate.isdigit() and str(int(candidate)) == candidate:
        if int(candidate) < len(question.options):
            return int(candidate)
    return None


def validate_mcq(question: MultipleChoiceQuestion, raw_answer: Any, question_id: str) -> QuestionResult:
    if _is_blank(raw_answer):
        return _unanswered(question_id, question.correct_option)

    answer = _as_text(raw_answer, question_id)
    selected = resolve_option_index(question, answer)

    # String comparison of indices, never numeric
    is_correct = selected is not None and str(selected) == question.correct_answer
    feedback = CORRECT_FEEDBACK if is_correct else f"Incorrect. Correct answer: {question.correct_option}"

    return QuestionResult(
        question_id=question_id,
        answer=answer,
        is_correct=is_correct,
        points=question.points if is_correct else 0,
        feedback=feedback,
        correct_answer=question.correct_option,
    )

# ==================== FILL IN THE BLANK ====================

def normalize_fill(text: str) -> str:
    """Case and surrounding whitespace are insignificant; internal whitespace is kept."""
    return text.strip().lower()


def validate_fill(question: FillInBlankQuestion, raw_answer: Any, question_id: str) -> QuestionResult:
    if _is_blank(raw_answer):
        return _unanswered(question_id, question.correct_answer)

    answer = _as_text(raw_answer, question_id)
    is_correct = normalize_fill(answer) == normalize_fill(question.correct_answer)

    return QuestionResult(
        question_id=question_id,
        answer=answer.strip(),
        is_correct=is_correct,
        points=question.points if is_correct else 0,
        feedback=CORRECT_FEEDBACK if is_correct else f"Incorrect. Correct answer: {question.correct_answer}",
        correct_answer=question.correct_answer,
    )

# ==================== CODE ====================

def decode_code_answer(raw_answer: Any) -> Tuple[Optional[str], str]:
    """
    Split a code answer into (code, output).

    The editor stores a JSON envelope {"code": ..., "output": ...}. Anything
    that does not decode to such an object is treated as bare output.
    """
    envelope = raw_answer
    if isinstance(raw_answer, str):
        try:
            envelope = json.loads(raw_answer)
        except ValueError:
            return None, raw_answer

    if isinstance(envelope, dict):
        code = envelope.get("code")
        output = envelope.get("output")
        return (
            code if isinstance(code, str) else None,
            output if isinstance(output, str) else ("" if output is None else str(output)),
        )

    if isinstance(raw_answer, str):
        return None, raw_answer
    raise QuestionValidationError(
        f"Unsupported code answer type {type(raw_answer).__name__}"
    )


def validate_code(question: CodeQuestion, raw_answer: Any, question_id: str) -> QuestionResult:
    if _is_blank(raw_answer):
        return _unanswered(question_id, question.correct_answer)

    try:
        code, output = decode_code_answer(raw_answer)
    except QuestionValidationError as e:
        e.question_id = question_id
        raise

    # Exact output: case-sensitive, trimmed only at the ends
    is_correct = output.strip() == question.correct_answer.strip()

    if is_correct:
        feedback = "Output matches expected result"
    else:
        feedback = f"Output does not match. Expected: {question.correct_answer.strip()}"

    return QuestionResult(
        question_id=question_id,
        answer={"code": code, "output": output},
        is_correct=is_correct,
        points=question.points if is_correct else 0,
        feedback=feedback,
        correct_answer=question.correct_answer,
    )

# ==================== DISPATCH ====================

def validate(question, raw_answer: Any, question_id: Optional[str] = None) -> QuestionResult:
    """
    Validate one answer against its question.

    question_id defaults to the question's own id; the grader passes the
    surrogate key so positional questions are reported consistently.
    """
    qid = question_id if question_id is not None else (question.question_id or "")

    if isinstance(question, MultipleChoiceQuestion):
        return validate_mcq(question, raw_answer, qid)
    if isinstance(question, FillInBlankQuestion):
        return validate_fill(question, raw_answer, qid)
    if isinstance(question, CodeQuestion):
        return validate_code(question, raw_answer, qid)

    raise QuestionValidationError(f"Unknown question type: {type(question).__name__}", qid)
