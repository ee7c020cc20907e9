"""Domain models for the prep application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from prep_app.constants.test_constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LANGUAGE,
    DEFAULT_MARKS_PER_QUESTION,
    DEFAULT_NEGATIVE_MARKING,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_test_id() -> str:
    return f"test_{uuid4().hex}"


def new_attempt_id() -> str:
    return f"attempt_{uuid4().hex}"


@dataclass(slots=True)
class Question:
    """Multiple-choice question with exactly four options."""

    question_text: str
    options: list[str]
    correct_option_index: int
    explanation: str = ""
    subject: str = ""
    topic: str = ""


@dataclass(slots=True)
class Test:
    """A named, timed set of questions; the unit of storage and sharing."""

    id: str
    name: str
    questions: list[Question]
    duration: int = DEFAULT_DURATION_MINUTES  # minutes
    language: str = DEFAULT_LANGUAGE
    created_at: datetime = field(default_factory=utc_now)
    marks_per_question: float = DEFAULT_MARKS_PER_QUESTION
    negative_marking: float = DEFAULT_NEGATIVE_MARKING

    # pytest would otherwise try to collect this class from test modules.
    __test__ = False


@dataclass(slots=True)
class Attempt:
    """A completed, scored run of one test. Never mutated once recorded."""

    test_id: str
    test_name: str
    user_answers: list[int | None]
    time_taken: int  # seconds
    time_per_question: list[float]
    completed_at: datetime
    score: float
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    unanswered: int
    full_test: Test
    id: str | None = None


class QuestionStatus(str, Enum):
    """Runtime status of a question during an active attempt."""

    NOT_VISITED = "notVisited"
    NOT_ANSWERED = "notAnswered"
    ANSWERED = "answered"
    MARKED = "marked"
    MARKED_AND_ANSWERED = "markedAndAnswered"


class ClearedMarkPolicy(str, Enum):
    """What happens to a marked-and-answered question whose answer is cleared."""

    REVERT_TO_MARKED = "revert_to_marked"
    KEEP_MARKED_AND_ANSWERED = "keep_marked_and_answered"


class AnswerOutcome(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNANSWERED = "unanswered"


def classify_answer(user_answer: int | None, correct_option_index: int) -> AnswerOutcome:
    if user_answer is None:
        return AnswerOutcome.UNANSWERED
    if user_answer == correct_option_index:
        return AnswerOutcome.CORRECT
    return AnswerOutcome.INCORRECT
