from __future__ import annotations

from datetime import datetime, timezone

import pytest

from prep_app.core.models import Attempt, Question, Test


def make_question(
    text: str = "What is 2 + 2?",
    answer: int = 1,
    subject: str = "Maths",
    topic: str = "Arithmetic",
) -> Question:
    return Question(
        question_text=text,
        options=["3", "4", "5", "6"],
        correct_option_index=answer,
        explanation="Basic addition.",
        subject=subject,
        topic=topic,
    )


def make_test(
    question_count: int = 3,
    test_id: str = "test_1",
    name: str = "Sample Test",
    duration: int = 10,
    marks_per_question: float = 2.0,
    negative_marking: float = 0.66,
) -> Test:
    return Test(
        id=test_id,
        name=name,
        questions=[make_question(text=f"Question {i + 1}") for i in range(question_count)],
        duration=duration,
        language="English",
        created_at=datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc),
        marks_per_question=marks_per_question,
        negative_marking=negative_marking,
    )


def make_attempt(
    answers: list[int | None] | None = None,
    completed_at: datetime | None = None,
    test: Test | None = None,
    attempt_id: str | None = None,
) -> Attempt:
    test = test or make_test()
    answers = answers if answers is not None else [1] * len(test.questions)
    correct = sum(1 for a, q in zip(answers, test.questions) if a == q.correct_option_index)
    unanswered = sum(1 for a in answers if a is None)
    return Attempt(
        id=attempt_id,
        test_id=test.id,
        test_name=test.name,
        user_answers=list(answers),
        time_taken=125,
        time_per_question=[10.0 * (i + 1) for i in range(len(test.questions))],
        completed_at=completed_at or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
        score=100.0 * correct / len(test.questions),
        total_questions=len(test.questions),
        correct_answers=correct,
        incorrect_answers=len(answers) - correct - unanswered,
        unanswered=unanswered,
        full_test=test,
    )


@pytest.fixture
def sample_test() -> Test:
    return make_test()


VALID_REPLY = [
    {
        "question": "Who wrote the Arthashastra?",
        "options": ["Kautilya", "Kalidasa", "Banabhatta", "Harsha"],
        "answer": 0,
        "explanation": "Kautilya (Chanakya) is credited with it.",
        "subject": "History",
        "topic": "Mauryan Empire",
    }
]


class FakeResponse:
    """Mimics a Gemini response; ``text`` raises when the reply was blocked."""

    def __init__(self, text=None, blocked=False):
        self._text = text
        self._blocked = blocked

    @property
    def text(self):
        if self._blocked:
            raise ValueError("no parts")
        return self._text


class FakeModel:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate_content(self, contents, generation_config=None):
        self.calls.append((contents, generation_config))
        if self.error:
            raise self.error
        return self.response
