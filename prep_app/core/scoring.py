"""Scoring arithmetic for submitted attempts."""

from __future__ import annotations

from dataclasses import dataclass

from prep_app.core.models import AnswerOutcome, Question, classify_answer


@dataclass(slots=True)
class ScoreSummary:
    """Counts and marks for one set of answers."""

    correct: int
    incorrect: int
    unanswered: int
    raw_score: float
    max_score: float
    percentage: float

    @property
    def total(self) -> int:
        return self.correct + self.incorrect + self.unanswered


def score_answers(
    questions: list[Question],
    answers: list[int | None],
    marks_per_question: float,
    negative_marking: float,
) -> ScoreSummary:
    """Score answers with negative marking; the percentage never drops below zero."""
    if len(answers) != len(questions):
        raise ValueError("Exactly one answer slot is required per question.")

    counts = {outcome: 0 for outcome in AnswerOutcome}
    for question, answer in zip(questions, answers):
        counts[classify_answer(answer, question.correct_option_index)] += 1

    correct = counts[AnswerOutcome.CORRECT]
    incorrect = counts[AnswerOutcome.INCORRECT]
    raw_score = correct * marks_per_question - incorrect * negative_marking
    max_score = len(questions) * marks_per_question
    percentage = max(0.0, raw_score / max_score * 100) if max_score > 0 else 0.0

    return ScoreSummary(
        correct=correct,
        incorrect=incorrect,
        unanswered=counts[AnswerOutcome.UNANSWERED],
        raw_score=raw_score,
        max_score=max_score,
        percentage=percentage,
    )


def accuracy_percentage(correct: int, attempted: int) -> float:
    """Percentage of ``correct`` over ``attempted``; zero when nothing was attempted."""
    if attempted <= 0:
        return 0.0
    return correct / attempted * 100
