"""Per-attempt performance report: accuracy, subject breakdown, timings, reviews."""

from __future__ import annotations

from dataclasses import dataclass

from prep_app.constants.test_constants import GENERAL_TOPIC, UNCATEGORIZED_SUBJECT
from prep_app.core.models import AnswerOutcome, Attempt, Question, classify_answer
from prep_app.core.scoring import accuracy_percentage


@dataclass(slots=True)
class TopicBreakdown:
    topic: str
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return accuracy_percentage(self.correct, self.total)


@dataclass(slots=True)
class SubjectBreakdown:
    subject: str
    correct: int
    total: int
    topics: list[TopicBreakdown]

    @property
    def accuracy(self) -> float:
        return accuracy_percentage(self.correct, self.total)


@dataclass(slots=True)
class QuestionTiming:
    index: int
    seconds: float
    outcome: AnswerOutcome


@dataclass(slots=True)
class OptionReview:
    text: str
    is_correct: bool
    is_user_choice: bool

    @property
    def marker(self) -> str | None:
        if self.is_correct:
            return "correct"
        if self.is_user_choice:
            return "user-wrong"
        return None


@dataclass(slots=True)
class QuestionReview:
    index: int
    question: Question
    user_answer: int | None
    outcome: AnswerOutcome
    options: list[OptionReview]


@dataclass(slots=True)
class AttemptReport:
    attempt: Attempt
    accuracy: float
    subjects: list[SubjectBreakdown]
    timings: list[QuestionTiming]
    reviews: list[QuestionReview]

    @property
    def mistakes(self) -> list[QuestionReview]:
        """Questions that were answered and answered wrongly; skipped ones are excluded."""
        return [review for review in self.reviews if review.outcome == AnswerOutcome.INCORRECT]

    @property
    def slowest_seconds(self) -> float:
        return max((timing.seconds for timing in self.timings), default=0.0)


def subject_label(question: Question) -> str:
    return question.subject.strip() or UNCATEGORIZED_SUBJECT


def topic_label(question: Question) -> str:
    return question.topic.strip() or GENERAL_TOPIC


def build_attempt_report(attempt: Attempt) -> AttemptReport:
    questions = attempt.full_test.questions
    reviews = [
        review_question(index, question, _answer_at(attempt, index))
        for index, question in enumerate(questions)
    ]

    grouped: dict[str, dict[str, list[int]]] = {}
    for review in reviews:
        topics = grouped.setdefault(subject_label(review.question), {})
        counts = topics.setdefault(topic_label(review.question), [0, 0])
        counts[1] += 1
        if review.outcome == AnswerOutcome.CORRECT:
            counts[0] += 1

    subjects = []
    for subject, topics in grouped.items():
        topic_rows = sort_by_accuracy(
            [TopicBreakdown(topic, correct, total) for topic, (correct, total) in topics.items()]
        )
        subjects.append(
            SubjectBreakdown(
                subject=subject,
                correct=sum(row.correct for row in topic_rows),
                total=sum(row.total for row in topic_rows),
                topics=topic_rows,
            )
        )

    timings = [
        QuestionTiming(
            index=index,
            seconds=attempt.time_per_question[index] if index < len(attempt.time_per_question) else 0.0,
            outcome=review.outcome,
        )
        for index, review in enumerate(reviews)
    ]

    return AttemptReport(
        attempt=attempt,
        accuracy=accuracy_percentage(
            attempt.correct_answers, attempt.correct_answers + attempt.incorrect_answers
        ),
        subjects=sort_by_accuracy(subjects),
        timings=timings,
        reviews=reviews,
    )


def review_question(index: int, question: Question, user_answer: int | None) -> QuestionReview:
    return QuestionReview(
        index=index,
        question=question,
        user_answer=user_answer,
        outcome=classify_answer(user_answer, question.correct_option_index),
        options=[
            OptionReview(
                text=text,
                is_correct=option_index == question.correct_option_index,
                is_user_choice=option_index == user_answer,
            )
            for option_index, text in enumerate(question.options)
        ],
    )


def sort_by_accuracy(rows: list) -> list:
    """Order rows with an ``accuracy`` attribute from strongest to weakest (stable)."""
    return sorted(rows, key=lambda row: row.accuracy, reverse=True)


def _answer_at(attempt: Attempt, index: int) -> int | None:
    if index < len(attempt.user_answers):
        return attempt.user_answers[index]
    return None
