"""Cross-attempt analytics: totals, subject mastery and the daily streak."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from prep_app.constants.test_constants import RECENT_ATTEMPT_COUNT
from prep_app.core.models import AnswerOutcome, Attempt, classify_answer
from prep_app.core.scoring import accuracy_percentage
from prep_app.core.services.reporting import sort_by_accuracy, subject_label, topic_label


@dataclass(slots=True)
class TopicMastery:
    topic: str
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return accuracy_percentage(self.correct, self.total)


@dataclass(slots=True)
class SubjectMastery:
    subject: str
    correct: int = 0
    total: int = 0
    total_time: float = 0.0
    topics: dict[str, TopicMastery] = field(default_factory=dict)

    @property
    def accuracy(self) -> float:
        return accuracy_percentage(self.correct, self.total)

    @property
    def average_time(self) -> float:
        return self.total_time / self.total if self.total else 0.0

    def ranked_topics(self) -> list[TopicMastery]:
        return sort_by_accuracy(list(self.topics.values()))


@dataclass(slots=True)
class AnalyticsSummary:
    attempts_taken: int
    total_questions: int
    total_correct: int
    average_score: float
    overall_accuracy: float
    total_time_seconds: float
    streak: int
    subjects: list[SubjectMastery]
    recent_attempts: list[Attempt]

    @property
    def study_time_label(self) -> str:
        return format_study_time(self.total_time_seconds)

    def subject(self, name: str) -> SubjectMastery | None:
        return next((s for s in self.subjects if s.subject == name), None)


def build_analytics(
    history: list[Attempt],
    today: date | None = None,
    tz: tzinfo | None = None,
) -> AnalyticsSummary:
    """Fold the full history (most recent first) into dashboard and mastery figures."""
    subjects: dict[str, SubjectMastery] = {}
    total_questions = 0
    total_correct = 0
    total_score = 0.0
    total_time = 0.0

    for attempt in history:
        total_questions += attempt.total_questions
        total_correct += attempt.correct_answers
        total_score += attempt.score
        total_time += attempt.time_taken

        for index, question in enumerate(attempt.full_test.questions):
            mastery = subjects.setdefault(subject_label(question), SubjectMastery(subject_label(question)))
            topic_name = topic_label(question)
            topic = mastery.topics.setdefault(topic_name, TopicMastery(topic_name))
            answer = attempt.user_answers[index] if index < len(attempt.user_answers) else None
            seconds = attempt.time_per_question[index] if index < len(attempt.time_per_question) else 0.0

            mastery.total += 1
            mastery.total_time += seconds
            topic.total += 1
            if classify_answer(answer, question.correct_option_index) == AnswerOutcome.CORRECT:
                mastery.correct += 1
                topic.correct += 1

    return AnalyticsSummary(
        attempts_taken=len(history),
        total_questions=total_questions,
        total_correct=total_correct,
        average_score=total_score / len(history) if history else 0.0,
        overall_accuracy=accuracy_percentage(total_correct, total_questions),
        total_time_seconds=total_time,
        streak=calculate_streak((a.completed_at for a in history), today=today, tz=tz),
        subjects=sort_by_accuracy(list(subjects.values())),
        recent_attempts=list(history[:RECENT_ATTEMPT_COUNT]),
    )


def calculate_streak(
    completed_at: Iterable[datetime],
    today: date | None = None,
    tz: tzinfo | None = None,
) -> int:
    """Count consecutive local calendar days with an attempt, ending today or yesterday."""
    days = sorted({moment.astimezone(tz).date() for moment in completed_at}, reverse=True)
    if not days:
        return 0

    today = today or datetime.now(tz).date()
    if days[0] not in (today, today - timedelta(days=1)):
        return 0

    streak = 1
    for newer, older in zip(days, days[1:]):
        if newer - older != timedelta(days=1):
            break
        streak += 1
    return streak


def format_study_time(total_seconds: float) -> str:
    hours, remainder = divmod(int(total_seconds), 3600)
    minutes = remainder // 60
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"
