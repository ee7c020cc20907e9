"""Plain-text rendering of a completed attempt for download."""

from __future__ import annotations

from datetime import tzinfo
import re

from prep_app.core.models import AnswerOutcome, Attempt
from prep_app.core.services.reporting import review_question

_RULE = "=" * 50
_STATUS_LABELS = {
    AnswerOutcome.CORRECT: "Correct",
    AnswerOutcome.INCORRECT: "Incorrect",
    AnswerOutcome.UNANSWERED: "Unanswered",
}


def render_attempt_report(attempt: Attempt, tz: tzinfo | None = None) -> str:
    """Summary block followed by every question with the user's and the correct answer."""
    completed = attempt.completed_at.astimezone(tz)
    minutes, seconds = divmod(int(attempt.time_taken), 60)

    lines = [
        f"Test Report: {attempt.test_name}",
        f"Date: {completed:%Y-%m-%d %H:%M:%S}",
        _RULE,
        "",
        f"Score: {attempt.score:.2f}%",
        f"Correct: {attempt.correct_answers}",
        f"Incorrect: {attempt.incorrect_answers}",
        f"Unanswered: {attempt.unanswered}",
        f"Time Taken: {minutes}m {seconds}s",
        "",
        _RULE,
        "",
    ]

    for index, question in enumerate(attempt.full_test.questions):
        user_answer = attempt.user_answers[index] if index < len(attempt.user_answers) else None
        review = review_question(index, question, user_answer)
        your_answer = question.options[user_answer] if user_answer is not None else "None"
        lines.extend(
            [
                f"Q{index + 1}: {question.question_text}",
                f"Your Answer: {your_answer}",
                f"Correct Answer: {question.options[question.correct_option_index]}",
                f"Status: {_STATUS_LABELS[review.outcome]}",
                f"Explanation: {question.explanation}",
                "",
            ]
        )

    return "\n".join(lines) + "\n"


def report_file_name(attempt: Attempt) -> str:
    return f"report-{re.sub(r'[^a-zA-Z0-9]', '-', attempt.test_name)}.txt"
