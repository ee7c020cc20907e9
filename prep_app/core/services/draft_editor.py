"""Service for editing a draft test before it is saved."""

from __future__ import annotations

import copy
from typing import Any, Mapping

from prep_app.constants.test_constants import OPTIONS_PER_QUESTION
from prep_app.core.models import Question, Test
from prep_app.core.services.library_repository import LibraryRepository

_EDITABLE_FIELDS = ("question_text", "options", "correct_option_index", "explanation", "subject", "topic")


class NoDraftError(RuntimeError):
    """Raised when an edit is requested while no test is being edited."""


class DraftEditor:
    """Holds one draft test and applies form edits to its question list."""

    def __init__(self) -> None:
        self._draft: Test | None = None

    def load(self, test: Test) -> Test:
        """Start editing a private copy of ``test``."""
        self._draft = copy.deepcopy(test)
        return self._draft

    def has_draft(self) -> bool:
        return self._draft is not None

    @property
    def draft(self) -> Test:
        if self._draft is None:
            raise NoDraftError("No test is being edited.")
        return self._draft

    def clear(self) -> None:
        self._draft = None

    def get_question_count(self) -> int:
        return len(self.draft.questions)

    def add_blank_question(self) -> int:
        self.draft.questions.append(
            Question(question_text="", options=[""] * OPTIONS_PER_QUESTION, correct_option_index=0)
        )
        return len(self.draft.questions) - 1

    def update_question(self, index: int, **fields: Any) -> Question:
        question = self._question_at(index)
        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown question fields: {', '.join(sorted(unknown))}.")
        for name, value in fields.items():
            if name == "options":
                value = list(value)
            setattr(question, name, value)
        return question

    def delete_question(self, index: int) -> None:
        self._question_at(index)
        self.draft.questions.pop(index)

    def update_details(
        self,
        name: str | None = None,
        duration: int | None = None,
        language: str | None = None,
        marks_per_question: float | None = None,
        negative_marking: float | None = None,
    ) -> None:
        draft = self.draft
        if name is not None:
            draft.name = name
        if duration is not None:
            draft.duration = duration
        if language is not None:
            draft.language = language
        if marks_per_question is not None:
            draft.marks_per_question = marks_per_question
        if negative_marking is not None:
            draft.negative_marking = negative_marking

    def sync_from_form(self, forms: list[Mapping[str, Any]]) -> None:
        """Replace every question with the values currently held in the edit form."""
        self.draft.questions = [
            Question(
                question_text=str(form.get("question", "")),
                options=[str(option) for option in form.get("options", [])],
                correct_option_index=_parse_answer(form.get("answer")),
                explanation=str(form.get("explanation", "")),
                subject=str(form.get("subject", "")),
                topic=str(form.get("topic", "")),
            )
            for form in forms
        ]

    def validate(self) -> None:
        draft = self.draft
        if not draft.name.strip():
            raise ValueError("Test name must not be empty.")
        if not draft.questions:
            raise ValueError("Test must contain at least one question.")
        if draft.duration <= 0:
            raise ValueError("Duration must be a positive number of minutes.")
        if draft.marks_per_question < 0 or draft.negative_marking < 0:
            raise ValueError("Marks cannot be negative.")
        for number, question in enumerate(draft.questions, start=1):
            self._validate_question(number, question)

    def save(self, repository: LibraryRepository) -> tuple[Test, bool]:
        """Validate and store the draft. Returns the saved copy and whether it was new."""
        self.validate()
        saved = copy.deepcopy(self.draft)
        for question in saved.questions:
            question.question_text = question.question_text.strip()
            question.options = [option.strip() for option in question.options]
        is_new = repository.save_test(saved)
        return saved, is_new

    def _question_at(self, index: int) -> Question:
        questions = self.draft.questions
        if not 0 <= index < len(questions):
            raise IndexError(f"Question index {index} out of range")
        return questions[index]

    @staticmethod
    def _validate_question(number: int, question: Question) -> None:
        if not question.question_text.strip():
            raise ValueError(f"Question {number}: text must not be empty.")
        if len(question.options) != OPTIONS_PER_QUESTION:
            raise ValueError(f"Question {number}: exactly four options are required.")
        if any(not option.strip() for option in question.options):
            raise ValueError(f"Question {number}: option text cannot be empty.")
        if not 0 <= question.correct_option_index < OPTIONS_PER_QUESTION:
            raise ValueError(f"Question {number}: correct option index must be between 0 and 3.")


def _parse_answer(raw_value: Any) -> int:
    if raw_value is None or raw_value == "":
        return 0
    try:
        return int(raw_value)
    except (TypeError, ValueError) as exc:
        raise ValueError("Correct option must be an integer index.") from exc
