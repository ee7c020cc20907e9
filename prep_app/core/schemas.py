"""Schema validation for JSON that enters the application.

Imported test files, backups, sync payloads and AI responses all arrive as
untrusted JSON. Each shape is described once as a pydantic model using the
camelCase wire names; parsing helpers translate pydantic's error list into
``FieldFailure`` entries so callers can report *what* was wrong (a missing
field, a wrong type, an out-of-range answer index) instead of a generic
"invalid file" message.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import json
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_core import PydanticCustomError

from prep_app.constants.test_constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LANGUAGE,
    DEFAULT_MARKS_PER_QUESTION,
    DEFAULT_NEGATIVE_MARKING,
    OPTIONS_PER_QUESTION,
)
from prep_app.core.models import (
    AnswerOutcome,
    Attempt,
    Question,
    Test,
    classify_answer,
    new_test_id,
    utc_now,
)


class FailureKind(str, Enum):
    MISSING_FIELD = "missing_field"
    WRONG_TYPE = "wrong_type"
    OUT_OF_RANGE = "out_of_range"
    INVALID_VALUE = "invalid_value"
    MALFORMED_JSON = "malformed_json"


@dataclass(slots=True)
class FieldFailure:
    """One validation problem located by a dotted path (``questions.2.answer``)."""

    path: str
    kind: FailureKind
    message: str

    def describe(self) -> str:
        location = self.path or "document"
        return f"{location}: {self.message}"


class RecordValidationError(ValueError):
    """Raised when untrusted JSON does not match the expected schema."""

    def __init__(self, failures: list[FieldFailure]) -> None:
        self.failures = failures
        summary = "; ".join(failure.describe() for failure in failures[:5])
        if len(failures) > 5:
            summary += f" (+{len(failures) - 5} more)"
        super().__init__(summary or "Invalid record.")


_WIRE_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")


class QuestionRecord(BaseModel):
    model_config = _WIRE_CONFIG

    question_text: StrictStr = Field(alias="question")
    options: list[StrictStr] = Field(
        min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION
    )
    # Declared after ``options`` so the range check below can see them.
    correct_option_index: StrictInt = Field(alias="answer")
    explanation: StrictStr
    subject: StrictStr
    topic: StrictStr

    @field_validator("correct_option_index")
    @classmethod
    def _answer_within_options(cls, value: int, info: ValidationInfo) -> int:
        options = info.data.get("options")
        upper = len(options) if options is not None else OPTIONS_PER_QUESTION
        if not 0 <= value < upper:
            raise PydanticCustomError(
                "out_of_range",
                "answer index {index} is outside 0..{last}",
                {"index": value, "last": upper - 1},
            )
        return value

    def to_model(self) -> Question:
        return Question(
            question_text=self.question_text,
            options=list(self.options),
            correct_option_index=self.correct_option_index,
            explanation=self.explanation,
            subject=self.subject,
            topic=self.topic,
        )

    @classmethod
    def from_model(cls, question: Question) -> QuestionRecord:
        return cls(
            question_text=question.question_text,
            options=list(question.options),
            correct_option_index=question.correct_option_index,
            explanation=question.explanation,
            subject=question.subject,
            topic=question.topic,
        )


class TestRecord(BaseModel):
    model_config = _WIRE_CONFIG
    __test__ = False

    id: StrictStr | None = None
    name: StrictStr
    questions: list[QuestionRecord]
    duration: int = Field(default=DEFAULT_DURATION_MINUTES, gt=0)
    language: StrictStr = DEFAULT_LANGUAGE
    created_at: datetime | None = Field(default=None, alias="createdAt")
    marks_per_question: float = Field(
        default=DEFAULT_MARKS_PER_QUESTION, ge=0, alias="marksPerQuestion"
    )
    negative_marking: float = Field(
        default=DEFAULT_NEGATIVE_MARKING, ge=0, alias="negativeMarking"
    )

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)

    def to_model(self) -> Test:
        return Test(
            id=self.id or new_test_id(),
            name=self.name,
            questions=[question.to_model() for question in self.questions],
            duration=self.duration,
            language=self.language,
            created_at=self.created_at or utc_now(),
            marks_per_question=self.marks_per_question,
            negative_marking=self.negative_marking,
        )

    @classmethod
    def from_model(cls, test: Test) -> TestRecord:
        return cls(
            id=test.id,
            name=test.name,
            questions=[QuestionRecord.from_model(q) for q in test.questions],
            duration=test.duration,
            language=test.language,
            created_at=test.created_at,
            marks_per_question=test.marks_per_question,
            negative_marking=test.negative_marking,
        )


class AttemptRecord(BaseModel):
    model_config = _WIRE_CONFIG

    id: StrictStr | None = None
    test_id: StrictStr = Field(alias="testId")
    test_name: StrictStr = Field(alias="testName")
    user_answers: list[StrictInt | None] = Field(alias="userAnswers")
    time_taken: float = Field(ge=0, alias="timeTaken")
    time_per_question: list[float] = Field(alias="timePerQuestion")
    completed_at: datetime = Field(alias="completedAt")
    score: float = Field(ge=0, le=100)
    total_questions: StrictInt = Field(ge=0, alias="totalQuestions")
    correct_answers: StrictInt = Field(ge=0, alias="correctAnswers")
    incorrect_answers: StrictInt = Field(ge=0, alias="incorrectAnswers")
    unanswered: StrictInt = Field(ge=0)
    full_test: TestRecord = Field(alias="fullTest")

    @field_validator("completed_at")
    @classmethod
    def _completed_at_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)

    @field_validator("full_test")
    @classmethod
    def _answers_match_questions(cls, value: TestRecord, info: ValidationInfo) -> TestRecord:
        answers = info.data.get("user_answers")
        if answers is not None and len(answers) != len(value.questions):
            raise PydanticCustomError(
                "invalid_value",
                "{answers} answers recorded for {questions} questions",
                {"answers": len(answers), "questions": len(value.questions)},
            )
        return value

    def to_model(self) -> Attempt:
        return Attempt(
            id=self.id,
            test_id=self.test_id,
            test_name=self.test_name,
            user_answers=list(self.user_answers),
            time_taken=int(self.time_taken),
            time_per_question=list(self.time_per_question),
            completed_at=self.completed_at,
            score=self.score,
            total_questions=self.total_questions,
            correct_answers=self.correct_answers,
            incorrect_answers=self.incorrect_answers,
            unanswered=self.unanswered,
            full_test=self.full_test.to_model(),
        )

    @classmethod
    def from_model(cls, attempt: Attempt) -> AttemptRecord:
        return cls(
            id=attempt.id,
            test_id=attempt.test_id,
            test_name=attempt.test_name,
            user_answers=list(attempt.user_answers),
            time_taken=attempt.time_taken,
            time_per_question=list(attempt.time_per_question),
            completed_at=attempt.completed_at,
            score=attempt.score,
            total_questions=attempt.total_questions,
            correct_answers=attempt.correct_answers,
            incorrect_answers=attempt.incorrect_answers,
            unanswered=attempt.unanswered,
            full_test=TestRecord.from_model(attempt.full_test),
        )


class BackupRecord(BaseModel):
    model_config = _WIRE_CONFIG

    tests: list[TestRecord] = Field(default_factory=list)
    performance_history: list[AttemptRecord] = Field(
        default_factory=list, alias="performanceHistory"
    )
    bookmarks: list[dict[str, Any]] = Field(default_factory=list)
    exported_at: datetime | None = Field(default=None, alias="exportedAt")


def dump_record(record: BaseModel) -> dict[str, Any]:
    """Serialize a record to its JSON-ready wire dictionary."""
    return record.model_dump(by_alias=True, mode="json")


def serialize_test(test: Test) -> dict[str, Any]:
    return dump_record(TestRecord.from_model(test))


def serialize_attempt(attempt: Attempt) -> dict[str, Any]:
    return dump_record(AttemptRecord.from_model(attempt))


def parse_question_list(payload: Any) -> list[Question]:
    """Validate a JSON array of questions (AI output or bulk import)."""
    if not isinstance(payload, list):
        raise RecordValidationError(
            [FieldFailure("", FailureKind.WRONG_TYPE, "expected an array of questions")]
        )
    if not payload:
        raise RecordValidationError(
            [FieldFailure("", FailureKind.INVALID_VALUE, "no questions were returned")]
        )
    records = [_validate(QuestionRecord, item, prefix=str(index)) for index, item in enumerate(payload)]
    return [record.to_model() for record in records]


def parse_test(payload: Any) -> TestRecord:
    return _validate(TestRecord, payload)


def parse_attempt(payload: Any) -> AttemptRecord:
    record = _validate(AttemptRecord, payload)
    failures = attempt_consistency_failures(record)
    if failures:
        raise RecordValidationError(failures)
    return record


def parse_backup(payload: Any) -> BackupRecord:
    backup = _validate(BackupRecord, payload)
    failures = [
        failure
        for index, record in enumerate(backup.performance_history)
        for failure in attempt_consistency_failures(record, prefix=f"performanceHistory.{index}")
    ]
    if failures:
        raise RecordValidationError(failures)
    return backup


def attempt_consistency_failures(record: AttemptRecord, prefix: str = "") -> list[FieldFailure]:
    """Check an attempt's answers and counts against its own frozen test.

    Every answer must index one of its question's options, and the recorded
    totals must equal the counts recomputed from the answers.
    """

    def at(*parts: object) -> str:
        return ".".join([prefix, *map(str, parts)] if prefix else map(str, parts))

    questions = record.full_test.questions
    failures: list[FieldFailure] = []
    counts = {outcome: 0 for outcome in AnswerOutcome}
    for index, (answer, question) in enumerate(zip(record.user_answers, questions)):
        if answer is not None and not 0 <= answer < len(question.options):
            failures.append(
                FieldFailure(
                    at("userAnswers", index),
                    FailureKind.OUT_OF_RANGE,
                    f"answer index {answer} is outside 0..{len(question.options) - 1}",
                )
            )
            continue
        counts[classify_answer(answer, question.correct_option_index)] += 1
    if failures:
        return failures

    expected = {
        "totalQuestions": (record.total_questions, len(questions)),
        "correctAnswers": (record.correct_answers, counts[AnswerOutcome.CORRECT]),
        "incorrectAnswers": (record.incorrect_answers, counts[AnswerOutcome.INCORRECT]),
        "unanswered": (record.unanswered, counts[AnswerOutcome.UNANSWERED]),
    }
    for name, (recorded, actual) in expected.items():
        if recorded != actual:
            failures.append(
                FieldFailure(
                    at(name),
                    FailureKind.INVALID_VALUE,
                    f"recorded {recorded} but the answers give {actual}",
                )
            )
    return failures


def load_json_document(text: str) -> Any:
    """Decode JSON text, reporting decode problems as a typed failure."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordValidationError(
            [FieldFailure("", FailureKind.MALFORMED_JSON, f"not valid JSON ({exc.msg})")]
        ) from exc


def _assume_utc(value: datetime | None) -> datetime | None:
    # Timestamps without an offset are treated as UTC so they compare with aware ones.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate(model: type[BaseModel], payload: Any, prefix: str = "") -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise RecordValidationError(_failures_from(exc, prefix)) from exc


def _failures_from(error: ValidationError, prefix: str) -> list[FieldFailure]:
    failures: list[FieldFailure] = []
    for detail in error.errors():
        parts = [prefix] if prefix else []
        parts.extend(str(part) for part in detail["loc"])
        failures.append(
            FieldFailure(
                path=".".join(parts),
                kind=_classify(detail["type"]),
                message=detail["msg"],
            )
        )
    return failures


def _classify(error_type: str) -> FailureKind:
    if error_type == "missing":
        return FailureKind.MISSING_FIELD
    if error_type == "out_of_range":
        return FailureKind.OUT_OF_RANGE
    if error_type.endswith("_type") or error_type.endswith("_parsing"):
        return FailureKind.WRONG_TYPE
    return FailureKind.INVALID_VALUE
