"""Turns one of the four source modes into a single generation request.

Modes:

    topic    a subject or topic name to write questions about
    text     pasted study material
    manual   pasted, already-written questions to extract as-is (bulk import)
    file     an uploaded ``.txt`` or ``.pdf``; PDFs without a usable text
             layer are sent as rendered page images instead

Every mode is validated before anything is sent, so an empty input never
reaches the generation service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath

from prep_app.constants.test_constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LANGUAGE,
    DEFAULT_MARKS_PER_QUESTION,
    DEFAULT_NEGATIVE_MARKING,
    DEFAULT_QUESTION_COUNT,
    MAX_QUESTION_COUNT,
    MIN_PDF_TEXT_LENGTH,
)
from prep_app.core.services.pdf_extractor import PdfExtractionError, PdfExtractor


class SourceInputError(ValueError):
    """Raised when the selected source does not contain usable input."""


class SourceMode(str, Enum):
    TOPIC = "topic"
    TEXT = "text"
    MANUAL = "manual"
    FILE = "file"


@dataclass(slots=True)
class SourceInput:
    mode: SourceMode
    text: str = ""
    file_name: str | None = None
    file_bytes: bytes | None = None
    content_type: str | None = None


@dataclass(slots=True)
class GenerationOptions:
    question_count: int = DEFAULT_QUESTION_COUNT
    language: str = DEFAULT_LANGUAGE
    test_name: str = ""
    duration: int = DEFAULT_DURATION_MINUTES
    marks_per_question: float = DEFAULT_MARKS_PER_QUESTION
    negative_marking: float = DEFAULT_NEGATIVE_MARKING

    def validate(self) -> None:
        if not 1 <= self.question_count <= MAX_QUESTION_COUNT:
            raise SourceInputError(f"Number of questions must be between 1 and {MAX_QUESTION_COUNT}.")
        if self.duration <= 0:
            raise SourceInputError("Duration must be a positive number of minutes.")
        if self.marks_per_question <= 0:
            raise SourceInputError("Marks per question must be positive.")
        if self.negative_marking < 0:
            raise SourceInputError("Negative marking cannot be negative.")


@dataclass(slots=True)
class GenerationRequest:
    prompt: str
    source_label: str
    images: list[bytes] = field(default_factory=list)


_QUESTION_SPEC = (
    "For each question, provide the question, four options, the 0-indexed correct answer, "
    "a detailed explanation, the general subject, and the specific topic."
)

_BULK_IMPORT_PROMPT = '''Analyze the following text and extract ALL multiple-choice questions found within it.

The text is expected to contain questions in a format similar to:
"Q. Question text... A) Opt1 B) Opt2... Answer: A Explanation: ..."

Your task:
1. Extract every valid question.
2. Map options to a string array.
3. Determine the correct answer index (0 for A/1, 1 for B/2, etc).
4. Extract explanation if present, otherwise generate a brief one.
5. Extract Subject and Topic if present, otherwise infer them from the question content.
6. Return the result strictly as a JSON array matching the schema.

Input Text:
"""{text}"""'''


def build_generation_request(
    source: SourceInput,
    options: GenerationOptions,
    pdf_extractor: PdfExtractor | None = None,
) -> GenerationRequest:
    options.validate()

    if source.mode == SourceMode.TOPIC:
        topic = source.text.strip()
        if not topic:
            raise SourceInputError("Please enter a topic.")
        return GenerationRequest(
            prompt=_generation_prompt(options, f"on the following topic: {topic}."),
            source_label=topic,
        )

    if source.mode == SourceMode.TEXT:
        text = source.text.strip()
        if not text:
            raise SourceInputError("Please paste some text.")
        return GenerationRequest(
            prompt=_generation_prompt(options, f'on the following text: """{text}""".'),
            source_label="Pasted Text",
        )

    if source.mode == SourceMode.MANUAL:
        text = source.text.strip()
        if not text:
            raise SourceInputError("Please paste your questions in the text area.")
        return GenerationRequest(prompt=_BULK_IMPORT_PROMPT.format(text=text), source_label="Bulk Import")

    if source.mode == SourceMode.FILE:
        return _file_request(source, options, pdf_extractor or PdfExtractor())

    raise SourceInputError(f"Unknown source mode: {source.mode!r}.")


def default_test_name(options: GenerationOptions, request: GenerationRequest) -> str:
    return options.test_name.strip() or f"Test on {request.source_label}"


def _file_request(
    source: SourceInput,
    options: GenerationOptions,
    pdf_extractor: PdfExtractor,
) -> GenerationRequest:
    if not source.file_name or source.file_bytes is None:
        raise SourceInputError("Please select a file to upload.")

    label = PurePath(source.file_name).name
    suffix = PurePath(source.file_name).suffix.lower()
    content_type = (source.content_type or "").lower()

    if content_type == "text/plain" or suffix == ".txt":
        try:
            file_text = source.file_bytes.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise SourceInputError("The uploaded text file is not valid UTF-8.") from exc
        if not file_text.strip():
            raise SourceInputError("The uploaded file is empty.")
        return GenerationRequest(prompt=_document_prompt(options, file_text), source_label=label)

    if content_type == "application/pdf" or suffix == ".pdf":
        try:
            full_text = pdf_extractor.extract_text(source.file_bytes)
            if len(full_text.strip()) > MIN_PDF_TEXT_LENGTH:
                return GenerationRequest(prompt=_document_prompt(options, full_text), source_label=label)
            images = pdf_extractor.render_pages(source.file_bytes)
        except PdfExtractionError as exc:
            raise SourceInputError(str(exc)) from exc
        if not images:
            raise SourceInputError("The PDF has no pages to read.")
        return GenerationRequest(
            prompt=_generation_prompt(
                options,
                "on the content of the attached page images (a scanned document).",
            ),
            source_label=label,
            images=images,
        )

    raise SourceInputError("Unsupported file type. Please upload a PDF or TXT file.")


def _generation_prompt(options: GenerationOptions, basis: str) -> str:
    return (
        f"Generate {options.question_count} exam-style multiple-choice questions (4 options) "
        f"based {basis} The questions should be in {options.language}. {_QUESTION_SPEC}"
    )


def _document_prompt(options: GenerationOptions, document_text: str) -> str:
    return (
        f"Generate {options.question_count} exam-style multiple-choice questions (4 options) "
        f"based on the following text. The questions should be in {options.language}. "
        f'{_QUESTION_SPEC}\n\nText: """{document_text}"""'
    )
