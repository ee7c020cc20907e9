"""Question generation through the Gemini API."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import google.generativeai as genai

from prep_app.core.models import Question, Test, new_test_id, utc_now
from prep_app.core.schemas import RecordValidationError, load_json_document, parse_question_list
from prep_app.core.services.question_source import (
    GenerationOptions,
    GenerationRequest,
    default_test_name,
)

logger = logging.getLogger(__name__)

_IMAGE_MIME_TYPE = "image/png"

# JSON schema the model is asked to follow; the reply is validated again on our side.
QUESTION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "question": {"type": "string"},
            "options": {"type": "array", "items": {"type": "string"}},
            "answer": {"type": "integer"},
            "explanation": {"type": "string"},
            "subject": {"type": "string"},
            "topic": {"type": "string"},
        },
        "required": ["question", "options", "answer", "explanation", "subject", "topic"],
    },
}


class GenerationError(Exception):
    """Raised when questions could not be produced from a request."""

    def __init__(self, message: str, failures: list | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []


class ContentModel(Protocol):
    def generate_content(self, contents: Any, generation_config: Any = None) -> Any: ...


class QuestionGenerator:
    """Sends a generation request to the model and validates the returned questions."""

    def __init__(
        self,
        api_key: str = "",
        model_name: str = "gemini-2.5-flash",
        model: ContentModel | None = None,
        temperature: float = 0.4,
    ) -> None:
        self._api_key = api_key
        self._model_name = model_name
        self._model = model
        self._temperature = temperature

    def generate_questions(self, request: GenerationRequest) -> list[Question]:
        model = self._get_model()
        contents: list[Any] = [request.prompt]
        contents.extend({"mime_type": _IMAGE_MIME_TYPE, "data": image} for image in request.images)
        generation_config = {
            "temperature": self._temperature,
            "response_mime_type": "application/json",
            "response_schema": QUESTION_RESPONSE_SCHEMA,
        }

        logger.info(
            "Requesting questions for '%s' (%d image(s))", request.source_label, len(request.images)
        )
        try:
            response = model.generate_content(contents, generation_config=generation_config)
        except Exception as exc:
            logger.error("Question generation failed: %s", exc)
            raise GenerationError(f"Failed to generate questions: {exc}") from exc

        reply = _response_text(response)
        try:
            questions = parse_question_list(load_json_document(_strip_code_fence(reply)))
        except RecordValidationError as exc:
            logger.warning("Model reply failed validation: %s", exc)
            raise GenerationError(
                f"The generated questions were not in the expected format: {exc}", exc.failures
            ) from exc

        logger.info("Generated %d question(s) for '%s'", len(questions), request.source_label)
        return questions

    def create_test(self, request: GenerationRequest, options: GenerationOptions) -> Test:
        """Generate questions and wrap them in a new, unsaved test."""
        questions = self.generate_questions(request)
        return Test(
            id=new_test_id(),
            name=default_test_name(options, request),
            questions=questions,
            duration=options.duration,
            language=options.language,
            created_at=utc_now(),
            marks_per_question=options.marks_per_question,
            negative_marking=options.negative_marking,
        )

    def _get_model(self) -> ContentModel:
        if self._model is None:
            if not self._api_key:
                raise GenerationError("GEMINI_API_KEY is not configured.")
            genai.configure(api_key=self._api_key)
            self._model = genai.GenerativeModel(self._model_name)
        return self._model


def _response_text(response: Any) -> str:
    # ``response.text`` raises ValueError when the reply was blocked or has no parts.
    try:
        text = response.text
    except ValueError as exc:
        raise GenerationError("The model returned no content (the request may have been blocked).") from exc
    if not text or not text.strip():
        raise GenerationError("The model returned an empty response.")
    return text


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()
