"""FastAPI server exposing accounts, the test library, attempts and analytics."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from threading import Thread
from typing import Any, Iterator, Literal

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
import uvicorn

from prep_app.constants.about import APP_NAME, APP_VERSION
from prep_app.constants.messages import (
    ATTEMPT_SAVED_MESSAGE,
    DATA_RESTORED_MESSAGE,
    DATA_SYNCED_MESSAGE,
    TEST_DELETED_MESSAGE,
    TEST_SAVED_MESSAGE,
    TEST_UPDATED_MESSAGE,
)
from prep_app.constants.network_constants import API_PREFIX
from prep_app.constants.test_constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LANGUAGE,
    DEFAULT_MARKS_PER_QUESTION,
    DEFAULT_NEGATIVE_MARKING,
    DEFAULT_QUESTION_COUNT,
)
from prep_app.core.library_transfer import TestImportError, backup_file_name, shared_test_file_name
from prep_app.core.markdown_math_renderer import renderer
from prep_app.core.models import Test
from prep_app.core.prep_manager import PrepManager, PrepManagerRegistry, UnknownRecordError
from prep_app.core.report_exporter import report_file_name
from prep_app.core.schemas import (
    FieldFailure,
    RecordValidationError,
    parse_attempt,
    parse_test,
    serialize_attempt,
    serialize_test,
)
from prep_app.core.services.analytics import AnalyticsSummary
from prep_app.core.services.attempt_engine import AttemptError, AttemptSnapshot
from prep_app.core.services.auth_service import AuthError, AuthService, TokenIdentity
from prep_app.core.services.draft_editor import NoDraftError
from prep_app.core.services.pdf_extractor import PdfExtractor
from prep_app.core.services.question_generator import GenerationError, QuestionGenerator
from prep_app.core.services.question_source import GenerationOptions, SourceInput, SourceMode
from prep_app.core.services.reporting import AttemptReport
from prep_app.core.services.storage_gateway import JsonFileStore, KeyValueStore
from prep_app.utils.settings import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


class RegisterPayload(BaseModel):
    """Payload schema for account creation."""

    name: str = ""
    email: str = ""
    password: str = ""


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""


class StartPayload(BaseModel):
    test_id: str


class SelectPayload(BaseModel):
    option_index: int


class NavigatePayload(BaseModel):
    """Either an absolute question index or a relative direction."""

    index: int | None = None
    direction: Literal["next", "previous"] | None = None


class AbandonPayload(BaseModel):
    confirmed: bool = False


class QuestionEditPayload(BaseModel):
    """Fields of one draft question; omitted fields keep their value."""

    question: str | None = None
    options: list[str] | None = None
    answer: int | None = None
    explanation: str | None = None
    subject: str | None = None
    topic: str | None = None


class DraftDetailsPayload(BaseModel):
    name: str | None = None
    duration: int | None = None
    language: str | None = None
    marks_per_question: float | None = None
    negative_marking: float | None = None


class DraftFormPayload(BaseModel):
    questions: list[dict[str, Any]]


_QUESTION_FIELD_NAMES = {"question": "question_text", "answer": "correct_option_index"}


@contextmanager
def _http_errors() -> Iterator[None]:
    """Translate domain exceptions into HTTP errors."""
    try:
        yield
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except UnknownRecordError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (RecordValidationError, TestImportError, GenerationError) as exc:
        status_code = 502 if isinstance(exc, GenerationError) else 422
        raise HTTPException(
            status_code=status_code,
            detail={"message": str(exc), "failures": _failures_view(exc.failures)},
        ) from exc
    except (ValueError, IndexError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (AttemptError, NoDraftError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _failures_view(failures: list[FieldFailure]) -> list[dict[str, str]]:
    return [
        {"path": failure.path, "kind": failure.kind.value, "message": failure.message}
        for failure in failures
    ]


def _session_view(manager: PrepManager) -> dict[str, object]:
    engine = manager.engine
    notices = engine.drain_notices()
    if not engine.has_active_attempt():
        return {"active": False, "notices": notices, "last_attempt_id": manager.last_attempt_id}
    snapshot: AttemptSnapshot = engine.snapshot()
    question = snapshot.question
    rendered = renderer.render_question(question)
    return {
        "active": True,
        "notices": notices,
        "test_id": snapshot.test_id,
        "test_name": snapshot.test_name,
        "question_index": snapshot.question_index,
        "question_count": snapshot.question_count,
        "question_html": rendered["question_html"],
        "options_html": rendered["options_html"],
        "subject": question.subject,
        "topic": question.topic,
        "selected_option": snapshot.selected_option,
        "remaining_seconds": snapshot.remaining_seconds,
        "palette": [
            {"index": entry.index, "status": entry.status.value, "is_current": entry.is_current}
            for entry in snapshot.palette
        ],
        "status_counts": {status.value: count for status, count in snapshot.status_counts.items()},
    }


def _draft_view(draft: Test) -> dict[str, object]:
    # Drafts may be incomplete, so they are not passed through the wire schema.
    return {
        "id": draft.id,
        "name": draft.name,
        "duration": draft.duration,
        "language": draft.language,
        "marks_per_question": draft.marks_per_question,
        "negative_marking": draft.negative_marking,
        "questions": [
            {
                "index": index,
                "question": question.question_text,
                "options": list(question.options),
                "answer": question.correct_option_index,
                "explanation": question.explanation,
                "subject": question.subject,
                "topic": question.topic,
            }
            for index, question in enumerate(draft.questions)
        ],
    }


def _report_view(report: AttemptReport) -> dict[str, object]:
    return {
        "attempt": serialize_attempt(report.attempt),
        "accuracy": report.accuracy,
        "subjects": [
            {
                "subject": row.subject,
                "correct": row.correct,
                "total": row.total,
                "accuracy": row.accuracy,
                "topics": [
                    {"topic": t.topic, "correct": t.correct, "total": t.total, "accuracy": t.accuracy}
                    for t in row.topics
                ],
            }
            for row in report.subjects
        ],
        "timings": [
            {"index": timing.index, "seconds": timing.seconds, "outcome": timing.outcome.value}
            for timing in report.timings
        ],
        "slowest_seconds": report.slowest_seconds,
        "mistakes": [
            {
                "index": review.index,
                "question": review.question.question_text,
                "user_answer": review.user_answer,
                "explanation": review.question.explanation,
                "options": [
                    {"text": option.text, "marker": option.marker} for option in review.options
                ],
            }
            for review in report.mistakes
        ],
    }


def _analytics_view(summary: AnalyticsSummary) -> dict[str, object]:
    return {
        "attempts_taken": summary.attempts_taken,
        "total_questions": summary.total_questions,
        "total_correct": summary.total_correct,
        "average_score": summary.average_score,
        "overall_accuracy": summary.overall_accuracy,
        "total_time_seconds": summary.total_time_seconds,
        "study_time": summary.study_time_label,
        "streak": summary.streak,
        "subjects": [
            {
                "subject": mastery.subject,
                "correct": mastery.correct,
                "total": mastery.total,
                "accuracy": mastery.accuracy,
                "average_time": mastery.average_time,
                "topics": [
                    {"topic": t.topic, "correct": t.correct, "total": t.total, "accuracy": t.accuracy}
                    for t in mastery.ranked_topics()
                ],
            }
            for mastery in summary.subjects
        ],
        "recent_attempts": [serialize_attempt(attempt) for attempt in summary.recent_attempts],
    }


def _attachment(content: str, file_name: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


def _parse_list(payload: Any, key: str) -> list[Any]:
    items = payload.get(key, []) if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise ValueError(f"'{key}' must be an array.")
    return items


def create_api_app(
    settings: Settings,
    store: KeyValueStore | None = None,
    generator: QuestionGenerator | None = None,
    pdf_extractor: PdfExtractor | None = None,
    background_timer: bool = True,
) -> FastAPI:
    """Create a FastAPI application wired to the configured store and generator."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    store = store or JsonFileStore(settings.data_file)
    auth = AuthService(store, settings.jwt_secret, settings.token_ttl)
    registry = PrepManagerRegistry(
        store=store,
        generator=generator
        or QuestionGenerator(api_key=settings.gemini_api_key, model_name=settings.gemini_model),
        pdf_extractor=pdf_extractor or PdfExtractor(max_image_pages=settings.pdf_max_image_pages),
        cleared_mark_policy=settings.cleared_mark_policy,
        background_timer=background_timer,
    )
    app.state.registry = registry

    def current_identity(
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    ) -> TokenIdentity:
        with _http_errors():
            return auth.verify_token(credentials.credentials if credentials else None)

    def current_manager(identity: TokenIdentity = Depends(current_identity)) -> PrepManager:
        return registry.get(identity.id)

    # --- Health and auth ---

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}

    @app.post(f"{API_PREFIX}/auth/register", status_code=201)
    def register(payload: RegisterPayload) -> dict[str, object]:
        with _http_errors():
            account, token = auth.register(payload.name, payload.email, payload.password)
        return {"message": "Account created successfully", "token": token, "user": account.public_view()}

    @app.post(f"{API_PREFIX}/auth/login")
    def login(payload: LoginPayload) -> dict[str, object]:
        with _http_errors():
            account, token = auth.login(payload.email, payload.password)
        return {"message": "Login successful", "token": token, "user": account.public_view()}

    @app.get(f"{API_PREFIX}/auth/verify")
    def verify(identity: TokenIdentity = Depends(current_identity)) -> dict[str, object]:
        return {"user": identity.as_dict()}

    # --- Tests ---

    @app.get(f"{API_PREFIX}/tests")
    def list_tests(manager: PrepManager = Depends(current_manager)) -> list[dict[str, Any]]:
        return [serialize_test(test) for test in manager.list_tests()]

    @app.post(f"{API_PREFIX}/tests")
    def save_test(
        payload: Any = Body(...),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        with _http_errors():
            test = parse_test(payload).to_model()
            is_new = manager.save_test(test)
        return {
            "message": TEST_SAVED_MESSAGE if is_new else TEST_UPDATED_MESSAGE,
            "test": serialize_test(test),
        }

    @app.delete(f"{API_PREFIX}/tests/{{test_id}}")
    def delete_test(test_id: str, manager: PrepManager = Depends(current_manager)) -> dict[str, str]:
        with _http_errors():
            manager.delete_test(test_id)
        return {"message": TEST_DELETED_MESSAGE}

    @app.get(f"{API_PREFIX}/tests/{{test_id}}/export")
    def export_test(test_id: str, manager: PrepManager = Depends(current_manager)) -> Response:
        with _http_errors():
            test, document = manager.export_test(test_id)
        return _attachment(document, shared_test_file_name(test), "application/json")

    @app.post(f"{API_PREFIX}/tests/import", status_code=201)
    def import_test(
        file: UploadFile = File(...),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        raw_bytes = file.file.read()
        with _http_errors():
            test = manager.import_test(_decode_upload(raw_bytes))
        return {"message": "Test imported successfully!", "test": serialize_test(test)}

    @app.post(f"{API_PREFIX}/tests/generate", status_code=201)
    def generate_test(
        mode: SourceMode = Form(...),
        text: str = Form(""),
        question_count: int = Form(DEFAULT_QUESTION_COUNT),
        language: str = Form(DEFAULT_LANGUAGE),
        test_name: str = Form(""),
        duration: int = Form(DEFAULT_DURATION_MINUTES),
        marks_per_question: float = Form(DEFAULT_MARKS_PER_QUESTION),
        negative_marking: float = Form(DEFAULT_NEGATIVE_MARKING),
        file: UploadFile | None = File(None),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        source = SourceInput(mode=mode, text=text)
        if file is not None:
            source.file_name = file.filename
            source.file_bytes = file.file.read()
            source.content_type = file.content_type
        options = GenerationOptions(
            question_count=question_count,
            language=language,
            test_name=test_name,
            duration=duration,
            marks_per_question=marks_per_question,
            negative_marking=negative_marking,
        )
        with _http_errors():
            test = manager.generate_test(source, options)
        return {"message": TEST_SAVED_MESSAGE, "test": serialize_test(test)}

    # --- Editing ---

    @app.post(f"{API_PREFIX}/tests/{{test_id}}/edit")
    def begin_edit(test_id: str, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            return _draft_view(manager.begin_edit(test_id))

    @app.get(f"{API_PREFIX}/edit")
    def get_draft(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            return _draft_view(manager.editor.draft)

    @app.patch(f"{API_PREFIX}/edit")
    def update_draft_details(
        payload: DraftDetailsPayload,
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        with _http_errors():
            manager.editor.update_details(**payload.model_dump(exclude_unset=True, exclude_none=True))
            return _draft_view(manager.editor.draft)

    @app.put(f"{API_PREFIX}/edit/questions")
    def sync_draft_questions(
        payload: DraftFormPayload,
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        with _http_errors():
            manager.editor.sync_from_form(payload.questions)
            return _draft_view(manager.editor.draft)

    @app.post(f"{API_PREFIX}/edit/questions", status_code=201)
    def add_draft_question(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.editor.add_blank_question()
            return _draft_view(manager.editor.draft)

    @app.patch(f"{API_PREFIX}/edit/questions/{{index}}")
    def update_draft_question(
        index: int,
        payload: QuestionEditPayload,
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        fields = {
            _QUESTION_FIELD_NAMES.get(name, name): value
            for name, value in payload.model_dump(exclude_unset=True, exclude_none=True).items()
        }
        with _http_errors():
            manager.editor.update_question(index, **fields)
            return _draft_view(manager.editor.draft)

    @app.delete(f"{API_PREFIX}/edit/questions/{{index}}")
    def delete_draft_question(index: int, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.editor.delete_question(index)
            return _draft_view(manager.editor.draft)

    @app.post(f"{API_PREFIX}/edit/save")
    def save_draft(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            saved, is_new = manager.save_draft()
        return {
            "message": TEST_SAVED_MESSAGE if is_new else TEST_UPDATED_MESSAGE,
            "test": serialize_test(saved),
        }

    @app.delete(f"{API_PREFIX}/edit")
    def discard_draft(manager: PrepManager = Depends(current_manager)) -> dict[str, bool]:
        return {"discarded": manager.discard_draft()}

    # --- Attempts and analytics ---

    @app.get(f"{API_PREFIX}/attempts")
    def list_attempts(manager: PrepManager = Depends(current_manager)) -> list[dict[str, Any]]:
        return [serialize_attempt(attempt) for attempt in manager.list_attempts()]

    @app.post(f"{API_PREFIX}/attempts")
    def save_attempt(
        payload: Any = Body(...),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        with _http_errors():
            attempt = manager.record_attempt(parse_attempt(payload).to_model())
        return {"message": ATTEMPT_SAVED_MESSAGE, "attempt": serialize_attempt(attempt)}

    @app.get(f"{API_PREFIX}/attempts/{{attempt_id}}/report")
    def attempt_report(attempt_id: str, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            return _report_view(manager.attempt_report(attempt_id))

    @app.get(f"{API_PREFIX}/attempts/{{attempt_id}}/report.txt")
    def attempt_report_text(attempt_id: str, manager: PrepManager = Depends(current_manager)) -> Response:
        with _http_errors():
            attempt, text = manager.attempt_report_text(attempt_id)
        return _attachment(text, report_file_name(attempt), "text/plain; charset=utf-8")

    @app.get(f"{API_PREFIX}/analytics")
    def analytics(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        return _analytics_view(manager.analytics())

    # --- Sync and backup ---

    @app.get(f"{API_PREFIX}/sync")
    def get_sync(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        tests, attempts = manager.snapshot()
        return {
            "tests": [serialize_test(test) for test in tests],
            "attempts": [serialize_attempt(attempt) for attempt in attempts],
        }

    @app.post(f"{API_PREFIX}/sync")
    def post_sync(
        payload: Any = Body(...),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, str]:
        with _http_errors():
            tests = [parse_test(raw).to_model() for raw in _parse_list(payload, "tests")]
            attempts = [parse_attempt(raw).to_model() for raw in _parse_list(payload, "attempts")]
            manager.replace_all(tests, attempts)
        return {"message": DATA_SYNCED_MESSAGE}

    @app.get(f"{API_PREFIX}/backup")
    def get_backup(manager: PrepManager = Depends(current_manager)) -> Response:
        return _attachment(manager.export_backup(), backup_file_name(), "application/json")

    @app.post(f"{API_PREFIX}/backup/restore")
    def restore_backup(
        file: UploadFile = File(...),
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, object]:
        raw_bytes = file.file.read()
        with _http_errors():
            result = manager.restore_backup(_decode_upload(raw_bytes))
        return {
            "message": DATA_RESTORED_MESSAGE,
            "tests": len(result.tests),
            "attempts": len(result.attempts),
        }

    # --- Active attempt ---

    @app.post(f"{API_PREFIX}/session/start", status_code=201)
    def start_session(payload: StartPayload, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.start_attempt(payload.test_id)
            return _session_view(manager)

    @app.get(f"{API_PREFIX}/session")
    def get_session(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        return _session_view(manager)

    @app.post(f"{API_PREFIX}/session/select")
    def select_option(payload: SelectPayload, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.engine.select_option(payload.option_index)
            return _session_view(manager)

    @app.post(f"{API_PREFIX}/session/clear")
    def clear_selection(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.engine.clear_selection()
            return _session_view(manager)

    @app.post(f"{API_PREFIX}/session/navigate")
    def navigate(payload: NavigatePayload, manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            if payload.index is not None:
                manager.engine.navigate(payload.index)
            elif payload.direction == "next":
                manager.engine.next()
            elif payload.direction == "previous":
                manager.engine.previous()
            else:
                raise ValueError("Provide either 'index' or 'direction'.")
            return _session_view(manager)

    @app.post(f"{API_PREFIX}/session/mark")
    def mark_for_review(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            manager.engine.mark_for_review()
            return _session_view(manager)

    @app.post(f"{API_PREFIX}/session/submit")
    def submit_session(manager: PrepManager = Depends(current_manager)) -> dict[str, object]:
        with _http_errors():
            attempt = manager.engine.submit()
        return {"attempt": serialize_attempt(attempt)}

    @app.post(f"{API_PREFIX}/session/abandon")
    def abandon_session(
        payload: AbandonPayload,
        manager: PrepManager = Depends(current_manager),
    ) -> dict[str, bool]:
        return {"abandoned": manager.engine.abandon(payload.confirmed)}

    return app


def _decode_upload(raw_bytes: bytes) -> str:
    try:
        return raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValueError("Uploaded file is not valid UTF-8 text.") from exc


def start_api_server(
    settings: Settings,
    store: KeyValueStore | None = None,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(settings, store=store)
    config = uvicorn.Config(app=app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="PrepApiServer", daemon=True)
    thread.start()
    logger.info("API listening on http://%s:%d%s", settings.host, settings.port, API_PREFIX)
    return thread
