"""Business logic for one account, shared between the API routes and the attempt timer."""

from __future__ import annotations

from datetime import date, tzinfo
import logging
from threading import Lock, RLock

from prep_app.core.library_transfer import (
    MergeResult,
    export_backup_json,
    export_test_json,
    import_test_json,
    merge_backup,
)
from prep_app.core.models import Attempt, ClearedMarkPolicy, Test
from prep_app.core.report_exporter import render_attempt_report
from prep_app.core.services.analytics import AnalyticsSummary, build_analytics
from prep_app.core.services.attempt_engine import AttemptEngine
from prep_app.core.services.draft_editor import DraftEditor
from prep_app.core.services.library_repository import LibraryRepository
from prep_app.core.services.pdf_extractor import PdfExtractor
from prep_app.core.services.question_generator import QuestionGenerator
from prep_app.core.services.question_source import (
    GenerationOptions,
    SourceInput,
    build_generation_request,
)
from prep_app.core.services.reporting import AttemptReport, build_attempt_report
from prep_app.core.services.storage_gateway import KeyValueStore

logger = logging.getLogger(__name__)


class UnknownRecordError(LookupError):
    """Raised when a test or attempt id does not exist for the account."""


class PrepManager:
    """Facade for one account: Repository, AttemptEngine, DraftEditor, analytics and transfer."""

    def __init__(
        self,
        repository: LibraryRepository,
        generator: QuestionGenerator,
        pdf_extractor: PdfExtractor | None = None,
        cleared_mark_policy: ClearedMarkPolicy = ClearedMarkPolicy.REVERT_TO_MARKED,
        store_lock: RLock | None = None,
        background_timer: bool = True,
    ) -> None:
        # The lock is shared by every account writing to the same store.
        self._lock = store_lock or RLock()
        self._repository = repository
        self._generator = generator
        self._pdf_extractor = pdf_extractor or PdfExtractor()
        self._editor = DraftEditor()
        self._last_attempt_id: str | None = None
        self._engine = AttemptEngine(
            record_attempt=self._record_finished_attempt,
            cleared_mark_policy=cleared_mark_policy,
            background_timer=background_timer,
        )

    @property
    def user_id(self) -> str:
        return self._repository.user_id

    @property
    def engine(self) -> AttemptEngine:
        return self._engine

    @property
    def editor(self) -> DraftEditor:
        return self._editor

    # --- Library ---

    def list_tests(self) -> list[Test]:
        with self._lock:
            return self._repository.list_tests()

    def get_test(self, test_id: str) -> Test:
        with self._lock:
            test = self._repository.get_test(test_id)
        if test is None:
            raise UnknownRecordError(f"Test {test_id!r} not found.")
        return test

    def save_test(self, test: Test) -> bool:
        if not test.questions:
            raise ValueError("Test must contain at least one question.")
        with self._lock:
            return self._repository.save_test(test)

    def delete_test(self, test_id: str) -> None:
        with self._lock:
            if not self._repository.delete_test(test_id):
                raise UnknownRecordError(f"Test {test_id!r} not found.")

    def generate_test(self, source: SourceInput, options: GenerationOptions) -> Test:
        """Build a prompt from the source, generate questions and save the new test."""
        request = build_generation_request(source, options, self._pdf_extractor)
        test = self._generator.create_test(request, options)
        with self._lock:
            self._repository.save_test(test)
        logger.info("Created test %s with %d question(s)", test.id, len(test.questions))
        return test

    # --- Editing ---

    def begin_edit(self, test_id: str) -> Test:
        return self._editor.load(self.get_test(test_id))

    def save_draft(self) -> tuple[Test, bool]:
        with self._lock:
            saved, is_new = self._editor.save(self._repository)
        self._editor.clear()
        return saved, is_new

    def discard_draft(self) -> bool:
        had_draft = self._editor.has_draft()
        self._editor.clear()
        return had_draft

    # --- Attempts ---

    def start_attempt(self, test_id: str) -> None:
        self._engine.start(self.get_test(test_id))

    def list_attempts(self) -> list[Attempt]:
        with self._lock:
            return self._repository.list_attempts()

    def get_attempt(self, attempt_id: str) -> Attempt:
        with self._lock:
            attempt = self._repository.get_attempt(attempt_id)
        if attempt is None:
            raise UnknownRecordError(f"Attempt {attempt_id!r} not found.")
        return attempt

    def record_attempt(self, attempt: Attempt) -> Attempt:
        """Store an attempt scored elsewhere (for example an offline client)."""
        return self._record_finished_attempt(attempt)

    def attempt_report(self, attempt_id: str) -> AttemptReport:
        return build_attempt_report(self.get_attempt(attempt_id))

    def attempt_report_text(self, attempt_id: str, tz: tzinfo | None = None) -> tuple[Attempt, str]:
        attempt = self.get_attempt(attempt_id)
        return attempt, render_attempt_report(attempt, tz)

    def analytics(self, today: date | None = None, tz: tzinfo | None = None) -> AnalyticsSummary:
        return build_analytics(self.list_attempts(), today=today, tz=tz)

    # --- Sync and transfer ---

    def snapshot(self) -> tuple[list[Test], list[Attempt]]:
        with self._lock:
            return self._repository.snapshot()

    def replace_all(self, tests: list[Test], attempts: list[Attempt]) -> None:
        with self._lock:
            self._repository.replace_all(tests, attempts)
        logger.info("Replaced library for %s: %d test(s), %d attempt(s)", self.user_id, len(tests), len(attempts))

    def export_test(self, test_id: str) -> tuple[Test, str]:
        test = self.get_test(test_id)
        return test, export_test_json(test)

    def import_test(self, text: str) -> Test:
        test = import_test_json(text)
        with self._lock:
            self._repository.save_test(test)
        return test

    def export_backup(self) -> str:
        with self._lock:
            tests, attempts = self._repository.snapshot()
            bookmarks = self._repository.list_bookmarks()
        return export_backup_json(tests, attempts, bookmarks=bookmarks)

    def restore_backup(self, text: str) -> MergeResult:
        with self._lock:
            tests, attempts = self._repository.snapshot()
            result = merge_backup(text, tests, attempts, self._repository.list_bookmarks())
            self._repository.replace_all(result.tests, result.attempts)
            self._repository.replace_bookmarks(result.bookmarks)
        logger.info(
            "Restored backup for %s: %d test(s), %d attempt(s) imported",
            self.user_id,
            result.imported_tests,
            result.imported_attempts,
        )
        return result

    def shutdown(self) -> None:
        self._engine.abandon(confirmed=True)

    @property
    def last_attempt_id(self) -> str | None:
        """Id of the most recently recorded attempt, including auto-submitted ones."""
        return self._last_attempt_id

    def _record_finished_attempt(self, attempt: Attempt) -> Attempt:
        with self._lock:
            recorded = self._repository.append_attempt(attempt)
            self._last_attempt_id = recorded.id
            return recorded


class PrepManagerRegistry:
    """Creates one ``PrepManager`` per account on first use."""

    def __init__(
        self,
        store: KeyValueStore,
        generator: QuestionGenerator,
        pdf_extractor: PdfExtractor | None = None,
        cleared_mark_policy: ClearedMarkPolicy = ClearedMarkPolicy.REVERT_TO_MARKED,
        background_timer: bool = True,
    ) -> None:
        self._lock = Lock()
        self._store_lock = RLock()
        self._store = store
        self._generator = generator
        self._pdf_extractor = pdf_extractor or PdfExtractor()
        self._cleared_mark_policy = cleared_mark_policy
        self._background_timer = background_timer
        self._managers: dict[str, PrepManager] = {}

    def get(self, user_id: str) -> PrepManager:
        with self._lock:
            manager = self._managers.get(user_id)
            if manager is None:
                manager = PrepManager(
                    repository=LibraryRepository(self._store, user_id),
                    generator=self._generator,
                    pdf_extractor=self._pdf_extractor,
                    cleared_mark_policy=self._cleared_mark_policy,
                    store_lock=self._store_lock,
                    background_timer=self._background_timer,
                )
                self._managers[user_id] = manager
            return manager

    def shutdown(self) -> None:
        with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            manager.shutdown()
