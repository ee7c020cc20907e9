"""Sharing tests as JSON files and backing up a whole library.

Formats:

    Test file   the test's wire record (``id``, ``name``, ``questions``,
                ``duration``, ``language``, ``createdAt``,
                ``marksPerQuestion``, ``negativeMarking``).
    Backup      ``{"tests": [...], "performanceHistory": [...],
                "bookmarks": [...], "exportedAt": "<ISO timestamp>"}``.
                Bookmarks are free-form objects kept as they are.

Importing a single test always creates a new test (fresh id, creation time
and an "(Imported)" suffix). Restoring a backup merges into what is already
stored: imported tests win over stored tests with the same id, and attempts
already present are not duplicated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
import re
from typing import Any, Callable, TypeVar

from prep_app.core.models import Attempt, Test, new_test_id, utc_now
from prep_app.core.schemas import (
    AttemptRecord,
    BackupRecord,
    RecordValidationError,
    TestRecord,
    dump_record,
    load_json_document,
    parse_backup,
    parse_test,
    serialize_test,
)


_RecordT = TypeVar("_RecordT")


class TestImportError(Exception):
    """Raised when a test file or backup cannot be imported."""

    __test__ = False

    def __init__(self, message: str, failures: list | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []


@dataclass(slots=True)
class MergeResult:
    tests: list[Test]
    attempts: list[Attempt]
    bookmarks: list[dict[str, Any]]
    imported_tests: int
    imported_attempts: int


def export_test_json(test: Test) -> str:
    return json.dumps(serialize_test(test), indent=2, ensure_ascii=False)


def shared_test_file_name(test: Test) -> str:
    return f"test-{re.sub(r'[^a-z0-9]', '_', test.name, flags=re.IGNORECASE).lower()}.json"


def import_test_json(text: str, now: datetime | None = None) -> Test:
    """Parse a shared test file into a brand-new test."""
    record = _parse(lambda: parse_test(load_json_document(text)), "Invalid test file format")
    if not record.questions:
        raise TestImportError("Invalid test file format: the test has no questions.")
    imported = record.model_copy(
        update={
            "id": new_test_id(),
            "name": f"{record.name} (Imported)",
            "created_at": now or utc_now(),
        }
    )
    return imported.to_model()


def export_backup_json(
    tests: list[Test],
    attempts: list[Attempt],
    now: datetime | None = None,
    bookmarks: list[dict[str, Any]] | None = None,
) -> str:
    backup = BackupRecord(
        tests=[TestRecord.from_model(test) for test in tests],
        performance_history=[AttemptRecord.from_model(attempt) for attempt in attempts],
        bookmarks=list(bookmarks or []),
        exported_at=now or utc_now(),
    )
    return json.dumps(dump_record(backup), indent=2, ensure_ascii=False)


def backup_file_name(now: datetime | None = None) -> str:
    return f"prep-backup-{(now or utc_now()):%Y-%m-%d}.json"


def merge_backup(
    backup_text: str,
    current_tests: list[Test],
    current_attempts: list[Attempt],
    current_bookmarks: list[dict[str, Any]] | None = None,
) -> MergeResult:
    """Merge a backup into the current library without duplicating tests or attempts."""
    backup = _parse(lambda: parse_backup(load_json_document(backup_text)), "Invalid backup file")
    imported_tests = [record.to_model() for record in backup.tests]
    imported_attempts = [record.to_model() for record in backup.performance_history]

    merged_tests: dict[str, Test] = {}
    for test in imported_tests + current_tests:
        # First occurrence wins, and imported tests come first.
        merged_tests.setdefault(test.id, test)

    seen: set[tuple[str, datetime]] = set()
    merged_attempts: list[Attempt] = []
    for attempt in imported_attempts + current_attempts:
        key = (attempt.test_id, attempt.completed_at)
        if key in seen:
            continue
        seen.add(key)
        merged_attempts.append(attempt)

    seen_bookmarks: set[str] = set()
    merged_bookmarks: list[dict[str, Any]] = []
    for bookmark in backup.bookmarks + list(current_bookmarks or []):
        key = json.dumps(bookmark, sort_keys=True)
        if key not in seen_bookmarks:
            seen_bookmarks.add(key)
            merged_bookmarks.append(bookmark)

    return MergeResult(
        tests=list(merged_tests.values()),
        attempts=merged_attempts,
        bookmarks=merged_bookmarks,
        imported_tests=len(imported_tests),
        imported_attempts=len(imported_attempts),
    )


def _parse(parse: Callable[[], _RecordT], message: str) -> _RecordT:
    try:
        return parse()
    except RecordValidationError as exc:
        raise TestImportError(f"{message}: {exc}", exc.failures) from exc
