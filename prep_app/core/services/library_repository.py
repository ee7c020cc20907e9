"""Per-account access to saved tests and attempt history."""

from __future__ import annotations

import logging
from typing import Any

from prep_app.core.models import Attempt, Test, new_attempt_id
from prep_app.core.schemas import (
    RecordValidationError,
    parse_attempt,
    parse_test,
    serialize_attempt,
    serialize_test,
)
from prep_app.core.services.storage_gateway import KeyValueStore

logger = logging.getLogger(__name__)

TESTS_KEY = "tests"
ATTEMPTS_KEY = "attempts"
BOOKMARKS_KEY = "bookmarks"
_OWNER_FIELD = "userId"


class LibraryRepository:
    """Reads and writes one account's tests and attempts in a shared store.

    Every stored record carries the owning account id; records owned by other
    accounts are passed through untouched on writes and never returned.
    """

    def __init__(self, store: KeyValueStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id

    @property
    def user_id(self) -> str:
        return self._user_id

    # --- Tests ---

    def list_tests(self) -> list[Test]:
        tests: list[Test] = []
        for raw in self._owned(TESTS_KEY):
            try:
                tests.append(parse_test(raw).to_model())
            except RecordValidationError as exc:
                logger.warning("Skipping unreadable stored test %r: %s", raw.get("id"), exc)
        return tests

    def get_test(self, test_id: str) -> Test | None:
        return next((test for test in self.list_tests() if test.id == test_id), None)

    def save_test(self, test: Test) -> bool:
        """Update the test in place or prepend it. Returns True when it was new."""
        records = self._records(TESTS_KEY)
        stored = self._stamp(serialize_test(test))
        for index, raw in enumerate(records):
            if self._is_owned(raw) and raw.get("id") == test.id:
                records[index] = stored
                self._store.set(TESTS_KEY, records)
                return False
        records.insert(0, stored)
        self._store.set(TESTS_KEY, records)
        return True

    def delete_test(self, test_id: str) -> bool:
        records = self._records(TESTS_KEY)
        remaining = [
            raw for raw in records if not (self._is_owned(raw) and raw.get("id") == test_id)
        ]
        if len(remaining) == len(records):
            return False
        self._store.set(TESTS_KEY, remaining)
        return True

    # --- Attempts ---

    def list_attempts(self) -> list[Attempt]:
        """Return the account's attempts, most recent first."""
        attempts: list[Attempt] = []
        for raw in self._owned(ATTEMPTS_KEY):
            try:
                attempts.append(parse_attempt(raw).to_model())
            except RecordValidationError as exc:
                logger.warning("Skipping unreadable stored attempt %r: %s", raw.get("id"), exc)
        return attempts

    def get_attempt(self, attempt_id: str) -> Attempt | None:
        return next((a for a in self.list_attempts() if a.id == attempt_id), None)

    def append_attempt(self, attempt: Attempt) -> Attempt:
        """Assign an id and prepend the attempt to the history."""
        attempt.id = new_attempt_id()
        records = self._records(ATTEMPTS_KEY)
        records.insert(0, self._stamp(serialize_attempt(attempt)))
        self._store.set(ATTEMPTS_KEY, records)
        return attempt

    # --- Bulk ---

    def snapshot(self) -> tuple[list[Test], list[Attempt]]:
        return self.list_tests(), self.list_attempts()

    def replace_all(self, tests: list[Test], attempts: list[Attempt]) -> None:
        """Drop this account's records and store the given ones in order."""
        for attempt in attempts:
            if attempt.id is None:
                attempt.id = new_attempt_id()
        self._replace_owned(TESTS_KEY, [serialize_test(test) for test in tests])
        self._replace_owned(ATTEMPTS_KEY, [serialize_attempt(a) for a in attempts])

    # --- Bookmarks ---

    def list_bookmarks(self) -> list[dict[str, Any]]:
        return [
            {k: v for k, v in raw.items() if k != _OWNER_FIELD} for raw in self._owned(BOOKMARKS_KEY)
        ]

    def replace_bookmarks(self, bookmarks: list[dict[str, Any]]) -> None:
        self._replace_owned(BOOKMARKS_KEY, bookmarks)

    # --- Helpers ---

    def _records(self, key: str) -> list[Any]:
        records = self._store.get(key, [])
        if not isinstance(records, list):
            logger.error("Stored %r is not a list; treating it as empty.", key)
            return []
        return records

    def _owned(self, key: str) -> list[dict[str, Any]]:
        return [raw for raw in self._records(key) if self._is_owned(raw)]

    def _replace_owned(self, key: str, new_records: list[dict[str, Any]]) -> None:
        others = [raw for raw in self._records(key) if not self._is_owned(raw)]
        self._store.set(key, [self._stamp(raw) for raw in new_records] + others)

    def _is_owned(self, raw: Any) -> bool:
        return isinstance(raw, dict) and raw.get(_OWNER_FIELD) == self._user_id

    def _stamp(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {**raw, _OWNER_FIELD: self._user_id}
