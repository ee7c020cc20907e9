"""Key/value persistence for the prep application.

Two stores share one small interface (``get`` with a default and ``set``):
``JsonFileStore`` keeps every key in a single JSON document on disk, and
``MemoryStore`` keeps them in a dictionary for tests and single-device use.
Corrupt data never stops the application: it is logged and the caller's
default is returned instead.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
import tempfile
from threading import Lock
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-memory store; values are deep-copied in and out like a serialized store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._lock = Lock()
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)


class JsonFileStore:
    """Store backed by one JSON object in a file. Last write wins across processes."""

    def __init__(self, file_path: Path) -> None:
        self._file_path = Path(file_path)
        self._lock = Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def get(self, key: str, default: Any) -> Any:
        with self._lock:
            document = self._read_document()
        if key not in document:
            return default
        return document[key]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            document = self._read_document()
            document[key] = value
            self._write_document(document)

    def _read_document(self) -> dict[str, Any]:
        if not self._file_path.exists():
            return {}
        try:
            text = self._file_path.read_text(encoding="utf-8")
            document = json.loads(text) if text.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error reading data file %s: %s", self._file_path, exc)
            return {}
        if not isinstance(document, dict):
            logger.error("Data file %s does not hold a JSON object; ignoring it.", self._file_path)
            return {}
        return document

    def _write_document(self, document: dict[str, Any]) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._file_path.name}.", suffix=".tmp", dir=self._file_path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
            os.replace(temp_name, self._file_path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
