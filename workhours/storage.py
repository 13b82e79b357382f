"""Key-value storage backends for the persisted blobs.

The store keeps three blobs (records, in-progress session, company names) and
only talks to the small ``KeyValueStorage`` interface below, so the SQLite
backend can be swapped for JSON files or an in-memory dict in tests.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from threading import RLock
from typing import Dict, Optional, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .database import create_session_factory, create_sqlite_engine, db_session
from .errors import PersistenceError
from .models import StorageEntry

logger = logging.getLogger(__name__)

RECORDS_KEY = "WorkSessions"
IN_PROGRESS_KEY = "InProgressSession"
COMPANIES_KEY = "CompanyNames"


class KeyValueStorage(Protocol):
    """Minimal contract the store needs from a backend.

    ``read`` returns ``None`` for an absent key. Every method raises
    ``PersistenceError`` when the backend fails.
    """

    def read(self, key: str) -> Optional[str]: ...
    def write(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...
    def flush(self) -> None: ...


class MemoryStorage:
    """Dict-backed storage, used by tests and the ``memory`` backend."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._lock = RLock()
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def flush(self) -> None:
        return None


class SQLiteStorage:
    """Blobs stored as rows of the ``storage_entries`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._factory = create_session_factory(engine)

    @classmethod
    def from_path(cls, path: Path) -> "SQLiteStorage":
        try:
            return cls(create_sqlite_engine(path))
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Cannot open database at {path}: {exc}") from exc

    def read(self, key: str) -> Optional[str]:
        try:
            with db_session(self._factory) as session:
                entry = session.get(StorageEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as exc:
            logger.error("Reading %s from SQLite failed: %s", key, exc)
            raise PersistenceError(f"Cannot read {key}: {exc}", key=key) from exc

    def write(self, key: str, value: str) -> None:
        try:
            with db_session(self._factory) as session:
                entry = session.get(StorageEntry, key)
                if entry:
                    entry.value = value
                else:
                    session.add(StorageEntry(key=key, value=value))
        except SQLAlchemyError as exc:
            logger.error("Writing %s to SQLite failed: %s", key, exc)
            raise PersistenceError(f"Cannot write {key}: {exc}", key=key) from exc

    def remove(self, key: str) -> None:
        try:
            with db_session(self._factory) as session:
                session.query(StorageEntry).filter(StorageEntry.key == key).delete()
        except SQLAlchemyError as exc:
            logger.error("Removing %s from SQLite failed: %s", key, exc)
            raise PersistenceError(f"Cannot remove {key}: {exc}", key=key) from exc

    def flush(self) -> None:
        # Each write commits on its own; only pooled connections remain.
        self.engine.dispose()


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStorage:
    """One ``<key>.json`` file per blob inside ``directory``.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so a crash never leaves a half-written blob behind.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create {directory}: {exc}") from exc

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Reading %s failed: %s", path, exc)
            raise PersistenceError(f"Cannot read {path}: {exc}", key=key) from exc

    def write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_name: Optional[str] = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(value)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("Writing %s failed: %s", path, exc)
            raise PersistenceError(f"Cannot write {path}: {exc}", key=key) from exc

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Removing %s failed: %s", path, exc)
            raise PersistenceError(f"Cannot remove {path}: {exc}", key=key) from exc

    def flush(self) -> None:
        return None


def build_storage(config: Settings) -> KeyValueStorage:
    if config.storage_backend == "sqlite":
        return SQLiteStorage.from_path(config.sqlite_path)
    if config.storage_backend == "json":
        return JsonFileStorage(config.json_dir)
    return MemoryStorage()


__all__ = [
    "COMPANIES_KEY",
    "IN_PROGRESS_KEY",
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "RECORDS_KEY",
    "SQLiteStorage",
    "build_storage",
]
