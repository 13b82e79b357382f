from __future__ import annotations

import datetime as dt
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from workhours.config import Settings
from workhours.errors import PersistenceError
from workhours.storage import (
    RECORDS_KEY,
    JsonFileStorage,
    MemoryStorage,
    SQLiteStorage,
    build_storage,
)
from workhours.store import CompanyRegistry, WorkRecordStore

BERLIN = ZoneInfo("Europe/Berlin")


@pytest.fixture(params=["sqlite", "json"])
def disk_storage(request, tmp_path: Path):
    if request.param == "sqlite":
        return SQLiteStorage.from_path(tmp_path / "db" / "workhours.db")
    return JsonFileStorage(tmp_path / "state")


def test_absent_key_reads_as_none(disk_storage) -> None:
    assert disk_storage.read(RECORDS_KEY) is None


def test_write_overwrite_and_remove(disk_storage) -> None:
    disk_storage.write("CompanyNames", '["Acme"]')
    disk_storage.write("CompanyNames", '["Acme", "Globex"]')
    assert disk_storage.read("CompanyNames") == '["Acme", "Globex"]'

    disk_storage.remove("CompanyNames")
    disk_storage.remove("CompanyNames")
    assert disk_storage.read("CompanyNames") is None


def test_store_round_trip_through_disk(disk_storage, make_record) -> None:
    store = WorkRecordStore(disk_storage)
    start = dt.datetime(2024, 3, 31, 1, 30, tzinfo=BERLIN)
    created = store.add(make_record(start, 2, company_name="Acme", note="DST night", latitude=1.5, longitude=2.5))
    store.save_in_progress(start)
    registry = CompanyRegistry(disk_storage)
    registry.add("Acme")
    store.flush()

    reloaded = WorkRecordStore(disk_storage)
    assert reloaded.list() == [created]
    assert reloaded.in_progress is not None
    assert CompanyRegistry(disk_storage).list() == ["Acme"]


def test_json_storage_leaves_no_temporary_files(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path)
    storage.write(RECORDS_KEY, "[]")
    storage.write(RECORDS_KEY, "[]")
    assert sorted(path.name for path in tmp_path.iterdir()) == ["WorkSessions.json"]


def test_json_storage_sanitizes_keys(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path)
    storage.write("../escape", "x")
    assert (tmp_path / ".._escape.json").exists()
    assert storage.read("../escape") == "x"


def test_json_storage_reports_unusable_directory(tmp_path: Path) -> None:
    blocker = tmp_path / "occupied"
    blocker.write_text("not a directory")
    with pytest.raises(PersistenceError):
        JsonFileStorage(blocker)


def test_json_storage_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "state")
    (tmp_path / "state").rmdir()
    with pytest.raises(PersistenceError):
        storage.write(RECORDS_KEY, "[]")


def test_build_storage_selects_backend(tmp_path: Path) -> None:
    sqlite = build_storage(Settings(storage_backend="sqlite", sqlite_path=tmp_path / "a.db"))
    json_files = build_storage(Settings(storage_backend="json", json_dir=tmp_path / "json"))
    memory = build_storage(Settings(storage_backend="memory"))
    assert isinstance(sqlite, SQLiteStorage)
    assert isinstance(json_files, JsonFileStorage)
    assert isinstance(memory, MemoryStorage)


def test_unknown_backend_is_rejected() -> None:
    with pytest.raises(ValueError):
        Settings(storage_backend="redis")
