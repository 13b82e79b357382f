from __future__ import annotations

import datetime as dt
from typing import Callable, Generator, Optional
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from workhours.config import Settings
from workhours.errors import PersistenceError
from workhours.location import LocationResolver, null_geocoder
from workhours.main import create_app
from workhours.schemas import WorkRecord
from workhours.storage import MemoryStorage
from workhours.store import CompanyRegistry, WorkRecordStore

BERLIN = ZoneInfo("Europe/Berlin")


class FlakyStorage(MemoryStorage):
    """Memory storage whose writes and removals can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.fail_removes = False
        self.writes = 0

    def write(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise PersistenceError(f"Disk full while writing {key}", key=key)
        self.writes += 1
        super().write(key, value)

    def remove(self, key: str) -> None:
        if self.fail_writes or self.fail_removes:
            raise PersistenceError(f"Disk full while removing {key}", key=key)
        super().remove(key)


@pytest.fixture()
def tz() -> ZoneInfo:
    return BERLIN


@pytest.fixture()
def storage() -> FlakyStorage:
    return FlakyStorage()


@pytest.fixture()
def store(storage: FlakyStorage) -> WorkRecordStore:
    return WorkRecordStore(storage)


@pytest.fixture()
def companies(storage: FlakyStorage) -> CompanyRegistry:
    return CompanyRegistry(storage)


@pytest.fixture()
def make_record() -> Callable[..., WorkRecord]:
    def _make(
        start: dt.datetime,
        hours: float = 1.0,
        *,
        company_name: str = "",
        note: str = "",
        location_label: str = "Office",
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> WorkRecord:
        return WorkRecord.create(
            start,
            start + dt.timedelta(hours=hours),
            company_name=company_name,
            note=note,
            location_label=location_label,
            latitude=latitude,
            longitude=longitude,
        )

    return _make


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    return Settings(
        storage_backend="memory",
        timezone="Europe/Berlin",
        first_weekday=6,
        sqlite_path=tmp_path / "workhours.db",
        json_dir=tmp_path / "state",
        geocoder_enabled=False,
    )


@pytest.fixture()
def client(
    test_settings: Settings,
    store: WorkRecordStore,
    companies: CompanyRegistry,
) -> Generator[TestClient, None, None]:
    app = create_app(
        test_settings,
        store=store,
        companies=companies,
        resolver=LocationResolver(null_geocoder),
    )
    with TestClient(app) as c:
        yield c
