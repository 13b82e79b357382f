"""Canonical record collection, in-progress session and company registry.

The store owns the only mutable copy of the records. Every mutation builds
the new collection first, writes it through the injected storage backend and
swaps it in only once the write succeeded, so a failing backend never leaves
memory and disk out of step.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from .errors import DecodeError, InvalidRangeError, NoActiveSessionError, NotFoundError, PersistenceError
from .schemas import InProgressSession, WorkRecord, hours_between
from .storage import COMPANIES_KEY, IN_PROGRESS_KEY, RECORDS_KEY, KeyValueStorage

logger = logging.getLogger(__name__)

_RECORDS_ADAPTER = TypeAdapter(List[WorkRecord])
_COMPANIES_ADAPTER = TypeAdapter(List[str])


def encode_records(records: Iterable[WorkRecord]) -> str:
    return _RECORDS_ADAPTER.dump_json(list(records)).decode("utf-8")


def decode_records(raw: str) -> List[WorkRecord]:
    try:
        return _RECORDS_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"Corrupt record collection: {exc}", key=RECORDS_KEY) from exc


def encode_in_progress(session: InProgressSession) -> str:
    return session.model_dump_json()


def decode_in_progress(raw: str) -> InProgressSession:
    try:
        return InProgressSession.model_validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"Corrupt in-progress session: {exc}", key=IN_PROGRESS_KEY) from exc


def encode_companies(names: Iterable[str]) -> str:
    return _COMPANIES_ADAPTER.dump_json(list(names)).decode("utf-8")


def decode_companies(raw: str) -> List[str]:
    try:
        return _COMPANIES_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise DecodeError(f"Corrupt company list: {exc}", key=COMPANIES_KEY) from exc


@dataclass(frozen=True, slots=True)
class StoreEvent:
    kind: str
    record_ids: Tuple[uuid.UUID, ...] = ()


Subscriber = Callable[[StoreEvent], None]


def _check_range(start_time: dt.datetime, end_time: dt.datetime) -> None:
    if hours_between(start_time, end_time) < 0:
        raise InvalidRangeError("End time must not be before start time")


class WorkRecordStore:
    """Records plus the optional in-progress session, persisted on every change."""

    def __init__(self, storage: KeyValueStorage, *, load: bool = True) -> None:
        self._storage = storage
        self._lock = RLock()
        self._records: List[WorkRecord] = []
        self._in_progress: Optional[InProgressSession] = None
        self._subscribers: List[Subscriber] = []
        if load:
            self.load()

    # ------------------------------------------------------------------
    # Loading and flushing
    # ------------------------------------------------------------------
    def load(self) -> None:
        """Read both blobs. Corrupt data is logged and treated as empty."""
        records_raw = self._storage.read(RECORDS_KEY)
        in_progress_raw = self._storage.read(IN_PROGRESS_KEY)
        records: List[WorkRecord] = []
        if records_raw:
            try:
                records = decode_records(records_raw)
            except DecodeError as exc:
                logger.error("Resetting work records after decode failure: %s", exc)
        in_progress: Optional[InProgressSession] = None
        if in_progress_raw:
            try:
                in_progress = decode_in_progress(in_progress_raw)
            except DecodeError as exc:
                logger.error("Dropping in-progress session after decode failure: %s", exc)
        with self._lock:
            self._records = records
            self._in_progress = in_progress
        logger.info("Loaded %d work records", len(records))
        self._notify(StoreEvent("reloaded"))

    def flush(self) -> None:
        """Write everything out again; run before the process suspends or exits."""
        with self._lock:
            self._storage.write(RECORDS_KEY, encode_records(self._records))
            if self._in_progress is not None:
                self._storage.write(IN_PROGRESS_KEY, encode_in_progress(self._in_progress))
            else:
                self._storage.remove(IN_PROGRESS_KEY)
            self._storage.flush()
        logger.debug("Flushed %d work records", len(self._records))

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Store subscriber failed on %s event", event.kind)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def list(self) -> List[WorkRecord]:
        with self._lock:
            return list(self._records)

    def get(self, record_id: uuid.UUID) -> WorkRecord:
        with self._lock:
            for record in self._records:
                if record.id == record_id:
                    return record
        raise NotFoundError(f"Work record {record_id} not found")

    def _commit(self, records: List[WorkRecord]) -> None:
        self._storage.write(RECORDS_KEY, encode_records(records))
        self._records = records

    def _prepare(self, record: WorkRecord) -> WorkRecord:
        _check_range(record.start_time, record.end_time)
        stored = record.model_copy(update={"total_hours": hours_between(record.start_time, record.end_time)})
        if any(existing.id == stored.id for existing in self._records):
            raise ValueError(f"Work record {stored.id} already exists")
        return stored

    def add(self, record: WorkRecord) -> WorkRecord:
        with self._lock:
            stored = self._prepare(record)
            self._commit(self._records + [stored])
        self._notify(StoreEvent("added", (stored.id,)))
        return stored

    def finish(self, record: WorkRecord) -> WorkRecord:
        """Append ``record`` and clear the in-progress session in one step.

        When clearing the session fails the previous records blob is written
        back, so the session stays open and a retry cannot store it twice.
        """
        with self._lock:
            if self._in_progress is None:
                raise NoActiveSessionError("No work session in progress")
            stored = self._prepare(record)
            previous = encode_records(self._records)
            records = self._records + [stored]
            self._storage.write(RECORDS_KEY, encode_records(records))
            try:
                self._storage.remove(IN_PROGRESS_KEY)
            except PersistenceError:
                self._storage.write(RECORDS_KEY, previous)
                raise
            self._records = records
            self._in_progress = None
        self._notify(StoreEvent("added", (stored.id,)))
        self._notify(StoreEvent("in_progress"))
        return stored

    def update(
        self,
        record_id: uuid.UUID,
        new_start_time: dt.datetime,
        new_end_time: dt.datetime,
        new_location: str,
        new_note: str,
        new_company_name: str,
    ) -> WorkRecord:
        """Replace a record in full, keeping its id and coordinates."""
        with self._lock:
            index = next((i for i, record in enumerate(self._records) if record.id == record_id), None)
            if index is None:
                raise NotFoundError(f"Work record {record_id} not found")
            _check_range(new_start_time, new_end_time)
            current = self._records[index]
            replacement = WorkRecord(
                id=current.id,
                start_time=new_start_time,
                end_time=new_end_time,
                total_hours=hours_between(new_start_time, new_end_time),
                location_label=new_location,
                latitude=current.latitude,
                longitude=current.longitude,
                note=new_note,
                company_name=new_company_name,
            )
            records = list(self._records)
            records[index] = replacement
            self._commit(records)
        self._notify(StoreEvent("updated", (replacement.id,)))
        return replacement

    def delete(self, record_id: uuid.UUID) -> bool:
        return self.delete_many([record_id]) == 1

    def delete_many(self, record_ids: Iterable[uuid.UUID]) -> int:
        targets = set(record_ids)
        with self._lock:
            kept = [record for record in self._records if record.id not in targets]
            removed = tuple(record.id for record in self._records if record.id in targets)
            if not removed:
                return 0
            self._commit(kept)
        self._notify(StoreEvent("deleted", removed))
        return len(removed)

    # ------------------------------------------------------------------
    # In-progress session
    # ------------------------------------------------------------------
    @property
    def in_progress(self) -> Optional[InProgressSession]:
        with self._lock:
            return self._in_progress

    def save_in_progress(self, start_time: dt.datetime) -> InProgressSession:
        session = InProgressSession(start_time=start_time, is_working=True)
        with self._lock:
            self._storage.write(IN_PROGRESS_KEY, encode_in_progress(session))
            self._in_progress = session
        self._notify(StoreEvent("in_progress"))
        return session

    def clear_in_progress(self) -> None:
        with self._lock:
            self._storage.remove(IN_PROGRESS_KEY)
            self._in_progress = None
        self._notify(StoreEvent("in_progress"))


class CompanyRegistry:
    """Previously used company names, independent of existing records."""

    def __init__(self, storage: KeyValueStorage, *, load: bool = True) -> None:
        self._storage = storage
        self._lock = RLock()
        self._names: List[str] = []
        if load:
            self.load()

    def load(self) -> None:
        raw = self._storage.read(COMPANIES_KEY)
        names: List[str] = []
        if raw:
            try:
                names = decode_companies(raw)
            except DecodeError as exc:
                logger.error("Resetting company names after decode failure: %s", exc)
        with self._lock:
            # Older blobs may hold duplicates; keep first occurrence.
            self._names = list(dict.fromkeys(names))

    def list(self) -> List[str]:
        with self._lock:
            return sorted(self._names)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def add(self, name: str) -> bool:
        if not name.strip():
            return False
        with self._lock:
            if name in self._names:
                return False
            names = self._names + [name]
            self._storage.write(COMPANIES_KEY, encode_companies(names))
            self._names = names
        return True

    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._names:
                return False
            names = [existing for existing in self._names if existing != name]
            self._storage.write(COMPANIES_KEY, encode_companies(names))
            self._names = names
        return True

    def flush(self) -> None:
        with self._lock:
            self._storage.write(COMPANIES_KEY, encode_companies(self._names))
            self._storage.flush()


__all__ = [
    "CompanyRegistry",
    "StoreEvent",
    "WorkRecordStore",
    "decode_companies",
    "decode_in_progress",
    "decode_records",
    "encode_companies",
    "encode_in_progress",
    "encode_records",
]
