from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Optional

from .aggregation import CompanyFilter, filter_history
from .errors import ActiveSessionError, NoActiveSessionError
from .location import LocationResolver
from .schemas import LOCATION_UNAVAILABLE, InProgressSession, WorkRecord
from .store import WorkRecordStore
from .utils import truncate_words

logger = logging.getLogger(__name__)

NOTE_MAX_WORDS = 30


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _location_label(
    label: Optional[str],
    latitude: Optional[float],
    longitude: Optional[float],
    resolver: Optional[LocationResolver],
) -> str:
    if label:
        return label
    if resolver is not None:
        return resolver.label_for(latitude, longitude)
    return LOCATION_UNAVAILABLE


def start_session(store: WorkRecordStore, start_time: Optional[dt.datetime] = None) -> InProgressSession:
    if store.in_progress is not None:
        raise ActiveSessionError("A work session is already in progress")
    session = store.save_in_progress(start_time or _now())
    logger.info("Work session started at %s", session.start_time.isoformat())
    return session


def finish_session(
    store: WorkRecordStore,
    end_time: Optional[dt.datetime] = None,
    *,
    company_name: str = "",
    note: str = "",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    location_label: Optional[str] = None,
    resolver: Optional[LocationResolver] = None,
    note_max_words: int = NOTE_MAX_WORDS,
) -> WorkRecord:
    """Turn the in-progress session into a stored record.

    Storing the record and clearing the in-progress session happen as one
    step, so a storage failure keeps the running session and stores nothing.
    """
    session = store.in_progress
    if session is None:
        raise NoActiveSessionError("No work session in progress")
    record = WorkRecord.create(
        session.start_time,
        end_time or _now(),
        location_label=_location_label(location_label, latitude, longitude, resolver),
        latitude=latitude,
        longitude=longitude,
        note=truncate_words(note, note_max_words),
        company_name=company_name,
    )
    stored = store.finish(record)
    logger.info("Work session %s finished after %.2f hours", stored.id, stored.total_hours)
    return stored


def abandon_session(store: WorkRecordStore) -> None:
    if store.in_progress is not None:
        logger.info("Abandoning in-progress work session")
    store.clear_in_progress()


def record_manual_session(
    store: WorkRecordStore,
    start_time: dt.datetime,
    end_time: dt.datetime,
    *,
    company_name: str = "",
    note: str = "",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    location_label: str = LOCATION_UNAVAILABLE,
    note_max_words: int = NOTE_MAX_WORDS,
) -> WorkRecord:
    record = WorkRecord.create(
        start_time,
        end_time,
        location_label=location_label,
        latitude=latitude,
        longitude=longitude,
        note=truncate_words(note, note_max_words),
        company_name=company_name,
    )
    return store.add(record)


def edit_record(
    store: WorkRecordStore,
    record_id: uuid.UUID,
    start_time: dt.datetime,
    end_time: dt.datetime,
    location_label: str,
    note: str,
    company_name: str,
    *,
    note_max_words: int = NOTE_MAX_WORDS,
) -> WorkRecord:
    return store.update(
        record_id,
        start_time,
        end_time,
        location_label,
        truncate_words(note, note_max_words),
        company_name,
    )


def delete_filtered(
    store: WorkRecordStore,
    start_date: Optional[dt.date],
    end_date: Optional[dt.date],
    company: CompanyFilter,
    *,
    tz: dt.tzinfo,
) -> int:
    """Delete every record the history view currently shows."""
    shown = filter_history(store.list(), start_date, end_date, company, tz=tz)
    deleted = store.delete_many(record.id for record in shown)
    logger.info("Deleted %d filtered work records", deleted)
    return deleted


def elapsed_hours(session: InProgressSession, now: Optional[dt.datetime] = None) -> float:
    current = now or _now()
    return max((current - session.start_time).total_seconds() / 3600, 0.0)
