from __future__ import annotations

import datetime as dt
import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOCATION_UNAVAILABLE = "Location not available"

UTC = dt.timezone.utc


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hours_between(start: dt.datetime, end: dt.datetime) -> float:
    return (_as_utc(end) - _as_utc(start)).total_seconds() / 3600


class WorkRecord(BaseModel):
    """One finished work session.

    Timestamps are held in UTC; naive values are read as UTC. Callers that
    collect local wall-clock times attach the local zone first (see
    ``utils.ensure_aware``).
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    start_time: dt.datetime
    end_time: dt.datetime
    total_hours: float
    location_label: str = LOCATION_UNAVAILABLE
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    note: str = ""
    company_name: str = ""

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_time(cls, value: dt.datetime) -> dt.datetime:
        return _as_utc(value)

    @classmethod
    def create(
        cls,
        start_time: dt.datetime,
        end_time: dt.datetime,
        *,
        location_label: str = LOCATION_UNAVAILABLE,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        note: str = "",
        company_name: str = "",
        record_id: Optional[uuid.UUID] = None,
    ) -> "WorkRecord":
        return cls(
            id=record_id or uuid.uuid4(),
            start_time=start_time,
            end_time=end_time,
            total_hours=hours_between(start_time, end_time),
            location_label=location_label,
            latitude=latitude,
            longitude=longitude,
            note=note,
            company_name=company_name,
        )


class InProgressSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_time: dt.datetime
    is_working: bool = True

    @field_validator("start_time")
    @classmethod
    def _normalize_time(cls, value: dt.datetime) -> dt.datetime:
        return _as_utc(value)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class SessionStartRequest(BaseModel):
    start_time: Optional[dt.datetime] = None


class SessionFinishRequest(BaseModel):
    end_time: Optional[dt.datetime] = None
    company_name: str = ""
    note: str = ""
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location_label: Optional[str] = None


class WorkStatusResponse(BaseModel):
    is_working: bool
    start_time: Optional[dt.datetime] = None
    elapsed_hours: Optional[float] = None


class ManualRecordRequest(BaseModel):
    start_time: dt.datetime
    end_time: dt.datetime
    company_name: str = ""
    note: str = ""
    location_label: str = LOCATION_UNAVAILABLE
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class RecordUpdateRequest(BaseModel):
    start_time: dt.datetime
    end_time: dt.datetime
    location_label: str
    note: str
    company_name: str


class BulkDeleteRequest(BaseModel):
    ids: List[uuid.UUID] = Field(default_factory=list)


class FilteredDeleteRequest(BaseModel):
    from_date: Optional[dt.date] = None
    to_date: Optional[dt.date] = None
    company: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: int


class HistoryResponse(BaseModel):
    records: List[WorkRecord]
    count: int
    total_hours: float
    company_options: List[str]


class BucketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    index: int
    label: str
    day: dt.date
    hours: float


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    total: float
    work_days: int
    average: float
    longest: float


class SummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    window: str
    company: Optional[str] = None
    range_start: dt.date
    range_end: dt.date
    buckets: List[BucketResponse]
    stats: StatsResponse
    y_axis_max: float


class CompanyCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class CompanyListResponse(BaseModel):
    names: List[str]
    filter_options: List[str]
