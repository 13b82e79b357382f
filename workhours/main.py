from __future__ import annotations

import datetime as dt
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse

from . import services
from .aggregation import (
    CompanyFilter,
    Window,
    aggregate,
    company_options,
    filter_history,
    history_total,
    recent_range,
)
from .config import Settings, settings as default_settings
from .errors import (
    ActiveSessionError,
    InvalidRangeError,
    NotFoundError,
    PersistenceError,
)
from .location import LocationResolver, NominatimGeocoder, null_geocoder
from .schemas import (
    BucketResponse,
    BulkDeleteRequest,
    CompanyCreateRequest,
    CompanyListResponse,
    DeleteResponse,
    FilteredDeleteRequest,
    HistoryResponse,
    ManualRecordRequest,
    RecordUpdateRequest,
    SessionFinishRequest,
    SessionStartRequest,
    StatsResponse,
    SummaryResponse,
    WorkRecord,
    WorkStatusResponse,
)
from .storage import build_storage
from .store import CompanyRegistry, WorkRecordStore
from .utils import ensure_aware

logger = logging.getLogger(__name__)


def _build_resolver(config: Settings) -> LocationResolver:
    geocoder = (
        NominatimGeocoder(config.geocoder_url, config.geocoder_user_agent, timeout=config.geocoder_timeout)
        if config.geocoder_enabled
        else null_geocoder
    )
    return LocationResolver(
        geocoder,
        min_interval=config.geocoder_min_interval,
        cache_ttl=config.geocoder_cache_ttl,
    )


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status_code)


def create_app(
    config: Optional[Settings] = None,
    *,
    store: Optional[WorkRecordStore] = None,
    companies: Optional[CompanyRegistry] = None,
    resolver: Optional[LocationResolver] = None,
) -> FastAPI:
    config = config or default_settings
    if store is None or companies is None:
        storage = build_storage(config)
        store = store or WorkRecordStore(storage)
        companies = companies or CompanyRegistry(storage)
    resolver = resolver or _build_resolver(config)
    tz = config.tzinfo

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Last chance to persist before the process goes away.
        try:
            app.state.store.flush()
            app.state.companies.flush()
        except PersistenceError as exc:
            logger.error("Flushing state on shutdown failed: %s", exc)

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    app.state.settings = config
    app.state.store = store
    app.state.companies = companies
    app.state.resolver = resolver

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(InvalidRangeError)
    async def _invalid_range(request: Request, exc: InvalidRangeError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(ActiveSessionError)
    async def _conflict(request: Request, exc: ActiveSessionError) -> JSONResponse:
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(PersistenceError)
    async def _persistence(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Storage failure while handling %s %s: %s", request.method, request.url.path, exc)
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)

    def _aware(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return ensure_aware(value, tz) if value is not None else None

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/work/status", response_model=WorkStatusResponse)
    def work_status() -> WorkStatusResponse:
        session = store.in_progress
        if session is None:
            return WorkStatusResponse(is_working=False)
        return WorkStatusResponse(
            is_working=session.is_working,
            start_time=session.start_time,
            elapsed_hours=services.elapsed_hours(session),
        )

    @app.post("/work/start", response_model=WorkStatusResponse, status_code=status.HTTP_201_CREATED)
    def work_start(payload: SessionStartRequest) -> WorkStatusResponse:
        session = services.start_session(store, _aware(payload.start_time))
        return WorkStatusResponse(is_working=True, start_time=session.start_time, elapsed_hours=0.0)

    @app.post("/work/finish", response_model=WorkRecord)
    def work_finish(payload: SessionFinishRequest) -> WorkRecord:
        return services.finish_session(
            store,
            _aware(payload.end_time),
            company_name=payload.company_name,
            note=payload.note,
            latitude=payload.latitude,
            longitude=payload.longitude,
            location_label=payload.location_label,
            resolver=resolver,
            note_max_words=config.note_max_words,
        )

    @app.post("/work/abandon", status_code=status.HTTP_204_NO_CONTENT)
    def work_abandon() -> Response:
        services.abandon_session(store)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/records", response_model=WorkRecord, status_code=status.HTTP_201_CREATED)
    def create_record(payload: ManualRecordRequest) -> WorkRecord:
        return services.record_manual_session(
            store,
            ensure_aware(payload.start_time, tz),
            ensure_aware(payload.end_time, tz),
            company_name=payload.company_name,
            note=payload.note,
            latitude=payload.latitude,
            longitude=payload.longitude,
            location_label=payload.location_label,
            note_max_words=config.note_max_words,
        )

    @app.get("/records", response_model=HistoryResponse)
    def list_records(
        from_date: Optional[dt.date] = None,
        to_date: Optional[dt.date] = None,
        company: Optional[str] = None,
        days: Optional[int] = Query(default=None, ge=0),
    ) -> HistoryResponse:
        if days is not None:
            from_date, to_date = recent_range(days, dt.datetime.now(tz).date())
        snapshot = store.list()
        shown = filter_history(snapshot, from_date, to_date, CompanyFilter.parse(company), tz=tz)
        return HistoryResponse(
            records=shown,
            count=len(shown),
            total_hours=history_total(shown),
            company_options=company_options(snapshot),
        )

    @app.get("/records/{record_id}", response_model=WorkRecord)
    def get_record(record_id: uuid.UUID) -> WorkRecord:
        return store.get(record_id)

    @app.patch("/records/{record_id}", response_model=WorkRecord)
    def update_record(record_id: uuid.UUID, payload: RecordUpdateRequest) -> WorkRecord:
        return services.edit_record(
            store,
            record_id,
            ensure_aware(payload.start_time, tz),
            ensure_aware(payload.end_time, tz),
            payload.location_label,
            payload.note,
            payload.company_name,
            note_max_words=config.note_max_words,
        )

    @app.delete("/records/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_record(record_id: uuid.UUID) -> Response:
        store.delete(record_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/records/delete", response_model=DeleteResponse)
    def delete_records(payload: BulkDeleteRequest) -> DeleteResponse:
        return DeleteResponse(deleted=store.delete_many(payload.ids))

    @app.post("/records/delete-filtered", response_model=DeleteResponse)
    def delete_filtered_records(payload: FilteredDeleteRequest) -> DeleteResponse:
        deleted = services.delete_filtered(
            store,
            payload.from_date,
            payload.to_date,
            CompanyFilter.parse(payload.company),
            tz=tz,
        )
        return DeleteResponse(deleted=deleted)

    @app.get("/summary/{window}", response_model=SummaryResponse)
    def summary(window: Window, company: Optional[str] = None) -> SummaryResponse:
        result = aggregate(
            store.list(),
            window,
            CompanyFilter.parse(company),
            now=dt.datetime.now(tz),
            tz=tz,
            first_weekday=config.first_weekday,
        )
        return SummaryResponse(
            window=result.window.value,
            company=result.company.label,
            range_start=result.range_start,
            range_end=result.range_end,
            buckets=[BucketResponse.model_validate(bucket) for bucket in result.buckets],
            stats=StatsResponse.model_validate(result.stats),
            y_axis_max=result.y_axis_max,
        )

    @app.get("/companies", response_model=CompanyListResponse)
    def list_companies() -> CompanyListResponse:
        return CompanyListResponse(names=companies.list(), filter_options=company_options(store.list()))

    @app.post("/companies", response_model=CompanyListResponse, status_code=status.HTTP_201_CREATED)
    def add_company(payload: CompanyCreateRequest) -> CompanyListResponse:
        companies.add(payload.name)
        return list_companies()

    @app.delete("/companies/{name}", status_code=status.HTTP_204_NO_CONTENT)
    def remove_company(name: str) -> Response:
        companies.remove(name)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app
