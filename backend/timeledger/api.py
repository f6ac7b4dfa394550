from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from . import services
from .config import Settings, load_settings
from .errors import Conflict, Internal, InvalidData, InvalidTimer, LedgerError, NotFound
from .filters import Filter, filter_from_query
from .schemas import (
    Statistic,
    Timer,
    TimerResumeRequest,
    TimerStartRequest,
    TimerStopRequest,
    TimerUpdateRequest,
    VacationDay,
    VacationDayCreateRequest,
)
from .statistics import Schedule
from .storage import Storage, open_storage
from .utils import configure_logging, ensure_utc

logger = logging.getLogger(__name__)

STATUS_CODES = {
    InvalidData: status.HTTP_400_BAD_REQUEST,
    InvalidTimer: 422,
    Conflict: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    Internal: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# query parameters of the statistics routes that are not filters
STATS_PARAMETERS = ("group_by",)

router = APIRouter()


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _tz(settings: Settings) -> dt.tzinfo:
    return ZoneInfo(settings.timezone)


def _as_utc(value: Optional[dt.datetime], settings: Settings) -> Optional[dt.datetime]:
    return ensure_utc(value, _tz(settings)) if value else None


def _query_filter(request: Request, settings: Settings) -> Filter:
    query = [(key, value) for key, value in request.query_params.multi_items() if key not in STATS_PARAMETERS]
    return filter_from_query(query, _tz(settings))


def _group_by(value: Optional[str]) -> Tuple[bool, bool]:
    groups = {group.strip() for group in (value or "").split(",")}
    by_task = "task" in groups
    return "project" in groups or by_task, by_task


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": exc.kind})


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/timers/start", response_model=Timer, status_code=status.HTTP_201_CREATED)
def timers_start(
    payload: TimerStartRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Timer:
    return services.start_timer(
        storage,
        payload.project,
        payload.task,
        payload.tags,
        _as_utc(payload.start, settings),
        settings.round_start_time,
    )


@router.post("/timers/stop", response_model=Timer)
def timers_stop(
    payload: TimerStopRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Timer:
    return services.stop_timer(storage, _as_utc(payload.stop, settings), settings.round_start_time)


@router.post("/timers/resume", response_model=Timer, status_code=status.HTTP_201_CREATED)
def timers_resume(
    payload: TimerResumeRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Timer:
    return services.resume_timer(storage, _as_utc(payload.start, settings), settings.round_start_time)


@router.get("/timers/running", response_model=Timer)
def timers_running(storage: Storage = Depends(get_storage)) -> Timer:
    timer = services.get_running_timer(storage)
    if timer is None:
        raise NotFound("no running timer")
    return timer


@router.get("/timers", response_model=List[Timer])
def timers_list(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> List[Timer]:
    return services.list_timers(storage, _query_filter(request, settings))


@router.get("/timers/{timer_id}", response_model=Timer)
def timers_get(timer_id: str, storage: Storage = Depends(get_storage)) -> Timer:
    return storage.get_timer_by_id(timer_id)


@router.patch("/timers/{timer_id}", response_model=Timer)
def timers_update(
    timer_id: str,
    payload: TimerUpdateRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Timer:
    changes = payload.model_dump(exclude_unset=True)
    for key in ("start", "stop"):
        if changes.get(key) is not None:
            changes[key] = _as_utc(changes[key], settings)
    return services.edit_timer(storage, timer_id, changes)


@router.delete("/timers/{timer_id}", status_code=status.HTTP_204_NO_CONTENT)
def timers_delete(timer_id: str, storage: Storage = Depends(get_storage)) -> Response:
    services.remove_timer(storage, timer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/stats", response_model=Statistic, response_model_exclude_none=True)
def stats(
    request: Request,
    group_by: Optional[str] = None,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Statistic:
    by_project, by_task = _group_by(group_by)
    schedule = Schedule.from_settings(settings)
    return services.time_statistics(storage, schedule, _query_filter(request, settings), by_project, by_task)


@router.get("/stats/days", response_model=Dict[str, Statistic], response_model_exclude_none=True)
def stats_by_day(
    request: Request,
    group_by: Optional[str] = None,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Statistic]:
    by_project, by_task = _group_by(group_by)
    schedule = Schedule.from_settings(settings)
    return services.time_statistics_by_day(storage, schedule, _query_filter(request, settings), by_project, by_task)


@router.get("/vacation", response_model=List[VacationDay])
def vacation_list(storage: Storage = Depends(get_storage)) -> List[VacationDay]:
    return services.list_vacation_days(storage)


@router.post("/vacation", response_model=VacationDay, status_code=status.HTTP_201_CREATED)
def vacation_create(payload: VacationDayCreateRequest, storage: Storage = Depends(get_storage)) -> VacationDay:
    return services.add_vacation_day(storage, payload.day, payload.half)


@router.delete("/vacation/{key}", status_code=status.HTTP_204_NO_CONTENT)
def vacation_delete(key: str, storage: Storage = Depends(get_storage)) -> Response:
    services.remove_vacation_day(storage, key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def create_app(storage: Storage, settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP application around an already opened storage backend."""
    settings = settings or load_settings()
    app = FastAPI(title=settings.app_name)
    app.state.storage = storage
    app.state.settings = settings
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(router)
    return app


def build_app() -> FastAPI:
    settings = load_settings()
    configure_logging(settings.log_level)
    return create_app(open_storage(settings), settings)
