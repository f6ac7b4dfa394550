from __future__ import annotations

import csv
import datetime as dt
import io
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import Conflict, InvalidData, InvalidTimer, NotFound
from .filters import Filter
from .schemas import UTC, Statistic, Timer, VacationDay, _as_utc, _serialize_datetime, overlaps, utcnow, validate
from .statistics import Schedule, VacationLookup, aggregate, aggregate_by_day
from .storage import LATEST_FIRST, OLDEST_FIRST, Field, OrderBy, Storage

logger = logging.getLogger(__name__)

CSV_HEADER = ("id", "start", "stop", "project", "task", "tags")


def round_timestamp(value: dt.datetime, seconds: int) -> dt.datetime:
    """Round ``value`` to the nearest multiple of ``seconds``, halves round up.

    With 60 seconds 13:45:23 becomes 13:45:00 and 09:01:59 becomes 09:02:00.
    """
    if seconds <= 0:
        return value
    epoch = int(_as_utc(value).timestamp())
    remainder = epoch % seconds
    rounded = epoch - remainder
    if remainder * 2 >= seconds:
        rounded += seconds
    return dt.datetime.fromtimestamp(rounded, UTC)


def get_running_timer(storage: Storage) -> Optional[Timer]:
    # a running timer overlaps everything started after it, so it is always the latest
    try:
        latest = storage.get_timer(order_by=LATEST_FIRST)
    except NotFound:
        return None
    return latest if latest.running else None


def start_timer(
    storage: Storage,
    project: str,
    task: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    start: Optional[dt.datetime] = None,
    round_seconds: int = 0,
) -> Timer:
    running = get_running_timer(storage)
    if running is not None:
        raise Conflict(f"timer {running.id} for project {running.project} is already running, stop it first")
    timer = Timer(
        start=round_timestamp(start or utcnow(), round_seconds),
        project=project,
        task=task,
        tags=list(tags or []),
    )
    storage.save_timer(timer)
    logger.info("Started timer %s for project %s", timer.id, timer.project)
    return timer


def stop_timer(storage: Storage, stop: Optional[dt.datetime] = None, round_seconds: int = 0) -> Timer:
    running = get_running_timer(storage)
    if running is None:
        raise NotFound("no running timer")
    timer = running.with_changes(stop=round_timestamp(stop or utcnow(), round_seconds))
    storage.update_timer(timer)
    logger.info("Stopped timer %s", timer.id)
    return timer


def resume_timer(storage: Storage, start: Optional[dt.datetime] = None, round_seconds: int = 0) -> Timer:
    """Start a new timer with project, task and tags of the latest one."""
    timers = storage.get_timers(order_by=LATEST_FIRST)
    if not timers:
        raise NotFound("no timer to resume")
    latest = timers[0]
    if latest.running:
        raise Conflict(f"timer {latest.id} is still running")
    return start_timer(storage, latest.project, latest.task, latest.tags, start, round_seconds)


def switch_timer(
    storage: Storage,
    project: str,
    task: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    at: Optional[dt.datetime] = None,
    round_seconds: int = 0,
) -> Tuple[Timer, Timer]:
    """Stop the running timer and immediately start the next one.

    A rejected next timer leaves the running timer untouched.
    """
    switch_at = round_timestamp(at or utcnow(), round_seconds)
    started = Timer(start=switch_at, project=project, task=task, tags=list(tags or []))
    validate(started)
    stopped = stop_timer(storage, switch_at)
    storage.save_timer(started)
    logger.info("Switched from timer %s to %s for project %s", stopped.id, started.id, started.project)
    return stopped, started


def list_timers(
    storage: Storage,
    filter: Optional[Filter] = None,
    order_by: OrderBy = OLDEST_FIRST,
) -> List[Timer]:
    return storage.get_timers(filter, order_by)


def inspect_ledger(storage: Storage) -> List[str]:
    """Describe every broken timer and every broken pair of timers.

    Only data written outside this package, e.g. an old ``storage.json``,
    can contain such problems.
    """
    timers = storage.get_timers(order_by=OLDEST_FIRST)
    problems = []
    for timer in timers:
        try:
            validate(timer)
        except InvalidTimer as exc:
            problems.append(f"timer {timer.id}: {exc}")
    running = [timer.id for timer in timers if timer.running]
    if len(running) > 1:
        problems.append(f"more than one running timer: {', '.join(running)}")
    # sorted by start, any collision shows up between neighbours
    for earlier, later in zip(timers, timers[1:]):
        if earlier.start is not None and later.start is not None and overlaps(earlier, later):
            problems.append(f"timer {earlier.id} collides with timer {later.id}")
    if problems:
        logger.warning("Ledger inspection found %d problems", len(problems))
    return problems


def edit_timer(storage: Storage, timer_id: str, changes: Mapping[str, Any], replace: bool = False) -> Timer:
    """Apply ``changes`` to a timer, or replace it entirely with ``replace``.

    The id of a timer cannot be changed.
    """
    current = storage.get_timer_by_id(timer_id)
    if changes.get("id", timer_id) != timer_id:
        raise InvalidData("the id of a timer cannot be changed")
    try:
        if replace:
            updated = Timer.model_validate({**changes, "id": timer_id})
        else:
            updated = current.with_changes(**changes)
    except ValidationError as exc:
        raise InvalidData(f"invalid timer data: {exc.errors()[0]['msg']}") from exc
    storage.update_timer(updated)
    logger.info("Edited timer %s", timer_id)
    return updated


def remove_timer(storage: Storage, timer_id: str) -> Timer:
    timer = storage.get_timer_by_id(timer_id)
    storage.remove_timer(timer_id)
    return timer


def add_vacation_day(storage: Storage, day: dt.date, half: bool = False) -> VacationDay:
    vacation_day = VacationDay(day=day, half=half)
    storage.save_vacation_day(vacation_day)
    return vacation_day


def list_vacation_days(storage: Storage) -> List[VacationDay]:
    return storage.get_vacation_days(OrderBy(Field.DAY))


def remove_vacation_day(storage: Storage, key: str) -> VacationDay:
    """Remove a vacation day given either its id or its date (``YYYY-MM-DD``)."""
    try:
        day = dt.date.fromisoformat(key)
    except ValueError:
        for vacation_day in storage.get_vacation_days():
            if vacation_day.id == key:
                break
        else:
            raise NotFound(f"vacation day {key} not found")
    else:
        vacation_day = storage.get_vacation_day(day)
    storage.remove_vacation_day(vacation_day.id)
    return vacation_day


def vacation_lookup(storage: Storage) -> VacationLookup:
    def lookup(day: dt.date) -> Optional[VacationDay]:
        try:
            return storage.get_vacation_day(day)
        except NotFound:
            return None

    return lookup


def time_statistics(
    storage: Storage,
    schedule: Schedule,
    filter: Optional[Filter] = None,
    by_project: bool = False,
    by_task: bool = False,
) -> Statistic:
    timers = storage.get_timers(filter, OLDEST_FIRST)
    logger.debug("Computing statistics over %d timers", len(timers))
    return aggregate(timers, schedule, vacation_lookup(storage), by_project, by_task)


def time_statistics_by_day(
    storage: Storage,
    schedule: Schedule,
    filter: Optional[Filter] = None,
    by_project: bool = False,
    by_task: bool = False,
) -> Dict[str, Statistic]:
    timers = storage.get_timers(filter, OLDEST_FIRST)
    logger.debug("Computing daily statistics over %d timers", len(timers))
    return aggregate_by_day(timers, schedule, vacation_lookup(storage), by_project, by_task)


def timers_to_csv(timers: Sequence[Timer]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for timer in timers:
        writer.writerow(
            [
                timer.id,
                _serialize_datetime(timer.start),
                _serialize_datetime(timer.stop) if timer.stop else "",
                timer.project,
                timer.task or "",
                ", ".join(timer.tags),
            ]
        )
    return buffer.getvalue()
