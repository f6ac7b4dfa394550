from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import WorkDays
from .filters import Filter
from .schemas import NO_TASK, UTC, ProjectStatistic, Statistic, TaskStatistic, Timer, VacationDay, duration

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings

VacationLookup = Callable[[dt.date], Optional[VacationDay]]


def no_vacation(day: dt.date) -> Optional[VacationDay]:
    return None


@dataclass(frozen=True)
class Schedule:
    """Weekly work schedule used to compute planned time."""

    hours_per_day: int = 8
    work_days: WorkDays = field(default_factory=WorkDays)
    tz: dt.tzinfo = UTC

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Schedule":
        return cls(
            hours_per_day=settings.timeclock.hours_per_day,
            work_days=settings.timeclock.days_per_week,
            tz=ZoneInfo(settings.timezone),
        )

    @property
    def daily(self) -> dt.timedelta:
        return dt.timedelta(hours=self.hours_per_day)

    def is_work_day(self, day: dt.date) -> bool:
        return self.work_days.is_work_day(day)

    def local_day(self, value: dt.datetime) -> dt.date:
        return value.astimezone(self.tz).date()


def planned_time_for_day(
    day: dt.date,
    schedule: Schedule,
    vacation_lookup: VacationLookup = no_vacation,
) -> dt.timedelta:
    """Planned work time of a single day.

    Non-work days plan nothing, even if marked as vacation. Half vacation
    days plan half the daily hours, full vacation days nothing.
    """
    if not schedule.is_work_day(day):
        return dt.timedelta(0)
    vacation = vacation_lookup(day)
    if vacation is None:
        return schedule.daily
    if vacation.half:
        return schedule.daily / 2
    return dt.timedelta(0)


def planned_time(
    first_day: dt.date,
    last_day: dt.date,
    schedule: Schedule,
    vacation_lookup: VacationLookup = no_vacation,
) -> dt.timedelta:
    total = dt.timedelta(0)
    for day in days_between(first_day, last_day):
        total += planned_time_for_day(day, schedule, vacation_lookup)
    return total


def days_between(first_day: dt.date, last_day: dt.date) -> List[dt.date]:
    days = []
    current = first_day
    while current <= last_day:
        days.append(current)
        current += dt.timedelta(days=1)
    return days


def worked_time(timers: Iterable[Timer]) -> dt.timedelta:
    # running timers are left out so a report does not change while it is read
    total = dt.timedelta(0)
    for timer in timers:
        if timer.running:
            continue
        total += duration(timer)
    return total


def span(timers: Sequence[Timer], schedule: Schedule) -> Tuple[dt.date, dt.date]:
    """First and last calendar day touched by the timers."""
    first_day = min(schedule.local_day(timer.start) for timer in timers)
    last_day = max(schedule.local_day(timer.stop or timer.start) for timer in timers)
    return first_day, last_day


def _group(timers: Iterable[Timer], key: Callable[[Timer], str]) -> Dict[str, List[Timer]]:
    grouped: Dict[str, List[Timer]] = defaultdict(list)
    for timer in timers:
        grouped[key(timer)].append(timer)
    return grouped


def _by_tasks(timers: Iterable[Timer]) -> List[TaskStatistic]:
    grouped = _group(timers, lambda timer: timer.task or NO_TASK)
    return [TaskStatistic(name=name, worked=worked_time(grouped[name])) for name in sorted(grouped)]


def _by_projects(timers: Iterable[Timer], by_task: bool) -> List[ProjectStatistic]:
    grouped = _group(timers, lambda timer: timer.project)
    projects = []
    for name in sorted(grouped):
        projects.append(
            ProjectStatistic(
                name=name,
                worked=worked_time(grouped[name]),
                by_tasks=_by_tasks(grouped[name]) if by_task else None,
            )
        )
    return projects


def build_statistic(
    timers: Sequence[Timer],
    planned: dt.timedelta,
    by_project: bool = False,
    by_task: bool = False,
) -> Statistic:
    worked = worked_time(timers)
    return Statistic(
        worked=worked,
        planned=planned,
        difference=worked - planned,
        percentage=worked / planned if planned else 0.0,
        by_projects=_by_projects(timers, by_task) if by_project or by_task else None,
    )


def aggregate(
    timers: Sequence[Timer],
    schedule: Schedule,
    vacation_lookup: VacationLookup = no_vacation,
    by_project: bool = False,
    by_task: bool = False,
) -> Statistic:
    """Summarise the timers against the planned time of the days they span.

    Grouping by task implies grouping by project.
    """
    planned = dt.timedelta(0)
    if timers:
        planned = planned_time(*span(timers, schedule), schedule, vacation_lookup)
    return build_statistic(timers, planned, by_project, by_task)


def aggregate_by_day(
    timers: Sequence[Timer],
    schedule: Schedule,
    vacation_lookup: VacationLookup = no_vacation,
    by_project: bool = False,
    by_task: bool = False,
) -> Dict[str, Statistic]:
    """One statistic per calendar day spanned by the timers, keyed ``YYYY-MM-DD``.

    A timer counts towards the day it started on. Days without any worked or
    planned time are kept; hiding them is up to the caller.
    """
    if not timers:
        return {}
    statistics: Dict[str, Statistic] = {}
    for day in days_between(*span(timers, schedule)):
        day_timers = Filter.for_day(day, schedule.tz).timers(timers)
        planned = planned_time_for_day(day, schedule, vacation_lookup)
        statistics[day.isoformat()] = build_statistic(day_timers, planned, by_project, by_task)
    return statistics
