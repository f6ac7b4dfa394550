from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_serializer

from .errors import Conflict, InvalidTimer

UTC = dt.timezone.utc

# timers without a task are grouped under the empty name
NO_TASK = ""


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC).replace(microsecond=0)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _serialize_datetime(value: dt.datetime) -> str:
    # fixed width so that string order equals chronological order
    return _as_utc(value).isoformat(timespec="seconds")


class Timer(BaseModel):
    """A single tracked interval.

    Timestamps are stored in UTC with second precision. Naive values are
    taken to be UTC already; callers holding local wall-clock times convert
    them before building a timer.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    start: Optional[dt.datetime] = None
    stop: Optional[dt.datetime] = None
    project: str = ""
    task: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("start", "stop")
    @classmethod
    def _normalize_timestamp(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        if value is None:
            return None
        return _as_utc(value).replace(microsecond=0)

    @field_validator("task")
    @classmethod
    def _normalize_task(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        return value

    @property
    def running(self) -> bool:
        return self.stop is None

    def with_changes(self, **changes: Any) -> "Timer":
        data = self.model_dump()
        data.update(changes)
        return Timer.model_validate(data)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "start": _serialize_datetime(self.start) if self.start else None,
        }
        if self.stop is not None:
            data["stop"] = _serialize_datetime(self.stop)
        data["project"] = self.project
        if self.task:
            data["task"] = self.task
        if self.tags:
            data["tags"] = list(self.tags)
        return data


class VacationDay(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    day: dt.date
    half: bool = False

    @field_validator("day", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        # time of day is irrelevant for vacation lookups
        if isinstance(value, dt.datetime):
            return value.date()
        return value

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {"id": self.id, "day": self.day.isoformat(), "half": self.half}


class TaskStatistic(BaseModel):
    name: str
    worked: dt.timedelta

    @field_serializer("worked", when_used="json")
    def _seconds(self, value: dt.timedelta) -> int:
        return int(value.total_seconds())


class ProjectStatistic(BaseModel):
    name: str
    worked: dt.timedelta
    by_tasks: Optional[List[TaskStatistic]] = None

    @field_serializer("worked", when_used="json")
    def _seconds(self, value: dt.timedelta) -> int:
        return int(value.total_seconds())


class Statistic(BaseModel):
    worked: dt.timedelta = dt.timedelta(0)
    planned: dt.timedelta = dt.timedelta(0)
    difference: dt.timedelta = dt.timedelta(0)
    percentage: float = 0.0
    by_projects: Optional[List[ProjectStatistic]] = None

    @field_serializer("worked", "planned", "difference", when_used="json")
    def _seconds(self, value: dt.timedelta) -> int:
        return int(value.total_seconds())


class TimerStartRequest(BaseModel):
    project: str
    task: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    start: Optional[dt.datetime] = None


class TimerStopRequest(BaseModel):
    stop: Optional[dt.datetime] = None


class TimerResumeRequest(BaseModel):
    start: Optional[dt.datetime] = None


class TimerUpdateRequest(BaseModel):
    start: Optional[dt.datetime] = None
    stop: Optional[dt.datetime] = None
    project: Optional[str] = None
    task: Optional[str] = None
    tags: Optional[List[str]] = None


class VacationDayCreateRequest(BaseModel):
    day: dt.date
    half: bool = False


def duration(timer: Timer, now: Optional[dt.datetime] = None) -> dt.timedelta:
    end = timer.stop if timer.stop is not None else _as_utc(now or utcnow())
    return end - timer.start


def is_running(timer: Timer) -> bool:
    return timer.stop is None


def overlaps(a: Timer, b: Timer) -> bool:
    """Return whether the half-open intervals of both timers intersect.

    A running timer extends to infinity.
    """
    a_before_b_ends = b.stop is None or a.start < b.stop
    b_before_a_ends = a.stop is None or b.start < a.stop
    return a_before_b_ends and b_before_a_ends


def validate(timer: Timer) -> None:
    problems: List[str] = []
    try:
        uuid.UUID(timer.id)
    except (TypeError, ValueError):
        problems.append("id is not a valid uuid")
    if timer.start is None:
        problems.append("start time is missing")
    if timer.stop is not None and timer.start is not None and timer.stop <= timer.start:
        problems.append("stop time is not after start time")
    if not timer.project:
        problems.append("project is an empty string")
    if problems:
        raise InvalidTimer("; ".join(problems))


def validate_against_ledger(candidate: Timer, existing: Iterable[Timer]) -> None:
    """Check the ledger-wide invariants for ``candidate``.

    ``existing`` is the current content of the ledger. A record sharing the
    candidate's id is the one being replaced and is skipped.
    """
    others = [other for other in existing if other.id != candidate.id]
    if candidate.running:
        for other in others:
            if other.running:
                raise Conflict(f"timer {other.id} is already running, cannot have two running timers")
    for other in others:
        if overlaps(candidate, other):
            raise Conflict(f"timer collides with existing timer {other.id}")
