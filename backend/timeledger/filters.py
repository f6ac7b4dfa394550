"""Filter language for timers.

A filter string has the form ``key=value1,value2;key2=value3``. Available
keys are:

    project: accepts multiple values
    task   : accepts multiple values
    tags   : accepts multiple values, a timer matches if it has any of them
    since  : a single date in the form YYYY-MM-DD
    until  : a single date in the form YYYY-MM-DD

``since`` and ``until`` are inclusive. Every filter can be evaluated twice:
``match`` decides exactly in memory, ``clause`` renders a predicate for the
relational backend that may select too many rows but never too few. Rows
returned by ``clause`` are always passed through ``match`` again.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from sqlalchemy import String, and_, func, or_, true
from sqlalchemy.sql.elements import ColumnElement

from .errors import InvalidData
from .schemas import UTC, Timer, VacationDay, _serialize_datetime

FILTER_PROJECT = "project"
FILTER_TASK = "task"
FILTER_TAGS = "tags"
FILTER_SINCE = "since"
FILTER_UNTIL = "until"

FILTERS_SEPARATOR = ";"
VALUES_SEPARATOR = ","
DATE_FORMAT = "%Y-%m-%d"

# tags made of these characters appear verbatim inside the stored JSON text
_VERBATIM_TAG = re.compile(r"^[A-Za-z0-9 _.:/+#@-]*$")


class Predicate(Protocol):
    def match(self, item: Any) -> bool: ...

    def clause(self, record: Any) -> ColumnElement[bool]: ...


def json_field(record: Any, name: str) -> ColumnElement[Any]:
    return func.json_extract(record.data, f"$.{name}", type_=String)


@dataclass(frozen=True)
class Filter:
    """Structured query over timers. ``None`` means no constraint."""

    projects: Optional[FrozenSet[str]] = None
    tasks: Optional[FrozenSet[str]] = None
    tags: Optional[FrozenSet[str]] = None
    since: Optional[dt.datetime] = None
    # exclusive: start of the day after the requested ``until`` date
    until: Optional[dt.datetime] = None

    @classmethod
    def build(
        cls,
        projects: Optional[Iterable[str]] = None,
        tasks: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        since: Optional[dt.date] = None,
        until: Optional[dt.date] = None,
        tz: dt.tzinfo = UTC,
    ) -> "Filter":
        return cls(
            projects=frozenset(projects) if projects is not None else None,
            tasks=frozenset(tasks) if tasks is not None else None,
            tags=frozenset(tags) if tags is not None else None,
            since=_start_of_day(since, tz) if since is not None else None,
            until=_start_of_day(until + dt.timedelta(days=1), tz) if until is not None else None,
        )

    @classmethod
    def for_day(cls, day: dt.date, tz: dt.tzinfo = UTC) -> "Filter":
        return cls.build(since=day, until=day, tz=tz)

    @property
    def empty(self) -> bool:
        return self == Filter()

    def match(self, timer: Timer) -> bool:
        if self.projects is not None and timer.project not in self.projects:
            return False
        if self.tasks is not None and (timer.task or "") not in self.tasks:
            return False
        if self.since is not None and timer.start < self.since:
            return False
        if self.until is not None and timer.start >= self.until:
            return False
        if self.tags is not None and self.tags.isdisjoint(timer.tags):
            return False
        return True

    def clause(self, record: Any) -> ColumnElement[bool]:
        conditions: List[ColumnElement[bool]] = []
        if self.projects is not None:
            conditions.append(json_field(record, "project").in_(sorted(self.projects)))
        if self.tasks is not None:
            conditions.append(func.coalesce(json_field(record, "task"), "").in_(sorted(self.tasks)))
        if self.tags is not None and all(_VERBATIM_TAG.match(tag) for tag in self.tags):
            conditions.append(
                or_(*(json_field(record, "tags").contains(f'"{tag}"', autoescape=True) for tag in sorted(self.tags)))
            )
        if self.since is not None:
            conditions.append(json_field(record, "start") >= _serialize_datetime(self.since))
        if self.until is not None:
            conditions.append(json_field(record, "start") < _serialize_datetime(self.until))
        return and_(true(), *conditions)

    def timers(self, timers: Iterable[Timer]) -> List[Timer]:
        return [timer for timer in timers if self.match(timer)]


@dataclass(frozen=True)
class VacationFilter:
    """Selects the vacation entry of a single calendar day."""

    day: dt.date

    def match(self, vacation: VacationDay) -> bool:
        return vacation.day == self.day

    def clause(self, record: Any) -> ColumnElement[bool]:
        return json_field(record, "day").like(f"{self.day.isoformat()}%")


def _start_of_day(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=tz)


def _parse_date(key: str, value: str) -> dt.date:
    try:
        return dt.datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise InvalidData(f"filter {key} expects a date in the form YYYY-MM-DD, got {value!r}") from exc


def _split_values(values: str) -> FrozenSet[str]:
    return frozenset(value.strip() for value in values.split(VALUES_SEPARATOR))


def _parse_pair(part: str) -> Tuple[str, str]:
    pieces = part.split("=")
    if len(pieces) != 2:
        raise InvalidData(f"expected one '=' per filter but got {len(pieces) - 1}: [{part}]")
    return pieces[0].strip(), pieces[1]


def _assign(fields: Dict[str, Any], key: str, values: str, tz: dt.tzinfo) -> None:
    if key in fields:
        raise InvalidData(f"redeclared filter {key}")
    if key in (FILTER_PROJECT, FILTER_TASK, FILTER_TAGS):
        fields[key] = _split_values(values)
    elif key == FILTER_SINCE:
        fields[key] = _start_of_day(_parse_date(key, values), tz)
    elif key == FILTER_UNTIL:
        fields[key] = _start_of_day(_parse_date(key, values) + dt.timedelta(days=1), tz)
    else:
        raise InvalidData(f"unknown filter {key!r}")


def _from_fields(fields: Dict[str, Any]) -> Filter:
    return Filter(
        projects=fields.get(FILTER_PROJECT),
        tasks=fields.get(FILTER_TASK),
        tags=fields.get(FILTER_TAGS),
        since=fields.get(FILTER_SINCE),
        until=fields.get(FILTER_UNTIL),
    )


def parse_filter(text: Optional[str], tz: dt.tzinfo = UTC) -> Filter:
    """Parse a filter string, raising ``InvalidData`` on any syntax error."""
    if not text:
        return Filter()
    fields: Dict[str, Any] = {}
    for part in text.split(FILTERS_SEPARATOR):
        key, values = _parse_pair(part)
        _assign(fields, key, values, tz)
    return _from_fields(fields)


def filter_from_query(query: Union[Mapping[str, str], Iterable[Tuple[str, str]]], tz: dt.tzinfo = UTC) -> Filter:
    """Build a filter from already separated key/value pairs, e.g. a URL query.

    A key given twice is rejected as a redeclared filter.
    """
    pairs = query.items() if isinstance(query, Mapping) else query
    fields: Dict[str, Any] = {}
    for key, values in pairs:
        if values is None or values == "":
            raise InvalidData(f"empty value for filter {key}")
        _assign(fields, key.strip(), values, tz)
    return _from_fields(fields)
