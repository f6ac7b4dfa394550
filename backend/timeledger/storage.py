from __future__ import annotations

import abc
import datetime as dt
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Sequence, TypeVar, Union

from .errors import Conflict, NotFound
from .filters import Filter
from .schemas import Timer, VacationDay, _serialize_datetime, validate, validate_against_ledger

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings

Item = TypeVar("Item", Timer, VacationDay)


class Field(str, enum.Enum):
    START = "start"
    PROJECT = "project"
    TASK = "task"
    DAY = "day"


class Direction(str, enum.Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


def sort_value(item: Union[Timer, VacationDay], field: Field) -> str:
    """Comparable value of ``field`` as both backends see it.

    Values are compared in their serialized form so that in-memory sorting
    and the relational ORDER BY agree.
    """
    if isinstance(item, VacationDay):
        if field in (Field.START, Field.DAY):
            return item.day.isoformat()
        return ""
    if field is Field.PROJECT:
        return item.project
    if field is Field.TASK:
        return item.task or ""
    if item.start is None:
        return ""
    return _serialize_datetime(item.start)


@dataclass(frozen=True)
class OrderBy:
    field: Optional[Field] = None
    direction: Direction = Direction.ASCENDING

    @property
    def descending(self) -> bool:
        return self.direction is Direction.DESCENDING

    def key(self, item: Union[Timer, VacationDay]) -> tuple:
        # ties are broken by start, then id
        return (sort_value(item, self.field), sort_value(item, Field.START), item.id)

    def sort(self, items: Iterable[Item]) -> List[Item]:
        if self.field is None:
            return list(items)
        return sorted(items, key=self.key, reverse=self.descending)

    def clauses(self, record: Any) -> List[Any]:
        if self.field is None:
            return []
        columns = [record.sort_expression(self.field), record.sort_expression(Field.START), record.id]
        if self.descending:
            return [column.desc() for column in columns]
        return [column.asc() for column in columns]


LATEST_FIRST = OrderBy(Field.START, Direction.DESCENDING)
OLDEST_FIRST = OrderBy(Field.START, Direction.ASCENDING)


def check_timer(candidate: Timer, existing: Iterable[Timer]) -> None:
    validate(candidate)
    validate_against_ledger(candidate, existing)


def check_vacation_day(candidate: VacationDay, existing: Iterable[VacationDay]) -> None:
    for other in existing:
        if other.id == candidate.id:
            raise Conflict(f"vacation day with id {candidate.id} already exists")
        if other.day == candidate.day:
            raise Conflict(f"{candidate.day.isoformat()} is already a vacation day")


def first(items: Sequence[Item], what: str) -> Item:
    if not items:
        raise NotFound(f"no {what} matches the query")
    return items[0]


class Storage(abc.ABC):
    """Contract shared by all storage backends.

    Every write validates the timer and the ledger-wide invariants before
    anything is persisted; a failed write leaves the ledger unchanged.
    """

    @abc.abstractmethod
    def save_timer(self, timer: Timer) -> None: ...

    @abc.abstractmethod
    def get_timer(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> Timer: ...

    @abc.abstractmethod
    def get_timer_by_id(self, timer_id: str) -> Timer: ...

    @abc.abstractmethod
    def get_timers(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> List[Timer]: ...

    @abc.abstractmethod
    def update_timer(self, timer: Timer) -> None: ...

    @abc.abstractmethod
    def remove_timer(self, timer_id: str) -> None: ...

    @abc.abstractmethod
    def save_vacation_day(self, vacation_day: VacationDay) -> None: ...

    @abc.abstractmethod
    def get_vacation_day(self, day: dt.date) -> VacationDay: ...

    @abc.abstractmethod
    def get_vacation_days(self, order_by: Optional[OrderBy] = None) -> List[VacationDay]: ...

    @abc.abstractmethod
    def remove_vacation_day(self, vacation_id: str) -> None: ...

    def close(self) -> None:
        return None

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def open_storage(settings: "Settings") -> Storage:
    """Create the backend selected by the configuration."""
    if settings.storage_backend == "file":
        from .jsonstore import JSONFileStorage

        return JSONFileStorage(settings.storage_file)
    from .database import SQLiteStorage

    return SQLiteStorage(settings.database_file)
