from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
from pathlib import Path
from threading import RLock
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import Conflict, Internal, NotFound
from .filters import Filter, VacationFilter
from .schemas import Timer, VacationDay
from .storage import OrderBy, Storage, check_timer, check_vacation_day, first

logger = logging.getLogger(__name__)


class LedgerDocument(BaseModel):
    timers: List[Timer] = Field(default_factory=list)
    vacation_days: List[VacationDay] = Field(default_factory=list)


class JSONFileStorage(Storage):
    """Keeps the whole ledger in memory and rewrites one JSON file on every change.

    Writes from threads sharing one instance are serialised. Not safe for
    concurrent processes: the last writer wins.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = RLock()
        self._document = self._load()

    def _load(self) -> LedgerDocument:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LedgerDocument()
        except OSError as exc:
            raise Internal(f"unable to read {self.path}") from exc
        if not raw.strip():
            return LedgerDocument()
        try:
            data = json.loads(raw)
            # older files hold a bare list of timers
            if isinstance(data, list):
                data = {"timers": data}
            document = LedgerDocument.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise Internal(f"unable to decode {self.path}") from exc
        logger.debug("Loaded %d timers from %s", len(document.timers), self.path)
        return document

    def _write(self, document: LedgerDocument) -> None:
        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document.model_dump_json(indent=2))
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as exc:
            raise Internal(f"unable to write {self.path}") from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
        self._document = document

    @property
    def timers(self) -> List[Timer]:
        return list(self._document.timers)

    def _index_of(self, timer_id: str) -> int:
        for index, timer in enumerate(self._document.timers):
            if timer.id == timer_id:
                return index
        raise NotFound(f"timer {timer_id} not found")

    def save_timer(self, timer: Timer) -> None:
        with self._lock:
            if any(existing.id == timer.id for existing in self._document.timers):
                raise Conflict(f"timer with id {timer.id} already exists")
            check_timer(timer, self._document.timers)
            timers = self.timers + [timer]
            self._write(self._document.model_copy(update={"timers": timers}))
        logger.info("Saved timer %s", timer.id)

    def get_timer(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> Timer:
        return first(self.get_timers(filter, order_by), "timer")

    def get_timer_by_id(self, timer_id: str) -> Timer:
        return self._document.timers[self._index_of(timer_id)]

    def get_timers(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> List[Timer]:
        timers = (filter or Filter()).timers(self._document.timers)
        return (order_by or OrderBy()).sort(timers)

    def update_timer(self, timer: Timer) -> None:
        with self._lock:
            index = self._index_of(timer.id)
            check_timer(timer, self._document.timers)
            timers = self.timers
            timers[index] = timer
            self._write(self._document.model_copy(update={"timers": timers}))
        logger.info("Updated timer %s", timer.id)

    def remove_timer(self, timer_id: str) -> None:
        with self._lock:
            index = self._index_of(timer_id)
            timers = self.timers
            del timers[index]
            self._write(self._document.model_copy(update={"timers": timers}))
        logger.info("Removed timer %s", timer_id)

    def save_vacation_day(self, vacation_day: VacationDay) -> None:
        with self._lock:
            check_vacation_day(vacation_day, self._document.vacation_days)
            vacation_days = list(self._document.vacation_days) + [vacation_day]
            self._write(self._document.model_copy(update={"vacation_days": vacation_days}))
        logger.info("Saved vacation day %s", vacation_day.day.isoformat())

    def get_vacation_day(self, day: dt.date) -> VacationDay:
        predicate = VacationFilter(day)
        for vacation_day in self._document.vacation_days:
            if predicate.match(vacation_day):
                return vacation_day
        raise NotFound(f"no vacation day on {day.isoformat()}")

    def get_vacation_days(self, order_by: Optional[OrderBy] = None) -> List[VacationDay]:
        return (order_by or OrderBy()).sort(self._document.vacation_days)

    def remove_vacation_day(self, vacation_id: str) -> None:
        with self._lock:
            vacation_days = [item for item in self._document.vacation_days if item.id != vacation_id]
            if len(vacation_days) == len(self._document.vacation_days):
                raise NotFound(f"vacation day {vacation_id} not found")
            self._write(self._document.model_copy(update={"vacation_days": vacation_days}))
        logger.info("Removed vacation day %s", vacation_id)
