from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import and_, create_engine, or_, select, true
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import Conflict, Internal, LedgerError, NotFound
from .filters import Filter, Predicate, VacationFilter, json_field
from .models import TimerRecord, VacationRecord, create_schema
from .schemas import Timer, VacationDay, _serialize_datetime, validate, validate_against_ledger
from .storage import OrderBy, Storage, first

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def _collision_candidates(timer: Timer):
    # every row that could overlap the timer or is running
    conditions = [or_(json_field(TimerRecord, "stop").is_(None), json_field(TimerRecord, "stop") > _serialize_datetime(timer.start))]
    if timer.stop is not None:
        conditions.append(json_field(TimerRecord, "start") < _serialize_datetime(timer.stop))
    return and_(true(), *conditions)


class SQLiteStorage(Storage):
    """One row per timer holding the serialized timer as JSON.

    Filters are pushed down to SQLite and re-applied to the decoded rows.
    Overlaps and a second running timer are rejected by triggers as well, so
    writers in other processes cannot break the invariants either.
    """

    def __init__(self, path: Union[str, Path] = MEMORY, *, echo: bool = False) -> None:
        if str(path) == MEMORY:
            self.engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
                future=True,
            )
        else:
            path = Path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{path}",
                connect_args={"check_same_thread": False},
                echo=echo,
                future=True,
            )
        try:
            with self.engine.begin() as connection:
                create_schema(connection)
        except SQLAlchemyError as exc:
            raise Internal(f"unable to initialise database {path}") from exc
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, future=True)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except LedgerError:
            session.rollback()
            raise
        except IntegrityError as exc:
            session.rollback()
            raise Conflict(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise Internal("database operation failed") from exc
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _to_timer(record: TimerRecord) -> Timer:
        try:
            return Timer.model_validate(record.data)
        except ValidationError as exc:
            raise Internal(f"stored timer {record.id} is corrupt") from exc

    @staticmethod
    def _to_vacation_day(record: VacationRecord) -> VacationDay:
        try:
            return VacationDay.model_validate(record.data)
        except ValidationError as exc:
            raise Internal(f"stored vacation day {record.id} is corrupt") from exc

    def _check_collisions(self, session: Session, timer: Timer) -> None:
        records = session.scalars(select(TimerRecord).where(_collision_candidates(timer))).all()
        validate_against_ledger(timer, [self._to_timer(record) for record in records])

    def save_timer(self, timer: Timer) -> None:
        validate(timer)
        with self.session() as session:
            self._check_collisions(session, timer)
            session.add(TimerRecord(id=timer.id, data=timer.model_dump(mode="json")))
            session.flush()
        logger.info("Saved timer %s", timer.id)

    def get_timer(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> Timer:
        return first(self.get_timers(filter, order_by), "timer")

    def get_timer_by_id(self, timer_id: str) -> Timer:
        with self.session() as session:
            record = session.get(TimerRecord, timer_id)
            if record is None:
                raise NotFound(f"timer {timer_id} not found")
            return self._to_timer(record)

    def get_timers(self, filter: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> List[Timer]:
        filter = filter or Filter()
        order_by = order_by or OrderBy()
        stmt = select(TimerRecord).where(filter.clause(TimerRecord)).order_by(*order_by.clauses(TimerRecord))
        with self.session() as session:
            candidates = [self._to_timer(record) for record in session.scalars(stmt)]
        logger.debug("Push-down selected %d timers", len(candidates))
        return filter.timers(candidates)

    def update_timer(self, timer: Timer) -> None:
        with self.session() as session:
            record = session.get(TimerRecord, timer.id)
            if record is None:
                raise NotFound(f"timer {timer.id} not found")
            validate(timer)
            self._check_collisions(session, timer)
            record.data = timer.model_dump(mode="json")
            session.flush()
        logger.info("Updated timer %s", timer.id)

    def remove_timer(self, timer_id: str) -> None:
        with self.session() as session:
            record = session.get(TimerRecord, timer_id)
            if record is None:
                raise NotFound(f"timer {timer_id} not found")
            session.delete(record)
        logger.info("Removed timer %s", timer_id)

    def save_vacation_day(self, vacation_day: VacationDay) -> None:
        with self.session() as session:
            session.add(VacationRecord(id=vacation_day.id, data=vacation_day.model_dump(mode="json")))
            session.flush()
        logger.info("Saved vacation day %s", vacation_day.day.isoformat())

    def get_vacation_day(self, day: dt.date) -> VacationDay:
        predicate: Predicate = VacationFilter(day)
        with self.session() as session:
            records = session.scalars(select(VacationRecord).where(predicate.clause(VacationRecord))).all()
            for vacation_day in map(self._to_vacation_day, records):
                if predicate.match(vacation_day):
                    return vacation_day
        raise NotFound(f"no vacation day on {day.isoformat()}")

    def get_vacation_days(self, order_by: Optional[OrderBy] = None) -> List[VacationDay]:
        order_by = order_by or OrderBy()
        stmt = select(VacationRecord).order_by(*order_by.clauses(VacationRecord))
        with self.session() as session:
            return [self._to_vacation_day(record) for record in session.scalars(stmt)]

    def remove_vacation_day(self, vacation_id: str) -> None:
        with self.session() as session:
            record = session.get(VacationRecord, vacation_id)
            if record is None:
                raise NotFound(f"vacation day {vacation_id} not found")
            session.delete(record)
        logger.info("Removed vacation day %s", vacation_id)
