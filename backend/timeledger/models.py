from __future__ import annotations

from typing import Any

from sqlalchemy import Column, String, func, literal
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.engine import Connection
from sqlalchemy.orm import declarative_base

from .filters import json_field
from .storage import Field

Base = declarative_base()

# upper bound used for the open end of a running timer
OPEN_END = "9999-12-31T23:59:59+00:00"


class TimerRecord(Base):
    __tablename__ = "timers"

    id = Column(String(36), primary_key=True)
    data = Column(SQLiteJSON, nullable=False)

    @classmethod
    def sort_expression(cls, field: Field) -> Any:
        if field is Field.PROJECT:
            return json_field(cls, "project")
        if field is Field.TASK:
            return func.coalesce(json_field(cls, "task"), "")
        return json_field(cls, "start")


class VacationRecord(Base):
    __tablename__ = "vacation_days"

    id = Column(String(36), primary_key=True)
    data = Column(SQLiteJSON, nullable=False)

    @classmethod
    def sort_expression(cls, field: Field) -> Any:
        if field in (Field.START, Field.DAY):
            return json_field(cls, "day")
        return literal("")


def _collision_trigger(name: str, event: str, exclude_self: str) -> str:
    return f"""
    CREATE TRIGGER IF NOT EXISTS {name}
        BEFORE {event}
        ON timers
        FOR EACH ROW
        WHEN EXISTS(
            SELECT 1
            FROM timers
            WHERE json_extract(timers.data, '$.start') < coalesce(json_extract(NEW.data, '$.stop'), '{OPEN_END}')
              AND json_extract(NEW.data, '$.start') < coalesce(json_extract(timers.data, '$.stop'), '{OPEN_END}')
              {exclude_self})
    BEGIN
        SELECT RAISE(ABORT, 'timer collides with an existing one');
    END
    """


def _running_trigger(name: str, event: str, exclude_self: str) -> str:
    return f"""
    CREATE TRIGGER IF NOT EXISTS {name}
        BEFORE {event}
        ON timers
        FOR EACH ROW
        WHEN json_extract(NEW.data, '$.stop') IS NULL
         AND EXISTS(
            SELECT 1
            FROM timers
            WHERE json_extract(timers.data, '$.stop') IS NULL
              {exclude_self})
    BEGIN
        SELECT RAISE(ABORT, 'running timer already exists, cannot have two running timers');
    END
    """


SCHEMA_STATEMENTS = (
    _collision_trigger("timers_no_collision_insert", "INSERT", ""),
    _collision_trigger("timers_no_collision_update", "UPDATE", "AND timers.id != NEW.id"),
    _running_trigger("timers_one_running_insert", "INSERT", ""),
    _running_trigger("timers_one_running_update", "UPDATE", "AND timers.id != NEW.id"),
    "CREATE UNIQUE INDEX IF NOT EXISTS ix_vacation_days_day ON vacation_days (json_extract(data, '$.day'))",
)


def create_schema(connection: Connection) -> None:
    Base.metadata.create_all(bind=connection)
    for statement in SCHEMA_STATEMENTS:
        connection.exec_driver_sql(statement)
