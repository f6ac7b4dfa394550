from __future__ import annotations

import datetime as dt
import json
from zoneinfo import ZoneInfo

import pytest

from conftest import MONDAY, at
from timeledger.errors import Conflict, InvalidTimer
from timeledger.schemas import Timer, VacationDay, duration, is_running, overlaps, validate, validate_against_ledger


def test_timestamps_are_normalized_to_utc_seconds():
    local = dt.datetime(2024, 1, 15, 10, 30, 15, 999999, tzinfo=ZoneInfo("Europe/Berlin"))
    timer = Timer(start=local, project="work")
    assert timer.start == at(MONDAY, 9, 30, 15)
    assert timer.start.tzinfo == dt.timezone.utc
    assert timer.start.microsecond == 0


def test_json_form_omits_empty_optionals():
    timer = Timer(start=at(MONDAY, 9), project="work")
    data = timer.model_dump(mode="json")
    assert data == {"id": timer.id, "start": "2024-01-15T09:00:00+00:00", "project": "work"}

    tagged = Timer(start=at(MONDAY, 9), stop=at(MONDAY, 10), project="work", task="review", tags=["a"])
    data = json.loads(tagged.model_dump_json())
    assert data["stop"] == "2024-01-15T10:00:00+00:00"
    assert data["task"] == "review"
    assert data["tags"] == ["a"]
    assert Timer.model_validate(data) == tagged


def test_empty_task_is_no_task():
    assert Timer(start=at(MONDAY, 9), project="work", task="").task is None


def test_validate_collects_every_problem():
    timer = Timer(id="not-a-uuid", start=at(MONDAY, 10), stop=at(MONDAY, 9), project="")
    with pytest.raises(InvalidTimer) as excinfo:
        validate(timer)
    message = str(excinfo.value)
    assert "uuid" in message
    assert "stop time is not after start time" in message
    assert "project" in message


def test_validate_rejects_missing_start_and_zero_length():
    with pytest.raises(InvalidTimer, match="start time is missing"):
        validate(Timer(project="work"))
    with pytest.raises(InvalidTimer):
        validate(Timer(start=at(MONDAY, 9), stop=at(MONDAY, 9), project="work"))


def test_overlaps_is_half_open(make_timer):
    first = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    adjacent = make_timer(at(MONDAY, 10), at(MONDAY, 11))
    inside = make_timer(at(MONDAY, 9, 30), at(MONDAY, 9, 45))
    assert not overlaps(first, adjacent)
    assert overlaps(first, inside)
    assert overlaps(inside, first)


def test_running_timer_extends_forever(make_timer):
    running = make_timer(at(MONDAY, 12))
    later = make_timer(at(MONDAY, 20), at(MONDAY, 21))
    earlier = make_timer(at(MONDAY, 8), at(MONDAY, 9))
    assert overlaps(running, later)
    assert not overlaps(running, earlier)


def test_validate_against_ledger(make_timer):
    existing = [make_timer(at(MONDAY, 9), at(MONDAY, 10)), make_timer(at(MONDAY, 11))]
    with pytest.raises(Conflict, match="two running timers"):
        validate_against_ledger(make_timer(at(MONDAY, 7)), existing)
    with pytest.raises(Conflict, match="collides"):
        validate_against_ledger(make_timer(at(MONDAY, 9, 30), at(MONDAY, 10, 30)), existing)
    validate_against_ledger(make_timer(at(MONDAY, 10), at(MONDAY, 11)), existing)


def test_validate_against_ledger_skips_the_replaced_timer(make_timer):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    validate_against_ledger(timer.with_changes(stop=at(MONDAY, 10, 30)), [timer])


def test_duration(make_timer):
    assert duration(make_timer(at(MONDAY, 9), at(MONDAY, 10, 30))) == dt.timedelta(minutes=90)
    assert duration(make_timer(at(MONDAY, 9)), now=at(MONDAY, 9, 15)) == dt.timedelta(minutes=15)
    assert is_running(make_timer(at(MONDAY, 9)))
    assert not is_running(make_timer(at(MONDAY, 9), at(MONDAY, 10)))


def test_vacation_day_drops_time_of_day():
    vacation = VacationDay(day=at(MONDAY, 13), half=True)
    assert vacation.day == MONDAY
    assert vacation.model_dump(mode="json") == {"id": vacation.id, "day": "2024-01-15", "half": True}
