from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional

import pytest
from fastapi.testclient import TestClient

from timeledger.api import create_app
from timeledger.config import Settings
from timeledger.database import SQLiteStorage
from timeledger.jsonstore import JSONFileStorage
from timeledger.schemas import UTC, Timer
from timeledger.statistics import Schedule
from timeledger.storage import Storage

# 2024-01-15 is a Monday
MONDAY = dt.date(2024, 1, 15)


def at(day: dt.date, hour: int, minute: int = 0, second: int = 0) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(hour, minute, second), tzinfo=UTC)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("TT_HOME_DIR", str(home))
    return home


@pytest.fixture()
def settings(isolated_home: Path) -> Settings:
    return Settings(home_dir=isolated_home)


@pytest.fixture()
def file_storage(tmp_path: Path) -> Generator[JSONFileStorage, None, None]:
    storage = JSONFileStorage(tmp_path / "storage.json")
    yield storage
    storage.close()


@pytest.fixture()
def sqlite_storage(tmp_path: Path) -> Generator[SQLiteStorage, None, None]:
    storage = SQLiteStorage(tmp_path / "storage.db")
    yield storage
    storage.close()


@pytest.fixture(params=["file", "sqlite"])
def storage(request: pytest.FixtureRequest) -> Storage:
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture()
def schedule() -> Schedule:
    return Schedule()


@pytest.fixture()
def make_timer() -> Callable[..., Timer]:
    def factory(
        start: dt.datetime,
        stop: Optional[dt.datetime] = None,
        project: str = "work",
        task: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> Timer:
        return Timer(start=start, stop=stop, project=project, task=task, tags=list(tags))

    return factory


@pytest.fixture()
def client(sqlite_storage: SQLiteStorage, settings: Settings) -> Generator[TestClient, None, None]:
    app = create_app(sqlite_storage, settings)
    with TestClient(app) as c:
        yield c
