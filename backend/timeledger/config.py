from __future__ import annotations

import datetime as dt
import os
import re
from pathlib import Path
from typing import Any, Optional, Tuple, Type
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

PRECISIONS = {
    "s": dt.timedelta(seconds=1),
    "second": dt.timedelta(seconds=1),
    "m": dt.timedelta(minutes=1),
    "minute": dt.timedelta(minutes=1),
    "h": dt.timedelta(hours=1),
    "hour": dt.timedelta(hours=1),
}


def default_home_dir() -> Path:
    return Path(os.getenv("TT_HOME_DIR") or Path.home() / ".tt")


DURATION_PATTERN = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def parse_duration(value: str) -> int:
    """Seconds in a duration such as ``15m`` or ``1h30m``; a bare number is seconds."""
    text = value.strip().lower()
    if text.isdigit():
        return int(text)
    match = DURATION_PATTERN.match(text)
    if not text or match is None:
        raise ValueError(f"invalid duration: {value}")
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


class WorkDays(BaseModel):
    monday: bool = True
    tuesday: bool = True
    wednesday: bool = True
    thursday: bool = True
    friday: bool = True
    saturday: bool = False
    sunday: bool = False

    def is_work_day(self, day: dt.date) -> bool:
        return (
            self.monday,
            self.tuesday,
            self.wednesday,
            self.thursday,
            self.friday,
            self.saturday,
            self.sunday,
        )[day.weekday()]


class Timeclock(BaseModel):
    hours_per_day: int = Field(default=8, ge=0, le=24, validation_alias=AliasChoices("hours_per_day", "hoursPerDay"))
    days_per_week: WorkDays = Field(
        default_factory=WorkDays, validation_alias=AliasChoices("days_per_week", "daysPerWeek")
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TT_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )
    """Ledger runtime configuration."""

    app_name: str = "tt"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "WARNING"

    home_dir: Path = Field(default_factory=default_home_dir)
    storage_backend: str = "sqlite"
    sqlite_path: Optional[Path] = None
    json_path: Optional[Path] = None

    timezone: str = "UTC"
    precision: str = "second"
    # seconds or a duration like "15m"; 0 disables rounding
    round_start_time: int = Field(default=0, ge=0)
    timeclock: Timeclock = Field(default_factory=Timeclock)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict) and "roundStartTime" in data:
            data = dict(data)
            legacy = data.pop("roundStartTime")
            data.setdefault("round_start_time", legacy)
        return data

    @field_validator("round_start_time", mode="before")
    @classmethod
    def _parse_round_start_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"sqlite", "file"}:
            raise ValueError(f"unknown storage backend: {value}")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("precision")
    @classmethod
    def _check_precision(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in PRECISIONS:
            raise ValueError(f"unknown precision: {value}")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        home_dir = default_home_dir()
        if isinstance(init_settings, InitSettingsSource) and init_settings.init_kwargs.get("home_dir"):
            home_dir = Path(init_settings.init_kwargs["home_dir"])
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=home_dir / "config.json"),
            file_secret_settings,
        )

    @property
    def database_file(self) -> Path:
        return self.sqlite_path or self.home_dir / "storage.db"

    @property
    def storage_file(self) -> Path:
        return self.json_path or self.home_dir / "storage.json"

    @property
    def precision_delta(self) -> dt.timedelta:
        return PRECISIONS[self.precision]


def load_settings(**overrides) -> Settings:
    return Settings(**overrides)
