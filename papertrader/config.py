from __future__ import annotations

import logging
from datetime import time
from pathlib import Path
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from papertrader.models import TimeInForce


class LogConfig(BaseModel):
    level: str = "INFO"
    json_logs: bool = Field(default=True, alias="json")
    file: str = "run/papertrader.log"

    model_config = ConfigDict(populate_by_name=True)


class StorageConfig(BaseModel):
    backend: Literal["sqlite", "json", "memory"] = "sqlite"
    path: str = "run/papertrader.sqlite"


class SessionConfig(BaseModel):
    """Trading session boundary used to expire DAY orders."""

    close_time: str = "16:00"
    timezone: Optional[str] = None

    @field_validator("close_time")
    @classmethod
    def _check_close_time(cls, value: str) -> str:
        time.fromisoformat(value)
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def close(self) -> time:
        return time.fromisoformat(self.close_time)

    @property
    def tz(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


class OrderConfig(BaseModel):
    default_tif: TimeInForce = TimeInForce.GTC


class AppConfig(BaseModel):
    log: LogConfig = Field(default_factory=LogConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    orders: OrderConfig = Field(default_factory=OrderConfig)

    @model_validator(mode="before")
    @classmethod
    def _promote_data_dir(cls, data: Any) -> Any:
        # Older configs carried a bare ``data_dir`` pointing at a directory of JSON documents.
        if not isinstance(data, dict) or "data_dir" not in data:
            return data

        data = dict(data)
        data_dir = data.pop("data_dir")
        logger = logging.getLogger(__name__)
        if "storage" in data:
            logger.warning("Ignoring data_dir because storage is set")
            return data
        data["storage"] = {"backend": "json", "path": str(Path(data_dir) / "snapshot.json")}
        logger.warning("Promoted data_dir to storage.path=%s", data["storage"]["path"])
        return data


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return AppConfig.model_validate(data)
