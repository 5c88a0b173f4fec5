from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from papertrader.config import AppConfig, SessionConfig, load_config
from papertrader.models import TimeInForce


def test_defaults() -> None:
    cfg = AppConfig()
    assert cfg.storage.backend == "sqlite"
    assert cfg.session.close_time == "16:00"
    assert cfg.session.tz is None
    assert cfg.orders.default_tif is TimeInForce.GTC
    assert cfg.log.json_logs is True


def test_load_from_yaml(tmp_path: Path) -> None:
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text(
        yaml.safe_dump(
            {
                "log": {"level": "DEBUG", "json": False, "file": str(tmp_path / "pt.log")},
                "storage": {"backend": "json", "path": str(tmp_path / "state.json")},
                "session": {"close_time": "13:00", "timezone": "America/New_York"},
                "orders": {"default_tif": "DAY"},
            }
        )
    )

    cfg = load_config(cfg_path)

    assert cfg.log.json_logs is False
    assert cfg.storage.backend == "json"
    assert cfg.session.close.hour == 13
    assert str(cfg.session.tz) == "America/New_York"
    assert cfg.orders.default_tif is TimeInForce.DAY


def test_empty_yaml_gives_defaults(tmp_path: Path) -> None:
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text("")
    assert load_config(cfg_path) == AppConfig()


def test_legacy_data_dir_becomes_json_storage(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        cfg = AppConfig.model_validate({"data_dir": str(tmp_path / "data")})
    assert cfg.storage.backend == "json"
    assert cfg.storage.path == str(tmp_path / "data" / "snapshot.json")


def test_data_dir_ignored_when_storage_set(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        cfg = AppConfig.model_validate({"data_dir": "old", "storage": {"backend": "memory"}})
    assert cfg.storage.backend == "memory"
    assert any("Ignoring data_dir" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize("bad", [{"close_time": "25:00"}, {"timezone": "Mars/Olympus"}])
def test_bad_session_values_rejected(bad: dict) -> None:
    with pytest.raises(ValidationError):
        SessionConfig.model_validate(bad)


def test_unknown_backend_rejected() -> None:
    with pytest.raises(ValidationError):
        AppConfig.model_validate({"storage": {"backend": "postgres"}})


def test_sample_config_parses() -> None:
    path = Path(__file__).resolve().parent.parent / "config" / "paper.example.yaml"
    if not path.exists():
        pytest.skip("Sample config file is missing")

    cfg = load_config(path)
    assert cfg.session.timezone == "America/New_York"
    assert cfg.storage.backend == "sqlite"
