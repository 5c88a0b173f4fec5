from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from papertrader.config import LogConfig


def _make_formatter(cfg: LogConfig) -> logging.Formatter:
    if cfg.json_logs:
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
        )
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")


def setup_logging(cfg: LogConfig, console: bool = True) -> None:
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Re-running the CLI in one process must not stack handlers.
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = _make_formatter(cfg)

    Path(cfg.file).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(cfg.file, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    if console:
        stream = logging.StreamHandler()
        stream.setLevel(level)
        stream.setFormatter(formatter)
        root.addHandler(stream)
