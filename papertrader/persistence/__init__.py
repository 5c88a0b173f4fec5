from papertrader.config import StorageConfig
from papertrader.persistence.base import SnapshotStore
from papertrader.persistence.db import SqliteSnapshotStore
from papertrader.persistence.json_store import JsonSnapshotStore
from papertrader.persistence.memory import MemorySnapshotStore


def open_store(cfg: StorageConfig) -> SnapshotStore:
    if cfg.backend == "sqlite":
        return SqliteSnapshotStore(cfg.path)
    if cfg.backend == "json":
        return JsonSnapshotStore(cfg.path)
    if cfg.backend == "memory":
        return MemorySnapshotStore()
    raise ValueError(f"Unsupported storage backend: {cfg.backend}")


__all__ = [
    "JsonSnapshotStore",
    "MemorySnapshotStore",
    "SnapshotStore",
    "SqliteSnapshotStore",
    "open_store",
]
