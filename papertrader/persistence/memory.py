from __future__ import annotations

import copy
from typing import Optional

from papertrader.errors import PersistenceFailure
from papertrader.models import Snapshot
from papertrader.persistence.base import SnapshotStore


class MemorySnapshotStore(SnapshotStore):
    """In-process store for tests and throwaway sessions.

    Snapshots are deep-copied in both directions so the engine never shares
    mutable state with what was "persisted". Set ``fail_writes`` to simulate a
    broken disk.
    """

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        self._snapshot = copy.deepcopy(snapshot) if snapshot is not None else None
        self.saves = 0
        self.fail_writes = False

    def load(self) -> Snapshot:
        return copy.deepcopy(self._snapshot) if self._snapshot is not None else Snapshot()

    def save(self, snapshot: Snapshot) -> None:
        if self.fail_writes:
            raise PersistenceFailure("Simulated write failure")
        self._snapshot = copy.deepcopy(snapshot)
        self.saves += 1
