from __future__ import annotations

import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Tuple

from papertrader.errors import PersistenceFailure
from papertrader.models import ZERO, Snapshot
from papertrader.persistence import codec
from papertrader.persistence.base import SnapshotStore, decode_section

SNAPSHOT_VERSION = 1


def _decode_settings(raw: Dict[str, Any]) -> Tuple[Decimal, int]:
    cash = Decimal(str(raw.get("cash_balance", "0")))
    if cash < 0:
        raise ValueError(f"Negative cash balance: {cash}")
    return cash, int(raw.get("next_order_id", 1))


class JsonSnapshotStore(SnapshotStore):
    """Whole snapshot in one JSON document, replaced atomically via a temp file + ``os.replace``."""

    def __init__(self, path: str) -> None:
        self._log = logging.getLogger("persistence.json")
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Snapshot:
        if not self.path.exists():
            self._log.info("snapshot_missing", extra={"path": str(self.path)})
            return Snapshot()
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self._log.warning("snapshot_unreadable", extra={"path": str(self.path), "error": str(exc)})
            return Snapshot()
        if not isinstance(doc, dict):
            self._log.warning("snapshot_unreadable", extra={"path": str(self.path), "error": "not an object"})
            return Snapshot()

        log = self._log
        cash_balance, next_order_id = decode_section(log, "settings", doc.get("settings"), _decode_settings, lambda: (ZERO, 1))
        return Snapshot(
            cash_balance=cash_balance,
            next_order_id=next_order_id,
            transactions=decode_section(
                log, "transactions", doc.get("transactions"), lambda raw: [codec.transaction_from_row(r) for r in raw], list
            ),
            ledger=decode_section(log, "ledger", doc.get("ledger"), lambda raw: [codec.entry_from_row(r) for r in raw], list),
            positions=decode_section(
                log,
                "positions",
                doc.get("positions"),
                lambda raw: {p.symbol: p for p in map(codec.position_from_row, raw) if p.qty > 0},
                dict,
            ),
            option_positions=decode_section(
                log,
                "option_positions",
                doc.get("option_positions"),
                lambda raw: {p.symbol: p for p in map(codec.option_position_from_row, raw) if p.qty > 0},
                dict,
            ),
            open_orders=decode_section(
                log, "open_orders", doc.get("open_orders"), lambda raw: [codec.order_from_row(r) for r in raw], list
            ),
        )

    def save(self, snapshot: Snapshot) -> None:
        doc = {
            "version": SNAPSHOT_VERSION,
            "settings": {"cash_balance": str(snapshot.cash_balance), "next_order_id": snapshot.next_order_id},
            "transactions": [codec.transaction_to_row(t) for t in snapshot.transactions],
            "ledger": [codec.entry_to_row(e) for e in snapshot.ledger],
            "positions": [codec.position_to_row(p) for p in snapshot.positions.values()],
            "option_positions": [codec.option_position_to_row(p) for p in snapshot.option_positions.values()],
            "open_orders": [codec.order_to_row(o) for o in snapshot.open_orders],
        }
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            self._log.error("snapshot_write_failed", extra={"path": str(self.path), "error": str(exc)})
            raise PersistenceFailure(f"Could not write snapshot to {self.path}: {exc}") from exc
