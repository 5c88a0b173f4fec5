from __future__ import annotations

import logging
import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple, TypeVar

from papertrader.errors import PersistenceFailure
from papertrader.models import ZERO, Snapshot
from papertrader.persistence import codec
from papertrader.persistence.base import SnapshotStore, decode_rows, decode_section

T = TypeVar("T")

_TRANSACTION_COLS = ("ts", "kind", "amount", "note")
_LEDGER_COLS = ("ts", "kind", "symbol", "side", "qty", "price", "amount", "order_id", "contract_id", "note", "realized_pnl")
_POSITION_COLS = ("symbol", "qty", "avg_cost", "current_price")
_OPTION_COLS = _POSITION_COLS + ("underlying", "expiration", "option_right", "strike", "multiplier")
_ORDER_COLS = ("order_id", "side", "symbol", "qty", "limit_price", "tif", "created_at", "note", "contract_id", "status")


def _insert_sql(table: str, cols: Tuple[str, ...]) -> str:
    return f"INSERT INTO {table}({', '.join(cols)}) VALUES({', '.join(':' + c for c in cols)})"


class SqliteSnapshotStore(SnapshotStore):
    """Snapshot kept in six SQLite tables, rewritten together in one transaction per save."""

    def __init__(self, sqlite_path: str) -> None:
        self._log = logging.getLogger("persistence.sqlite")
        self.path = Path(sqlite_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path.as_posix())
        self.conn.row_factory = sqlite3.Row
        self._ready = self._apply_schema()

    def _apply_schema(self) -> bool:
        schema_path = Path(__file__).with_name("schema.sql")
        try:
            self.conn.executescript(schema_path.read_text(encoding="utf-8"))
            # Ledgers written before cash amounts were recorded lack the column.
            cols = {row["name"] for row in self.conn.execute("PRAGMA table_info(ledger)")}
            if "amount" not in cols:
                self.conn.execute("ALTER TABLE ledger ADD COLUMN amount TEXT")
            self.conn.commit()
        except sqlite3.DatabaseError as exc:
            self._log.error("database_unusable", extra={"path": str(self.path), "error": str(exc)})
            return False
        return True

    def close(self) -> None:
        self.conn.close()

    def load(self) -> Snapshot:
        if not self._ready:
            return Snapshot()
        cash_balance, next_order_id = self._section("settings", "SELECT key, value FROM settings", self._decode_settings, lambda: (ZERO, 1))
        return Snapshot(
            cash_balance=cash_balance,
            next_order_id=next_order_id,
            transactions=self._section(
                "transactions",
                "SELECT ts, kind, amount, note FROM transactions ORDER BY seq",
                lambda rows: decode_rows(rows, codec.transaction_from_row),
                list,
            ),
            ledger=self._section(
                "ledger",
                f"SELECT {', '.join(_LEDGER_COLS)} FROM ledger ORDER BY seq",
                lambda rows: decode_rows(rows, codec.entry_from_row),
                list,
            ),
            positions=self._section(
                "positions",
                f"SELECT {', '.join(_POSITION_COLS)} FROM positions",
                lambda rows: {p.symbol: p for p in decode_rows(rows, codec.position_from_row) if p.qty > 0},
                dict,
            ),
            option_positions=self._section(
                "option_positions",
                f"SELECT {', '.join(_OPTION_COLS)} FROM option_positions",
                lambda rows: {p.symbol: p for p in decode_rows(rows, codec.option_position_from_row) if p.qty > 0},
                dict,
            ),
            open_orders=self._section(
                "open_orders",
                f"SELECT {', '.join(_ORDER_COLS)} FROM open_orders ORDER BY order_id",
                lambda rows: decode_rows(rows, codec.order_from_row),
                list,
            ),
        )

    def _section(self, name: str, query: str, decode: Callable[[List[Any]], T], default: Callable[[], T]) -> T:
        try:
            rows = self.conn.execute(query).fetchall()
        except sqlite3.Error as exc:
            self._log.warning("section_unreadable", extra={"section": name, "error": str(exc)})
            return default()
        return decode_section(self._log, name, rows, decode, default)

    @staticmethod
    def _decode_settings(rows: List[Any]) -> Tuple[Decimal, int]:
        values: Dict[str, str] = {row["key"]: row["value"] for row in rows}
        cash = Decimal(values.get("cash_balance", "0"))
        if cash < 0:
            raise ValueError(f"Negative cash balance: {cash}")
        return cash, int(values.get("next_order_id", "1"))

    def save(self, snapshot: Snapshot) -> None:
        if not self._ready:
            raise PersistenceFailure(f"Database at {self.path} is unusable")
        try:
            with self.conn:
                for table in ("settings", "transactions", "ledger", "positions", "option_positions", "open_orders"):
                    self.conn.execute(f"DELETE FROM {table}")
                self.conn.executemany(
                    "INSERT INTO settings(key, value) VALUES(?, ?)",
                    [("cash_balance", str(snapshot.cash_balance)), ("next_order_id", str(snapshot.next_order_id))],
                )
                self.conn.executemany(
                    _insert_sql("transactions", ("seq",) + _TRANSACTION_COLS),
                    [dict(codec.transaction_to_row(t), seq=i) for i, t in enumerate(snapshot.transactions)],
                )
                self.conn.executemany(
                    _insert_sql("ledger", ("seq",) + _LEDGER_COLS),
                    [dict(codec.entry_to_row(e), seq=i) for i, e in enumerate(snapshot.ledger)],
                )
                self.conn.executemany(
                    _insert_sql("positions", _POSITION_COLS),
                    [codec.position_to_row(p) for p in snapshot.positions.values()],
                )
                self.conn.executemany(
                    _insert_sql("option_positions", _OPTION_COLS),
                    [codec.option_position_to_row(p) for p in snapshot.option_positions.values()],
                )
                self.conn.executemany(
                    _insert_sql("open_orders", _ORDER_COLS),
                    [codec.order_to_row(o) for o in snapshot.open_orders],
                )
        except sqlite3.Error as exc:
            self._log.error("snapshot_write_failed", extra={"path": str(self.path), "error": str(exc)})
            raise PersistenceFailure(f"Could not write snapshot to {self.path}: {exc}") from exc
