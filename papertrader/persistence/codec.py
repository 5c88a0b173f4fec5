"""Flat dict encoding of engine state.

Keys double as SQLite column names, so the JSON and SQLite stores share one
codec. Decimals travel as strings to keep cents exact.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from papertrader.models import (
    ORDER_TYPES,
    LedgerEntry,
    LedgerKind,
    LimitOrder,
    OptionPosition,
    OptionRight,
    OrderSide,
    OrderStatus,
    Position,
    TimeInForce,
    Transaction,
    TransactionKind,
)

Row = Dict[str, Any]


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _parse_dec(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def transaction_to_row(t: Transaction) -> Row:
    return {"ts": t.ts.isoformat(), "kind": t.kind.value, "amount": str(t.amount), "note": t.note}


def transaction_from_row(row: Row) -> Transaction:
    amount = Decimal(str(row["amount"]))
    if amount <= 0:
        raise ValueError(f"Non-positive transaction amount: {amount}")
    return Transaction(
        ts=_parse_ts(row["ts"]),
        kind=TransactionKind(row["kind"]),
        amount=amount,
        note=row.get("note") or "",
    )


def entry_to_row(e: LedgerEntry) -> Row:
    return {
        "ts": e.ts.isoformat(),
        "kind": e.kind.value,
        "symbol": e.symbol,
        "side": e.side.value if e.side else None,
        "qty": e.qty,
        "price": _dec(e.price),
        "amount": _dec(e.amount),
        "order_id": e.order_id,
        "contract_id": e.contract_id,
        "note": e.note,
        "realized_pnl": _dec(e.realized_pnl),
    }


def entry_from_row(row: Row) -> LedgerEntry:
    return LedgerEntry(
        ts=_parse_ts(row["ts"]),
        kind=LedgerKind(row["kind"]),
        symbol=row.get("symbol"),
        side=OrderSide(row["side"]) if row.get("side") else None,
        qty=int(row["qty"]) if row.get("qty") is not None else None,
        price=_parse_dec(row.get("price")),
        amount=_parse_dec(row.get("amount")),
        order_id=int(row["order_id"]) if row.get("order_id") is not None else None,
        contract_id=row.get("contract_id"),
        note=row.get("note") or "",
        realized_pnl=_parse_dec(row.get("realized_pnl")),
    )


def position_to_row(p: Position) -> Row:
    return {
        "symbol": p.symbol,
        "qty": p.qty,
        "avg_cost": str(p.avg_cost),
        "current_price": _dec(p.current_price),
    }


def position_from_row(row: Row) -> Position:
    qty = int(row["qty"])
    if qty < 0:
        raise ValueError(f"Negative quantity for {row['symbol']}: {qty}")
    return Position(
        symbol=row["symbol"],
        qty=qty,
        avg_cost=Decimal(str(row["avg_cost"])),
        current_price=_parse_dec(row.get("current_price")),
    )


def option_position_to_row(p: OptionPosition) -> Row:
    row = position_to_row(p)
    row.update(
        {
            "underlying": p.underlying,
            "expiration": p.expiration.isoformat() if p.expiration else None,
            "option_right": p.right.value,
            "strike": str(p.strike),
            "multiplier": p.multiplier,
        }
    )
    return row


def option_position_from_row(row: Row) -> OptionPosition:
    base = position_from_row(row)
    return OptionPosition(
        symbol=base.symbol,
        qty=base.qty,
        avg_cost=base.avg_cost,
        current_price=base.current_price,
        underlying=row["underlying"],
        expiration=date.fromisoformat(row["expiration"]) if row.get("expiration") else None,
        right=OptionRight(row["option_right"]),
        strike=Decimal(str(row["strike"])),
        multiplier=int(row["multiplier"]),
    )


def order_to_row(o: LimitOrder) -> Row:
    return {
        "order_id": o.order_id,
        "side": o.side.value,
        "symbol": o.symbol,
        "qty": o.qty,
        "limit_price": str(o.limit_price),
        "tif": o.tif.value,
        "created_at": o.created_at.isoformat(),
        "note": o.note,
        "contract_id": o.contract_id,
        "status": o.status.value,
    }


def order_from_row(row: Row) -> LimitOrder:
    order_cls = ORDER_TYPES[OrderSide(row["side"])]
    return order_cls(
        order_id=int(row["order_id"]),
        symbol=row["symbol"],
        qty=int(row["qty"]),
        limit_price=Decimal(str(row["limit_price"])),
        created_at=_parse_ts(row["created_at"]),
        tif=TimeInForce(row["tif"]),
        note=row.get("note") or "",
        contract_id=row.get("contract_id"),
        status=OrderStatus(row.get("status") or OrderStatus.OPEN.value),
    )
