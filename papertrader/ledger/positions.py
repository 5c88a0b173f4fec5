from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Dict, Iterator, Mapping, Optional

from papertrader.errors import InsufficientPosition
from papertrader.models import ZERO, Position


class PositionBook:
    """Weighted-average-cost book of long positions keyed by symbol or contract id.

    Buys move the average cost; closes only reduce quantity. A position is
    dropped from the book the moment its quantity reaches zero.
    """

    def __init__(self, positions: Optional[Mapping[str, Position]] = None, name: str = "equity") -> None:
        self._log = logging.getLogger(f"positions.{name}")
        self._positions: Dict[str, Position] = dict(positions or {})

    def __contains__(self, key: object) -> bool:
        return key in self._positions

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, key: str) -> Optional[Position]:
        return self._positions.get(key)

    def qty(self, key: str) -> int:
        pos = self._positions.get(key)
        return pos.qty if pos else 0

    def as_dict(self) -> Dict[str, Position]:
        return dict(self._positions)

    def add(self, key: str, qty: int, price: Decimal, factory: Optional[Callable[[], Position]] = None) -> Position:
        if qty <= 0:
            raise ValueError(f"Quantity must be positive, got {qty}")
        pos = self._positions.get(key)
        if pos is None:
            pos = factory() if factory else Position(symbol=key)
        new_qty = pos.qty + qty
        pos.avg_cost = ZERO if new_qty == 0 else (pos.avg_cost * pos.qty + price * qty) / new_qty
        pos.qty = new_qty
        pos.current_price = price
        self._positions[key] = pos
        self._log.info(
            "position_added",
            extra={"key": key, "qty": qty, "price": str(price), "pos_qty": pos.qty, "pos_avg": str(pos.avg_cost)},
        )
        return pos

    def remove(self, key: str, qty: int, price: Decimal) -> Decimal:
        """Reduce ``key`` by ``qty`` at ``price`` and return the realised gain."""
        if qty <= 0:
            raise ValueError(f"Quantity must be positive, got {qty}")
        pos = self._positions.get(key)
        held = pos.qty if pos else 0
        if pos is None or held < qty:
            raise InsufficientPosition(f"Cannot close {qty} of {key}; holding {held}")
        realized = (price - pos.avg_cost) * qty
        pos.qty = held - qty
        pos.current_price = price
        if pos.qty == 0:
            del self._positions[key]
        self._log.info(
            "position_reduced",
            extra={"key": key, "qty": qty, "price": str(price), "pos_qty": pos.qty, "realized": str(realized)},
        )
        return realized

    def discard(self, key: str) -> Optional[Position]:
        return self._positions.pop(key, None)

    def mark(self, prices: Mapping[str, Decimal]) -> int:
        """Mark every priced position to market; return how many were updated."""
        updated = 0
        for key, pos in self._positions.items():
            price = prices.get(key)
            if price is not None:
                pos.current_price = price
                updated += 1
        return updated
