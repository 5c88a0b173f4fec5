from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional

from papertrader.errors import OrderNotFound
from papertrader.models import ORDER_TYPES, LimitOrder, OrderSide, OrderStatus, TimeInForce


class OrderBook:
    """Registry of Open limit orders in submission order.

    Orders leave the book exactly once, when they reach a terminal status.
    """

    def __init__(self, orders: Optional[Iterable[LimitOrder]] = None, next_order_id: int = 1) -> None:
        self._log = logging.getLogger("orders")
        self._orders: List[LimitOrder] = [o for o in (orders or []) if o.is_open]
        highest = max((o.order_id for o in self._orders), default=0)
        self.next_order_id = max(int(next_order_id), highest + 1)

    def __iter__(self) -> Iterator[LimitOrder]:
        return iter(list(self._orders))

    def __len__(self) -> int:
        return len(self._orders)

    def allocate_id(self) -> int:
        oid = self.next_order_id
        self.next_order_id += 1
        return oid

    def submit(
        self,
        side: OrderSide,
        symbol: str,
        qty: int,
        limit_price: Decimal,
        created_at: datetime,
        tif: TimeInForce = TimeInForce.GTC,
        note: str = "",
        contract_id: Optional[str] = None,
    ) -> LimitOrder:
        if qty <= 0:
            raise ValueError(f"Order quantity must be positive, got {qty}")
        if limit_price <= 0:
            raise ValueError(f"Limit price must be positive, got {limit_price}")
        order_cls = ORDER_TYPES[OrderSide(side)]
        order = order_cls(
            order_id=self.allocate_id(),
            symbol=symbol,
            qty=qty,
            limit_price=limit_price,
            created_at=created_at,
            tif=TimeInForce(tif),
            note=note,
            contract_id=contract_id,
        )
        self._orders.append(order)
        self._log.info(
            "order_created",
            extra={"order_id": order.order_id, "side": order.side.value, "symbol": symbol, "qty": qty, "limit": str(limit_price)},
        )
        return order

    def open_orders(self, symbol: Optional[str] = None) -> List[LimitOrder]:
        return [o for o in self._orders if symbol is None or o.symbol == symbol]

    def get(self, order_id: int) -> LimitOrder:
        for o in self._orders:
            if o.order_id == order_id:
                return o
        raise OrderNotFound(f"No open order with id {order_id}")

    def find(self, symbol: str, limit_price: Decimal, qty: int) -> LimitOrder:
        """First Open order, by submission order, matching the exact (symbol, limit, qty) triple."""
        for o in self._orders:
            if o.symbol == symbol and o.limit_price == limit_price and o.qty == qty:
                return o
        raise OrderNotFound(f"No open order for {symbol} limit={limit_price} qty={qty}")

    def finalize(self, order: LimitOrder, status: OrderStatus) -> LimitOrder:
        """Move ``order`` to a terminal ``status`` and drop it from the book."""
        if order not in self._orders:
            raise OrderNotFound(f"Order {order.order_id} is not in the book")
        order.transition(status)
        self._orders.remove(order)
        self._log.info("order_finalized", extra={"order_id": order.order_id, "status": status.value})
        return order
