from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal
from typing import List, Mapping, Optional

from papertrader.config import SessionConfig
from papertrader.errors import InvalidContractIdentifier
from papertrader.ledger.account import Account
from papertrader.ledger.positions import PositionBook
from papertrader.models import (
    LedgerEntry,
    LedgerKind,
    LimitOrder,
    OptionPosition,
    OrderSide,
    OrderStatus,
    Position,
    TimeInForce,
)
from papertrader.options.contracts import parse_contract_id
from papertrader.orders.book import OrderBook


def session_time(dt: datetime, tz: Optional[tzinfo]) -> datetime:
    """Express ``dt`` as session wall-clock time.

    With a configured zone every timestamp becomes aware in that zone (naive
    input is taken as already local). Without one, aware input is converted to
    the host's local time and made naive so it compares with naive input.
    """
    if tz is not None:
        return dt.replace(tzinfo=tz) if dt.tzinfo is None else dt.astimezone(tz)
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


def session_close_for(created_at: datetime, session: SessionConfig) -> datetime:
    """Close of the session an order was created in; orders placed after the close roll to the next day."""
    local = session_time(created_at, session.tz)
    close = datetime.combine(local.date(), session.close, tzinfo=local.tzinfo)
    if local >= close:
        close += timedelta(days=1)
    return close


class MatchingEngine:
    """Evaluates resting limit orders against each tick.

    Fills execute at the order's limit price, never at the market price. Cash
    and holdings are checked at fill time only; an order that cannot be funded
    stays Open.
    """

    def __init__(
        self,
        account: Account,
        equities: PositionBook,
        options: PositionBook,
        book: OrderBook,
        session: Optional[SessionConfig] = None,
    ) -> None:
        self._log = logging.getLogger("matching")
        self.account = account
        self.equities = equities
        self.options = options
        self.book = book
        self.session = session or SessionConfig()

    def process(self, prices: Mapping[str, Decimal], ts: datetime) -> List[LedgerEntry]:
        entries: List[LedgerEntry] = []
        now = session_time(ts, self.session.tz)
        for order in self.book:
            entry: Optional[LedgerEntry] = None
            # Option orders prefer the contract's own quote when the tick carries one.
            quote_key = order.contract_id if order.contract_id in prices else order.symbol
            price = prices.get(quote_key)
            if price is None:
                continue
            if order.crosses(price):
                entry = self._fill(order, price, ts)
            if entry is None and self._is_past_session(order, now):
                entry = self._expire(order, ts)
            if entry is not None:
                entries.append(entry)
        return entries

    def _is_past_session(self, order: LimitOrder, now: datetime) -> bool:
        if order.tif is not TimeInForce.DAY:
            return False
        return now >= session_close_for(order.created_at, self.session)

    def _fill(self, order: LimitOrder, market_price: Decimal, ts: datetime) -> Optional[LedgerEntry]:
        book = self.options if order.contract_id else self.equities
        key = order.contract_id or order.symbol
        realized: Optional[Decimal] = None

        if order.side is OrderSide.BUY:
            factory = self._position_factory(order)
            if factory is None:
                return None
            if not self.account.can_afford(order.notional):
                self._log.warning(
                    "fill_insufficient_funds",
                    extra={"order_id": order.order_id, "cost": str(order.notional), "balance": str(self.account.cash_balance)},
                )
                return None
            self.account.debit(order.notional, f"Limit Buy executed for order {order.order_id}", ts=ts)
            book.add(key, order.qty, order.limit_price, factory=factory)
        else:
            if book.qty(key) < order.qty:
                self._log.warning(
                    "fill_insufficient_position",
                    extra={"order_id": order.order_id, "key": key, "qty": order.qty, "held": book.qty(key)},
                )
                return None
            realized = book.remove(key, order.qty, order.limit_price)
            self.account.credit(order.notional, f"Limit Sell executed for order {order.order_id}", ts=ts)

        self.book.finalize(order, OrderStatus.FILLED)
        self._log.info(
            "order_filled",
            extra={
                "order_id": order.order_id,
                "side": order.side.value,
                "symbol": order.symbol,
                "qty": order.qty,
                "limit": str(order.limit_price),
                "market": str(market_price),
            },
        )
        return LedgerEntry(
            ts=ts,
            kind=LedgerKind.ORDER_FILLED,
            symbol=order.symbol,
            side=order.side,
            qty=order.qty,
            price=order.limit_price,
            amount=order.notional,
            order_id=order.order_id,
            contract_id=order.contract_id,
            note=order.note,
            realized_pnl=realized,
        )

    def _position_factory(self, order: LimitOrder):
        if not order.contract_id:
            return lambda: Position(symbol=order.symbol)
        try:
            contract = parse_contract_id(order.contract_id)
        except InvalidContractIdentifier as exc:
            self._log.warning("fill_invalid_contract", extra={"order_id": order.order_id, "error": str(exc)})
            return None
        return lambda: OptionPosition.from_contract(contract)

    def _expire(self, order: LimitOrder, ts: datetime) -> LedgerEntry:
        self.book.finalize(order, OrderStatus.EXPIRED)
        self._log.info("order_expired", extra={"order_id": order.order_id, "symbol": order.symbol})
        return LedgerEntry(
            ts=ts,
            kind=LedgerKind.ORDER_EXPIRED,
            symbol=order.symbol,
            side=order.side,
            qty=order.qty,
            price=order.limit_price,
            order_id=order.order_id,
            contract_id=order.contract_id,
            note="DAY order auto-cancelled at market close",
        )
