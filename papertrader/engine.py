from __future__ import annotations

import copy
import logging
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from itertools import chain
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from papertrader.bus import EventBus
from papertrader.config import SessionConfig
from papertrader.errors import (
    InsufficientFunds,
    InsufficientPosition,
    InvalidContractIdentifier,
    OrderNotFound,
    PersistenceFailure,
)
from papertrader.ledger import Account, PositionBook, account_pnl, portfolio_value
from papertrader.market_data import MarketInput, Number, extract_prices, to_decimal
from papertrader.models import (
    ZERO,
    LedgerEntry,
    LedgerKind,
    LimitOrder,
    OptionContract,
    OptionPosition,
    OrderSide,
    OrderStatus,
    PnLSummary,
    PortfolioRow,
    Position,
    Snapshot,
    TimeInForce,
    Transaction,
)
from papertrader.options import OptionsLifecycle, parse_contract_id
from papertrader.orders import MatchingEngine, OrderBook, session_time
from papertrader.persistence.base import SnapshotStore

SymbolScope = Literal["all", "open", "closed", "limit"]

# Ledger kinds that move a holding in or out of the book.
_TRADE_KINDS = {LedgerKind.BUY, LedgerKind.SELL, LedgerKind.ORDER_FILLED, LedgerKind.ASSIGNMENT}


class PaperTradingEngine:
    """Paper-trading ledger: cash, equity and option positions, resting limit orders.

    All state lives on the instance and is restored from ``store`` at
    construction. Every mutating call saves a full snapshot before it returns.
    Domain failures (insufficient cash or holdings, bad contract ids, unknown
    orders) are logged and reported as ``False``; nothing is retried.

    The engine is single-writer: callers must not interleave operations, and
    ticks must arrive once each in timestamp order.
    """

    def __init__(
        self,
        store: SnapshotStore,
        session: Optional[SessionConfig] = None,
        bus: Optional[EventBus] = None,
        default_tif: TimeInForce = TimeInForce.GTC,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._log = logging.getLogger("engine")
        self.store = store
        self.session = session or SessionConfig()
        self.bus = bus
        self.default_tif = TimeInForce(default_tif)
        self.clock = clock
        self.durable = True
        self._restore(store.load())

    def _restore(self, snap: Snapshot) -> None:
        self.account = Account(snap.cash_balance, snap.transactions)
        self.equities = PositionBook(snap.positions, name="equity")
        self.options = PositionBook(snap.option_positions, name="option")
        self.orders = OrderBook(snap.open_orders, next_order_id=snap.next_order_id)
        self._ledger: List[LedgerEntry] = list(snap.ledger)
        self.matching = MatchingEngine(self.account, self.equities, self.options, self.orders, self.session)
        self.lifecycle = OptionsLifecycle(self.account, self.equities, self.options)
        self._log.info(
            "state_restored",
            extra={
                "cash_balance": str(self.account.cash_balance),
                "positions": len(self.equities),
                "option_positions": len(self.options),
                "open_orders": len(self.orders),
                "ledger_entries": len(self._ledger),
            },
        )

    # ----------------------------------------------------------------- state

    def snapshot(self) -> Snapshot:
        return Snapshot(
            cash_balance=self.account.cash_balance,
            next_order_id=self.orders.next_order_id,
            transactions=list(self.account.transactions),
            ledger=list(self._ledger),
            positions=copy.deepcopy(self.equities.as_dict()),
            option_positions=copy.deepcopy(self.options.as_dict()),  # type: ignore[arg-type]
            open_orders=[copy.copy(o) for o in self.orders],
        )

    def _persist(self) -> None:
        try:
            self.store.save(self.snapshot())
        except PersistenceFailure as exc:
            if self.durable:
                self._log.error("persistence_lost", extra={"error": str(exc)})
            self.durable = False
            return
        if not self.durable:
            self._log.warning("persistence_restored")
            self.durable = True

    def _record(self, entry: LedgerEntry) -> None:
        self._ledger.append(entry)
        if self.bus is not None:
            self.bus.publish(entry)

    # --------------------------------------------------------------- account

    def credit(self, amount: Number, note: str = "") -> bool:
        amt = to_decimal(amount)
        ts = self.clock()
        self.account.credit(amt, note, ts=ts)
        self._record(LedgerEntry(ts=ts, kind=LedgerKind.CREDIT, amount=amt, note=note))
        self._persist()
        return True

    def debit(self, amount: Number, note: str = "") -> bool:
        amt = to_decimal(amount)
        ts = self.clock()
        try:
            self.account.debit(amt, note, ts=ts)
        except InsufficientFunds as exc:
            self._log.warning("debit_rejected", extra={"amount": str(amt), "error": str(exc)})
            return False
        self._record(LedgerEntry(ts=ts, kind=LedgerKind.DEBIT, amount=amt, note=note))
        self._persist()
        return True

    # --------------------------------------------------------------- trading

    def buy(
        self,
        symbol: str,
        ts: datetime,
        price: Optional[Number],
        qty: int,
        note: str = "",
        limit: Optional[Number] = None,
        tif: Optional[Union[TimeInForce, str]] = None,
        contract_id: Optional[str] = None,
    ) -> bool:
        qty = _check_qty(qty)
        contract = self._contract_or_none(contract_id, symbol)
        if contract_id and contract is None:
            return False

        if limit is not None:
            return self._submit(OrderSide.BUY, symbol, ts, qty, limit, tif, note, contract_id)

        px = _check_price(price)
        cost = px * qty
        label = f"Option Buy {qty} of {contract_id} at {px}" if contract else f"Buy {qty} of {symbol} at {px}"
        try:
            self.account.debit(cost, label, ts=ts)
        except InsufficientFunds as exc:
            self._log.warning("buy_rejected", extra={"symbol": symbol, "cost": str(cost), "error": str(exc)})
            return False

        if contract is not None:
            self.options.add(contract.contract_id, qty, px, factory=lambda: OptionPosition.from_contract(contract))
        else:
            self.equities.add(symbol, qty, px)
        self._record(
            LedgerEntry(
                ts=ts,
                kind=LedgerKind.BUY,
                symbol=symbol,
                side=OrderSide.BUY,
                qty=qty,
                price=px,
                amount=cost,
                order_id=self.orders.allocate_id(),
                contract_id=contract_id,
                note=note,
            )
        )
        self._persist()
        return True

    def close(
        self,
        symbol: str,
        ts: datetime,
        price: Optional[Number],
        qty: int,
        note: str = "",
        limit: Optional[Number] = None,
        tif: Optional[Union[TimeInForce, str]] = None,
        contract_id: Optional[str] = None,
    ) -> bool:
        qty = _check_qty(qty)
        contract = self._contract_or_none(contract_id, symbol)
        if contract_id and contract is None:
            return False

        book = self.options if contract_id else self.equities
        key = contract_id or symbol
        held = book.qty(key)
        if held < qty:
            self._log.warning("close_rejected", extra={"key": key, "qty": qty, "held": held})
            return False

        if limit is not None:
            return self._submit(OrderSide.SELL, symbol, ts, qty, limit, tif, note, contract_id)

        px = _check_price(price)
        try:
            realized = book.remove(key, qty, px)
        except InsufficientPosition as exc:
            self._log.warning("close_rejected", extra={"key": key, "qty": qty, "error": str(exc)})
            return False
        proceeds = px * qty
        label = f"Option Close {qty} of {contract_id} at {px}" if contract_id else f"Close {qty} of {symbol} at {px}"
        self.account.credit(proceeds, label, ts=ts)
        self._record(
            LedgerEntry(
                ts=ts,
                kind=LedgerKind.SELL,
                symbol=symbol,
                side=OrderSide.SELL,
                qty=qty,
                price=px,
                amount=proceeds,
                order_id=self.orders.allocate_id(),
                contract_id=contract_id,
                note=note,
                realized_pnl=realized,
            )
        )
        self._persist()
        return True

    def _submit(
        self,
        side: OrderSide,
        symbol: str,
        ts: datetime,
        qty: int,
        limit: Number,
        tif: Optional[Union[TimeInForce, str]],
        note: str,
        contract_id: Optional[str],
    ) -> bool:
        order = self.orders.submit(
            side,
            symbol,
            qty,
            _check_price(limit),
            created_at=ts,
            tif=TimeInForce(tif) if tif else self.default_tif,
            note=note,
            contract_id=contract_id,
        )
        self._record(
            LedgerEntry(
                ts=ts,
                kind=LedgerKind.ORDER_CREATED,
                symbol=symbol,
                side=side,
                qty=qty,
                price=order.limit_price,
                order_id=order.order_id,
                contract_id=contract_id,
                note=note,
            )
        )
        self._persist()
        return True

    def _contract_or_none(self, contract_id: Optional[str], symbol: str) -> Optional[OptionContract]:
        if not contract_id:
            return None
        try:
            return parse_contract_id(contract_id)
        except InvalidContractIdentifier as exc:
            self._log.warning("invalid_contract_id", extra={"symbol": symbol, "contract_id": contract_id, "error": str(exc)})
            return None

    # ---------------------------------------------------------- cancellation

    def cancel(self, symbol: str, limit: Number, qty: int, note: str = "") -> bool:
        """Cancel the oldest Open order matching exactly (symbol, limit, qty)."""
        try:
            order = self.orders.find(symbol, to_decimal(limit), int(qty))
        except OrderNotFound as exc:
            self._log.warning("cancel_not_found", extra={"symbol": symbol, "error": str(exc)})
            return False
        self._cancel(order, note)
        self._persist()
        return True

    def cancel_order(self, order_id: int, note: str = "") -> bool:
        try:
            order = self.orders.get(order_id)
        except OrderNotFound as exc:
            self._log.warning("cancel_not_found", extra={"order_id": order_id, "error": str(exc)})
            return False
        self._cancel(order, note)
        self._persist()
        return True

    def cancel_all(self, symbol: str, note: str = "") -> bool:
        targets = self.orders.open_orders(symbol)
        if not targets:
            self._log.info("cancel_all_nothing_open", extra={"symbol": symbol})
            return False
        for order in targets:
            self._cancel(order, f"{note} - cancelAll" if note else "cancelAll")
        self._persist()
        return True

    def _cancel(self, order: LimitOrder, note: str) -> None:
        self.orders.finalize(order, OrderStatus.CANCELLED)
        self._record(
            LedgerEntry(
                ts=self.clock(),
                kind=LedgerKind.CANCEL,
                symbol=order.symbol,
                side=order.side,
                qty=order.qty,
                price=order.limit_price,
                order_id=order.order_id,
                contract_id=order.contract_id,
                note=note,
            )
        )

    # ------------------------------------------------------------------ tick

    def tick(self, market: MarketInput, ts: datetime) -> None:
        """Apply one market snapshot: fills and DAY expiries, marks, then option expirations."""
        prices = extract_prices(market)
        order_entries = self.matching.process(prices, ts)
        self.equities.mark(prices)
        self.options.mark(prices)
        as_of = session_time(ts, self.session.tz).date()
        settlements = self.lifecycle.settle(prices, ts, as_of=as_of)

        for entry in chain(order_entries, (s.entry for s in settlements)):
            self._record(entry)
        self._log.debug(
            "tick_processed",
            extra={"symbols": len(prices), "order_events": len(order_entries), "settlements": len(settlements)},
        )
        self._persist()

    # --------------------------------------------------------------- queries

    def get_account_balance(self) -> Decimal:
        return self.account.cash_balance

    def get_account_transactions(self) -> List[Transaction]:
        return list(self.account.transactions)

    def get_portfolio_value(self) -> Decimal:
        return portfolio_value(chain(self.equities, self.options))

    def get_account_value(self) -> Decimal:
        return self.account.cash_balance + self.get_portfolio_value()

    def get_account_pnl(self) -> PnLSummary:
        return account_pnl(self.account, self.get_account_value())

    def get_portfolio(self, as_dict: bool = False) -> Union[List[PortfolioRow], List[Dict[str, Any]]]:
        rows = [_portfolio_row(p, "stock") for p in self.equities if p.qty > 0]
        rows += [_portfolio_row(p, "option") for p in self.options if p.qty > 0]
        if as_dict:
            return [asdict(r) for r in rows]
        return rows

    def get_open_orders(self) -> List[LimitOrder]:
        return [copy.copy(o) for o in self.orders]

    def get_ledger(self) -> List[LedgerEntry]:
        return list(self._ledger)

    def get_symbols(self, scope: SymbolScope = "all") -> List[str]:
        if scope == "all":
            symbols = [e.symbol for e in self._ledger if e.symbol]
        elif scope == "open":
            # Option contracts are reported through get_portfolio, not here.
            symbols = [p.symbol for p in self.equities if p.qty > 0]
        elif scope == "closed":
            held = {p.symbol for p in self.equities}
            traded = [e.symbol for e in self._ledger if e.kind in _TRADE_KINDS and e.contract_id is None]
            symbols = [s for s in traded if s and s not in held]
        elif scope == "limit":
            symbols = [o.symbol for o in self.orders]
        else:
            raise ValueError(f"Unknown symbol scope: {scope}")
        return list(dict.fromkeys(symbols))


def _check_qty(qty: int) -> int:
    if isinstance(qty, bool) or int(qty) != qty or qty <= 0:
        raise ValueError(f"Quantity must be a positive integer, got {qty!r}")
    return int(qty)


def _check_price(price: Optional[Number]) -> Decimal:
    if price is None:
        raise ValueError("Price is required for immediate execution")
    px = to_decimal(price)
    if px <= 0:
        raise ValueError(f"Price must be positive, got {price!r}")
    return px


def _portfolio_row(pos: Position, kind: str) -> PortfolioRow:
    current = pos.mark_price
    market_value = pos.qty * current
    cost_basis = pos.qty * pos.avg_cost
    unrealized = market_value - cost_basis
    row = PortfolioRow(
        symbol=pos.symbol,
        kind=kind,
        quantity=pos.qty,
        average_cost=pos.avg_cost,
        current_price=current,
        market_value=market_value,
        unrealized_pl=unrealized,
        unrealized_pl_percent=(unrealized / cost_basis * 100) if cost_basis != 0 else ZERO,
    )
    if isinstance(pos, OptionPosition):
        row.underlying = pos.underlying
        row.expiration = pos.expiration
        row.right = pos.right
        row.strike = pos.strike
        row.multiplier = pos.multiplier
    return row
