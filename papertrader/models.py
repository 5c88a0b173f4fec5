from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Dict, List, Optional

ZERO = Decimal("0")


class TransactionKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TimeInForce(str, Enum):
    GTC = "GTC"
    DAY = "DAY"


class OrderStatus(str, Enum):
    OPEN = "Open"
    FILLED = "Filled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class OptionRight(str, Enum):
    CALL = "C"
    PUT = "P"


class LedgerKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    BUY = "buy"
    SELL = "sell"
    ORDER_CREATED = "order_created"
    ORDER_FILLED = "order_filled"
    ORDER_EXPIRED = "order_expired"
    CANCEL = "cancel"
    ASSIGNMENT = "assignment"
    EXPIRATION = "expiration"


@dataclass(frozen=True)
class Transaction:
    ts: datetime
    kind: TransactionKind
    amount: Decimal
    note: str = ""


@dataclass
class Position:
    symbol: str
    qty: int = 0
    avg_cost: Decimal = ZERO
    current_price: Optional[Decimal] = None

    @property
    def mark_price(self) -> Decimal:
        return self.current_price if self.current_price is not None else self.avg_cost

    @property
    def market_value(self) -> Decimal:
        return self.qty * self.mark_price


@dataclass(frozen=True)
class OptionContract:
    contract_id: str
    underlying: str
    expiration: date
    right: OptionRight
    strike: Decimal
    multiplier: int = 100


@dataclass
class OptionPosition(Position):
    underlying: str = ""
    expiration: Optional[date] = None
    right: OptionRight = OptionRight.CALL
    strike: Decimal = ZERO
    multiplier: int = 100

    @classmethod
    def from_contract(cls, contract: OptionContract) -> "OptionPosition":
        return cls(
            symbol=contract.contract_id,
            underlying=contract.underlying,
            expiration=contract.expiration,
            right=contract.right,
            strike=contract.strike,
            multiplier=contract.multiplier,
        )


@dataclass
class LimitOrder:
    """Resting limit order. Status only moves forward out of Open."""

    side: ClassVar[OrderSide]

    order_id: int
    symbol: str
    qty: int
    limit_price: Decimal
    created_at: datetime
    tif: TimeInForce = TimeInForce.GTC
    note: str = ""
    contract_id: Optional[str] = None
    status: OrderStatus = OrderStatus.OPEN

    @property
    def is_open(self) -> bool:
        return self.status is OrderStatus.OPEN

    @property
    def notional(self) -> Decimal:
        return self.qty * self.limit_price

    def crosses(self, market_price: Decimal) -> bool:
        raise NotImplementedError

    def transition(self, status: OrderStatus) -> None:
        if self.status is not OrderStatus.OPEN:
            raise ValueError(f"Order {self.order_id} is already {self.status.value}")
        if status is OrderStatus.OPEN:
            raise ValueError("Cannot transition an order back to Open")
        self.status = status


@dataclass
class LimitBuyOrder(LimitOrder):
    side: ClassVar[OrderSide] = OrderSide.BUY

    def crosses(self, market_price: Decimal) -> bool:
        return market_price <= self.limit_price


@dataclass
class LimitSellOrder(LimitOrder):
    side: ClassVar[OrderSide] = OrderSide.SELL

    def crosses(self, market_price: Decimal) -> bool:
        return market_price >= self.limit_price


ORDER_TYPES: Dict[OrderSide, type] = {
    OrderSide.BUY: LimitBuyOrder,
    OrderSide.SELL: LimitSellOrder,
}


@dataclass(frozen=True)
class LedgerEntry:
    ts: datetime
    kind: LedgerKind
    symbol: Optional[str] = None
    side: Optional[OrderSide] = None
    qty: Optional[int] = None
    price: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    order_id: Optional[int] = None
    contract_id: Optional[str] = None
    note: str = ""
    realized_pnl: Optional[Decimal] = None


@dataclass
class Snapshot:
    cash_balance: Decimal = ZERO
    next_order_id: int = 1
    transactions: List[Transaction] = field(default_factory=list)
    ledger: List[LedgerEntry] = field(default_factory=list)
    positions: Dict[str, Position] = field(default_factory=dict)
    option_positions: Dict[str, OptionPosition] = field(default_factory=dict)
    open_orders: List[LimitOrder] = field(default_factory=list)


@dataclass(frozen=True)
class PnLSummary:
    value: Decimal
    percent: Decimal


@dataclass
class PortfolioRow:
    symbol: str
    kind: str
    quantity: int
    average_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    unrealized_pl: Decimal
    unrealized_pl_percent: Decimal
    underlying: Optional[str] = None
    expiration: Optional[date] = None
    right: Optional[OptionRight] = None
    strike: Optional[Decimal] = None
    multiplier: Optional[int] = None
