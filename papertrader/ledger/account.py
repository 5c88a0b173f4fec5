from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from papertrader.errors import InsufficientFunds
from papertrader.models import ZERO, PnLSummary, Position, Transaction, TransactionKind


class Account:
    """Cash balance plus an append-only log of the credits and debits that produced it.

    The balance always equals the sum of credits minus the sum of debits.
    """

    def __init__(self, cash_balance: Decimal = ZERO, transactions: Optional[Iterable[Transaction]] = None) -> None:
        self._log = logging.getLogger("account")
        self.cash_balance = Decimal(cash_balance)
        self._transactions: List[Transaction] = list(transactions or [])

    @property
    def transactions(self) -> Sequence[Transaction]:
        return tuple(self._transactions)

    def credit(self, amount: Decimal, note: str = "", ts: Optional[datetime] = None) -> Transaction:
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")
        self.cash_balance += amount
        txn = Transaction(ts=ts or datetime.now(), kind=TransactionKind.CREDIT, amount=amount, note=note)
        self._transactions.append(txn)
        self._log.info("credited", extra={"amount": str(amount), "balance": str(self.cash_balance), "note": note})
        return txn

    def debit(self, amount: Decimal, note: str = "", ts: Optional[datetime] = None) -> Transaction:
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")
        if self.cash_balance < amount:
            raise InsufficientFunds(f"Debit of {amount} exceeds balance {self.cash_balance}")
        self.cash_balance -= amount
        txn = Transaction(ts=ts or datetime.now(), kind=TransactionKind.DEBIT, amount=amount, note=note)
        self._transactions.append(txn)
        self._log.info("debited", extra={"amount": str(amount), "balance": str(self.cash_balance), "note": note})
        return txn

    def can_afford(self, amount: Decimal) -> bool:
        return self.cash_balance >= amount

    def total(self, kind: TransactionKind) -> Decimal:
        return sum((t.amount for t in self._transactions if t.kind is kind), ZERO)

    def net_invested(self) -> Decimal:
        return self.total(TransactionKind.CREDIT) - self.total(TransactionKind.DEBIT)


def portfolio_value(positions: Iterable[Position]) -> Decimal:
    """Mark-to-market value of positions, falling back to cost when never priced."""
    return sum((p.market_value for p in positions), ZERO)


def account_pnl(account: Account, account_value: Decimal) -> PnLSummary:
    net = account.net_invested()
    value = account_value - net
    percent = (value / net * 100) if net != 0 else ZERO
    return PnLSummary(value=value, percent=percent)
