from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Mapping, Optional

from papertrader.errors import InsufficientFunds
from papertrader.ledger.account import Account
from papertrader.ledger.positions import PositionBook
from papertrader.models import LedgerEntry, LedgerKind, OptionPosition, OptionRight, Position


@dataclass(frozen=True)
class Settlement:
    contract_id: str
    entry: LedgerEntry


class OptionsLifecycle:
    """Settles held option positions once their expiration date is reached.

    In-the-money calls are exercised into the underlying at the strike; every
    other expired contract lapses worthless. Put exercise is not modelled.
    """

    def __init__(self, account: Account, equities: PositionBook, options: PositionBook) -> None:
        self._log = logging.getLogger("options")
        self.account = account
        self.equities = equities
        self.options = options

    def settle(self, prices: Mapping[str, Decimal], ts: datetime, as_of: Optional[date] = None) -> List[Settlement]:
        """Settle every option expiring on or before ``as_of`` (defaults to the tick date)."""
        as_of = as_of or ts.date()
        settled: List[Settlement] = []
        for pos in self.options:
            if not isinstance(pos, OptionPosition) or pos.expiration is None:
                self._log.warning("option_metadata_missing", extra={"contract_id": pos.symbol})
                continue
            if pos.expiration > as_of:
                continue

            # An unpriced underlying counts as out of the money.
            underlying_price = prices.get(pos.underlying)
            if pos.right is OptionRight.CALL and underlying_price is not None and underlying_price > pos.strike:
                entry = self._exercise_call(pos, ts)
            else:
                if pos.right is OptionRight.PUT and underlying_price is not None and underlying_price < pos.strike:
                    self._log.warning(
                        "put_exercise_unsupported",
                        extra={"contract_id": pos.symbol, "underlying_price": str(underlying_price), "strike": str(pos.strike)},
                    )
                entry = self._expire_worthless(pos, ts)

            if entry is not None:
                settled.append(Settlement(contract_id=pos.symbol, entry=entry))
        return settled

    def _exercise_call(self, pos: OptionPosition, ts: datetime) -> Optional[LedgerEntry]:
        shares = pos.qty * pos.multiplier
        required = pos.strike * shares
        try:
            self.account.debit(required, f"Exercised option {pos.symbol} for assignment", ts=ts)
        except InsufficientFunds:
            # Position stays held; settlement is retried on the next tick.
            self._log.warning(
                "exercise_insufficient_funds",
                extra={"contract_id": pos.symbol, "required": str(required), "balance": str(self.account.cash_balance)},
            )
            return None

        self.equities.add(pos.underlying, shares, pos.strike, factory=lambda: Position(symbol=pos.underlying))
        self.options.discard(pos.symbol)
        self._log.info("option_exercised", extra={"contract_id": pos.symbol, "shares": shares, "strike": str(pos.strike)})
        return LedgerEntry(
            ts=ts,
            kind=LedgerKind.ASSIGNMENT,
            symbol=pos.underlying,
            qty=shares,
            price=pos.strike,
            amount=required,
            contract_id=pos.symbol,
            note=f"Exercised {pos.symbol} into {shares} shares",
        )

    def _expire_worthless(self, pos: OptionPosition, ts: datetime) -> LedgerEntry:
        self.options.discard(pos.symbol)
        self._log.info("option_expired", extra={"contract_id": pos.symbol})
        return LedgerEntry(
            ts=ts,
            kind=LedgerKind.EXPIRATION,
            symbol=pos.underlying,
            qty=pos.qty,
            contract_id=pos.symbol,
            note=f"Option {pos.symbol} expired worthless",
        )
