from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

import pytest

from papertrader.bus import EventBus
from papertrader.engine import PaperTradingEngine
from papertrader.events import MarketBar
from papertrader.models import LedgerEntry, LedgerKind, OrderSide, TimeInForce
from papertrader.persistence import MemorySnapshotStore

NOW = datetime(2024, 3, 4, 9, 0)
CID = "O:NVDA250221C00139000"


def _at(hour: int, minute: int = 0) -> datetime:
    return NOW.replace(hour=hour, minute=minute)


def _engine(store: MemorySnapshotStore | None = None, **kwargs) -> PaperTradingEngine:
    return PaperTradingEngine(store or MemorySnapshotStore(), clock=lambda: NOW, **kwargs)


def _funded(cash: str = "10000") -> PaperTradingEngine:
    engine = _engine()
    assert engine.credit(cash, "seed")
    return engine


def test_credit_and_debit_write_ledger_and_persist() -> None:
    store = MemorySnapshotStore()
    engine = _engine(store)

    assert engine.credit(1000, "seed")
    assert engine.debit("250.5", "fees")

    assert engine.get_account_balance() == Decimal("749.5")
    assert [e.kind for e in engine.get_ledger()] == [LedgerKind.CREDIT, LedgerKind.DEBIT]
    assert [t.amount for t in engine.get_account_transactions()] == [Decimal("1000"), Decimal("250.5")]
    assert store.saves == 2


def test_debit_beyond_balance_returns_false() -> None:
    engine = _funded("100")
    assert engine.debit(101) is False
    assert engine.get_account_balance() == Decimal("100")
    assert len(engine.get_ledger()) == 1


def test_immediate_buys_average_cost() -> None:
    engine = _funded()

    assert engine.buy("AAPL", NOW, 100, 10)
    assert engine.buy("AAPL", NOW, 106, 5)

    [row] = engine.get_portfolio()
    assert row.quantity == 15
    assert row.average_cost == Decimal("102")
    assert engine.get_account_balance() == Decimal("8470")
    buys = [e for e in engine.get_ledger() if e.kind is LedgerKind.BUY]
    assert [e.order_id for e in buys] == [1, 2]
    assert buys[0].amount == Decimal("1000")


def test_buy_without_cash_is_rejected_without_side_effects(caplog: pytest.LogCaptureFixture) -> None:
    store = MemorySnapshotStore()
    engine = _engine(store)
    engine.credit(50)
    saves = store.saves

    with caplog.at_level(logging.WARNING, logger="engine"):
        assert engine.buy("AAPL", NOW, 100, 1) is False

    assert engine.get_portfolio() == []
    assert engine.get_account_balance() == Decimal("50")
    assert store.saves == saves
    assert any(r.getMessage() == "buy_rejected" for r in caplog.records)


def test_close_reduces_and_records_realized_pnl() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 10)
    engine.buy("AAPL", NOW, 106, 5)

    assert engine.close("AAPL", NOW, 110, 5, note="trim")

    [row] = engine.get_portfolio()
    assert row.quantity == 10
    assert row.average_cost == Decimal("102")
    sell = engine.get_ledger()[-1]
    assert sell.kind is LedgerKind.SELL
    assert sell.realized_pnl == Decimal("40")
    assert engine.get_account_balance() == Decimal("9020")


def test_over_close_rejected() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 10)

    assert engine.close("AAPL", NOW, 110, 11) is False
    assert engine.close("MSFT", NOW, 110, 1) is False
    assert engine.close("AAPL", NOW, 110, 11, limit=120) is False
    assert engine.get_portfolio()[0].quantity == 10
    assert engine.get_open_orders() == []


def test_limit_buy_fills_on_third_tick_at_limit() -> None:
    engine = _funded()
    assert engine.buy("AAPL", _at(9, 30), None, 10, limit=100)
    assert engine.get_ledger()[-1].kind is LedgerKind.ORDER_CREATED
    # Nothing is reserved at submission.
    assert engine.get_account_balance() == Decimal("10000")

    engine.tick({"AAPL": 105}, _at(10, 0))
    engine.tick({"AAPL": 101}, _at(10, 1))
    assert len(engine.get_open_orders()) == 1
    engine.tick({"AAPL": 99}, _at(10, 2))

    assert engine.get_open_orders() == []
    fill = engine.get_ledger()[-1]
    assert fill.kind is LedgerKind.ORDER_FILLED
    assert fill.price == Decimal("100")
    assert engine.get_account_balance() == Decimal("9000")
    [row] = engine.get_portfolio()
    assert row.current_price == Decimal("99")


def test_day_order_expires_while_gtc_survives() -> None:
    engine = _funded()
    engine.buy("AAPL", _at(10), None, 1, limit=90, tif=TimeInForce.DAY)
    engine.buy("AAPL", _at(10), None, 1, limit=90, tif="GTC")

    engine.tick([MarketBar(ts=_at(16), symbol="AAPL", open=95, high=96, low=94, close=95)], _at(16))

    [survivor] = engine.get_open_orders()
    assert survivor.tif is TimeInForce.GTC
    assert engine.get_ledger()[-1].kind is LedgerKind.ORDER_EXPIRED


def test_default_tif_applies_to_limit_orders() -> None:
    engine = _engine(default_tif=TimeInForce.DAY)
    engine.buy("AAPL", _at(10), None, 1, limit=90)
    assert engine.get_open_orders()[0].tif is TimeInForce.DAY


def test_cancel_by_triple_takes_oldest_match() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, None, 1, limit=90)
    engine.buy("AAPL", NOW, None, 1, limit=90)

    assert engine.cancel("AAPL", 90, 1, note="changed mind")

    [left] = engine.get_open_orders()
    assert left.order_id == 2
    cancel = engine.get_ledger()[-1]
    assert (cancel.kind, cancel.order_id, cancel.note) == (LedgerKind.CANCEL, 1, "changed mind")
    assert engine.cancel("AAPL", 91, 1) is False


def test_cancel_all_writes_one_entry_per_order() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, None, 1, limit=90)
    engine.buy("AAPL", NOW, None, 2, limit=80)
    engine.buy("MSFT", NOW, None, 1, limit=300)

    assert engine.cancel_all("AAPL", note="flat")

    cancels = [e for e in engine.get_ledger() if e.kind is LedgerKind.CANCEL]
    assert [c.order_id for c in cancels] == [1, 2]
    assert all(c.note == "flat - cancelAll" for c in cancels)
    assert [o.symbol for o in engine.get_open_orders()] == ["MSFT"]
    assert engine.cancel_all("AAPL") is False


def test_cancel_order_by_id() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, None, 1, limit=90)
    assert engine.cancel_order(1)
    assert engine.cancel_order(1) is False
    assert engine.get_open_orders() == []


def test_open_orders_are_copies() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, None, 1, limit=90)
    engine.get_open_orders()[0].qty = 50
    assert engine.get_open_orders()[0].qty == 1


def test_snapshot_does_not_expose_live_positions() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 5)
    engine.buy("NVDA", NOW, 5, 1, contract_id=CID)
    engine.buy("MSFT", NOW, None, 1, limit=90)

    snap = engine.snapshot()
    snap.positions["AAPL"].qty = 99
    snap.option_positions[CID].qty = 99
    snap.open_orders[0].qty = 99

    quantities = {row.symbol: row.quantity for row in engine.get_portfolio()}
    assert quantities == {"AAPL": 5, CID: 1}
    assert engine.get_open_orders()[0].qty == 1


def test_invalid_contract_id_is_rejected(caplog: pytest.LogCaptureFixture) -> None:
    engine = _funded()
    with caplog.at_level(logging.WARNING, logger="engine"):
        assert engine.buy("NVDA", NOW, 5, 1, contract_id="NVDA-CALL") is False
    assert engine.get_account_balance() == Decimal("10000")
    assert any(r.getMessage() == "invalid_contract_id" for r in caplog.records)


def test_option_buy_then_exercise_on_expiry() -> None:
    engine = _funded("30000")
    assert engine.buy("NVDA", NOW, 5, 2, contract_id=CID)

    [option] = engine.get_portfolio()
    assert option.kind == "option"
    assert option.strike == Decimal("139")

    engine.tick({"NVDA": 145}, datetime(2025, 2, 21, 16, 0))

    assert engine.get_account_balance() == Decimal("30000") - 10 - 27800
    [shares] = engine.get_portfolio()
    assert (shares.symbol, shares.quantity, shares.average_cost) == ("NVDA", 200, Decimal("139"))
    assert engine.get_ledger()[-1].kind is LedgerKind.ASSIGNMENT


def test_option_expires_worthless_out_of_the_money() -> None:
    engine = _funded("30000")
    engine.buy("NVDA", NOW, 5, 2, contract_id=CID)

    engine.tick({"NVDA": 130}, datetime(2025, 2, 21, 16, 0))

    assert engine.get_portfolio() == []
    assert engine.get_account_balance() == Decimal("29990")
    assert engine.get_ledger()[-1].kind is LedgerKind.EXPIRATION


def test_option_expires_on_tick_without_underlying() -> None:
    engine = _funded("30000")
    engine.buy("NVDA", NOW, 5, 2, contract_id=CID)

    engine.tick({"AAPL": 200}, datetime(2025, 2, 21, 16, 0))

    assert engine.get_portfolio() == []
    assert engine.get_account_value() == Decimal("29990")
    expiry = engine.get_ledger()[-1]
    assert (expiry.kind, expiry.contract_id) == (LedgerKind.EXPIRATION, CID)


def test_option_limit_close() -> None:
    engine = _funded()
    engine.buy("NVDA", NOW, 5, 2, contract_id=CID)
    assert engine.close("NVDA", NOW, None, 2, limit=7, contract_id=CID)

    engine.tick({CID: 7.25, "NVDA": 150}, _at(11))

    assert engine.get_portfolio() == []
    assert engine.get_account_balance() == Decimal("10000") - 10 + 14


def test_value_and_pnl() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 10)
    engine.tick({"AAPL": 110}, _at(10))

    assert engine.get_portfolio_value() == Decimal("1100")
    assert engine.get_account_value() == Decimal("10100")
    pnl = engine.get_account_pnl()
    # Trade debits count against net invested.
    assert pnl.value == Decimal("1100")
    assert pnl.percent == Decimal("1100") / Decimal("9000") * 100


def test_portfolio_as_dict_carries_unrealized_pl() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 10)
    engine.tick({"AAPL": 110}, _at(10))

    [row] = engine.get_portfolio(as_dict=True)
    assert row["symbol"] == "AAPL"
    assert row["unrealized_pl"] == Decimal("100")
    assert row["unrealized_pl_percent"] == Decimal("10")
    assert row["strike"] is None


def test_symbol_scopes() -> None:
    engine = _funded()
    engine.buy("AAPL", NOW, 100, 1)
    engine.close("AAPL", NOW, 101, 1)
    engine.buy("MSFT", NOW, 300, 1)
    engine.buy("TSLA", NOW, None, 1, limit=150)

    assert engine.get_symbols() == ["AAPL", "MSFT", "TSLA"]
    assert engine.get_symbols("open") == ["MSFT"]
    assert engine.get_symbols("closed") == ["AAPL"]
    assert engine.get_symbols("limit") == ["TSLA"]
    with pytest.raises(ValueError):
        engine.get_symbols("everything")  # type: ignore[arg-type]


def test_symbol_scopes_cover_equities_only() -> None:
    engine = _funded()
    engine.buy("NVDA", NOW, 5, 1, contract_id=CID)
    engine.buy("NVDA", NOW, 5, 1, contract_id="O:NVDA250221P00120000")
    engine.close("NVDA", NOW, 6, 1, contract_id="O:NVDA250221P00120000")
    engine.buy("AAPL", NOW, 100, 1)

    assert engine.get_symbols("open") == ["AAPL"]
    assert engine.get_symbols("closed") == []


def test_bad_quantity_is_a_programming_error() -> None:
    engine = _funded()
    with pytest.raises(ValueError):
        engine.buy("AAPL", NOW, 100, 0)
    with pytest.raises(ValueError):
        engine.credit(0)


def test_restart_reproduces_state() -> None:
    store = MemorySnapshotStore()
    engine = _engine(store)
    engine.credit(10000)
    engine.buy("AAPL", NOW, 100, 10)
    engine.buy("NVDA", NOW, 5, 2, contract_id=CID)
    engine.buy("MSFT", NOW, None, 1, limit=300, tif="DAY")

    restarted = _engine(store)

    assert restarted.get_account_balance() == engine.get_account_balance()
    assert restarted.get_portfolio() == engine.get_portfolio()
    assert restarted.get_open_orders() == engine.get_open_orders()
    assert restarted.get_ledger() == engine.get_ledger()
    restarted.buy("AAPL", NOW, 100, 1)
    assert restarted.get_ledger()[-1].order_id == 4


def test_write_failure_keeps_memory_state_and_recovers(caplog: pytest.LogCaptureFixture) -> None:
    store = MemorySnapshotStore()
    engine = _engine(store)
    store.fail_writes = True

    with caplog.at_level(logging.ERROR, logger="engine"):
        assert engine.credit(100)
    assert engine.durable is False
    assert engine.get_account_balance() == Decimal("100")
    assert any(r.getMessage() == "persistence_lost" for r in caplog.records)

    store.fail_writes = False
    engine.credit(1)
    assert engine.durable is True
    assert store.load().cash_balance == Decimal("101")


def test_bus_sees_every_entry() -> None:
    bus = EventBus()
    seen: list[LedgerEntry] = []
    bus.subscribe(LedgerEntry, seen.append)
    engine = _engine(bus=bus)

    engine.credit(1000)
    engine.buy("AAPL", NOW, None, 1, limit=100)
    engine.tick({"AAPL": 99}, _at(10))

    assert [e.kind for e in seen] == [LedgerKind.CREDIT, LedgerKind.ORDER_CREATED, LedgerKind.ORDER_FILLED]
    assert seen[-1].side is OrderSide.BUY
