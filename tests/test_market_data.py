from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from papertrader.events import MarketBar
from papertrader.market_data import extract_prices, normalize_price, to_decimal

TS = datetime(2024, 3, 4, 10, 0)


def test_to_decimal_avoids_float_noise() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("102.50") == Decimal("102.50")
    assert to_decimal(7) == Decimal("7")


@pytest.mark.parametrize("bad", ["abc", float("inf"), float("nan")])
def test_to_decimal_rejects_non_numbers(bad) -> None:
    with pytest.raises(ValueError):
        to_decimal(bad)


def test_normalize_price() -> None:
    assert normalize_price(None) is None
    assert normalize_price(float("nan")) is None
    assert normalize_price("n/a") is None
    assert normalize_price(101.25) == Decimal("101.25")
    assert normalize_price(float("inf")) is None
    assert normalize_price("99") == Decimal("99")


def test_mapping_tick_drops_unusable_prices() -> None:
    prices = extract_prices({"AAPL": 101.5, "MSFT": None, "TSLA": float("nan")})
    assert prices == {"AAPL": Decimal("101.5")}


def test_bar_tick_uses_close_and_last_bar_wins() -> None:
    bars = [
        MarketBar(ts=TS, symbol="AAPL", open=100, high=102, low=99, close=101),
        {"symbol": "MSFT", "close": "300.25"},
        MarketBar(ts=TS, symbol="AAPL", open=101, high=103, low=100, close=102),
        MarketBar(ts=TS, symbol="TSLA", open=None, high=None, low=None, close=None),
    ]
    assert extract_prices(bars) == {"AAPL": Decimal("102"), "MSFT": Decimal("300.25")}
