from __future__ import annotations

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from papertrader.events import MarketBar

Number = Union[int, float, str, Decimal]
MarketInput = Union[Mapping[str, Any], Iterable[Any]]

log = logging.getLogger("market_data")


def to_decimal(value: Number) -> Decimal:
    """Convert a user-supplied number to Decimal without float noise (0.1 -> Decimal('0.1'))."""
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return number


def normalize_price(value: Any) -> Optional[Decimal]:
    """Convert a feed price to Decimal, mapping None, NaN or garbage to None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return None if value.is_nan() else value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return Decimal(str(value)) if isinstance(value, str) else Decimal(str(number))


def extract_prices(market: MarketInput) -> Dict[str, Decimal]:
    """Build a symbol -> close price map from a tick payload.

    Accepts either a mapping of symbol to price, or an iterable of bars
    (``MarketBar`` or dicts with ``symbol`` and ``close``). Entries without a
    usable price are dropped.
    """
    prices: Dict[str, Decimal] = {}
    if isinstance(market, Mapping):
        for symbol, raw in market.items():
            price = normalize_price(raw)
            if price is None:
                log.warning("price_missing", extra={"symbol": symbol})
                continue
            prices[str(symbol)] = price
        return prices

    for item in market:
        if isinstance(item, MarketBar):
            symbol, raw = item.symbol, item.close
        elif isinstance(item, Mapping):
            symbol, raw = item.get("symbol"), item.get("close")
        else:
            log.warning("tick_item_unsupported", extra={"item_type": type(item).__name__})
            continue
        if not symbol:
            continue
        price = normalize_price(raw)
        if price is None:
            log.warning("price_missing", extra={"symbol": symbol})
            continue
        # Later bars for the same symbol win.
        prices[str(symbol)] = price
    return prices
