from papertrader.orders.book import OrderBook
from papertrader.orders.matching import MatchingEngine, session_close_for, session_time

__all__ = ["MatchingEngine", "OrderBook", "session_close_for", "session_time"]
