from papertrader.engine import PaperTradingEngine

__all__ = ["PaperTradingEngine"]
