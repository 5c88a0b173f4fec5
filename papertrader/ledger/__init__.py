from papertrader.ledger.account import Account, account_pnl, portfolio_value
from papertrader.ledger.positions import PositionBook

__all__ = ["Account", "PositionBook", "account_pnl", "portfolio_value"]
