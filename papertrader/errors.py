from __future__ import annotations


class PaperTradingError(Exception):
    """Base class for recoverable engine errors."""


class InsufficientFunds(PaperTradingError):
    pass


class InsufficientPosition(PaperTradingError):
    pass


class InvalidContractIdentifier(PaperTradingError):
    pass


class OrderNotFound(PaperTradingError):
    pass


class PersistenceFailure(PaperTradingError):
    """Snapshot could not be written. In-memory state stays authoritative."""
