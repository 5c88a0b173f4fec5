from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, TypeVar

from papertrader.models import Snapshot

T = TypeVar("T")

# Errors a damaged section can raise while being decoded.
DECODE_ERRORS = (KeyError, TypeError, ValueError, ArithmeticError, AttributeError)


class SnapshotStore(ABC):
    """Durable home of the engine state.

    ``load`` never raises on missing or damaged data: each section that cannot
    be read falls back to its empty value and is logged. ``save`` writes the
    whole snapshot atomically or raises ``PersistenceFailure``.
    """

    @abstractmethod
    def load(self) -> Snapshot: ...

    @abstractmethod
    def save(self, snapshot: Snapshot) -> None: ...

    def close(self) -> None:
        return None


def decode_section(
    log: logging.Logger,
    name: str,
    raw: Any,
    decode: Callable[[Any], T],
    default: Callable[[], T],
) -> T:
    if raw is None:
        log.info("section_missing", extra={"section": name})
        return default()
    try:
        return decode(raw)
    except DECODE_ERRORS as exc:
        log.warning("section_unreadable", extra={"section": name, "error": repr(exc)})
        return default()


def decode_rows(rows: List[Dict[str, Any]], decode: Callable[[Dict[str, Any]], T]) -> List[T]:
    return [decode(dict(r)) for r in rows]
