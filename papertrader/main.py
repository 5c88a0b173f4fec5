from __future__ import annotations

import csv
import logging
from datetime import datetime
from itertools import groupby
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from papertrader.bus import EventBus
from papertrader.config import AppConfig, load_config
from papertrader.engine import PaperTradingEngine
from papertrader.events import MarketBar
from papertrader.logging_setup import setup_logging
from papertrader.models import LedgerEntry, TimeInForce
from papertrader.persistence import open_store


app = typer.Typer(add_completion=False)


def _open_engine(cfg: AppConfig, bus: Optional[EventBus] = None) -> PaperTradingEngine:
    store = open_store(cfg.storage)
    return PaperTradingEngine(store, session=cfg.session, bus=bus, default_tif=cfg.orders.default_tif)


def _bootstrap(config: str, bus: Optional[EventBus] = None) -> PaperTradingEngine:
    cfg: AppConfig = load_config(config)
    setup_logging(cfg.log, console=False)
    return _open_engine(cfg, bus=bus)


def _format_entry(entry: LedgerEntry) -> str:
    parts = [entry.ts.isoformat(), entry.kind.value]
    if entry.order_id is not None:
        parts.append(f"order={entry.order_id}")
    if entry.symbol:
        parts.append(entry.contract_id or entry.symbol)
    if entry.side is not None:
        parts.append(entry.side.value)
    if entry.qty is not None:
        parts.append(f"qty={entry.qty}")
    if entry.price is not None:
        parts.append(f"price={entry.price}")
    if entry.amount is not None:
        parts.append(f"amount={entry.amount}")
    if entry.realized_pnl is not None:
        parts.append(f"realized={entry.realized_pnl}")
    if entry.note:
        parts.append(f"note={entry.note!r}")
    return " ".join(parts)


def _finish(engine: PaperTradingEngine, ok: bool, message: str) -> None:
    engine.store.close()
    if not ok:
        typer.echo(f"Rejected: {message}")
        raise typer.Exit(code=1)
    typer.echo(message)
    if not engine.durable:
        typer.echo("Warning: state could not be persisted")


def _field(row: dict, key: str) -> Optional[float]:
    raw = row.get(key)
    return float(raw) if raw not in (None, "") else None


def _read_bars(path: Path) -> Iterator[MarketBar]:
    with path.open(newline="", encoding="utf-8") as fh:
        for row in csv.DictReader(fh):
            yield MarketBar(
                ts=datetime.fromisoformat(row["ts"]),
                symbol=row["symbol"],
                open=_field(row, "open"),
                high=_field(row, "high"),
                low=_field(row, "low"),
                close=_field(row, "close"),
                volume=_field(row, "volume") or 0.0,
            )


@app.command()
def deposit(
    amount: float = typer.Argument(..., help="Cash to credit"),
    config: str = typer.Option(..., "--config", "-c"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Credit cash to the paper account."""
    engine = _bootstrap(config)
    ok = engine.credit(str(amount), note)
    _finish(engine, ok, f"balance={engine.get_account_balance()}")


@app.command()
def withdraw(
    amount: float = typer.Argument(..., help="Cash to debit"),
    config: str = typer.Option(..., "--config", "-c"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Debit cash from the paper account."""
    engine = _bootstrap(config)
    ok = engine.debit(str(amount), note)
    _finish(engine, ok, f"balance={engine.get_account_balance()}")


@app.command()
def buy(
    symbol: str = typer.Argument(...),
    qty: int = typer.Option(..., "--qty", "-q"),
    config: str = typer.Option(..., "--config", "-c"),
    price: Optional[float] = typer.Option(None, "--price", help="Execute immediately at this price"),
    limit: Optional[float] = typer.Option(None, "--limit", help="Rest a limit order instead"),
    tif: Optional[TimeInForce] = typer.Option(None, "--tif"),
    contract_id: Optional[str] = typer.Option(None, "--contract-id"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Buy shares or option contracts, immediately or as a resting limit order."""
    if price is None and limit is None:
        typer.echo("Either --price or --limit is required.")
        raise typer.Exit(code=1)
    engine = _bootstrap(config)
    ok = engine.buy(
        symbol,
        datetime.now(),
        str(price) if price is not None else None,
        qty,
        note=note,
        limit=str(limit) if limit is not None else None,
        tif=tif,
        contract_id=contract_id,
    )
    _finish(engine, ok, f"buy {qty} {contract_id or symbol} balance={engine.get_account_balance()}")


@app.command()
def sell(
    symbol: str = typer.Argument(...),
    qty: int = typer.Option(..., "--qty", "-q"),
    config: str = typer.Option(..., "--config", "-c"),
    price: Optional[float] = typer.Option(None, "--price", help="Execute immediately at this price"),
    limit: Optional[float] = typer.Option(None, "--limit", help="Rest a limit order instead"),
    tif: Optional[TimeInForce] = typer.Option(None, "--tif"),
    contract_id: Optional[str] = typer.Option(None, "--contract-id"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Close part or all of a held position."""
    if price is None and limit is None:
        typer.echo("Either --price or --limit is required.")
        raise typer.Exit(code=1)
    engine = _bootstrap(config)
    ok = engine.close(
        symbol,
        datetime.now(),
        str(price) if price is not None else None,
        qty,
        note=note,
        limit=str(limit) if limit is not None else None,
        tif=tif,
        contract_id=contract_id,
    )
    _finish(engine, ok, f"sell {qty} {contract_id or symbol} balance={engine.get_account_balance()}")


@app.command()
def cancel(
    config: str = typer.Option(..., "--config", "-c"),
    order_id: Optional[int] = typer.Option(None, "--order-id"),
    symbol: Optional[str] = typer.Option(None, "--symbol"),
    limit: Optional[float] = typer.Option(None, "--limit"),
    qty: Optional[int] = typer.Option(None, "--qty", "-q"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Cancel one open order, by id or by its (symbol, limit, qty)."""
    if order_id is None and (symbol is None or limit is None or qty is None):
        typer.echo("Pass --order-id, or all of --symbol, --limit and --qty.")
        raise typer.Exit(code=1)
    engine = _bootstrap(config)
    if order_id is not None:
        ok = engine.cancel_order(order_id, note)
        target = f"order {order_id}"
    else:
        ok = engine.cancel(symbol, str(limit), qty, note)  # type: ignore[arg-type]
        target = f"{symbol} limit={limit} qty={qty}"
    _finish(engine, ok, f"cancelled {target}")


@app.command("cancel-all")
def cancel_all(
    symbol: str = typer.Argument(...),
    config: str = typer.Option(..., "--config", "-c"),
    note: str = typer.Option("", "--note"),
) -> None:
    """Cancel every open order for a symbol."""
    engine = _bootstrap(config)
    ok = engine.cancel_all(symbol, note)
    _finish(engine, ok, f"cancelled all open orders for {symbol}")


@app.command()
def replay(
    csv_path: str = typer.Argument(..., help="CSV with ts,symbol,open,high,low,close,volume"),
    config: str = typer.Option(..., "--config", "-c"),
    quiet: bool = typer.Option(False, "--quiet", help="Do not echo ledger entries"),
) -> None:
    """Feed historical bars into the engine, one tick per timestamp."""
    path = Path(csv_path)
    if not path.exists():
        typer.echo(f"No such file: {csv_path}")
        raise typer.Exit(code=1)

    bus = EventBus()
    if not quiet:
        bus.subscribe(LedgerEntry, lambda entry: typer.echo(_format_entry(entry)))
    engine = _bootstrap(config, bus=bus)
    log = logging.getLogger("replay")

    ticks = 0
    # Rows are grouped by consecutive timestamp; the file must already be in time order.
    for ts, group in groupby(_read_bars(path), key=lambda bar: bar.ts):
        bars: List[MarketBar] = list(group)
        engine.tick(bars, ts)
        ticks += 1
    log.info("replay_complete", extra={"path": str(path), "ticks": ticks})
    _finish(engine, True, f"ticks={ticks} balance={engine.get_account_balance()} value={engine.get_account_value()}")


@app.command()
def status(config: str = typer.Option(..., "--config", "-c")) -> None:
    """Print balance, P/L, holdings and open orders."""
    engine = _bootstrap(config)
    pnl = engine.get_account_pnl()
    typer.echo(f"balance={engine.get_account_balance()}")
    typer.echo(f"account_value={engine.get_account_value()}")
    typer.echo(f"pnl={pnl.value} pnl_percent={pnl.percent:.2f}")
    for row in engine.get_portfolio():
        typer.echo(
            f"  {row.symbol} {row.kind} qty={row.quantity} avg={row.average_cost} "
            f"price={row.current_price} value={row.market_value} upl={row.unrealized_pl}"
        )
    for order in engine.get_open_orders():
        typer.echo(
            f"  order={order.order_id} {order.side.value} {order.contract_id or order.symbol} "
            f"qty={order.qty} limit={order.limit_price} tif={order.tif.value}"
        )
    engine.store.close()


if __name__ == "__main__":
    app()
