#!/usr/bin/env python3
"""
TWAP Market CLI

Command-line tools for exercising the TWAP oracle.

Usage:
    twap-market replay QUOTES [--expected-value N] [--max-change N] [--start-tick N]
    twap-market simulate [--owners N] [--iterations N] [--no-close]
    twap-market show-config
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.table import Table

from ..config import AppConfig, load_config
from ..exceptions import DivisionByZeroError, TWAPMarketException
from ..exchange.market import MarketConfig
from ..exchange.oracle import TWAPOracle
from ..exchange.orderbook import PlaceOrderArgs, Side
from ..exchange.state_manager import TWAPStateManager
from ..exchange.twap_market import twap_market_address
from ..logger import configure_logging

SECONDS_PER_DAY = 24 * 60 * 60

HEALTHY_QUOTES = (500, 550)
MANIPULATED_QUOTES = (1, 100_000_000_000_000)


def _optional_int(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw == "" or raw.lower() in ("none", "null"):
            return None
    return int(raw)


def load_quotes(path: Path) -> List[Dict[str, Optional[int]]]:
    """
    Read a quote stream from JSON or CSV.

    Each row has tick, timestamp, bid and ask; a missing or empty bid/ask
    means that side of the book was empty.
    """
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as f:
            rows = json.load(f)
        if not isinstance(rows, list):
            raise click.ClickException("JSON quote file must contain a list of objects")
    else:
        with open(path, "r", encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))

    quotes = []
    for n, row in enumerate(rows, start=1):
        try:
            quotes.append({
                "tick": int(row["tick"]),
                "timestamp": int(row.get("timestamp") or 0),
                "bid": _optional_int(row.get("bid")),
                "ask": _optional_int(row.get("ask")),
            })
        except (KeyError, TypeError, ValueError) as e:
            raise click.ClickException(f"Bad quote on row {n}: {e}")
    return quotes


def _format_twap(oracle: TWAPOracle) -> str:
    try:
        return str(oracle.time_weighted_average())
    except DivisionByZeroError:
        return "undefined (no observation applied)"


@click.group()
@click.version_option(version="0.1.0", prog_name="twap-market")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.toml (default: $TWAP_CONFIG or ./config.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]):
    """TWAP Market Command Line Interface

    Replay quote streams through the TWAP oracle and run the reference
    exchange end to end.
    """
    config = load_config(config_path)
    try:
        config.validate()
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    configure_logging(
        log_level=config.logging.level,
        file_output=config.logging.file_output,
        highlighting=config.logging.highlighting,
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
    )
    ctx.obj = config


@cli.command("replay")
@click.argument("quotes_file", metavar="QUOTES", type=click.Path(exists=True, dir_okay=False))
@click.option("--expected-value", type=int, default=None, help="Starting price (default: [oracle] expected_value)")
@click.option("--max-change", type=int, default=None, help="Max move per update (default: [oracle] max_change_per_update)")
@click.option("--start-tick", type=int, default=None, help="Creation tick (default: [ledger] start_tick)")
@click.pass_obj
def replay_cmd(
    config: AppConfig,
    quotes_file: str,
    expected_value: Optional[int],
    max_change: Optional[int],
    start_tick: Optional[int],
):
    """Feed a quote stream into a fresh oracle.

    Examples:

        twap-market replay quotes.csv --expected-value 100 --max-change 5
    """
    quotes = load_quotes(Path(quotes_file))
    try:
        oracle = TWAPOracle.new(
            expected_value if expected_value is not None else config.oracle.expected_value,
            max_change if max_change is not None else config.oracle.max_change_per_update,
            start_tick if start_tick is not None else config.ledger.start_tick,
        )
    except (TWAPMarketException, ValueError) as e:
        raise click.ClickException(f"Cannot create oracle: {e}")

    table = Table(title="Oracle replay")
    for column in ("tick", "bid", "ask", "outcome", "observation", "aggregator"):
        table.add_column(column, justify="right" if column != "outcome" else "left")

    for q in quotes:
        try:
            outcome = oracle.update(q["tick"], q["timestamp"], q["bid"], q["ask"])
        except TWAPMarketException as e:
            raise click.ClickException(f"tick {q['tick']}: {e}")
        table.add_row(
            str(q["tick"]),
            "-" if q["bid"] is None else str(q["bid"]),
            "-" if q["ask"] is None else str(q["ask"]),
            outcome.value,
            str(oracle.last_observation),
            str(oracle.observation_aggregator),
        )

    Console().print(table)
    click.echo(f"Last observation: {oracle.last_observation}")
    click.echo(f"TWAP: {_format_twap(oracle)}")


@cli.command("simulate")
@click.option("--owners", type=int, default=4, show_default=True, help="Number of trading owners")
@click.option("--iterations", type=int, default=12, show_default=True, help="Rounds per owner")
@click.option("--expected-value", type=int, default=None, help="Starting price (default: [oracle] expected_value)")
@click.option("--max-change", type=int, default=None, help="Max move per update (default: [oracle] max_change_per_update)")
@click.option("--close/--no-close", default=True, help="Prune and close the market after expiry")
@click.pass_obj
def simulate_cmd(
    config: AppConfig,
    owners: int,
    iterations: int,
    expected_value: Optional[int],
    max_change: Optional[int],
    close: bool,
):
    """Run alternating healthy and manipulated quotes through the ledger.

    Healthy rounds quote 500/550; manipulated rounds quote 1/10^14,
    a spread the oracle must never accept.
    """
    if owners < 1 or iterations < 1:
        raise click.ClickException("--owners and --iterations must be positive")

    market_id = "twap-sim"
    payer = "payer"
    address = twap_market_address(market_id)
    start_ts = config.ledger.start_timestamp
    step = config.ledger.seconds_per_tick

    ledger = TWAPStateManager(
        max_orders_per_owner=max(config.orderbook.max_orders_per_owner, 2 * iterations),
        max_depth=max(config.orderbook.max_depth, owners * iterations),
    )
    try:
        ledger.begin_block(config.ledger.start_tick, start_ts)
        ledger.register_market(MarketConfig(
            market_id=market_id,
            name="TWAP simulation",
            open_orders_admin=address,
            close_market_admin=address,
            time_expiry=start_ts + owners * iterations * step + SECONDS_PER_DAY,
        ))
        ledger.create_twap_market(
            market_id,
            expected_value if expected_value is not None else config.oracle.expected_value,
            max_change if max_change is not None else config.oracle.max_change_per_update,
            payer,
        )
    except (TWAPMarketException, ValueError) as e:
        raise click.ClickException(str(e))

    table = Table(title=f"Simulation of {market_id}")
    for column in ("tick", "owner", "quotes", "outcome", "observation"):
        table.add_column(column)

    client_order_id = 0
    for i in range(iterations):
        bid, ask = HEALTHY_QUOTES if i % 2 == 0 else MANIPULATED_QUOTES
        for o in range(owners):
            owner = f"owner-{o}"
            ledger.advance(1, step)
            for side, price in ((Side.BID, bid), (Side.ASK, ask)):
                client_order_id += 1
                ledger.place_order(market_id, owner, PlaceOrderArgs(
                    side=side,
                    price_lots=price,
                    max_base_lots=1,
                    max_quote_lots_including_fees=price,
                    client_order_id=client_order_id,
                ))
            outcome = ledger.last_outcome(market_id)
            table.add_row(
                str(ledger.clock.tick),
                owner,
                f"{bid}/{ask}",
                outcome.value if outcome else "-",
                str(ledger.get_oracle(market_id).last_observation),
            )

    Console().print(table)
    oracle = ledger.get_oracle(market_id)
    click.echo(f"Best bid/ask: {ledger.get_best_bid_and_ask(market_id)}")
    click.echo(f"Last observation: {oracle.last_observation}")
    click.echo(f"TWAP: {_format_twap(oracle)}")

    if close:
        ledger.advance(1, 11 * SECONDS_PER_DAY)
        pruned = sum(
            ledger.prune_orders(market_id, f"owner-{o}", config.orderbook.cancel_limit)
            for o in range(owners)
        )
        ledger.close_market(market_id, payer)
        click.echo(f"Pruned {pruned} orders; market closed, rent returned to {payer}")


@cli.command("show-config")
@click.pass_obj
def show_config_cmd(config: AppConfig):
    """Print the effective configuration as JSON."""
    click.echo(json.dumps(config.to_dict(), indent=2))


def main():
    cli()


if __name__ == "__main__":
    main()
