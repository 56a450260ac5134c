"""Rich rendering of route search and cheapest-commodity results."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stellartrade.models import StationMarket
from stellartrade.trading.engine import CheapestListing, SearchResult
from stellartrade.trading.solver import TradeSolution


def _format_credits(n: int | float) -> str:
    """Format credits with thousands separators."""
    return f"{round(n):,}"


def relative_time(when: datetime, now: datetime | None = None) -> str:
    """Timestamp as a coarse age like '5m ago' or '3d ago'."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    secs = int((now - when).total_seconds())
    if secs < 0:
        return "just now"
    if secs < 60:
        return f"{secs}s ago"
    if secs < 3600:
        return f"{secs // 60}m ago"
    if secs < 86400:
        return f"{secs // 3600}h ago"
    return f"{secs // 86400}d ago"


def _place(name: str, system_name: str | None) -> Text:
    text = Text(name, style="bold dark_orange")
    text.append(" in ", style="default")
    text.append(system_name or "?", style="dark_orange")
    return text


def render_solution(
    rank: int,
    solution: TradeSolution,
    source_market: StationMarket | None = None,
    now: datetime | None = None,
) -> Panel:
    """One itinerary: where to buy, what to load, where to sell."""
    header = Text(f"#{rank}  For ")
    header.append(f"{_format_credits(solution.profit)} CR", style="bold green")
    header.append(f" profit, {solution.units:,} units")

    buy_line = Text("Travel to ")
    buy_line.append_text(_place(solution.source.name, solution.source.system_name))
    buy_line.append(" and buy (for ")
    buy_line.append(f"{_format_credits(solution.cost)} CR", style="red")
    buy_line.append("):")

    orders = Table(box=None, show_header=False, padding=(0, 2))
    orders.add_column(justify="right")
    orders.add_column()
    orders.add_column(style="dim")
    for order in solution.purchases:
        updated = ""
        if source_market is not None:
            listing = source_market.commodity(order.commodity_name)
            if listing is not None:
                updated = f"updated {relative_time(listing.listed_at, now)}"
        orders.add_row(f"{order.count}x", order.commodity_name, updated)

    sell_line = Text("Then travel to ")
    sell_line.append_text(_place(solution.destination.name, solution.destination.system_name))
    sell_line.append(" and sell.")

    return Panel(
        Group(buy_line, orders, sell_line),
        title=header,
        title_align="left",
        border_style="bright_blue",
    )


def print_routes(
    result: SearchResult,
    console: Console | None = None,
    now: datetime | None = None,
) -> None:
    console = console or Console()
    if not result.solutions:
        console.print("[yellow]No profitable routes found in this sample.[/yellow]")
        return
    console.print(
        f"Top {len(result.solutions)} of {result.solved:,} profitable routes "
        f"({result.sampled:,} stations sampled, {result.pairs:,} pairs evaluated):",
    )
    for rank, solution in enumerate(result.solutions, 1):
        console.print(render_solution(
            rank, solution, result.markets.get(solution.source.id), now,
        ))


def cheapest_table(
    listings: Sequence[CheapestListing],
    now: datetime | None = None,
) -> Table:
    table = Table(title="Cheapest offers", header_style="bold")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Stock", justify="right")
    table.add_column("Station")
    table.add_column("System")
    table.add_column("Arrival (ls)", justify="right")
    table.add_column("Updated", style="dim")
    for item in listings:
        dist = item.station.distance_to_arrival
        table.add_row(
            _format_credits(item.commodity.buy_price),
            f"{item.commodity.stock:,}",
            item.station.name,
            item.station.system_name or "?",
            f"{dist:,.0f}" if dist is not None else "?",
            relative_time(item.commodity.listed_at, now),
        )
    return table


def print_cheapest(
    listings: Sequence[CheapestListing],
    console: Console | None = None,
) -> None:
    (console or Console()).print(cheapest_table(listings))


def summarize_markets(markets: Mapping[int, StationMarket]) -> str:
    empty = sum(1 for m in markets.values() if not m.commodities)
    return f"{len(markets)} markets ({empty} empty)"
