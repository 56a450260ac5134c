"""Per-pair cargo optimisation as a bounded knapsack.

For every commodity sold at the source and bought at the destination,
choose an integer quantity x_i in [0, stock_i] to

    maximise   sum(profit_i * x_i)
    subject to sum(x_i)             <= cargo capacity
               sum(buy_price_i * x_i) <= capital

and solve it with scipy's MILP interface (HiGHS). Commodities that lose
money are left in the model; the optimiser simply allocates nothing.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from stellartrade.models import Station, StationMarket

logger = logging.getLogger("stellartrade.trading")

# Tolerance when flooring solver output (2.9999999 is 3 units, not 2)
INTEGRALITY_TOLERANCE = 1e-6
SOLVER_TIME_LIMIT = 10.0  # seconds per pair


@dataclass(frozen=True)
class Order:
    """Quantity of one commodity to buy at the source station."""

    commodity_name: str
    count: int


@dataclass(frozen=True)
class TradeSolution:
    """Best cargo load found for one source → destination pair."""

    source: Station
    destination: Station
    buy: tuple[Order, ...]
    profit: float
    cost: float

    @property
    def ranking_key(self) -> tuple[float, int, int]:
        """Profit descending, then source id, then destination id."""
        return (-self.profit, self.source.id, self.destination.id)

    @property
    def purchases(self) -> Iterator[Order]:
        """Orders that actually buy something."""
        return (order for order in self.buy if order.count > 0)

    @property
    def units(self) -> int:
        return sum(order.count for order in self.buy)


def floor_quantity(value: float) -> int:
    return max(0, math.floor(value + INTEGRALITY_TOLERANCE))


def solve_knapsack(
    source: StationMarket,
    destination: StationMarket,
    capacity: int,
    capital: int,
) -> TradeSolution | None:
    """Profit-maximising cargo from ``source`` to ``destination``, or None.

    None means either the markets share no commodity (the common case) or
    the solver could not produce a solution; neither is an error.
    """
    shared = sorted(source.names & destination.names)
    if not shared:
        return None

    buys = [source.commodity(name) for name in shared]
    sells = [destination.commodity(name) for name in shared]
    buy_prices = np.array([c.buy_price for c in buys], dtype=float)
    profits = np.array(
        [s.sell_price - b.buy_price for b, s in zip(buys, sells)], dtype=float,
    )
    stock = np.array([max(c.stock, 0) for c in buys], dtype=float)

    # milp minimises, so negate the profit vector
    constraints = LinearConstraint(
        np.vstack([np.ones(len(shared)), buy_prices]),
        -np.inf,
        np.array([capacity, capital], dtype=float),
    )
    try:
        result = milp(
            c=-profits,
            constraints=constraints,
            integrality=np.ones(len(shared), dtype=int),
            bounds=Bounds(lb=np.zeros(len(shared)), ub=stock),
            options={"time_limit": SOLVER_TIME_LIMIT},
        )
    except (ValueError, RuntimeError) as exc:
        logger.debug(
            "Solver error for %s -> %s: %s", source.station.name, destination.station.name, exc,
        )
        return None

    if not result.success or result.x is None:
        logger.debug(
            "Unsolved pair %s -> %s: %s",
            source.station.name, destination.station.name, result.message,
        )
        return None

    orders = tuple(
        Order(commodity_name=name, count=floor_quantity(qty))
        for name, qty in zip(shared, result.x)
    )
    return TradeSolution(
        source=source.station,
        destination=destination.station,
        buy=orders,
        profit=float(-result.fun),
        cost=float(buy_prices @ result.x),
    )
