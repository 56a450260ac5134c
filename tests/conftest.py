"""Shared builders and a small seeded galaxy for the test suite."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from stellartrade.data.market_db import SCHEMA_SQL, MarketRepository, format_timestamp
from stellartrade.models import Commodity, Station, StationMarket, System

NOW = datetime(2026, 1, 1, 12, 0, 0)


def make_station(
    station_id: int,
    name: str | None = None,
    *,
    system_id: int | None = 1,
    system_name: str | None = "Sol",
    market_id: int | None = -1,
    pad: str | None = "L",
) -> Station:
    """Station with a market id derived from its id unless given explicitly."""
    return Station(
        id=station_id,
        name=name or f"Station {station_id}",
        distance_to_arrival=100.0 * station_id,
        market_id=station_id + 100 if market_id == -1 else market_id,
        system_id=system_id,
        system_name=system_name,
        pad_size=pad,
    )


def make_listing(
    market_id: int,
    name: str,
    *,
    buy: int = 0,
    sell: int = 0,
    stock: int = 0,
    demand: int = 0,
    listed_at: datetime = NOW,
) -> Commodity:
    return Commodity(
        market_id=market_id,
        name=name,
        mean_price=(buy + sell) // 2,
        buy_price=buy,
        sell_price=sell,
        demand=demand,
        demand_bracket=2 if demand else 0,
        stock=stock,
        stock_bracket=2 if stock else 0,
        listed_at=listed_at,
    )


def make_market(station: Station, *listings: Commodity) -> StationMarket:
    return StationMarket(station=station, commodities=tuple(listings))


# --- Seeded galaxy ---
#
#   Sol (0,0,0)        : Abraham Port (1), Daedalus (2), carrier X7A-9NK (5)
#   Alpha Centauri     : Hutton Orbital (3, medium pad)  at 4.4 ly
#   Barnard's Star     : Miller Depot (4)                at 6 ly
#   Far Reach          : Outpost Nine (6, small pad)     at 200 ly
#   Lost Dock (7) has no market.

SYSTEMS = [
    System(id=1, name="Sol", x=0.0, y=0.0, z=0.0, updated_at=NOW),
    System(id=2, name="Alpha Centauri", x=3.0, y=-0.5, z=3.2, updated_at=NOW),
    System(id=3, name="Barnard's Star", x=6.0, y=0.0, z=0.0, updated_at=NOW),
    System(id=4, name="Far Reach", x=200.0, y=0.0, z=0.0, updated_at=NOW),
]

STATIONS = [
    make_station(1, "Abraham Port", system_id=1, system_name="Sol"),
    make_station(2, "Daedalus", system_id=1, system_name="Sol"),
    make_station(3, "Hutton Orbital", system_id=2, system_name="Alpha Centauri", pad="M"),
    make_station(4, "Miller Depot", system_id=3, system_name="Barnard's Star"),
    make_station(5, "X7A-9NK", system_id=1, system_name="Sol"),
    make_station(6, "Outpost Nine", system_id=4, system_name="Far Reach", pad="S"),
    make_station(7, "Lost Dock", system_id=1, system_name="Sol", market_id=None),
]

OLD = datetime(2025, 6, 1)

LISTINGS = [
    # Abraham Port sells Gold cheap; an older, pricier Gold listing is superseded
    make_listing(101, "Gold", buy=120, sell=110, stock=50, listed_at=OLD),
    make_listing(101, "Gold", buy=100, sell=90, stock=10),
    make_listing(101, "Water", buy=5, sell=4, stock=1000),
    # Daedalus buys Gold and Water
    make_listing(102, "Gold", buy=0, sell=150, demand=500),
    make_listing(102, "Water", buy=0, sell=9, demand=5000),
    # Hutton Orbital buys Gold, sells Tea
    make_listing(103, "Gold", buy=0, sell=140, demand=100),
    make_listing(103, "Tea", buy=20, sell=18, stock=200),
    # Miller Depot only has a stale listing
    make_listing(104, "Tea", buy=0, sell=60, demand=300, listed_at=OLD),
    # Carrier undercuts everyone
    make_listing(105, "Gold", buy=10, sell=9, stock=1000),
    make_listing(106, "Gold", buy=95, sell=90, stock=5000),
]


async def seed_galaxy(repo: MarketRepository) -> None:
    await repo.create_schema()
    await repo.add_systems(SYSTEMS)
    await repo.add_stations(STATIONS)
    await repo.add_listings(LISTINGS)


@pytest.fixture
def galaxy_path(tmp_path: Path) -> Path:
    """Path to a seeded galaxy database (plain sqlite3, no event loop needed)."""
    path = tmp_path / "galaxy.db"
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.executemany(
            "INSERT INTO systems VALUES (?, ?, ?, ?, ?, ?)",
            [(s.id, s.name, s.x, s.y, s.z, format_timestamp(s.updated_at)) for s in SYSTEMS],
        )
        conn.executemany(
            "INSERT INTO stations VALUES (?, ?, ?, ?, ?, ?)",
            [
                (s.id, s.name, s.distance_to_arrival, s.market_id, s.system_id, s.pad_size)
                for s in STATIONS
            ],
        )
        conn.executemany(
            "INSERT INTO listings VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    c.market_id, c.name, c.mean_price, c.buy_price, c.sell_price,
                    c.demand, c.demand_bracket, c.stock, c.stock_bracket,
                    format_timestamp(c.listed_at),
                )
                for c in LISTINGS
            ],
        )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
async def repo(galaxy_path: Path) -> MarketRepository:
    """Read-only repository over the seeded galaxy."""
    repository = MarketRepository(galaxy_path, max_connections=4)
    yield repository
    await repository.close()
