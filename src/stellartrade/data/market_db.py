"""Async SQLite access to the galaxy market database.

Read-only queries for stations, systems and commodity listings, served
from a bounded pool of aiosqlite connections so concurrent market
fetches never open more than ``max_connections`` handles.

Usage:
    async with MarketRepository(Path("data/galaxy.db")) as repo:
        stations = await repo.get_all_stations()
        listings = await repo.get_commodities(stations[0].market_id, cutoff)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from stellartrade.models import Commodity, Station, System

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS systems (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    x REAL NOT NULL,
    y REAL NOT NULL,
    z REAL NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_systems_name ON systems (name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS stations (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    distance_to_arrival REAL,
    market_id INTEGER,
    system_id INTEGER REFERENCES systems (id),
    max_landing_pad_size TEXT
);
CREATE INDEX IF NOT EXISTS idx_stations_market ON stations (market_id);

CREATE TABLE IF NOT EXISTS listings (
    market_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    mean_price INTEGER NOT NULL,
    buy_price INTEGER NOT NULL,
    sell_price INTEGER NOT NULL,
    demand INTEGER NOT NULL,
    demand_bracket INTEGER NOT NULL,
    stock INTEGER NOT NULL,
    stock_bracket INTEGER NOT NULL,
    listed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_listings_market_name
    ON listings (market_id, name, listed_at);
"""

_STATION_COLUMNS = """
    st.id, st.name, st.distance_to_arrival, st.market_id, st.system_id,
    sy.name AS system_name, st.max_landing_pad_size AS pad_size
"""

_LISTING_COLUMNS = (
    "market_id, name, mean_price, buy_price, sell_price, "
    "demand, demand_bracket, stock, stock_bracket, listed_at"
)

# Latest listing per commodity name for one market
_LATEST_COMMODITIES = f"""
SELECT {_LISTING_COLUMNS} FROM (
    SELECT l.*, ROW_NUMBER() OVER (
        PARTITION BY l.name ORDER BY datetime(l.listed_at) DESC, l.rowid DESC
    ) AS rn
    FROM listings l
    WHERE l.market_id = ? AND datetime(l.listed_at) >= datetime(?)
)
WHERE rn = 1
ORDER BY name
"""

# Latest listing per market for one commodity name
_CHEAPEST_LISTINGS = f"""
WITH latest AS (
    SELECT l.*, ROW_NUMBER() OVER (
        PARTITION BY l.market_id ORDER BY datetime(l.listed_at) DESC, l.rowid DESC
    ) AS rn
    FROM listings l
    WHERE l.name = ? COLLATE NOCASE AND datetime(l.listed_at) >= datetime(?)
)
SELECT {_STATION_COLUMNS},
    latest.name AS commodity_name, latest.mean_price, latest.buy_price,
    latest.sell_price, latest.demand, latest.demand_bracket, latest.stock,
    latest.stock_bracket, latest.listed_at
FROM latest
JOIN stations st ON st.market_id = latest.market_id
LEFT JOIN systems sy ON sy.id = st.system_id
WHERE latest.rn = 1
    AND latest.stock >= ?
    AND latest.buy_price > 0
    AND st.system_id IS NOT NULL
ORDER BY latest.buy_price, st.id
"""

# Same text form as SQLite datetime(); reads normalise either separator
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RepositoryError(Exception):
    """Raised when the market database cannot be reached or queried."""


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way listings store it (naive UTC, second precision)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(_TIMESTAMP_FORMAT)


class MarketRepository:
    """Pooled async access to the stations/systems/listings tables."""

    def __init__(
        self,
        db_path: Path,
        *,
        max_connections: int = 32,
        read_only: bool = True,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        self.db_path = Path(db_path)
        self.max_connections = max_connections
        self.read_only = read_only
        self._slots = asyncio.Semaphore(max_connections)
        self._idle: list[aiosqlite.Connection] = []
        self._opened = 0
        self._closed = False

    async def __aenter__(self) -> MarketRepository:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def open_connections(self) -> int:
        return self._opened

    async def close(self) -> None:
        """Close every pooled connection."""
        self._closed = True
        idle, self._idle = self._idle, []
        for conn in idle:
            await conn.close()
            self._opened -= 1

    async def _connect(self) -> aiosqlite.Connection:
        mode = "ro" if self.read_only else "rwc"
        if not self.read_only:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        uri = f"{self.db_path.resolve().as_uri()}?mode={mode}"
        try:
            conn = await aiosqlite.connect(uri, uri=True, timeout=30)
        except aiosqlite.Error as exc:
            raise RepositoryError(f"Cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = aiosqlite.Row
        self._opened += 1
        logger.debug("Opened connection %d/%d to %s", self._opened, self.max_connections, self.db_path)
        return conn

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a pooled connection, opening one if the pool has room."""
        if self._closed:
            raise RepositoryError("Repository is closed")
        async with self._slots:
            conn = self._idle.pop() if self._idle else await self._connect()
            try:
                yield conn
            finally:
                if self._closed:
                    await conn.close()
                    self._opened -= 1
                else:
                    self._idle.append(conn)

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        async with self.connection() as conn:
            try:
                async with conn.execute(sql, params) as cursor:
                    return list(await cursor.fetchall())
            except aiosqlite.Error as exc:
                raise RepositoryError(f"Query failed on {self.db_path}: {exc}") from exc

    async def ping(self) -> None:
        """Fail fast if the database is unreachable or missing its tables."""
        await self._fetch_all("SELECT 1 FROM stations LIMIT 1")

    # --- Stations & systems ---

    async def get_all_stations(
        self, pad_codes: Iterable[str] | None = None,
    ) -> list[Station]:
        """All stations with both a market and a system attached."""
        sql = f"""
            SELECT {_STATION_COLUMNS}
            FROM stations st
            LEFT JOIN systems sy ON sy.id = st.system_id
            WHERE st.market_id IS NOT NULL AND st.system_id IS NOT NULL
        """
        params: list[Any] = []
        if pad_codes is not None:
            codes = sorted(pad_codes)
            sql += f" AND st.max_landing_pad_size IN ({', '.join('?' * len(codes))})"
            params.extend(codes)
        sql += " ORDER BY st.id"
        rows = await self._fetch_all(sql, params)
        return [Station.model_validate(dict(row)) for row in rows]

    async def get_system_by_name(self, name: str) -> System | None:
        rows = await self._fetch_all(
            "SELECT id, name, x, y, z, updated_at FROM systems "
            "WHERE name = ? COLLATE NOCASE ORDER BY id LIMIT 1",
            (name,),
        )
        return System.model_validate(dict(rows[0])) if rows else None

    async def get_systems(self, system_ids: Iterable[int]) -> dict[int, System]:
        """Systems keyed by id. Unknown ids are simply absent."""
        ids = sorted(set(system_ids))
        systems: dict[int, System] = {}
        # Stay well under SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            rows = await self._fetch_all(
                "SELECT id, name, x, y, z, updated_at FROM systems "
                f"WHERE id IN ({', '.join('?' * len(chunk))})",
                chunk,
            )
            for row in rows:
                system = System.model_validate(dict(row))
                systems[system.id] = system
        return systems

    async def get_systems_within(self, name: str, radius: float) -> list[System]:
        """Systems within ``radius`` ly of the named system (inclusive)."""
        rows = await self._fetch_all(
            """
            SELECT s.id, s.name, s.x, s.y, s.z, s.updated_at
            FROM systems s, (
                SELECT x, y, z FROM systems
                WHERE name = ? COLLATE NOCASE ORDER BY id LIMIT 1
            ) o
            WHERE (s.x - o.x) * (s.x - o.x)
                + (s.y - o.y) * (s.y - o.y)
                + (s.z - o.z) * (s.z - o.z) <= ?
            ORDER BY s.id
            """,
            (name, radius * radius),
        )
        return [System.model_validate(dict(row)) for row in rows]

    # --- Listings ---

    async def get_commodities(
        self, market_id: int, cutoff: datetime,
    ) -> list[Commodity]:
        """Most recent listing per commodity name at or after ``cutoff``."""
        rows = await self._fetch_all(
            _LATEST_COMMODITIES, (market_id, format_timestamp(cutoff)),
        )
        return [Commodity.model_validate(dict(row)) for row in rows]

    async def get_cheapest_listings(
        self, name: str, cutoff: datetime, min_quantity: int = 0,
    ) -> list[tuple[Station, Commodity]]:
        """Latest listing of one commodity at every market, cheapest first."""
        rows = await self._fetch_all(
            _CHEAPEST_LISTINGS, (name, format_timestamp(cutoff), min_quantity),
        )
        results: list[tuple[Station, Commodity]] = []
        for row in rows:
            data = dict(row)
            station = Station(
                id=data["id"],
                name=data["name"],
                distance_to_arrival=data["distance_to_arrival"],
                market_id=data["market_id"],
                system_id=data["system_id"],
                system_name=data["system_name"],
                pad_size=data["pad_size"],
            )
            commodity = Commodity(
                market_id=data["market_id"],
                name=data["commodity_name"],
                mean_price=data["mean_price"],
                buy_price=data["buy_price"],
                sell_price=data["sell_price"],
                demand=data["demand"],
                demand_bracket=data["demand_bracket"],
                stock=data["stock"],
                stock_bracket=data["stock_bracket"],
                listed_at=data["listed_at"],
            )
            results.append((station, commodity))
        return results

    # --- Schema & seeding (writable repositories only) ---

    async def _write(self, sql: str, rows: Sequence[Sequence[Any]] | None = None) -> None:
        if self.read_only:
            raise RepositoryError("Repository was opened read-only")
        async with self.connection() as conn:
            try:
                if rows is None:
                    await conn.executescript(sql)
                else:
                    await conn.executemany(sql, rows)
                await conn.commit()
            except aiosqlite.Error as exc:
                raise RepositoryError(f"Write failed on {self.db_path}: {exc}") from exc

    async def create_schema(self) -> None:
        await self._write(SCHEMA_SQL)
        logger.info("Market database schema ready at %s", self.db_path)

    async def add_systems(self, systems: Iterable[System]) -> None:
        await self._write(
            "INSERT OR REPLACE INTO systems (id, name, x, y, z, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (s.id, s.name, s.x, s.y, s.z, format_timestamp(s.updated_at))
                for s in systems
            ],
        )

    async def add_stations(self, stations: Iterable[Station]) -> None:
        await self._write(
            "INSERT OR REPLACE INTO stations "
            "(id, name, distance_to_arrival, market_id, system_id, max_landing_pad_size) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (
                    s.id, s.name, s.distance_to_arrival,
                    s.market_id, s.system_id, s.pad_size,
                )
                for s in stations
            ],
        )

    async def add_listings(self, listings: Iterable[Commodity]) -> None:
        await self._write(
            f"INSERT INTO listings ({_LISTING_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    c.market_id, c.name, c.mean_price, c.buy_price, c.sell_price,
                    c.demand, c.demand_bracket, c.stock, c.stock_bracket,
                    format_timestamp(c.listed_at),
                )
                for c in listings
            ],
        )
