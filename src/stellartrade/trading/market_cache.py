"""Concurrent market resolution for the sampled stations.

Fans out one task per station over the repository's connection pool and
collects each station's current commodity snapshot into a write-once map.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from stellartrade.data.market_db import MarketRepository
from stellartrade.models import Commodity, Station, StationMarket

logger = logging.getLogger("stellartrade.trading")


def latest_by_name(listings: Iterable[Commodity]) -> tuple[Commodity, ...]:
    """Keep the newest listing per commodity name (later rows win ties)."""
    latest: dict[str, Commodity] = {}
    for listing in listings:
        current = latest.get(listing.name)
        if current is None or listing.listed_at >= current.listed_at:
            latest[listing.name] = listing
    return tuple(latest[name] for name in sorted(latest))


class MarketCache:
    """Write-once map of station id → resolved StationMarket."""

    def __init__(
        self,
        repository: MarketRepository,
        *,
        concurrency: int | None = None,
    ) -> None:
        self.repository = repository
        self.concurrency = concurrency or repository.max_connections
        self._markets: dict[int, StationMarket] = {}

    @property
    def markets(self) -> dict[int, StationMarket]:
        return dict(self._markets)

    def _store(self, market: StationMarket) -> None:
        station_id = market.station.id
        if station_id in self._markets:
            raise RuntimeError(f"Market for station {station_id} resolved twice")
        self._markets[station_id] = market

    async def _resolve_one(
        self,
        station: Station,
        cutoff: datetime,
        slots: asyncio.Semaphore,
    ) -> StationMarket:
        async with slots:
            if station.market_id is None:
                listings: list[Commodity] = []
            else:
                listings = await self.repository.get_commodities(station.market_id, cutoff)
        market = StationMarket(station=station, commodities=latest_by_name(listings))
        self._store(market)
        return market

    async def resolve(
        self,
        stations: Iterable[Station],
        recency_cutoff: datetime,
        *,
        progress: Callable[[int, int], None] | None = None,
    ) -> dict[int, StationMarket]:
        """Fetch every station's market; returns only when all have finished.

        A RepositoryError from any station cancels the rest and propagates.
        """
        pending: dict[int, Station] = {}
        for station in stations:
            if station.id not in self._markets:
                pending.setdefault(station.id, station)

        total = len(pending)
        logger.info(
            "Resolving %d markets (concurrency %d, listings since %s)",
            total, self.concurrency, recency_cutoff.isoformat(),
        )
        slots = asyncio.Semaphore(self.concurrency)
        completed = 0

        def _done(task: asyncio.Task[StationMarket]) -> None:
            nonlocal completed
            # Aborted or failed stations are not progress
            if task.cancelled() or task.exception() is not None:
                return
            completed += 1
            if progress is not None:
                progress(completed, total)

        tasks: list[asyncio.Task[StationMarket]] = []
        for station in pending.values():
            task = asyncio.create_task(
                self._resolve_one(station, recency_cutoff, slots),
                name=f"market-{station.id}",
            )
            task.add_done_callback(_done)
            tasks.append(task)

        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        empty = sum(1 for sid in pending if not self._markets[sid].commodities)
        logger.info("Resolved %d markets (%d empty)", total, empty)
        return dict(self._markets)
