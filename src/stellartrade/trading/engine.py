"""Single-hop route search: ties sampling, market resolution and solving together.

The search runs in two strictly separated phases:

1. ``prepare_search`` (asyncio): load stations, draw the sample, pick fixed
   sources and resolve every market over the repository's connection pool.
2. ``evaluate_pairs`` (threads): solve each candidate pair's knapsack on a
   worker pool sized to the CPU count and collect the winners.

``compute_single`` runs phase 1 to completion in its own event loop before
phase 2 starts, so long solver calls never block pending I/O.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import (
    FIRST_COMPLETED,
    Future,
    ThreadPoolExecutor,
    as_completed,
    wait,
)
from dataclasses import dataclass, field
from itertools import islice

from stellartrade.config import CheapestQuery, SearchOptions, Settings, listing_cutoff
from stellartrade.data.market_db import MarketRepository
from stellartrade.models import Commodity, Station, StationMarket, System
from stellartrade.trading.aggregator import SolutionAggregator
from stellartrade.trading.market_cache import MarketCache
from stellartrade.trading.routes import RouteEnumerator, select_sources
from stellartrade.trading.sampler import StationSampler
from stellartrade.trading.solver import TradeSolution, solve_knapsack

logger = logging.getLogger("stellartrade.trading")

# phase name, completed, total
ProgressCallback = Callable[[str, int, int], None]

PAIR_BATCH = 256
# Batches queued per worker before the producer waits for one to finish
MAX_PENDING_BATCHES = 2


class EmptyResultError(Exception):
    """Nothing survived the user's filters; the user can adjust them."""


@dataclass(frozen=True)
class SearchPlan:
    """Everything the solving phase needs, fully resolved and read-only."""

    sample: list[Station]
    fixed_sources: list[Station] | None
    markets: dict[int, StationMarket]
    systems: dict[int, System] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchResult:
    """Ranked outcome of a compute-single run."""

    solutions: list[TradeSolution]
    markets: dict[int, StationMarket]
    sampled: int
    pairs: int
    solved: int


@dataclass(frozen=True)
class CheapestListing:
    station: Station
    commodity: Commodity


def build_sampler(settings: Settings, options: SearchOptions) -> StationSampler:
    return StationSampler(
        options.landing_pad,
        carrier_pattern=settings.carrier_pattern,
        rng=random.Random(options.seed),
    )


async def _find_fixed_sources(
    repository: MarketRepository,
    eligible: list[Station],
    source_name: str,
    radius: float | None = None,
) -> list[Station]:
    origin = await repository.get_system_by_name(source_name)
    if origin is None:
        raise EmptyResultError(f"No system named '{source_name}', check the --src spelling")

    if radius:
        nearby = await repository.get_systems_within(origin.name, radius)
        logger.info(
            "%d systems within %.1f ly of %s", len(nearby), radius, origin.name,
        )
        sources = select_sources(
            eligible, origin.name,
            radius=radius,
            systems_in_radius={s.id for s in nearby},
        )
    else:
        sources = select_sources(eligible, origin.name)

    if not sources:
        raise EmptyResultError(
            f"No eligible stations at {origin.name}"
            + (f" or within {radius} ly" if radius else "")
            + ", adjust your filters",
        )
    logger.info("Using %d fixed source stations around %s", len(sources), origin.name)
    return sources


async def prepare_search(
    repository: MarketRepository,
    options: SearchOptions,
    sampler: StationSampler,
    *,
    progress: ProgressCallback | None = None,
) -> SearchPlan:
    """Phase 1: everything that touches the database."""
    await repository.ping()

    logger.info("Fetching all stations")
    stations = await repository.get_all_stations()
    eligible = sampler.eligible(stations)
    logger.info("%d stations, %d eligible", len(stations), len(eligible))
    if not eligible:
        raise EmptyResultError(
            "No stations survive filtering, adjust your filters (landing pad?)",
        )

    sample = sampler.sample(eligible, options.random_sample)

    fixed_sources: list[Station] | None = None
    if options.source is not None:
        fixed_sources = await _find_fixed_sources(
            repository, eligible, options.source, options.radius,
        )
        sample = sampler.with_fixed_sources(sample, fixed_sources)

    systems: dict[int, System] = {}
    if options.max_destination_distance is not None:
        systems = await repository.get_systems(
            s.system_id for s in sample if s.system_id is not None
        )

    cache = MarketCache(repository)
    markets = await cache.resolve(
        sample,
        options.recency_cutoff(),
        progress=(lambda done, total: progress("markets", done, total)) if progress else None,
    )
    if not any(market.commodities for market in markets.values()):
        raise EmptyResultError(
            "No commodities found for any sampled station, "
            "adjust your filters (expiry, sample size)",
        )

    return SearchPlan(
        sample=sample,
        fixed_sources=fixed_sources,
        markets=markets,
        systems=systems,
    )


def _evaluate_batch(
    batch: list[tuple[Station, Station]],
    markets: dict[int, StationMarket],
    options: SearchOptions,
    aggregator: SolutionAggregator,
) -> int:
    for source, destination in batch:
        src_market = markets.get(source.id)
        dst_market = markets.get(destination.id)
        if src_market is None or dst_market is None:
            continue
        try:
            solution = solve_knapsack(src_market, dst_market, options.capacity, options.capital)
        except Exception:
            logger.exception("Solver crashed on %s -> %s, skipping", source.name, destination.name)
            continue
        if solution is not None and solution.profit > 0:
            aggregator.push(solution)
    return len(batch)


def _batched(
    pairs: Iterable[tuple[Station, Station]], size: int,
) -> Iterator[list[tuple[Station, Station]]]:
    iterator = iter(pairs)
    while batch := list(islice(iterator, size)):
        yield batch


def evaluate_pairs(
    plan: SearchPlan,
    options: SearchOptions,
    *,
    workers: int | None = None,
    progress: ProgressCallback | None = None,
) -> tuple[SolutionAggregator, int]:
    """Phase 2: solve every candidate pair on a CPU-sized thread pool.

    Pairs are streamed from the enumerator in batches, with at most
    ``MAX_PENDING_BATCHES`` per worker queued at once, so memory stays flat
    however large the sample. Returns the aggregator and the number of pairs
    evaluated.
    """
    enumerator = RouteEnumerator(plan.systems)
    total = enumerator.count_pairs(
        plan.sample, plan.fixed_sources, options.max_destination_distance,
    )
    workers = workers or os.cpu_count() or 1
    max_pending = workers * MAX_PENDING_BATCHES
    logger.info("Evaluating %d pairs on %d workers", total, workers)

    aggregator = SolutionAggregator()
    done = 0

    def _collect(finished: Iterable[Future[int]]) -> None:
        nonlocal done
        for future in finished:
            done += future.result()
            if progress is not None:
                progress("pairs", done, total)

    batches = _batched(
        enumerator.pairs(plan.sample, plan.fixed_sources, options.max_destination_distance),
        PAIR_BATCH,
    )
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="solver") as pool:
        pending: set[Future[int]] = set()
        for batch in batches:
            pending.add(pool.submit(_evaluate_batch, batch, plan.markets, options, aggregator))
            if len(pending) >= max_pending:
                finished, pending = wait(pending, return_when=FIRST_COMPLETED)
                _collect(finished)
        _collect(as_completed(pending))

    logger.info("%d of %d pairs produced a profitable load", len(aggregator), done)
    return aggregator, done


def compute_single(
    settings: Settings,
    options: SearchOptions,
    *,
    progress: ProgressCallback | None = None,
) -> SearchResult:
    """Run a full single-hop search and return the top routes."""
    sampler = build_sampler(settings, options)

    async def _prepare() -> SearchPlan:
        repo = MarketRepository(
            settings.db_path, max_connections=settings.max_connections,
        )
        async with repo:
            return await prepare_search(repo, options, sampler, progress=progress)

    plan = asyncio.run(_prepare())
    aggregator, pair_count = evaluate_pairs(
        plan, options, workers=settings.workers, progress=progress,
    )
    return SearchResult(
        solutions=aggregator.top(options.top),
        markets=plan.markets,
        sampled=len(plan.sample),
        pairs=pair_count,
        solved=len(aggregator),
    )


async def search_cheapest(
    repository: MarketRepository,
    query: CheapestQuery,
    sampler: StationSampler,
) -> list[CheapestListing]:
    """Cheapest current offers of one commodity.

    Fleet carriers and stations whose pads the ship cannot use are excluded.
    """
    await repository.ping()
    rows = await repository.get_cheapest_listings(
        query.name,
        listing_cutoff(query.max_age_days),
        query.min_quantity,
    )
    results = [
        CheapestListing(station=station, commodity=commodity)
        for station, commodity in rows
        if not sampler.is_carrier(station) and sampler.fits_pad(station)
    ]
    if not results:
        raise EmptyResultError(
            f"No current listings for '{query.name}', adjust your filters "
            "(max age, min quantity, landing pad)",
        )
    return results[:query.limit]


def find_cheapest(
    settings: Settings,
    query: CheapestQuery,
) -> list[CheapestListing]:
    sampler = StationSampler(query.landing_pad, carrier_pattern=settings.carrier_pattern)

    async def _run() -> list[CheapestListing]:
        repo = MarketRepository(
            settings.db_path, max_connections=settings.max_connections,
        )
        async with repo:
            return await search_cheapest(repo, query, sampler)

    return asyncio.run(_run())
