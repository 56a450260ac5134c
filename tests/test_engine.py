"""End-to-end tests for the route search and find-cheapest flows."""

from pathlib import Path

import pytest

from stellartrade.config import CheapestQuery, SearchOptions, Settings
from stellartrade.data.market_db import MarketRepository, RepositoryError
from stellartrade.models import LandingPad
from stellartrade.trading import engine
from stellartrade.trading.engine import (
    MAX_PENDING_BATCHES,
    PAIR_BATCH,
    EmptyResultError,
    SearchPlan,
    build_sampler,
    compute_single,
    evaluate_pairs,
    find_cheapest,
    prepare_search,
)
from stellartrade.trading.routes import RouteEnumerator

from conftest import make_market, make_station


@pytest.fixture
def settings(galaxy_path: Path, tmp_path: Path) -> Settings:
    return Settings(db_path=galaxy_path, data_dir=tmp_path / "data", max_connections=4, workers=2)


def options(**overrides: object) -> SearchOptions:
    values: dict[str, object] = {
        "capital": 1000,
        "capacity": 5,
        "landing_pad": LandingPad.MEDIUM,
        "random_sample": 1.0,
        "seed": 1,
    }
    values.update(overrides)
    return SearchOptions.build(**values)


def route_ids(result) -> list[tuple[int, int]]:
    return [(s.source.id, s.destination.id) for s in result.solutions]


class TestComputeSingle:
    def test_full_sample_of_four_stations(self, settings: Settings) -> None:
        """Medium pads leave 4 eligible stations: 4 sampled, 12 pairs."""
        result = compute_single(settings, options())
        assert result.sampled == 4
        assert result.pairs == 12
        assert result.solved == 3
        assert route_ids(result) == [(1, 2), (1, 3), (3, 4)]

    def test_best_route_is_capacity_bound_gold(self, settings: Settings) -> None:
        best = compute_single(settings, options()).solutions[0]
        assert best.source.name == "Abraham Port"
        assert best.destination.name == "Daedalus"
        assert {o.commodity_name: o.count for o in best.purchases} == {"Gold": 5}
        assert best.profit == pytest.approx(250)

    def test_capital_bound(self, settings: Settings) -> None:
        best = compute_single(settings, options(capital=300)).solutions[0]
        assert {o.commodity_name: o.count for o in best.purchases} == {"Gold": 3}
        assert best.profit == pytest.approx(150)

    def test_top_limits_output(self, settings: Settings) -> None:
        result = compute_single(settings, options(top=1))
        assert len(result.solutions) == 1
        assert result.solved == 3

    def test_repeat_runs_rank_identically(self, settings: Settings) -> None:
        first = compute_single(settings, options())
        second = compute_single(settings, options())
        assert route_ids(first) == route_ids(second)

    def test_carrier_is_never_used(self, settings: Settings) -> None:
        """X7A-9NK sells Gold at 10 but is a fleet carrier."""
        result = compute_single(settings, options(landing_pad=LandingPad.SMALL, top=50))
        assert all(s.source.id != 5 and s.destination.id != 5 for s in result.solutions)

    def test_markets_are_returned_for_reporting(self, settings: Settings) -> None:
        result = compute_single(settings, options())
        assert result.markets[1].commodity("Gold").buy_price == 100


class TestFixedSource:
    def test_named_system(self, settings: Settings) -> None:
        result = compute_single(settings, options(source="sol"))
        assert result.pairs == 2 * 4 - 2
        assert route_ids(result) == [(1, 2), (1, 3)]

    def test_radius(self, settings: Settings) -> None:
        """Alpha Centauri is within 5 ly of Sol, so Hutton Orbital is a source too."""
        result = compute_single(settings, options(source="Sol", radius=5.0))
        assert result.pairs == 3 * 4 - 3
        assert route_ids(result) == [(1, 2), (1, 3), (3, 4)]

    def test_max_destination_distance(self, settings: Settings) -> None:
        """Barnard's Star is 6 ly from Sol and falls outside a 5 ly bound."""
        result = compute_single(settings, options(source="Sol", max_destination_distance=5.0))
        assert result.pairs == 4
        assert all(s.destination.id != 4 for s in result.solutions)

    def test_sources_join_a_partial_sample(self, settings: Settings) -> None:
        result = compute_single(settings, options(source="Sol", random_sample=0.25))
        assert result.sampled >= 2


class TestFailures:
    def test_unknown_source_system(self, settings: Settings) -> None:
        with pytest.raises(EmptyResultError):
            compute_single(settings, options(source="Nowhere"))

    def test_source_without_eligible_stations(self, settings: Settings) -> None:
        """Outpost Nine only has a small pad."""
        with pytest.raises(EmptyResultError):
            compute_single(settings, options(source="Far Reach"))

    def test_everything_expired(self, settings: Settings) -> None:
        with pytest.raises(EmptyResultError):
            compute_single(settings, options(expiry_days=1))

    def test_missing_database(self, settings: Settings, tmp_path: Path) -> None:
        broken = settings.model_copy(update={"db_path": tmp_path / "nope.db"})
        with pytest.raises(RepositoryError):
            compute_single(broken, options())


class TestPhases:
    async def test_prepare_then_evaluate(self, repo: MarketRepository, settings: Settings) -> None:
        opts = options()
        plan = await prepare_search(repo, opts, build_sampler(settings, opts))
        assert {s.id for s in plan.sample} == {1, 2, 3, 4}
        assert plan.fixed_sources is None
        assert set(plan.markets) == {1, 2, 3, 4}

        progress: list[tuple[str, int, int]] = []
        aggregator, pairs = evaluate_pairs(
            plan, opts, workers=2, progress=lambda *args: progress.append(args),
        )
        assert pairs == 12
        assert len(aggregator) == 3
        assert progress[-1] == ("pairs", 12, 12)

    async def test_no_eligible_stations(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.db"
        async with MarketRepository(path, read_only=False) as writable:
            await writable.create_schema()
        opts = options()
        async with MarketRepository(path) as reader:
            with pytest.raises(EmptyResultError):
                await prepare_search(reader, opts, build_sampler(Settings(), opts))

    async def test_fixed_sources_by_name(self, repo: MarketRepository, settings: Settings) -> None:
        opts = options(source="SOL")
        plan = await prepare_search(repo, opts, build_sampler(settings, opts))
        assert [s.id for s in plan.fixed_sources] == [1, 2]

    async def test_fixed_sources_by_radius(self, repo: MarketRepository, settings: Settings) -> None:
        opts = options(source="Sol", radius=5.0)
        plan = await prepare_search(repo, opts, build_sampler(settings, opts))
        assert [s.id for s in plan.fixed_sources] == [1, 2, 3]


class TestStreaming:
    def test_solving_starts_before_enumeration_finishes(
        self, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """60 stations give 3540 pairs; only a couple of batches may be queued ahead."""
        stations = [make_station(i) for i in range(1, 61)]
        plan = SearchPlan(
            sample=stations,
            fixed_sources=None,
            markets={s.id: make_market(s) for s in stations},
        )
        yielded = 0
        yielded_at_first_solve: list[int] = []

        class CountingEnumerator(RouteEnumerator):
            def pairs(self, *args, **kwargs):
                nonlocal yielded
                for pair in super().pairs(*args, **kwargs):
                    yielded += 1
                    yield pair

        def fake_solve(source, destination, capacity, capital):
            if not yielded_at_first_solve:
                yielded_at_first_solve.append(yielded)
            return None

        monkeypatch.setattr(engine, "RouteEnumerator", CountingEnumerator)
        monkeypatch.setattr(engine, "solve_knapsack", fake_solve)

        progress: list[tuple[str, int, int]] = []
        _, pairs = evaluate_pairs(
            plan, options(), workers=1, progress=lambda *args: progress.append(args),
        )
        assert pairs == yielded == 60 * 59
        assert yielded_at_first_solve[0] <= MAX_PENDING_BATCHES * PAIR_BATCH
        assert all(total == 60 * 59 for _, _, total in progress)
        assert progress[-1][1] == 60 * 59


class TestFindCheapest:
    def test_large_pad(self, settings: Settings) -> None:
        query = CheapestQuery.build(name="gold", landing_pad="large", max_age_days=100_000)
        results = find_cheapest(settings, query)
        assert [r.station.id for r in results] == [1]
        assert results[0].commodity.buy_price == 100

    def test_small_pad_includes_outposts(self, settings: Settings) -> None:
        query = CheapestQuery.build(name="Gold", landing_pad="small", max_age_days=100_000)
        results = find_cheapest(settings, query)
        assert [r.station.id for r in results] == [6, 1]

    def test_min_quantity(self, settings: Settings) -> None:
        query = CheapestQuery.build(
            name="Gold", landing_pad="small", max_age_days=100_000, min_quantity=20,
        )
        assert [r.station.id for r in find_cheapest(settings, query)] == [6]

    def test_limit(self, settings: Settings) -> None:
        query = CheapestQuery.build(
            name="Gold", landing_pad="small", max_age_days=100_000, limit=1,
        )
        assert len(find_cheapest(settings, query)) == 1

    def test_nothing_found(self, settings: Settings) -> None:
        query = CheapestQuery.build(name="Unobtainium", landing_pad="small", max_age_days=1)
        with pytest.raises(EmptyResultError):
            find_cheapest(settings, query)
