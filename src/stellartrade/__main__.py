"""Entry point: python -m stellartrade

Subcommands:
    compute-single  Find the most profitable single-hop (A -> B) routes
    find-cheapest   List the cheapest current offers of one commodity
    version         Print version information

Examples:
    python -m stellartrade compute-single --capital 5000000 --capacity 720 \\
        --landing-pad large --random-sample 0.02
    python -m stellartrade compute-single --capital 5000000 --capacity 720 \\
        --landing-pad medium --src Sol --radius 30 --max-distance 60
    python -m stellartrade find-cheapest --name gold --landing-pad large \\
        --max-age 2 --min-quantity 500
"""

from __future__ import annotations

import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from stellartrade.config import CheapestQuery, ConfigError, SearchOptions, load_settings
from stellartrade.data.market_db import RepositoryError
from stellartrade.models import LandingPad
from stellartrade.report import print_cheapest, print_routes, summarize_markets
from stellartrade.trading.engine import EmptyResultError, compute_single, find_cheapest

logger = logging.getLogger("stellartrade")

EXIT_BACKEND = 1
EXIT_CONFIG = 2
EXIT_EMPTY = 3

_PHASE_LABELS = {"markets": "Resolving markets", "pairs": "Solving pairs"}


def package_version() -> str:
    try:
        return version("stellartrade")
    except PackageNotFoundError:
        return "0.0.0+local"


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    """Configure logging to stderr and a run log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "stellartrade.log"

    formatter = logging.Formatter(
        "[%(asctime)s] %(message)s", datefmt="%H:%M:%S",
    )

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger("stellartrade")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger.debug("Logging to %s", log_file)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stellartrade",
        description="Single-hop trade route calculator for a simulated galaxy",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    pads = [p.value for p in LandingPad]

    single = sub.add_parser(
        "compute-single",
        help="Compute optimal single-hop trade routes",
        description=(
            "Considers only A->B for stations A, B in the sample; no round trips "
            "or multi-hop routes."
        ),
    )
    single.add_argument("--db", type=Path, help="Market database path (overrides settings)")
    single.add_argument("--capital", type=int, required=True, help="Credits available to buy cargo")
    single.add_argument("--capacity", type=int, required=True, help="Ship cargo capacity (units)")
    single.add_argument("--landing-pad", choices=pads, required=True, help="Ship landing pad size")
    single.add_argument(
        "--random-sample", type=float, default=0.01,
        help="Fraction (0, 1] of eligible stations to sample",
    )
    single.add_argument("--src", type=str, help="Fixed source system name")
    single.add_argument("--radius", type=float, help="Use every system within N ly of --src")
    single.add_argument(
        "--max-distance", type=float,
        help="Drop destinations further than N ly from the source (needs --src)",
    )
    single.add_argument("--expiry", type=int, help="Ignore listings older than N days")
    single.add_argument("--top", type=int, default=10, help="Show top N routes")
    single.add_argument("--seed", type=int, help="Random seed for reproducible samples")

    cheapest = sub.add_parser(
        "find-cheapest",
        help="Find the cheapest offers of a commodity (fleet carriers excluded)",
    )
    cheapest.add_argument("--db", type=Path, help="Market database path (overrides settings)")
    cheapest.add_argument("--name", required=True, help='Commodity name, e.g. "steel"')
    cheapest.add_argument("--landing-pad", choices=pads, required=True, help="Ship landing pad size")
    cheapest.add_argument("--max-age", type=int, required=True, help="Max listing age in days")
    cheapest.add_argument("--min-quantity", type=int, default=0, help="Minimum available stock")
    cheapest.add_argument("--limit", type=int, default=10, help="Show top N offers")

    sub.add_parser("version", help="Print version information")
    return parser


def _run_compute_single(args: argparse.Namespace, console: Console) -> None:
    settings = load_settings()
    if args.db is not None:
        settings = settings.model_copy(update={"db_path": args.db})
    options = SearchOptions.build(
        capital=args.capital,
        capacity=args.capacity,
        landing_pad=args.landing_pad,
        random_sample=args.random_sample,
        source=args.src,
        radius=args.radius,
        max_destination_distance=args.max_distance,
        expiry_days=args.expiry,
        top=args.top,
        seed=args.seed,
    )
    setup_logging(settings.data_dir / "logs", args.verbose)
    logger.info("Using market database %s", settings.db_path)

    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=Console(stderr=True),
        transient=True,
    ) as bar:
        tasks: dict[str, int] = {}

        def on_progress(phase: str, completed: int, total: int) -> None:
            if phase not in tasks:
                tasks[phase] = bar.add_task(_PHASE_LABELS.get(phase, phase), total=total)
            bar.update(tasks[phase], completed=completed, total=total)

        result = compute_single(settings, options, progress=on_progress)

    logger.info("Search finished over %s", summarize_markets(result.markets))
    print_routes(result, console)


def _run_find_cheapest(args: argparse.Namespace, console: Console) -> None:
    settings = load_settings()
    if args.db is not None:
        settings = settings.model_copy(update={"db_path": args.db})
    query = CheapestQuery.build(
        name=args.name,
        landing_pad=args.landing_pad,
        max_age_days=args.max_age,
        min_quantity=args.min_quantity,
        limit=args.limit,
    )
    setup_logging(settings.data_dir / "logs", args.verbose)
    print_cheapest(find_cheapest(settings, query), console)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()

    if args.command == "version":
        console.print(
            f"[bold green]stellartrade[/bold green] v{package_version()}: "
            "single-hop trade route calculator",
        )
        return 0

    try:
        if args.command == "compute-single":
            _run_compute_single(args, console)
        else:
            _run_find_cheapest(args, console)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except EmptyResultError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_EMPTY
    except RepositoryError as exc:
        print(f"Backend failure: {exc}", file=sys.stderr)
        return EXIT_BACKEND
    return 0


if __name__ == "__main__":
    sys.exit(main())
