"""Station sampling: cut the galaxy down to a tractable working set."""

from __future__ import annotations

import logging
import math
import random
import re
from collections.abc import Iterable

from stellartrade.config import ConfigError
from stellartrade.models import LandingPad, Station

logger = logging.getLogger("stellartrade.trading")

DEFAULT_CARRIER_PATTERN = r"^[A-Z0-9]{3}-[A-Z0-9]{3}$"


def sample_size(size_fraction: float, population: int) -> int:
    """floor(fraction × population), rejecting fractions outside (0, 1]."""
    if not 0.0 < size_fraction <= 1.0:
        raise ConfigError(f"Sample fraction must be in (0, 1], got {size_fraction}")
    return min(population, math.floor(size_fraction * population))


class StationSampler:
    """Filters out untradeable stations and draws a uniform random sample.

    Fleet carriers move around, so anything named like one (``ABC-123``)
    is never a trade endpoint. Stations are also restricted to those with
    a landing pad big enough for the requested ship class.
    """

    def __init__(
        self,
        landing_pad: LandingPad,
        *,
        carrier_pattern: str | re.Pattern[str] = DEFAULT_CARRIER_PATTERN,
        rng: random.Random | None = None,
    ) -> None:
        self.landing_pad = landing_pad
        if isinstance(carrier_pattern, re.Pattern):
            self.carrier_pattern = carrier_pattern
        else:
            self.carrier_pattern = re.compile(carrier_pattern, re.IGNORECASE)
        self.rng = rng or random.Random()

    def is_carrier(self, station: Station) -> bool:
        return self.carrier_pattern.match(station.name) is not None

    def fits_pad(self, station: Station) -> bool:
        return (
            station.pad_size is not None
            and station.pad_size.upper() in self.landing_pad.accepted_codes
        )

    def eligible(self, stations: Iterable[Station]) -> list[Station]:
        """Stations that could take part in a trade at all."""
        kept: list[Station] = []
        carriers = untradeable = wrong_pad = 0
        for station in stations:
            if not station.is_tradeable:
                untradeable += 1
            elif self.is_carrier(station):
                carriers += 1
            elif not self.fits_pad(station):
                wrong_pad += 1
            else:
                kept.append(station)
        logger.debug(
            "Eligibility: kept %d, dropped %d untradeable, %d carriers, %d pad mismatch",
            len(kept), untradeable, carriers, wrong_pad,
        )
        return kept

    def sample(self, stations: Iterable[Station], size_fraction: float) -> list[Station]:
        """Uniform sample without replacement over the eligible population."""
        # Validate before touching the population
        sample_size(size_fraction, 0)
        population = self.eligible(stations)
        size = sample_size(size_fraction, len(population))
        logger.info(
            "Sampling %d of %d eligible stations (fraction %.4g)",
            size, len(population), size_fraction,
        )
        return self.rng.sample(population, size)

    @staticmethod
    def with_fixed_sources(
        sample: list[Station], sources: Iterable[Station],
    ) -> list[Station]:
        """Append fixed-source stations to the random sample, skipping repeats."""
        seen = {station.id for station in sample}
        combined = list(sample)
        for station in sources:
            if station.id not in seen:
                seen.add(station.id)
                combined.append(station)
        return combined
