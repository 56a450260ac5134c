"""Candidate route enumeration: which (source, destination) pairs to solve."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Iterator, Mapping, Sequence

from stellartrade.config import ConfigError
from stellartrade.models import Station, System


def select_sources(
    stations: Iterable[Station],
    system_name: str,
    *,
    radius: float | None = None,
    systems_in_radius: Collection[int] | None = None,
) -> list[Station]:
    """Pick the fixed-source stations for a named system.

    With no radius (or zero), sources are stations in exactly that system,
    matched case-insensitively. Otherwise they are stations whose system id
    is in ``systems_in_radius`` (computed by the repository).
    """
    if not radius:
        wanted = system_name.casefold()
        return [
            s for s in stations
            if s.system_name is not None and s.system_name.casefold() == wanted
        ]
    if systems_in_radius is None:
        raise ValueError("systems_in_radius is required when radius is set")
    return [s for s in stations if s.system_id in systems_in_radius]


class RouteEnumerator:
    """Produces ordered (source, destination) station pairs to evaluate."""

    def __init__(self, systems: Mapping[int, System] | None = None) -> None:
        self.systems = systems or {}

    def distance(self, a: Station, b: Station) -> float | None:
        """System-to-system distance in ly, or None if either is unknown."""
        if a.system_id is None or b.system_id is None:
            return None
        sys_a = self.systems.get(a.system_id)
        sys_b = self.systems.get(b.system_id)
        if sys_a is None or sys_b is None:
            return None
        return sys_a.distance_to(sys_b)

    def pairs(
        self,
        sample: Sequence[Station],
        fixed_sources: Sequence[Station] | None = None,
        max_destination_distance: float | None = None,
    ) -> Iterator[tuple[Station, Station]]:
        if max_destination_distance is not None and fixed_sources is None:
            raise ConfigError("max destination distance requires a fixed source")

        sources = sample if fixed_sources is None else fixed_sources
        for source in sources:
            for destination in sample:
                if source.id == destination.id:
                    continue
                if max_destination_distance is not None:
                    dist = self.distance(source, destination)
                    if dist is None or dist > max_destination_distance:
                        continue
                yield source, destination

    def count_pairs(
        self,
        sample: Sequence[Station],
        fixed_sources: Sequence[Station] | None = None,
        max_destination_distance: float | None = None,
    ) -> int:
        if max_destination_distance is None:
            sources = sample if fixed_sources is None else fixed_sources
            sample_ids = {s.id for s in sample}
            overlap = sum(1 for s in sources if s.id in sample_ids)
            return len(sources) * len(sample) - overlap
        return sum(1 for _ in self.pairs(sample, fixed_sources, max_destination_distance))
