"""Pydantic models for galaxy data loaded from the market database."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel


# --- Enums ---


class LandingPad(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def accepted_codes(self) -> frozenset[str]:
        """Station pad codes a ship needing this pad can dock at."""
        return _PAD_CODES[self]


_PAD_CODES: dict[LandingPad, frozenset[str]] = {
    LandingPad.SMALL: frozenset({"S", "M", "L"}),
    LandingPad.MEDIUM: frozenset({"M", "L"}),
    LandingPad.LARGE: frozenset({"L"}),
}


# --- Systems & stations ---


class System(BaseModel):
    id: int
    name: str
    x: float
    y: float
    z: float
    updated_at: datetime

    model_config = {"frozen": True}

    def distance_to(self, other: System) -> float:
        """Straight-line distance in light years."""
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )


class Station(BaseModel):
    id: int
    name: str
    distance_to_arrival: float | None = None
    market_id: int | None = None
    system_id: int | None = None
    system_name: str | None = None
    pad_size: str | None = None

    model_config = {"frozen": True}

    @property
    def is_tradeable(self) -> bool:
        return self.market_id is not None and self.system_id is not None


# --- Market ---


class Commodity(BaseModel):
    market_id: int
    name: str
    mean_price: int
    buy_price: int
    sell_price: int
    demand: int
    demand_bracket: int
    stock: int
    stock_bracket: int
    listed_at: datetime

    model_config = {"frozen": True}


@dataclass(frozen=True)
class StationMarket:
    """A station with its current, de-duplicated commodity snapshot."""

    station: Station
    commodities: tuple[Commodity, ...] = ()
    _by_name: dict[str, Commodity] = field(
        default_factory=dict, init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        index = {c.name: c for c in self.commodities}
        if len(index) != len(self.commodities):
            raise ValueError(
                f"Duplicate commodity names in market of station {self.station.id}",
            )
        object.__setattr__(self, "_by_name", index)

    def commodity(self, name: str) -> Commodity | None:
        return self._by_name.get(name)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._by_name)

    def __len__(self) -> int:
        return len(self.commodities)
