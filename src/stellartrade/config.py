"""Application settings and validated search options."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError, model_validator
from pydantic_settings import BaseSettings

from stellartrade.models import LandingPad

EPOCH = datetime(1970, 1, 1)


class ConfigError(ValueError):
    """Raised when user-supplied options are rejected before any I/O."""


class Settings(BaseSettings):
    """Stellartrade configuration from environment / .env file."""

    db_path: Path = Path("data/galaxy.db")
    data_dir: Path = Path("data")
    max_connections: int = 32
    carrier_pattern: str = r"^[A-Z0-9]{3}-[A-Z0-9]{3}$"
    workers: int | None = None

    model_config = {"env_prefix": "STELLARTRADE_", "env_file": ".env"}


def load_settings() -> Settings:
    """Load and return application settings."""
    return Settings()


class SearchOptions(BaseModel):
    """Per-run inputs for a single-hop route search."""

    capital: int
    capacity: int
    landing_pad: LandingPad
    random_sample: float = 0.01
    source: str | None = None
    radius: float | None = None
    max_destination_distance: float | None = None
    expiry_days: int | None = None
    top: int = 10
    seed: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_ranges(self) -> SearchOptions:
        if not 0.0 < self.random_sample <= 1.0:
            raise ValueError(f"random_sample must be in (0, 1], got {self.random_sample}")
        if self.capital < 0:
            raise ValueError("capital must be >= 0")
        if self.capacity < 0:
            raise ValueError("capacity must be >= 0")
        if self.top < 1:
            raise ValueError("top must be >= 1")
        if self.expiry_days is not None and self.expiry_days < 0:
            raise ValueError("expiry must be >= 0 days")
        if self.radius is not None:
            if self.source is None:
                raise ValueError("radius requires a source system")
            if self.radius < 0:
                raise ValueError("radius must be >= 0")
        if self.max_destination_distance is not None:
            if self.source is None:
                raise ValueError("max destination distance requires a source system")
            if self.max_destination_distance < 0:
                raise ValueError("max destination distance must be >= 0")
        return self

    @classmethod
    def build(cls, **values: object) -> SearchOptions:
        """Validate options, raising ConfigError instead of pydantic's error."""
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(_first_message(exc)) from exc

    def recency_cutoff(self, now: datetime | None = None) -> datetime:
        """Oldest listing timestamp still considered current (naive UTC)."""
        return listing_cutoff(self.expiry_days, now)


class CheapestQuery(BaseModel):
    """Inputs for the find-cheapest lookup."""

    name: str
    landing_pad: LandingPad
    max_age_days: int
    min_quantity: int = 0
    limit: int = 10

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_ranges(self) -> CheapestQuery:
        if not self.name.strip():
            raise ValueError("commodity name must not be empty")
        if self.max_age_days < 0:
            raise ValueError("max age must be >= 0 days")
        if self.min_quantity < 0:
            raise ValueError("min quantity must be >= 0")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        return self

    @classmethod
    def build(cls, **values: object) -> CheapestQuery:
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(_first_message(exc)) from exc


def listing_cutoff(days: int | None, now: datetime | None = None) -> datetime:
    """Convert an age in days to a naive-UTC cutoff; None means no cutoff."""
    if days is None:
        return EPOCH
    if now is None:
        now = datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    return now - timedelta(days=days)


def _first_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    msg = err.get("msg", str(exc))
    # model_validator errors carry a "Value error, " prefix
    msg = msg.removeprefix("Value error, ")
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {msg}" if loc else msg
