# config.py
# Tuning constants for the road-growth engine. The dataclasses below take
# their defaults from these values; regions override them per load.

# region Imports
from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional
import os

from .errors import ConfigurationError
# endregion

# region Raster Classification
WATER_TOLERANCE = 10          # max channel spread for a pixel to count as grey (land)
WATER_ELEVATION = -1.0        # elevation sentinel for water pixels
USAGE_MAX = 65535             # usage counters are uint16 and saturate here
# endregion

# region Proximity
CITY_RADIUS = 50.0            # grid steps; cells beyond keep FAR_FROM_CITY
FAR_FROM_CITY = float("inf")
# endregion

# region Edge Costs
WATER_COST = 15.0
BASE_COST = 1.0
UPHILL_FACTOR = 5.0
DOWNHILL_FACTOR = 0.5
MIN_STEP_COST = 0.1

USAGE_CAP = 12                # 12 * 2.5% = 30% max road discount
USAGE_DISCOUNT_PER_USE = 0.025
CITY_DISCOUNT = 0.40

# Skip relaxing into very expensive cells when a comparable route is known
PRUNE_COST_THRESHOLD = 80.0
PRUNE_TOLERANCE = 0.05
# endregion

# region Search Cadence
LONG_DISTANCE = 1000.0
PROGRESS_BASE_BATCH = 2000
PROGRESS_BASE_BATCH_LONG = 8000
PROGRESS_GROWTH_RATE = 0.001
PROGRESS_MAX_BATCH = 50000
PROGRESS_MAX_BATCH_LONG = 100000
PROGRESS_CHECK_INTERVAL = 100000
YIELD_EVERY = 10000
MAX_ITERATION_MULTIPLIER = 5.0
# endregion

# region Driver
MIN_ITERATION_DELAY = 0.1     # seconds
NO_PATH_RETRY_DELAY = 0.5
IDLE_DELAY = 1.0
# endregion

# region Road Segments
SEGMENT_MIN_USAGE = 2
SEGMENT_MIN_LENGTH = 20
SEGMENT_MIN_CITY_DISTANCE = 10.0
# endregion

# region HTTP Host
API_HOST = os.environ.get("ROADWEAVER_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("ROADWEAVER_PORT", "8081"))
# endregion


# region Parameter Bundles
def _coerce(params_cls, values: Mapping[str, Any]):
    kwargs = {}
    for f in fields(params_cls):
        if f.name not in values:
            continue
        raw = values[f.name]
        if raw is None or raw in ("", "null"):
            # null disables optional knobs and keeps the default for the rest
            if "Optional" in str(f.type):
                kwargs[f.name] = None
            continue
        kind = int if isinstance(f.default, int) and not isinstance(f.default, bool) else float
        try:
            kwargs[f.name] = kind(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{f.name}: expected a number, got {raw!r}") from e
    return params_cls(**kwargs)


@dataclass
class CostParams:
    """Edge-cost model knobs. ``water_cost`` is the one most regions tune."""
    water_cost: float = WATER_COST
    base_cost: float = BASE_COST
    uphill_factor: float = UPHILL_FACTOR
    downhill_factor: float = DOWNHILL_FACTOR
    min_step_cost: float = MIN_STEP_COST
    usage_cap: int = USAGE_CAP
    usage_discount_per_use: float = USAGE_DISCOUNT_PER_USE
    city_radius: float = CITY_RADIUS
    city_discount: float = CITY_DISCOUNT
    prune_cost_threshold: Optional[float] = PRUNE_COST_THRESHOLD
    prune_tolerance: float = PRUNE_TOLERANCE

    def __post_init__(self):
        if self.min_step_cost <= 0:
            raise ConfigurationError("min_step_cost must be positive")
        if self.downhill_factor >= self.uphill_factor:
            raise ConfigurationError("downhill_factor must be smaller than uphill_factor")
        if self.usage_cap < 0 or not 0.0 <= self.max_usage_discount < 1.0:
            raise ConfigurationError("usage discount must stay within [0, 1)")
        if not 0.0 <= self.city_discount < 1.0:
            raise ConfigurationError("city_discount must be within [0, 1)")
        if self.water_cost is None or self.water_cost <= 0:
            raise ConfigurationError("water_cost must be positive")

    @property
    def max_usage_discount(self) -> float:
        return self.usage_cap * self.usage_discount_per_use

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "CostParams":
        return _coerce(cls, values or {})


@dataclass
class SearchParams:
    long_distance: float = LONG_DISTANCE
    base_batch: int = PROGRESS_BASE_BATCH
    base_batch_long: int = PROGRESS_BASE_BATCH_LONG
    growth_rate: float = PROGRESS_GROWTH_RATE
    max_batch: int = PROGRESS_MAX_BATCH
    max_batch_long: int = PROGRESS_MAX_BATCH_LONG
    progress_check_interval: int = PROGRESS_CHECK_INTERVAL
    yield_every: int = YIELD_EVERY
    max_iteration_multiplier: float = MAX_ITERATION_MULTIPLIER

    def __post_init__(self):
        for name in ("base_batch", "base_batch_long", "max_batch", "max_batch_long",
                     "progress_check_interval", "yield_every"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.growth_rate < 0:
            raise ConfigurationError("growth_rate must not be negative")
        if self.long_distance < 0:
            raise ConfigurationError("long_distance must not be negative")
        if self.max_iteration_multiplier < 1.0:
            raise ConfigurationError("max_iteration_multiplier must be at least 1")

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "SearchParams":
        return _coerce(cls, values or {})


@dataclass
class DriverParams:
    min_iteration_delay: float = MIN_ITERATION_DELAY
    no_path_retry_delay: float = NO_PATH_RETRY_DELAY
    idle_delay: float = IDLE_DELAY

    def __post_init__(self):
        for name in ("min_iteration_delay", "no_path_retry_delay", "idle_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "DriverParams":
        return _coerce(cls, values or {})
# endregion
