# region Imports
from __future__ import annotations
from typing import Callable, Optional
import math

from .config import CostParams, WATER_ELEVATION
from .models import CostGrid
# endregion

EdgeCostFn = Callable[[int, int, bool], Optional[float]]


# region Terrain Cost
def terrain_cost(elev_u: float, elev_v: float, params: CostParams) -> float:
    """Base cost of stepping from elevation elev_u onto elev_v (no discounts)."""
    if elev_v == WATER_ELEVATION:
        return params.water_cost
    diff = elev_v - elev_u
    if diff > 0:
        cost = params.base_cost + params.uphill_factor * diff
    else:
        cost = params.base_cost + params.downhill_factor * diff
    return max(params.min_step_cost, cost)


def usage_multiplier(usage: int, params: CostParams) -> float:
    """Road discount, linear in usage up to usage_cap."""
    if usage <= 0:
        return 1.0
    return 1.0 - min(usage, params.usage_cap) * params.usage_discount_per_use


def proximity_multiplier(proximity: float, params: CostParams) -> float:
    return (1.0 - params.city_discount) if proximity < params.city_radius else 1.0
# endregion


# region Edge Cost Factory
def edge_cost_factory(grid: CostGrid, params: CostParams) -> EdgeCostFn:
    """
    Returns edge_cost(u, v, diagonal) for flat pixel indices. Usage is read
    live, so reinforcement between searches is picked up without rebuilding.
    Returns None when v is blocked.
    """
    # memoryviews index to plain Python scalars, much faster than numpy items
    elev = memoryview(grid.elevation)
    usage = memoryview(grid.usage)
    prox = memoryview(grid.proximity)
    blocked = memoryview(grid.blocked.view("uint8"))

    sqrt2 = math.sqrt(2.0)

    def edge_cost(u: int, v: int, diagonal: bool) -> Optional[float]:
        if blocked[v]:
            return None
        cost = terrain_cost(elev[u], elev[v], params)
        cost *= usage_multiplier(usage[v], params)
        cost *= proximity_multiplier(prox[v], params)
        if diagonal:
            cost *= sqrt2
        return cost

    return edge_cost
# endregion
