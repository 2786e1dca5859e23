# region Imports
from __future__ import annotations
from collections import deque
from typing import Iterable, Tuple
import numpy as np

from .config import CITY_RADIUS, FAR_FROM_CITY
from .grid import neighbors_8, SQRT2
# endregion


# region Multi-source Expansion
def build_proximity_field(
    width: int,
    height: int,
    seeds: Iterable[Tuple[int, int]],
    radius: float = CITY_RADIUS,
) -> np.ndarray:
    """
    Breadth-first expansion from every seed pixel at once. Each cell gets the
    step distance (1 straight, sqrt(2) diagonal) along which it was first
    reached; cells are never revisited, and nothing is assigned beyond
    ``radius``. Unreached cells keep FAR_FROM_CITY.

    Seeds outside the grid are ignored.
    """
    n = width * height
    dist = [FAR_FROM_CITY] * n
    queue = deque()

    for x, y in seeds:
        if 0 <= x < width and 0 <= y < height:
            i = y * width + x
            if dist[i] != 0.0:
                dist[i] = 0.0
                queue.append(i)

    while queue:
        u = queue.popleft()
        du = dist[u]
        if du >= radius:
            continue
        for v, _, _, diagonal in neighbors_8(u, width, height):
            if dist[v] != FAR_FROM_CITY:
                continue
            dv = du + (SQRT2 if diagonal else 1.0)
            if dv <= radius:
                dist[v] = dv
                queue.append(v)

    field = np.asarray(dist, dtype=np.float32)
    field.setflags(write=False)
    return field


def within_radius(proximity: np.ndarray, radius: float = CITY_RADIUS) -> np.ndarray:
    """Boolean mask of cells that receive the city discount."""
    return proximity < radius
# endregion
