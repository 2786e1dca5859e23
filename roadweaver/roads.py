# region Imports
from __future__ import annotations
from typing import List, Optional, Sequence
import numpy as np

from .config import (
    CostParams,
    USAGE_MAX,
    SEGMENT_MIN_USAGE,
    SEGMENT_MIN_LENGTH,
    SEGMENT_MIN_CITY_DISTANCE,
)
from .models import CostGrid, RoadSegment, Settlement
# endregion


# region Reinforcement Feedback
def reinforce(grid: CostGrid, path: Sequence[int]) -> np.ndarray:
    """
    Count one more use of every pixel on the path, saturating at USAGE_MAX.
    Returns a copy of the updated usage values along the path.
    """
    idx = np.asarray(path, dtype=np.int64)
    if idx.size == 0:
        return np.zeros(0, dtype=grid.usage.dtype)
    # a path never revisits a pixel, but dedupe so saturation stays exact
    uniq = np.unique(idx)
    usage = grid.usage
    room = usage[uniq] < USAGE_MAX
    usage[uniq[room]] += 1
    return usage[idx].copy()
# endregion


# region Segment Analysis
def nearest_settlement(grid: CostGrid, pixel: int, settlements: Sequence[Settlement]) -> Optional[Settlement]:
    if not settlements:
        return None
    x, y = grid.xy(pixel)
    xs = np.fromiter((s.x for s in settlements), dtype=np.float64, count=len(settlements))
    ys = np.fromiter((s.y for s in settlements), dtype=np.float64, count=len(settlements))
    d2 = (xs - x) ** 2 + (ys - y) ** 2
    return settlements[int(np.argmin(d2))]


def find_developed_segments(
    grid: CostGrid,
    path: Sequence[int],
    settlements: Sequence[Settlement],
    params: Optional[CostParams] = None,
    min_usage: int = SEGMENT_MIN_USAGE,
    min_length: int = SEGMENT_MIN_LENGTH,
    min_city_distance: float = SEGMENT_MIN_CITY_DISTANCE,
) -> List[RoadSegment]:
    """
    Split a reinforced path into runs of pixels used at least ``min_usage``
    times. Runs longer than ``min_length`` whose ends lie nearest to two
    different settlements more than ``min_city_distance`` apart become
    RoadSegments, scored by their average usage discount.
    """
    params = params or CostParams()
    usage = grid.usage
    segments: List[RoadSegment] = []
    run: List[int] = []

    def close_run():
        if len(run) <= min_length:
            return
        a = nearest_settlement(grid, run[0], settlements)
        b = nearest_settlement(grid, run[-1], settlements)
        if a is None or b is None or a.name == b.name:
            return
        if a.distance_to(b) <= min_city_distance:
            return
        uses = np.minimum(usage[np.asarray(run)], params.usage_cap).astype(np.float64)
        gain = float(np.mean(uses * params.usage_discount_per_use))
        segments.append(RoadSegment(start=a, end=b, pixels=tuple(run), efficiency=gain))

    for pixel in path:
        if usage[pixel] >= min_usage:
            run.append(int(pixel))
        else:
            close_run()
            run = []
    close_run()
    return segments
# endregion
