# region Imports
from __future__ import annotations
from typing import Iterator, Optional, Sequence, Tuple
import math
import numpy as np

from .config import WATER_TOLERANCE, WATER_ELEVATION, FAR_FROM_CITY
from .errors import ConfigurationError
from .models import CostGrid
# endregion

SQRT2 = math.sqrt(2.0)

# (dx, dy) for the eight neighbours, row by row
STEPS_8 = tuple((dx, dy) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dx, dy) != (0, 0))


# region Neighbor Generation
def neighbors_8(i: int, width: int, height: int) -> Iterator[Tuple[int, int, int, bool]]:
    """Yield (index, dx, dy, is_diagonal) for in-bounds 8-connected neighbours of i."""
    x = i % width
    y = i // width
    for dx, dy in STEPS_8:
        nx, ny = x + dx, y + dy
        if 0 <= nx < width and 0 <= ny < height:
            yield ny * width + nx, dx, dy, (dx != 0 and dy != 0)
# endregion


# region Index Helpers
def idx_to_xy(i: int, width: int) -> Tuple[int, int]:
    return (i % width, i // width)


def are_adjacent(a: int, b: int, width: int) -> bool:
    ax, ay = idx_to_xy(a, width)
    bx, by = idx_to_xy(b, width)
    return a != b and abs(ax - bx) <= 1 and abs(ay - by) <= 1


def geometric_length(path: Sequence[int], width: int) -> float:
    """Sum of step lengths: 1 for straight moves, sqrt(2) for diagonals."""
    total = 0.0
    for u, v in zip(path[:-1], path[1:]):
        ux, uy = idx_to_xy(u, width)
        vx, vy = idx_to_xy(v, width)
        total += SQRT2 if (abs(ux - vx) == 1 and abs(uy - vy) == 1) else 1.0
    return total


def straight_line(a: int, b: int, width: int) -> float:
    ax, ay = idx_to_xy(a, width)
    bx, by = idx_to_xy(b, width)
    return math.hypot(bx - ax, by - ay)
# endregion


# region Cost Grid Builder
def _as_pixel_array(pixels, width: int, height: int) -> np.ndarray:
    if width <= 0 or height <= 0:
        raise ConfigurationError(f"Raster dimensions must be positive (got {width}x{height}).")

    arr = np.asarray(pixels)
    if arr.ndim == 3:
        if arr.shape[:2] != (height, width) or arr.shape[2] not in (3, 4):
            raise ConfigurationError(
                f"Raster shape {arr.shape} does not match {height}x{width} RGB(A)."
            )
        return arr[:, :, :3].reshape(-1, 3)

    flat = arr.reshape(-1)
    n = width * height
    if flat.size == n * 3:
        return flat.reshape(n, 3)
    if flat.size == n * 4:
        return flat.reshape(n, 4)[:, :3]
    raise ConfigurationError(
        f"Pixel buffer length {flat.size} is inconsistent with {width}x{height} RGB(A)."
    )


def classify_elevation(pixels, width: int, height: int, tolerance: int = WATER_TOLERANCE) -> np.ndarray:
    """Brightness for grey (land) pixels, WATER_ELEVATION for coloured ones."""
    rgb = _as_pixel_array(pixels, width, height).astype(np.int16)
    r, g, b = rgb[:, 0], rgb[:, 1], rgb[:, 2]
    is_grey = (np.abs(r - g) < tolerance) & (np.abs(g - b) < tolerance)
    return np.where(is_grey, r, WATER_ELEVATION).astype(np.float32)


def build_cost_grid(
    pixels,
    width: int,
    height: int,
    blocked: Optional[np.ndarray] = None,
    tolerance: int = WATER_TOLERANCE,
) -> CostGrid:
    """
    Build the elevation field from an RGB(A) raster and zeroed usage.
    The proximity field starts all-far; see proximity.build_proximity_field.

    pixels: (H, W, 3|4) array or a flat row-major buffer
    blocked: optional (H, W) or flat bool mask of impassable pixels
    """
    elevation = classify_elevation(pixels, width, height, tolerance)
    n = width * height

    if blocked is None:
        mask = np.zeros(n, dtype=bool)
    else:
        mask = np.asarray(blocked, dtype=bool).reshape(-1)
        if mask.size != n:
            raise ConfigurationError(f"Blocked mask has {mask.size} cells, expected {n}.")
        mask = mask.copy()

    elevation.setflags(write=False)
    return CostGrid(
        width=int(width),
        height=int(height),
        elevation=elevation,
        proximity=np.full(n, FAR_FROM_CITY, dtype=np.float32),
        usage=np.zeros(n, dtype=np.uint16),
        blocked=mask,
    )
# endregion
