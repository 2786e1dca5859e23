"""Builders for tiny synthetic rasters and settlements."""

import numpy as np

from roadweaver.models import Settlement

WATER_RGB = (30, 60, 200)


def grey_raster(width: int, height: int, value: int = 100) -> np.ndarray:
    """(H, W, 3) flat grey terrain."""
    return np.full((height, width, 3), value, dtype=np.uint8)


def raster_from_elevation(elevation) -> np.ndarray:
    """Grey raster whose brightness is the given (H, W) elevation."""
    elev = np.asarray(elevation, dtype=np.uint8)
    return np.repeat(elev[:, :, np.newaxis], 3, axis=2)


def town(name: str, x: float, y: float, population: float = 1000.0) -> Settlement:
    return Settlement(name=name, population=population, x=x, y=y)
