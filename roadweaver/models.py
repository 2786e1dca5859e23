# models.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Tuple
import math
import numpy as np


@dataclass
class CostGrid:
    """Per-pixel fields, flat arrays of length width*height indexed y*width + x.

    elevation: float32, brightness of land pixels or WATER_ELEVATION
    proximity: float32, steps to the nearest settlement or FAR_FROM_CITY
    usage:     uint16, completed paths through each pixel (the only mutable field)
    blocked:   bool, True = impassable
    """
    width: int
    height: int
    elevation: np.ndarray
    proximity: np.ndarray
    usage: np.ndarray
    blocked: np.ndarray

    @property
    def size(self) -> int:
        return self.width * self.height

    def index(self, x: int, y: int) -> int:
        return y * self.width + x

    def xy(self, i: int) -> Tuple[int, int]:
        return (i % self.width, i // self.width)


@dataclass(frozen=True)
class Settlement:
    name: str
    population: float
    x: float
    y: float
    lon: Optional[float] = None
    lat: Optional[float] = None

    @property
    def pixel(self) -> Tuple[int, int]:
        # round half up, matching how the raster was sampled
        return (int(math.floor(self.x + 0.5)), int(math.floor(self.y + 0.5)))

    def distance_to(self, other: "Settlement") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "population": self.population,
            "x": self.x,
            "y": self.y,
            "lon": self.lon,
            "lat": self.lat,
        }


@dataclass(frozen=True)
class PathResult:
    path: Tuple[int, ...]
    start: Settlement
    end: Settlement
    efficiency: float        # geometric length / straight-line distance
    length: float            # geometric length in pixels
    cost: float
    steps: int = 0
    processed: int = 0
    elapsed: float = 0.0


@dataclass(frozen=True)
class NoPathFound:
    start: Settlement
    end: Settlement
    reason: str
    steps: int = 0
    processed: int = 0
    elapsed: float = 0.0


@dataclass(frozen=True)
class RoadSegment:
    """A run of a path whose pixels have been reinforced repeatedly."""
    start: Settlement
    end: Settlement
    pixels: Tuple[int, ...] = field(default_factory=tuple)
    efficiency: float = 0.0  # average usage discount along the run
