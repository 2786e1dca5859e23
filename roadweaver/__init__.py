"""Adaptive cost-grid road growth between settlements on a terrain raster."""

from .config import CostParams, DriverParams, SearchParams
from .driver import DriverState, Simulation
from .engine import Engine
from .errors import ConfigurationError, LoadError, RoadweaverError
from .events import EventChannel, EventKind
from .models import CostGrid, NoPathFound, PathResult, RoadSegment, Settlement

__version__ = "0.1.0"
