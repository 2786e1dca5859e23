# engine.py
# Owns the cost grid, the settlements and the outgoing event channel. All
# grid mutation goes through one Engine, on one thread.

# region Imports
from __future__ import annotations
from typing import Iterable, Optional, Sequence, Tuple, Union
import time

import numpy as np
import structlog

from .config import CostParams, SearchParams
from .costs import edge_cost_factory
from .errors import ConfigurationError
from .events import (
    Diagnostic,
    EventChannel,
    NoPathFoundEvent,
    PathFound,
    Ready,
    RoadSegmentEvent,
    SearchProgress,
    SearchStarted,
)
from .grid import build_cost_grid, geometric_length, straight_line
from .models import CostGrid, NoPathFound, PathResult, Settlement
from .proximity import build_proximity_field, within_radius
from .roads import find_developed_segments, reinforce
from .search import CheckpointFn, dijkstra
# endregion

logger = structlog.get_logger()

SearchResult = Union[PathResult, NoPathFound]


def _validate_settlements(settlements: Iterable[Settlement], width: int, height: int) -> Tuple[Settlement, ...]:
    seen = set()
    out = []
    for s in settlements:
        if s.name in seen:
            raise ConfigurationError(f"Duplicate settlement name: {s.name!r}")
        seen.add(s.name)
        if not s.population > 0:
            raise ConfigurationError(f"Settlement {s.name!r} has non-positive population {s.population}.")
        x, y = s.pixel
        if not (0 <= x < width and 0 <= y < height):
            raise ConfigurationError(f"Settlement {s.name!r} at ({x}, {y}) lies outside {width}x{height}.")
        out.append(s)
    return tuple(out)


class Engine:
    def __init__(
        self,
        channel: Optional[EventChannel] = None,
        cost_params: Optional[CostParams] = None,
        search_params: Optional[SearchParams] = None,
    ):
        self.channel = channel or EventChannel()
        self.cost_params = cost_params or CostParams()
        self.search_params = search_params or SearchParams()
        self.grid: Optional[CostGrid] = None
        self.settlements: Tuple[Settlement, ...] = ()
        self._edge_cost = None

    @property
    def loaded(self) -> bool:
        return self.grid is not None

    # region Diagnostics
    def diagnostic(self, message: str, **context) -> None:
        logger.info("diagnostic", message=message, **context)
        self.channel.emit(Diagnostic(message=message))
    # endregion

    # region Loading
    def load(
        self,
        pixels,
        width: int,
        height: int,
        settlements: Sequence[Settlement],
        blocked: Optional[np.ndarray] = None,
        cost_params: Optional[CostParams] = None,
    ) -> CostGrid:
        """
        Build every field from a raster and a settlement list, then swap them
        in. Nothing is replaced if validation fails. Emits ``ready``.
        """
        params = cost_params or self.cost_params
        checked = _validate_settlements(settlements, width, height)

        grid = build_cost_grid(pixels, width, height, blocked=blocked)
        grid.proximity = build_proximity_field(
            width, height, (s.pixel for s in checked), radius=params.city_radius
        )

        self.cost_params = params
        self.grid = grid
        self.settlements = checked
        self._edge_cost = edge_cost_factory(grid, params)

        water = float(np.mean(grid.elevation < 0))
        near = float(np.mean(within_radius(grid.proximity, params.city_radius)))
        logger.info("grid_loaded", width=width, height=height, settlements=len(checked),
                    water_fraction=round(water, 4), near_city_fraction=round(near, 4))
        if checked:
            pops = [s.population for s in checked]
            self.diagnostic(f"Population range: {min(pops)} to {max(pops)}")
        self.channel.emit(Ready(settlements=checked, width=grid.width, height=grid.height))
        return grid

    def reset(self) -> None:
        self.grid = None
        self.settlements = ()
        self._edge_cost = None
        self.channel.reset()
    # endregion

    def settlement(self, name: str) -> Settlement:
        for s in self.settlements:
            if s.name == name:
                return s
        raise KeyError(name)

    # region Search
    def search(
        self,
        start: Settlement,
        end: Settlement,
        checkpoint: Optional[CheckpointFn] = None,
        max_iterations: Optional[int] = None,
    ) -> SearchResult:
        if self.grid is None:
            raise ConfigurationError("No grid loaded.")
        grid = self.grid
        s_idx = grid.index(*start.pixel)
        e_idx = grid.index(*end.pixel)
        straight = straight_line(s_idx, e_idx, grid.width)

        self.channel.emit(SearchStarted(start=start.name, end=end.name))
        self.diagnostic(
            f"Starting pathfinding: {start.name} -> {end.name} | Distance: {int(straight)} pixels"
            f" | Map: {grid.width}x{grid.height}",
        )

        def on_progress(batch):
            self.channel.emit(SearchProgress(pixels=tuple(batch)))

        outcome = dijkstra(
            grid, s_idx, e_idx, self._edge_cost,
            cost_params=self.cost_params,
            params=self.search_params,
            on_progress=on_progress,
            on_diagnostic=self.diagnostic,
            checkpoint=checkpoint,
            max_iterations=max_iterations,
        )

        if outcome.path is None:
            self.diagnostic(
                f"No path found! {start.name} -> {end.name} | Reason: {outcome.reason}"
                f" | Steps: {outcome.steps:,} | Processed: {outcome.processed:,}"
                f" | Time: {outcome.elapsed * 1000:.2f}ms",
            )
            return NoPathFound(start=start, end=end, reason=outcome.reason,
                               steps=outcome.steps, processed=outcome.processed,
                               elapsed=outcome.elapsed)

        length = geometric_length(outcome.path, grid.width)
        efficiency = (length / straight) if straight > 0 else 1.0
        self.diagnostic(
            f"Path found! | Length: {length:.1f} pixels | Steps: {outcome.steps}"
            f" | Processed: {outcome.processed} | Time: {outcome.elapsed * 1000:.2f}ms"
            f" | Efficiency: {efficiency:.2f}x straight line",
        )
        return PathResult(
            path=tuple(outcome.path), start=start, end=end, efficiency=efficiency,
            length=length, cost=outcome.cost, steps=outcome.steps,
            processed=outcome.processed, elapsed=outcome.elapsed,
        )
    # endregion

    # region Feedback and Publishing
    def reinforce(self, result: PathResult) -> Tuple[int, ...]:
        usage = reinforce(self.grid, result.path)
        return tuple(int(u) for u in usage)

    def publish(self, result: SearchResult, usage: Tuple[int, ...] = ()) -> None:
        if isinstance(result, NoPathFound):
            self.channel.emit(NoPathFoundEvent(start=result.start, end=result.end, reason=result.reason))
            return
        self.channel.emit(PathFound(path=result.path, start=result.start, end=result.end,
                                    efficiency=result.efficiency, usage=usage))
        for seg in find_developed_segments(self.grid, result.path, self.settlements, self.cost_params):
            self.channel.emit(RoadSegmentEvent(start=seg.start, end=seg.end,
                                               pixels=seg.pixels, efficiency=seg.efficiency))

    def run_once(self, start: Settlement, end: Settlement,
                 checkpoint: Optional[CheckpointFn] = None) -> SearchResult:
        """Search, reinforce and publish one route."""
        t0 = time.perf_counter()
        result = self.search(start, end, checkpoint=checkpoint)
        usage: Tuple[int, ...] = ()
        if isinstance(result, PathResult):
            usage = self.reinforce(result)
        self.publish(result, usage)
        logger.info("route_done", start=start.name, end=end.name,
                    found=isinstance(result, PathResult), seconds=round(time.perf_counter() - t0, 3))
        return result
    # endregion
