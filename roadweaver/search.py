# region Imports
from __future__ import annotations
from array import array
from typing import Callable, List, NamedTuple, Optional
import heapq
import math
import time

import structlog

from .config import CostParams, SearchParams
from .costs import EdgeCostFn
from .grid import STEPS_8, straight_line
from .models import CostGrid
# endregion

logger = structlog.get_logger()

NO_PREDECESSOR = 255

ProgressFn = Callable[[List[int]], None]
DiagnosticFn = Callable[[str], None]
CheckpointFn = Callable[[], bool]

# neighbour offsets with their predecessor direction code precomputed:
# code = (dy + 1) * 3 + (dx + 1) for the step back from v to u
_STEPS = tuple((dx, dy, dx != 0 and dy != 0, (1 - dy) * 3 + (1 - dx)) for dx, dy in STEPS_8)


class SearchOutcome(NamedTuple):
    path: Optional[List[int]]
    cost: float
    steps: int
    processed: int
    elapsed: float
    reason: Optional[str] = None  # set when path is None


# region Path Reconstruction
def decode_direction(code: int):
    """Direction code -> (dx, dy) from a pixel to its predecessor."""
    return (code % 3) - 1, (code // 3) - 1


def reconstruct(predecessors: bytearray, start: int, goal: int, width: int) -> List[int]:
    path = [goal]
    current = goal
    while current != start:
        code = predecessors[current]
        if code == NO_PREDECESSOR:
            raise RuntimeError(f"Predecessor chain broken at pixel {current}.")
        dx, dy = decode_direction(code)
        current = current + dy * width + dx
        path.append(current)
    path.reverse()
    return path
# endregion


# region Progress Batching
class ProgressBatcher:
    """
    Collects visited pixels and flushes them in batches whose size grows with
    the number of processed nodes, up to a ceiling.
    """

    def __init__(self, sink: Optional[ProgressFn], params: SearchParams, long_distance: bool = False):
        self.sink = sink
        self.pending: List[int] = []
        self.batches = 0
        if long_distance:
            self.base, self.ceiling = params.base_batch_long, params.max_batch_long
        else:
            self.base, self.ceiling = params.base_batch, params.max_batch
        self.growth_rate = params.growth_rate

    def batch_size(self, processed: int) -> int:
        return min(self.base + int(processed * self.growth_rate), self.ceiling)

    def add(self, i: int, processed: int) -> bool:
        """Queue a pixel; returns True when a batch was flushed."""
        if self.sink is None:
            return False
        self.pending.append(i)
        if len(self.pending) >= self.batch_size(processed):
            self.flush()
            return True
        return False

    def flush(self):
        if self.sink is None or not self.pending:
            return
        batch, self.pending = self.pending, []
        self.batches += 1
        self.sink(batch)
# endregion


# region Dijkstra Search
def max_iterations_for(grid: CostGrid, distance: float, params: SearchParams) -> int:
    multiplier = min(params.max_iteration_multiplier, max(1.0, distance / 1000.0))
    return int(grid.size * multiplier)


def dijkstra(
    grid: CostGrid,
    start: int,
    goal: int,
    edge_cost_fn: EdgeCostFn,
    *,
    cost_params: Optional[CostParams] = None,
    params: Optional[SearchParams] = None,
    on_progress: Optional[ProgressFn] = None,
    on_diagnostic: Optional[DiagnosticFn] = None,
    checkpoint: Optional[CheckpointFn] = None,
    max_iterations: Optional[int] = None,
) -> SearchOutcome:
    """
    Single-source Dijkstra over the 8-connected pixel grid with a binary heap.

    Predecessors are kept as one direction byte per pixel. Newly visited
    pixels are reported to on_progress in growing batches; checkpoint() is
    called every ``yield_every`` processed nodes and after each batch, and
    the search stops as cancelled when it returns False.

    Edges costing at least ``prune_cost_threshold`` are not relaxed when the
    target already has a distance within ``prune_tolerance`` of the new one.
    That bounds exploration of very expensive terrain at the price of exact
    optimality.
    """
    cost_params = cost_params or CostParams()
    params = params or SearchParams()
    t0 = time.perf_counter()

    if start == goal:
        return SearchOutcome([start], 0.0, 0, 0, 0.0)

    width, height = grid.width, grid.height
    n = grid.size
    distance = straight_line(start, goal, width)
    long_distance = distance > params.long_distance
    if max_iterations is None:
        max_iterations = max_iterations_for(grid, distance, params)

    inf = math.inf
    dist = array("d", [inf]) * n
    visited = bytearray(n)
    predecessors = bytearray(b"\xff") * n
    dist[start] = 0.0
    openh = [(0.0, start)]

    threshold = cost_params.prune_cost_threshold
    slack = 1.0 + cost_params.prune_tolerance
    batcher = ProgressBatcher(on_progress, params, long_distance)
    gx, gy = goal % width, goal // width
    best_remaining = distance
    last_progress_check = 0

    steps = 0
    processed = 0
    reason = "queue exhausted"

    while openh:
        du, u = heapq.heappop(openh)
        if visited[u]:
            steps += 1
            continue
        visited[u] = 1

        # expanded nodes, not pops: stale heap entries must not eat the budget
        if processed > max_iterations:
            reason = "iteration limit reached"
            break

        ux, uy = u % width, u // width

        # region Long-distance Progress
        if long_distance and steps - last_progress_check >= params.progress_check_interval:
            remaining = math.hypot(gx - ux, gy - uy)
            if remaining < best_remaining:
                best_remaining = remaining
                if on_diagnostic is not None:
                    pct = (distance - remaining) / distance * 100.0
                    on_diagnostic(f"Progress {pct:.1f}% | {int(remaining)} pixels remaining")
            last_progress_check = steps
        # endregion

        if u == goal:
            batcher.flush()
            path = reconstruct(predecessors, start, goal, width)
            return SearchOutcome(path, du, steps, processed, time.perf_counter() - t0)

        steps += 1
        processed += 1

        # region Cooperative Yield Points
        flushed = batcher.add(u, processed)
        if checkpoint is not None and (flushed or processed % params.yield_every == 0):
            if not checkpoint():
                reason = "cancelled"
                break
        # endregion

        # region Neighbor Loop
        for dx, dy, diagonal, code in _STEPS:
            vx, vy = ux + dx, uy + dy
            if vx < 0 or vx >= width or vy < 0 or vy >= height:
                continue
            v = vy * width + vx
            if visited[v]:
                continue
            c = edge_cost_fn(u, v, diagonal)
            if c is None:
                continue
            alt = du + c
            old = dist[v]
            if threshold is not None and c >= threshold and old != inf and old <= alt * slack:
                continue
            if alt < old:
                dist[v] = alt
                predecessors[v] = code
                heapq.heappush(openh, (alt, v))
        # endregion

    batcher.flush()
    logger.debug("search_ended", reason=reason, steps=steps, processed=processed)
    return SearchOutcome(None, inf, steps, processed, time.perf_counter() - t0, reason)
# endregion
