# region Imports
from __future__ import annotations
from enum import Enum
from typing import Optional, Sequence
import math
import random
import threading
import time

import structlog

from .config import DriverParams
from .engine import Engine, SearchResult
from .errors import ConfigurationError
from .models import NoPathFound, Settlement
# endregion

logger = structlog.get_logger()


class DriverState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    SEARCHING = "searching"
    EMITTING = "emitting"
    AWAITING_CONSUMER = "awaitingConsumer"
    STOPPED = "stopped"


# region Endpoint Selection
def weighted_choice(items: Sequence, weights: Sequence[float], rng: random.Random):
    """One item drawn proportionally to weight; None if nothing has weight."""
    total = sum(w for w in weights if w > 0 and math.isfinite(w))
    if not items or total <= 0:
        return None
    clean = [w if (w > 0 and math.isfinite(w)) else 0.0 for w in weights]
    return rng.choices(items, weights=clean, k=1)[0]


def pick_start(settlements: Sequence[Settlement], rng: random.Random) -> Optional[Settlement]:
    return weighted_choice(settlements, [s.population for s in settlements], rng)


def pick_end(settlements: Sequence[Settlement], start: Settlement, rng: random.Random) -> Optional[Settlement]:
    """Favour populous targets, softly penalising distance: pop / sqrt(d + 1)."""
    candidates = [s for s in settlements if s.name != start.name]
    weights = [s.population / math.sqrt(start.distance_to(s) + 1.0) for s in candidates]
    return weighted_choice(candidates, weights, rng)
# endregion


# region Simulation Driver
class Simulation:
    """
    Idle -> Selecting -> Searching -> Emitting -> AwaitingConsumer -> Selecting ...

    run() loops until stop(). After each emitted path it blocks on the
    channel's advance signal (the first iteration does not), and keeps at
    least ``min_iteration_delay`` seconds between iterations.
    """

    def __init__(self, engine: Engine, params: Optional[DriverParams] = None,
                 rng: Optional[random.Random] = None):
        self.engine = engine
        self.params = params or DriverParams()
        self.rng = rng or random.Random()
        self.state = DriverState.IDLE
        self.iterations = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_iteration_end: Optional[float] = None

    # region Control
    def start(self) -> None:
        if not self.engine.loaded:
            raise ConfigurationError("Cannot start: no grid loaded.")
        if not self.engine.settlements:
            raise ConfigurationError("Cannot start: settlement set is empty.")
        self._stop.clear()
        self.state = DriverState.SELECTING
        self.engine.diagnostic("Starting simulation loop.")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        if self._thread is not None and self._thread.is_alive():
            # still inside a search; keep the handle so running stays True
            logger.warning("driver_stop_timeout", timeout=timeout)
            return
        self._thread = None
        self.state = DriverState.STOPPED

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start_in_thread(self) -> threading.Thread:
        self.start()
        self._thread = threading.Thread(target=self.run, name="roadweaver-driver", daemon=True)
        self._thread.start()
        return self._thread

    def checkpoint(self) -> bool:
        time.sleep(0)  # let other threads in between progress batches
        return not self._stop.is_set()
    # endregion

    # region Iteration
    def _wait_for_consumer(self) -> bool:
        while not self._stop.is_set():
            if self.engine.channel.wait_for_advance(timeout=0.1):
                return True
        return False

    def _pace(self) -> None:
        if self._last_iteration_end is None:
            return
        remaining = self.params.min_iteration_delay - (time.monotonic() - self._last_iteration_end)
        if remaining > 0:
            self._stop.wait(remaining)

    def step(self) -> Optional[SearchResult]:
        """Run one Selecting -> Searching -> Emitting pass. None on a no-op."""
        self.state = DriverState.SELECTING
        settlements = self.engine.settlements
        start = pick_start(settlements, self.rng)
        end = pick_end(settlements, start, self.rng) if start is not None else None
        if start is None or end is None:
            logger.info("selection_empty", settlements=len(settlements))
            self._stop.wait(self.params.idle_delay)
            return None

        self.state = DriverState.SEARCHING
        self.engine.diagnostic("=" * 80)
        result = self.engine.search(start, end, checkpoint=self.checkpoint)

        self.state = DriverState.EMITTING
        usage = ()
        if not isinstance(result, NoPathFound):
            usage = self.engine.reinforce(result)
        self.engine.publish(result, usage)
        self.iterations += 1

        if isinstance(result, NoPathFound):
            logger.warning("no_path", start=start.name, end=end.name, reason=result.reason)
            self._stop.wait(self.params.no_path_retry_delay)
            self.state = DriverState.SELECTING
        else:
            self.state = DriverState.AWAITING_CONSUMER
        return result

    def run(self) -> None:
        if self.state in (DriverState.IDLE, DriverState.STOPPED):
            self.start()
        try:
            while not self._stop.is_set():
                if self.state == DriverState.AWAITING_CONSUMER and not self._wait_for_consumer():
                    break
                self._pace()
                if self._stop.is_set():
                    break
                self.step()
                self._last_iteration_end = time.monotonic()
        except Exception:
            logger.exception("driver_crashed")
            raise
        finally:
            self.state = DriverState.STOPPED
    # endregion
# endregion
