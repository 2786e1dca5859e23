# events.py
# Engine -> consumer messages and the consumer -> engine "advance" signal.

# region Imports
from __future__ import annotations
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union
import queue
import threading

from .models import Settlement
# endregion


class EventKind(str, Enum):
    READY = "ready"
    SEARCH_STARTED = "searchStarted"
    SEARCH_PROGRESS = "searchProgress"
    PATH_FOUND = "pathFound"
    NO_PATH_FOUND = "noPathFound"
    DIAGNOSTIC = "diagnostic"
    ROAD_SEGMENT = "roadSegment"


# region Event Variants
@dataclass(frozen=True)
class _Event:
    kind: ClassVar[EventKind]

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "payload": asdict(self)}


@dataclass(frozen=True)
class Ready(_Event):
    kind: ClassVar[EventKind] = EventKind.READY
    settlements: Tuple[Settlement, ...]
    width: int = 0
    height: int = 0


@dataclass(frozen=True)
class SearchStarted(_Event):
    kind: ClassVar[EventKind] = EventKind.SEARCH_STARTED
    start: str
    end: str


@dataclass(frozen=True)
class SearchProgress(_Event):
    kind: ClassVar[EventKind] = EventKind.SEARCH_PROGRESS
    pixels: Tuple[int, ...]


@dataclass(frozen=True)
class PathFound(_Event):
    kind: ClassVar[EventKind] = EventKind.PATH_FOUND
    path: Tuple[int, ...]
    start: Settlement
    end: Settlement
    efficiency: float
    usage: Tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class NoPathFoundEvent(_Event):
    kind: ClassVar[EventKind] = EventKind.NO_PATH_FOUND
    start: Settlement
    end: Settlement
    reason: str = ""


@dataclass(frozen=True)
class Diagnostic(_Event):
    kind: ClassVar[EventKind] = EventKind.DIAGNOSTIC
    message: str


@dataclass(frozen=True)
class RoadSegmentEvent(_Event):
    kind: ClassVar[EventKind] = EventKind.ROAD_SEGMENT
    start: Settlement
    end: Settlement
    pixels: Tuple[int, ...]
    efficiency: float


Event = Union[Ready, SearchStarted, SearchProgress, PathFound,
              NoPathFoundEvent, Diagnostic, RoadSegmentEvent]
# endregion


# region Channel
class EventChannel:
    """
    Unbounded outgoing queue (emitting never blocks the engine) plus a
    one-shot "advance" flag the consumer sets when it is ready for the next
    path.
    """

    def __init__(self):
        self._events: "queue.Queue[Event]" = queue.Queue()
        self._advance = threading.Event()

    # engine side
    def emit(self, event: Event) -> None:
        self._events.put(event)

    def wait_for_advance(self, timeout: Optional[float] = None) -> bool:
        """Block until advance() was called; consumes the signal."""
        if not self._advance.wait(timeout):
            return False
        self._advance.clear()
        return True

    # consumer side
    def advance(self) -> None:
        self._advance.set()

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._events.get(timeout=timeout) if timeout else self._events.get_nowait()
        except queue.Empty:
            return None

    def drain(self, max_events: int = 1000, timeout: Optional[float] = None) -> List[Event]:
        """Up to max_events queued events; waits up to timeout for the first."""
        out: List[Event] = []
        first = self.get(timeout)
        if first is None:
            return out
        out.append(first)
        while len(out) < max_events:
            ev = self.get()
            if ev is None:
                break
            out.append(ev)
        return out

    def pending(self) -> int:
        return self._events.qsize()

    def reset(self) -> None:
        self._advance.clear()
        while self.get() is not None:
            pass
# endregion
