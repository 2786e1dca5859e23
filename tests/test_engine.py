"""
Tests for the Engine: loading, searching, reinforcement and event output.
"""

import math

import numpy as np
import pytest

from roadweaver.config import USAGE_MAX
from roadweaver.engine import Engine
from roadweaver.errors import ConfigurationError
from roadweaver.events import EventKind
from roadweaver.grid import are_adjacent
from roadweaver.models import NoPathFound, PathResult
from roadweaver.roads import find_developed_segments, reinforce
from tests.helpers import grey_raster, raster_from_elevation, town


def _kinds(engine):
    return [ev.kind for ev in engine.channel.drain(10000)]


class TestLoad:
    def test_ready_event_carries_settlements(self):
        engine = Engine()
        engine.load(grey_raster(4, 4), 4, 4, [town("A", 0, 0), town("B", 3, 3)])
        events = engine.channel.drain(100)
        ready = [ev for ev in events if ev.kind == EventKind.READY]
        assert len(ready) == 1
        assert [s.name for s in ready[0].settlements] == ["A", "B"]
        assert (ready[0].width, ready[0].height) == (4, 4)

    def test_proximity_built_from_settlements(self, flat_engine):
        assert flat_engine.grid.proximity[0] == 0.0
        assert flat_engine.grid.proximity[15] == 0.0
        assert flat_engine.grid.proximity[1] == pytest.approx(1.0)

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError):
            Engine().load(grey_raster(4, 4), 4, 4, [town("A", 0, 0), town("A", 3, 3)])

    def test_out_of_bounds_settlement_rejected(self):
        with pytest.raises(ConfigurationError):
            Engine().load(grey_raster(4, 4), 4, 4, [town("A", 0, 0), town("Far", 9, 9)])

    def test_non_positive_population_rejected(self):
        with pytest.raises(ConfigurationError):
            Engine().load(grey_raster(4, 4), 4, 4, [town("A", 0, 0, population=0)])

    def test_failed_load_keeps_previous_region(self, flat_engine):
        grid = flat_engine.grid
        with pytest.raises(ConfigurationError):
            flat_engine.load(np.zeros(5, dtype=np.uint8), 4, 4, [town("C", 1, 1)])
        assert flat_engine.grid is grid
        assert [s.name for s in flat_engine.settlements] == ["A", "B"]

    def test_search_requires_grid(self):
        with pytest.raises(ConfigurationError):
            Engine().search(town("A", 0, 0), town("B", 1, 1))

    def test_reset_clears_state(self, flat_engine):
        flat_engine.reset()
        assert not flat_engine.loaded
        assert flat_engine.settlements == ()
        assert flat_engine.channel.pending() == 0


class TestSearch:
    def test_flat_corner_to_corner(self, flat_engine):
        result = flat_engine.search(flat_engine.settlement("A"), flat_engine.settlement("B"))
        assert isinstance(result, PathResult)
        assert result.path == (0, 5, 10, 15)
        assert result.efficiency == pytest.approx(1.0)
        assert result.length == pytest.approx(3 * math.sqrt(2))

    def test_endpoints_match_settlement_pixels(self):
        engine = Engine()
        rng = np.random.default_rng(5)
        elev = rng.integers(95, 105, size=(15, 15))
        a, b = town("A", 1.2, 2.6), town("B", 12.5, 11.4)
        engine.load(raster_from_elevation(elev), 15, 15, [a, b])
        result = engine.search(a, b)
        assert result.path[0] == engine.grid.index(*a.pixel)
        assert result.path[-1] == engine.grid.index(*b.pixel)
        assert all(are_adjacent(u, v, 15) for u, v in zip(result.path, result.path[1:]))

    def test_walled_off_target_is_not_an_error(self):
        blocked = np.zeros((5, 5), dtype=bool)
        blocked[3, 3] = blocked[3, 4] = blocked[4, 3] = True
        engine = Engine()
        engine.load(grey_raster(5, 5), 5, 5, [town("A", 0, 0), town("B", 4, 4)], blocked=blocked)
        result = engine.search(engine.settlement("A"), engine.settlement("B"))
        assert isinstance(result, NoPathFound)
        assert result.reason == "queue exhausted"

    def test_search_emits_start_and_progress(self, flat_engine):
        flat_engine.channel.reset()
        flat_engine.search(flat_engine.settlement("A"), flat_engine.settlement("B"))
        kinds = _kinds(flat_engine)
        assert kinds[0] == EventKind.SEARCH_STARTED
        assert EventKind.SEARCH_PROGRESS in kinds
        assert EventKind.PATH_FOUND not in kinds


class TestReinforcement:
    def test_reinforce_counts_each_pixel_once(self, flat_engine):
        usage = reinforce(flat_engine.grid, [0, 5, 10, 15])
        assert list(usage) == [1, 1, 1, 1]
        assert flat_engine.grid.usage.sum() == 4

    def test_usage_saturates(self, flat_engine):
        flat_engine.grid.usage[5] = USAGE_MAX
        reinforce(flat_engine.grid, [0, 5])
        assert flat_engine.grid.usage[5] == USAGE_MAX
        assert flat_engine.grid.usage[0] == 1

    def test_run_once_publishes_path_with_usage(self, flat_engine):
        flat_engine.channel.reset()
        flat_engine.run_once(flat_engine.settlement("A"), flat_engine.settlement("B"))
        found = [ev for ev in flat_engine.channel.drain(1000) if ev.kind == EventKind.PATH_FOUND]
        assert len(found) == 1
        assert found[0].path == (0, 5, 10, 15)
        assert found[0].usage == (1, 1, 1, 1)

    def test_no_path_published(self):
        blocked = np.zeros((5, 5), dtype=bool)
        blocked[3, 3] = blocked[3, 4] = blocked[4, 3] = True
        engine = Engine()
        engine.load(grey_raster(5, 5), 5, 5, [town("A", 0, 0), town("B", 4, 4)], blocked=blocked)
        engine.channel.reset()
        engine.run_once(engine.settlement("A"), engine.settlement("B"))
        assert EventKind.NO_PATH_FOUND in _kinds(engine)
        assert not engine.grid.usage.any()

    def test_repeated_routes_never_lose_efficiency(self):
        y, x = np.mgrid[0:15, 0:15]
        elev = 100 + (x * y) % 7
        engine = Engine()
        a, b = town("A", 1, 1), town("B", 13, 12)
        engine.load(raster_from_elevation(elev), 15, 15, [a, b])
        ratios = [engine.run_once(a, b).efficiency for _ in range(6)]
        for before, after in zip(ratios, ratios[1:]):
            assert after <= before + 1e-9

    def test_reinforced_corridor_is_still_found(self, flat_engine):
        a, b = flat_engine.settlement("A"), flat_engine.settlement("B")
        results = [flat_engine.run_once(a, b) for _ in range(13)]
        assert all(isinstance(r, PathResult) for r in results)
        assert flat_engine.grid.usage[0] == 13

    def test_corridor_reaches_discount_cap_after_twelve_runs(self, flat_engine):
        a, b = flat_engine.settlement("A"), flat_engine.settlement("B")
        for _ in range(12):
            result = flat_engine.run_once(a, b)
        assert result.path == (0, 5, 10, 15)
        assert flat_engine.grid.usage[5] == 12
        cost_at_cap = flat_engine._edge_cost(0, 5, True)
        flat_engine.run_once(a, b)
        assert flat_engine.grid.usage[5] == 13
        assert flat_engine._edge_cost(0, 5, True) == cost_at_cap


class TestSegments:
    def _corridor(self):
        engine = Engine()
        engine.load(grey_raster(30, 3), 30, 3, [town("West", 0, 1), town("East", 29, 1)])
        path = [1 * 30 + x for x in range(30)]
        return engine, path

    def test_developed_run_between_two_towns(self):
        engine, path = self._corridor()
        engine.grid.usage[path] = 3
        segments = find_developed_segments(engine.grid, path, engine.settlements)
        assert len(segments) == 1
        seg = segments[0]
        assert {seg.start.name, seg.end.name} == {"West", "East"}
        assert len(seg.pixels) == 30
        assert seg.efficiency == pytest.approx(0.075)

    def test_short_runs_ignored(self):
        engine, path = self._corridor()
        engine.grid.usage[path[:20]] = 5
        assert find_developed_segments(engine.grid, path, engine.settlements) == []

    def test_run_near_one_town_ignored(self):
        engine, path = self._corridor()
        engine.grid.usage[path[:25]] = 5
        # both ends of the run are closest to West
        segments = find_developed_segments(engine.grid, path[:12] + path[:13][::-1], engine.settlements)
        assert segments == []

    def test_segment_events_emitted_after_reinforcement(self):
        engine, path = self._corridor()
        engine.grid.usage[path] = 2
        engine.channel.reset()
        engine.run_once(engine.settlement("West"), engine.settlement("East"))
        assert EventKind.ROAD_SEGMENT in _kinds(engine)
