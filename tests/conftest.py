"""
Shared test fixtures.
"""

import pytest

from roadweaver.config import DriverParams
from roadweaver.engine import Engine
from tests.helpers import grey_raster, town


@pytest.fixture
def flat_engine():
    """4x4 flat dry grid with settlements in opposite corners."""
    engine = Engine()
    engine.load(grey_raster(4, 4), 4, 4, [town("A", 0, 0), town("B", 3, 3)])
    return engine


@pytest.fixture
def fast_driver_params():
    return DriverParams(min_iteration_delay=0.0, no_path_retry_delay=0.0, idle_delay=0.0)
