# tests/conftest.py

import logging

import numpy as np
import pytest

from tile_world.tiles import TileRaster, TileStore

SMALL_RESOLUTION = 16
SMALL_SIZE = 16.0


@pytest.fixture
def logger():
    """A logger that records but does not print."""
    test_logger = logging.getLogger("tile_world.tests")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture
def small_store(logger):
    """A store whose active tile is 16 cells (17 vertices) over 16 units."""
    store = TileStore({'tile_resolution': SMALL_RESOLUTION, 'tile_size': SMALL_SIZE}, logger)
    store.create_active_tile()
    return store


@pytest.fixture
def ramp_raster():
    """A tile whose height rises along X and, more slowly, along Z."""
    raster = TileRaster.blank(SMALL_RESOLUTION, SMALL_SIZE)
    res = raster.resolution
    xs = np.arange(res, dtype=np.float32)
    raster.heightmap.data[:] = xs[np.newaxis, :] + 0.1 * xs[:, np.newaxis]
    raster.heightmap.recalculate_min_max()
    return raster
