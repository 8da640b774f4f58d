# tests/test_water.py

import numpy as np
import pytest

from tile_world.heightmap import Heightmap
from tile_world.splatmap import SplatMap
from tile_world import water


def _flat_heightmap(height=5.0):
    heightmap = Heightmap(32, 32.0)
    heightmap.generate_flat(height)
    return heightmap


def test_carve_profile_zones():
    nd = np.array([0.0, 0.3, 0.8, 1.0, 1.2, 1.5])
    target, weight, lowers = water.carve_profile(nd, sea_level=10.0, water_depth=2.0, shore_height=0.3)

    np.testing.assert_allclose(target[:3], [8.0, 8.0, 9.0])
    np.testing.assert_allclose(target[3:], 10.3)
    np.testing.assert_allclose(weight, [1.0, 1.0, 1.0, 1.0, 0.5, 0.0])
    assert lowers.tolist() == [True, True, True, False, False, False]


def test_carving_approaches_the_floor_without_overshooting():
    heightmap = _flat_heightmap(5.0)
    for _ in range(400):
        water.carve_water_basin(heightmap, 16.0, 16.0, 8.0, sea_level=5.0, water_depth=2.0, strength=1.0)

    center = heightmap.get_height(16, 16)
    assert center < 3.5
    assert heightmap.data.min() >= 3.0


def test_carving_raises_the_shore_and_ignores_far_terrain():
    heightmap = _flat_heightmap(5.0)
    for _ in range(50):
        assert water.carve_water_basin(heightmap, 16.0, 16.0, 8.0, sea_level=5.0, water_depth=2.0, strength=1.0)

    # 9 cells out is inside the shore ring (1.0 < 9/8 < 1.4).
    assert heightmap.get_height(25, 16) > 5.0
    assert heightmap.get_height(25, 16) <= 5.3
    # 12 cells out lies beyond 1.4 x radius.
    assert heightmap.get_height(28, 16) == 5.0
    assert heightmap.get_height(0, 0) == 5.0


def test_carving_never_raises_terrain_inside_the_water():
    heightmap = _flat_heightmap(1.0)
    # Terrain already below the floor is left alone.
    assert not water.carve_water_basin(heightmap, 16.0, 16.0, 4.0, sea_level=10.0, water_depth=2.0, strength=1.0,
                                       shore_height=-20.0)
    np.testing.assert_array_equal(heightmap.data, 1.0)


def test_derive_sea_level_uses_ground_height(ramp_raster):
    assert water.derive_sea_level(ramp_raster.heightmap, 2.5, 4.0) == pytest.approx(2.9)


def test_shore_sand_ring():
    splatmap = SplatMap(33)
    assert water.paint_shore_sand(splatmap, 32.0, 16.0, 16.0, 8.0, 1.0)
    assert splatmap.get_weights(16, 16) == (1.0, 0.0, 0.0, 0.0)
    # Ring spans 7.2 .. 12 cells; its middle is ~9.6 cells out.
    assert splatmap.get_weights(26, 16)[3] > 0.0


def test_first_water_paint_derives_sea_level(small_store):
    store = small_store
    store.active.heightmap.generate_flat(1.5)
    assert not store.active.has_water()

    touched = store.paint("water", 8.0, 8.0, {'size': 3.0, 'strength': 1.0, 'falloff': 0.5})

    assert touched == {(0, 0)}
    assert store.active.sea_level == pytest.approx(1.5)
    flags = store.get_dirty(0, 0)
    assert flags.water and flags.foliage
    assert not flags.splatmap

    # Later strokes keep the existing water plane.
    store.active.heightmap.generate_flat(4.0)
    store.paint("water", 8.0, 8.0, {'size': 3.0, 'strength': 1.0, 'falloff': 0.5})
    assert store.active.sea_level == pytest.approx(1.5)


def test_store_carve_skips_tiles_without_water(small_store):
    store = small_store
    assert store.carve_water(8.0, 8.0, {'size': 3.0, 'strength': 1.0}) == set()

    store.paint("water", 8.0, 8.0, {'size': 3.0, 'strength': 1.0, 'falloff': 0.5})
    store.clear_dirty(0, 0)
    touched = store.carve_water(8.0, 8.0, {'size': 3.0, 'strength': 1.0})

    assert touched == {(0, 0)}
    assert store.active.heightmap.get_height(8, 8) < 0.0
    assert store.get_dirty(0, 0).heightmap
