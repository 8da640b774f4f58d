# tests/test_heightmap.py

import numpy as np
import pytest

from tile_world.heightmap import Heightmap, calculate_falloff


@pytest.mark.parametrize("falloff", [0.0, 0.25, 0.5, 0.75, 1.0])
def test_falloff_is_non_increasing_and_zero_at_radius(falloff):
    distances = np.linspace(0.0, 1.0, 101)
    values = calculate_falloff(distances, falloff)
    assert np.all(np.diff(values) <= 1e-12)
    assert values[0] == pytest.approx(1.0)
    assert values[-1] == 0.0
    assert calculate_falloff(1.5, falloff) == 0.0


def test_raise_brush_scenario():
    heightmap = Heightmap(512, 64.0)
    settings = {'size': 5.0, 'strength': 1.0, 'falloff': 0.5}

    assert heightmap.apply_brush(32.0, 32.0, "raise", settings, 1.0)

    center = 256  # 32 units / 0.125 units per cell
    radius_cells = 40
    assert heightmap.data[center, center] == pytest.approx(10.0)
    assert heightmap.data[center, center + radius_cells] == 0.0
    assert heightmap.data[center + radius_cells, center] == 0.0
    assert heightmap.data[center, center + radius_cells + 5] == 0.0
    assert heightmap.max_height == pytest.approx(10.0)


def test_lower_mirrors_raise():
    heightmap = Heightmap(32, 32.0)
    settings = {'size': 4.0, 'strength': 0.5, 'falloff': 0.5}
    heightmap.apply_brush(16.0, 16.0, "lower", settings, 0.5)
    assert heightmap.data[16, 16] == pytest.approx(-2.5)
    assert heightmap.min_height == pytest.approx(-2.5)


def test_flatten_pulls_towards_center_height():
    heightmap = Heightmap(16, 16.0)
    heightmap.generate_flat(10.0)
    heightmap.set_height(8, 8, 0.0)
    settings = {'size': 3.0, 'strength': 1.0, 'falloff': 0.5}

    heightmap.apply_brush(8.0, 8.0, "flatten", settings, 1.0)

    assert heightmap.data[8, 8] == 0.0
    expected = 10.0 - 10.0 * (2.0 / 3.0) * 0.1
    assert heightmap.data[8, 9] == pytest.approx(expected, rel=1e-5)
    assert heightmap.data[8, 12] == 10.0


def test_smooth_moves_towards_neighbourhood_mean():
    heightmap = Heightmap(16, 16.0)
    heightmap.set_height(8, 8, 9.0)
    settings = {'size': 2.0, 'strength': 1.0, 'falloff': 0.5}

    heightmap.apply_brush(8.0, 8.0, "smooth", settings, 1.0)

    assert heightmap.data[8, 8] == pytest.approx(5.0)
    assert heightmap.data[8, 9] == pytest.approx(0.25)


def test_brush_outside_tile_changes_nothing():
    heightmap = Heightmap(16, 16.0)
    assert not heightmap.apply_brush(100.0, 100.0, "raise", {'size': 2.0}, 1.0)
    assert not heightmap.data.any()


def test_unknown_tool_is_rejected():
    with pytest.raises(ValueError):
        Heightmap(8, 8.0).apply_brush(4.0, 4.0, "explode", {}, 1.0)


def test_out_of_range_access():
    heightmap = Heightmap(8, 8.0)
    heightmap.set_height(-1, 3, 5.0)
    assert heightmap.get_height(-1, 3) == 0.0
    assert heightmap.get_height(9, 0) == 0.0
    assert not heightmap.data.any()


def test_interpolated_height_is_bilinear(ramp_raster):
    heightmap = ramp_raster.heightmap
    assert heightmap.get_interpolated_height(2.5, 0.0) == pytest.approx(2.5)
    assert heightmap.get_interpolated_height(2.5, 4.0) == pytest.approx(2.9)


def test_noise_then_make_seamless_gives_matching_borders():
    heightmap = Heightmap(32, 32.0)
    heightmap.generate_from_noise(seed=7)
    assert heightmap.max_height > heightmap.min_height

    heightmap.make_seamless()

    np.testing.assert_array_equal(heightmap.data[:, 0], heightmap.data[:, -1])
    np.testing.assert_array_equal(heightmap.data[0, :], heightmap.data[-1, :])


def test_load_from_data_resamples_to_own_resolution():
    heightmap = Heightmap(8, 8.0)  # 9 vertices
    source = np.arange(25, dtype=np.float32).reshape(5, 5)

    heightmap.load_from_data(source.ravel())

    assert heightmap.data.shape == (9, 9)
    assert heightmap.data[0, 0] == pytest.approx(0.0)
    assert heightmap.data[-1, -1] == pytest.approx(24.0)
    assert heightmap.data[0, 2] == pytest.approx(1.0)


def test_base64_round_trip_and_copy_independence():
    heightmap = Heightmap(8, 8.0)
    heightmap.generate_from_noise(seed=3)
    restored = Heightmap(8, 8.0)
    restored.from_base64(heightmap.to_base64())
    np.testing.assert_array_equal(restored.data, heightmap.data)

    clone = heightmap.copy()
    clone.set_height(0, 0, 123.0)
    assert heightmap.get_height(0, 0) != 123.0
