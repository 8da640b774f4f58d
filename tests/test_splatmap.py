# tests/test_splatmap.py

import numpy as np
import pytest

from tile_world import codec
from tile_world.splatmap import SplatMap


def test_new_splatmap_is_all_grass():
    splatmap = SplatMap(9)
    assert splatmap.get_weights(4, 4) == (1.0, 0.0, 0.0, 0.0)
    assert not splatmap.water_mask.any()


def test_paint_keeps_weights_normalized():
    splatmap = SplatMap(17)
    for _ in range(5):
        assert splatmap.paint(8.0, 8.0, 4.0, "rock", 1.0, 0.5)
    splatmap.paint(10.0, 7.0, 3.0, "sand", 0.7, 0.2)

    sums = splatmap.data.sum(axis=-1)
    np.testing.assert_allclose(sums, 1.0, atol=1e-5)
    assert splatmap.get_weights(8, 8)[2] > 0.3
    assert splatmap.get_weights(0, 0) == (1.0, 0.0, 0.0, 0.0)


def test_water_paints_the_mask_not_the_channels():
    splatmap = SplatMap(17)
    before = splatmap.data.copy()

    assert splatmap.paint(8.0, 8.0, 3.0, "water", 1.0, 0.5)

    np.testing.assert_array_equal(splatmap.data, before)
    assert splatmap.get_water_weight(8, 8) == pytest.approx(0.1)
    assert splatmap.get_water_weight(0, 0) == 0.0


def test_water_mask_saturates_at_one():
    splatmap = SplatMap(9)
    for _ in range(30):
        splatmap.paint(4.0, 4.0, 2.0, "water", 1.0, 0.5)
    assert splatmap.get_water_weight(4, 4) == 1.0


def test_annulus_leaves_the_center_alone():
    splatmap = SplatMap(33)
    assert splatmap.paint_annulus(16.0, 16.0, 4.0, 8.0, "sand", 1.0)
    assert splatmap.get_weights(16, 16) == (1.0, 0.0, 0.0, 0.0)
    assert splatmap.get_weights(22, 16)[3] > 0.0
    np.testing.assert_allclose(splatmap.data.sum(axis=-1), 1.0, atol=1e-5)


def test_repair_invalid_cells_forces_grass():
    splatmap = SplatMap(5)
    splatmap.set_weights(0, 0, (0.0, 0.0, 0.0, 0.0))
    splatmap.set_weights(1, 1, (np.nan, 0.5, 0.0, 0.0))
    splatmap.set_weights(2, 2, (0.0, 2.0, 2.0, 0.0))

    assert splatmap.repair_invalid_cells() == 2

    assert splatmap.get_weights(0, 0) == (1.0, 0.0, 0.0, 0.0)
    assert splatmap.get_weights(1, 1) == (1.0, 0.0, 0.0, 0.0)
    assert splatmap.get_weights(2, 2) == pytest.approx((0.0, 0.5, 0.5, 0.0))


def test_mask_setters_clamp():
    splatmap = SplatMap(5)
    splatmap.set_wetness_weight(1, 1, 3.0)
    splatmap.set_road_weight(2, 2, -1.0)
    assert splatmap.get_wetness_weight(1, 1) == 1.0
    assert splatmap.get_road_weight(2, 2) == 0.0


@pytest.mark.parametrize("version", [1, 2, 3])
def test_from_base64_detects_layout_version(version):
    source = SplatMap(5)
    source.paint(2.0, 2.0, 2.0, "dirt", 1.0, 0.5)
    source.water_mask[1, 1] = 0.75
    source.wetness_mask[2, 2] = 0.5
    source.road_mask[3, 3] = 0.25

    parts = [source.data.ravel()]
    if version >= 2:
        parts.append(source.water_mask.ravel())
    if version == 3:
        parts += [source.wetness_mask.ravel(), source.road_mask.ravel()]
    encoded = codec.encode_float32_array(np.concatenate(parts))

    restored = SplatMap(5)
    assert restored.from_base64(encoded) == version
    np.testing.assert_array_equal(restored.data, source.data)
    assert restored.water_mask[1, 1] == (0.75 if version >= 2 else 0.0)
    assert restored.road_mask[3, 3] == (0.25 if version == 3 else 0.0)


def test_load_from_data_resamples_and_normalizes():
    source = SplatMap(5)
    source.data[:, :] = (0.0, 0.0, 1.0, 0.0)
    source.water_mask[:] = 0.5

    target = SplatMap(9)
    target.load_from_data(source.data, source.water_mask, 5)

    np.testing.assert_allclose(target.data[..., 2], 1.0)
    np.testing.assert_allclose(target.water_mask, 0.5)


def test_make_seamless_matches_opposite_borders():
    splatmap = SplatMap(17)
    splatmap.paint(2.0, 8.0, 4.0, "rock", 1.0, 0.5)
    splatmap.paint(8.0, 15.0, 3.0, "water", 1.0, 0.5)

    splatmap.make_seamless()

    np.testing.assert_allclose(splatmap.data[:, 0], splatmap.data[:, -1], atol=1e-6)
    np.testing.assert_allclose(splatmap.water_mask[0], splatmap.water_mask[-1], atol=1e-6)
    np.testing.assert_allclose(splatmap.data.sum(axis=-1), 1.0, atol=1e-5)


def test_make_seamless_blends_materials_at_least_eight_cells_deep():
    splatmap = SplatMap(17)
    splatmap.data[:, -1] = (0.0, 0.0, 1.0, 0.0)

    splatmap.make_seamless()

    # Row 8 is the middle row, outside every top/bottom and corner blend.
    rock = splatmap.data[8, :, 2]
    assert rock[0] == pytest.approx(0.5)
    assert (rock[1:8] > 0.0).all()
    assert rock[8] == 0.0
