# tests/test_seams.py

import numpy as np
import pytest

from tile_world.seams import EdgeSynchronizer, blend_corner
from tile_world.tiles import TileRaster

BRUSH = {'size': 2.0, 'strength': 1.0, 'falloff': 0.5}


@pytest.fixture
def synchronizer(logger):
    return EdgeSynchronizer({'height_blend_width': 10, 'splat_blend_width': 30}, logger)


def test_edge_copy_and_linear_blend(synchronizer):
    left = TileRaster.blank(63, 64.0)
    right = TileRaster.blank(63, 64.0)
    left.heightmap.generate_flat(10.0)

    synchronizer.sync_two_edges_smooth(left, right, "right", "left")

    data = right.heightmap.data
    np.testing.assert_array_equal(data[:, 0], 10.0)
    for d in range(1, 10):
        np.testing.assert_allclose(data[:, d], 10.0 * (1 - d / 10), rtol=1e-6)
    np.testing.assert_array_equal(data[:, 10:], 0.0)
    assert right.heightmap.max_height == 10.0
    # The source is never written.
    np.testing.assert_array_equal(left.heightmap.data, 10.0)


def test_vertical_edge_direction(synchronizer):
    top = TileRaster.blank(16, 16.0)
    bottom = TileRaster.blank(16, 16.0)
    top.heightmap.data[-1, :] = np.arange(17, dtype=np.float32)

    synchronizer.sync_two_edges_smooth(top, bottom, "bottom", "top")

    np.testing.assert_array_equal(bottom.heightmap.data[0], np.arange(17))


def test_resolution_mismatch_samples_linearly(synchronizer):
    source = TileRaster.blank(4, 4.0)
    target = TileRaster.blank(8, 4.0)
    source.heightmap.data[:] = np.arange(5, dtype=np.float32)[:, np.newaxis]

    synchronizer.sync_two_edges_smooth(source, target, "right", "left", height_blend_width=1)

    np.testing.assert_allclose(target.heightmap.data[:, 0], np.arange(9) / 2.0)
    np.testing.assert_array_equal(target.heightmap.data[:, 1:], 0.0)


def test_splat_blend_stays_normalized(synchronizer):
    source = TileRaster.blank(16, 16.0)
    target = TileRaster.blank(16, 16.0)
    source.splatmap.fill_with_material("rock")
    source.splatmap.water_mask[:] = 1.0

    synchronizer.sync_two_edges_smooth(source, target, "right", "left")

    assert target.splatmap.get_weights(0, 5) == (0.0, 0.0, 1.0, 0.0)
    assert target.get_water_weight(0, 5) == 1.0
    np.testing.assert_allclose(target.splatmap.data.sum(axis=-1), 1.0, atol=1e-5)
    # Splat margin is wider than the tile, so even the far column picked up rock.
    assert target.splatmap.get_weights(16, 5)[2] > 0.0


def test_corner_blend_uses_euclidean_distance():
    source = np.full((8, 8), 4.0)
    target = np.zeros((8, 8))

    blend_corner(source, target, "bottom_right", "top_left", 4)

    assert target[0, 0] == 4.0
    assert target[0, 2] == pytest.approx(2.0)
    assert target[2, 2] == pytest.approx(4.0 * (1 - np.hypot(2, 2) / 4))
    assert target[3, 3] == 0.0
    assert target[4:, :].sum() == 0.0


def test_collect_pairs_deduplicates_shared_boundaries(synchronizer):
    edges, corners = synchronizer.collect_pairs({(0, 0), (1, 0)})

    assert len(edges) == 7
    assert len(corners) == 8
    assert ((0, 0), (1, 0), "right", "left") in edges
    assert ((1, 0), (0, 0), "left", "right") not in edges
    assert ((1, 0), (0, 1), "bottom_left", "top_right") in corners


def test_full_pass_makes_shared_edges_equal(small_store, synchronizer):
    store = small_store
    touched = store.apply_brush("raise", 15.5, 8.0, BRUSH, 0.5)
    assert touched == {(0, 0), (1, 0)}

    affected = synchronizer.full_sync_pass(store, touched)

    active = store.active.heightmap.data
    right = store.peek_tile(1, 0).heightmap.data
    np.testing.assert_array_equal(active[:, -1], right[:, 0])
    np.testing.assert_array_equal(active[-1, :], store.peek_tile(0, 1).heightmap.data[0, :])
    np.testing.assert_array_equal(right[:, -1], store.peek_tile(2, 0).heightmap.data[:, 0])

    assert {(0, 0), (1, 0), (0, 1), (2, 0), (1, 1), (-1, 0)} <= affected
    assert len(affected) == 12
    assert store.get_dirty(2, 0).heightmap
    assert not store.get_dirty(5, 5).is_dirty


def test_full_pass_agrees_on_a_shared_corner(small_store, synchronizer):
    store = small_store
    touched = store.apply_brush("raise", 15.5, 15.5, BRUSH, 0.5)
    assert touched == {(0, 0), (1, 0), (0, 1), (1, 1)}

    synchronizer.full_sync_pass(store, touched)

    corner = store.active.heightmap.data[-1, -1]
    assert corner > 0.0
    assert store.peek_tile(1, 0).heightmap.data[-1, 0] == corner
    assert store.peek_tile(0, 1).heightmap.data[0, -1] == corner
    assert store.peek_tile(1, 1).heightmap.data[0, 0] == corner
    np.testing.assert_array_equal(store.peek_tile(1, 0).heightmap.data[-1, :],
                                  store.peek_tile(1, 1).heightmap.data[0, :])


def _assert_synced_edges_equal(store, touched, affected):
    checked = 0
    for gx, gy in affected:
        tile = store.peek_tile(gx, gy)
        for other_key, own_row, other_row in (((gx + 1, gy), np.s_[:, -1], np.s_[:, 0]),
                                              ((gx, gy + 1), np.s_[-1, :], np.s_[0, :])):
            if other_key not in affected or not ({(gx, gy), other_key} & touched):
                continue
            other = store.peek_tile(*other_key)
            np.testing.assert_array_equal(tile.heightmap.data[own_row], other.heightmap.data[other_row],
                                          err_msg=f"{(gx, gy)} | {other_key}")
            np.testing.assert_array_equal(tile.splatmap.data[own_row], other.splatmap.data[other_row])
            np.testing.assert_array_equal(tile.splatmap.water_mask[own_row], other.splatmap.water_mask[other_row])
            checked += 1
    return checked


def test_full_pass_keeps_every_edge_equal_around_a_brushed_corner(small_store, synchronizer):
    store = small_store
    touched = store.apply_brush("raise", 15.5, 15.5, dict(BRUSH, size=6.0), 0.5)
    assert touched == {(0, 0), (1, 0), (0, 1), (1, 1)}

    affected = synchronizer.full_sync_pass(store, touched)

    # The four edges inside the 2x2 block plus the eight to its ring of neighbours.
    assert _assert_synced_edges_equal(store, touched, affected) == 12
    np.testing.assert_array_equal(store.peek_tile(0, 1).heightmap.data[:, -1],
                                  store.peek_tile(1, 1).heightmap.data[:, 0])
    corner = store.active.heightmap.data[-1, -1]
    for key, index in (((1, 0), (-1, 0)), ((0, 1), (0, -1)), ((1, 1), (0, 0))):
        assert store.peek_tile(*key).heightmap.data[index] == corner


def test_full_pass_keeps_edges_equal_after_painting_across_a_corner(small_store, synchronizer):
    store = small_store
    touched = store.paint("rock", 16.0, 16.0, dict(BRUSH, size=5.0))
    assert len(touched) == 4

    affected = synchronizer.full_sync_pass(store, touched)

    assert _assert_synced_edges_equal(store, touched, affected) == 12
    for key in affected:
        np.testing.assert_allclose(store.peek_tile(*key).splatmap.data.sum(axis=-1), 1.0, atol=1e-5)


def test_empty_pass_is_a_no_op(small_store, synchronizer):
    assert synchronizer.full_sync_pass(small_store, set()) == set()
    assert small_store.materialized_keys() == [(0, 0)]
