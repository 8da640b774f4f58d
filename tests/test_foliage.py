# tests/test_foliage.py

import math

import numpy as np
import pytest

from tile_world import config as DEFAULTS
from tile_world.foliage.chunks import (
    FoliageChunkManager, FoliageLOD, LCGRandom, calculate_slope, compose_instance_matrix, density_counts,
)

GRASS_ONLY = {'grass': DEFAULTS.FOLIAGE_TYPES['grass']}


def _manager(store, logger, **overrides):
    config = {'chunk_size': 8.0, 'types': GRASS_ONLY, **overrides}
    return FoliageChunkManager(store, config, logger)


def _positions(buffers):
    rows = [buf for buf in buffers.values() if len(buf)]
    if not rows:
        return np.zeros((0, 3))
    return np.concatenate(rows)[:, 12:15]


def _count(buffers):
    return sum(len(buf) for buf in buffers.values())


def test_lcg_sequence():
    rng = LCGRandom(0)
    assert rng.random() == pytest.approx(49297 / 233280)
    assert rng.seed == 49297


def test_compose_instance_matrix_places_translation():
    matrix = compose_instance_matrix(1.0, 2.0, 3.0, 2.0)
    np.testing.assert_allclose(matrix.reshape(4, 4)[:3, :3], np.eye(3) * 2.0)
    np.testing.assert_array_equal(matrix[12:16], [1.0, 2.0, 3.0, 1.0])


def test_slope_of_flat_and_steep_ground(ramp_raster, small_store):
    assert calculate_slope(small_store.active, 8.0, 8.0) == 0.0
    assert 0.0 < calculate_slope(ramp_raster, 8.0, 8.0) < 1.0


def test_all_grass_tile_accepts_every_candidate(small_store, logger):
    foliage = _manager(small_store, logger)
    chunk = foliage.ensure_chunk(0, 0)

    assert _count(chunk.instances) == 8 * 8 * 8
    assert set(chunk.instances) <= {f"grass_v{i}" for i in range(4)}
    positions = _positions(chunk.instances)
    assert positions[:, 0].min() >= 0.0 and positions[:, 0].max() < 8.0
    assert positions[:, 2].min() >= 0.0 and positions[:, 2].max() < 8.0
    np.testing.assert_array_equal(positions[:, 1], 0.0)


def test_generation_is_deterministic(small_store, logger):
    first = _manager(small_store, logger).ensure_chunk(1, 1)
    second = _manager(small_store, logger).ensure_chunk(1, 1)
    assert first.instances.keys() == second.instances.keys()
    for key in first.instances:
        assert first.instances[key].tobytes() == second.instances[key].tobytes()


def test_material_threshold_rejects_candidates(small_store, logger):
    small_store.active.splatmap.fill_with_material("rock")
    foliage = FoliageChunkManager(small_store, {'chunk_size': 8.0}, logger)
    chunk = foliage.ensure_chunk(0, 0)

    assert all(key.startswith("rock_v") for key in chunk.instances)
    # 64 square units at 0.15 per unit, every candidate on pure rock.
    assert _count(chunk.instances) == 9


def test_water_rejects_candidates(small_store, logger):
    small_store.active.splatmap.water_mask[:] = 1.0
    chunk = _manager(small_store, logger).ensure_chunk(0, 0)
    assert _count(chunk.instances) == 0


def test_steep_slope_rejects_candidates(small_store, logger):
    xs = np.arange(small_store.active.resolution, dtype=np.float32)
    small_store.active.heightmap.data[:] = xs[np.newaxis, :] * 10.0
    chunk = _manager(small_store, logger).ensure_chunk(0, 0)
    assert _count(chunk.instances) == 0


def test_chunk_is_clipped_to_the_tile_holding_its_center(small_store, logger):
    foliage = _manager(small_store, logger, chunk_size=12.0)
    chunk = foliage.ensure_chunk(1, 0)
    positions = _positions(chunk.instances)

    assert _count(chunk.instances) == 8 * 12 * 8
    assert positions[:, 0].min() >= 16.0 and positions[:, 0].max() < 24.0


def test_mid_keeps_a_prefix_of_every_buffer(small_store, logger):
    foliage = _manager(small_store, logger)
    chunk = foliage.ensure_chunk(0, 0)
    foliage.set_chunk_lod(0, 0, FoliageLOD.MID)

    assert chunk.lod == FoliageLOD.MID
    assert chunk.instance_count() == _count(chunk.instances) // 2
    for key, buf in chunk.instances.items():
        shown = chunk.meshes[key]
        assert len(shown) - len(buf) // 2 in (0, 1)
        np.testing.assert_array_equal(shown, buf[:len(shown)])


def test_density_counts_keep_the_chunk_total_exact():
    instances = {key: np.zeros((n, 16)) for key, n in
                 (('grass_v0', 127), ('grass_v1', 129), ('grass_v2', 131), ('grass_v3', 125))}

    counts = density_counts(instances, 0.5)

    assert sum(counts.values()) == 512 // 2
    for key, buf in instances.items():
        assert counts[key] - len(buf) // 2 in (0, 1)
    assert density_counts({'rock_v0': np.zeros((1, 16))}, 0.5) == {'rock_v0': 0}
    assert density_counts({}, 0.5) == {}


def test_mid_subset_is_spread_over_the_chunk(small_store, logger):
    foliage = _manager(small_store, logger)
    for cx in range(2):
        for cz in range(2):
            chunk = foliage.ensure_chunk(cx, cz, FoliageLOD.MID)
            positions = _positions(chunk.meshes)
            x0, z0, x1, z1 = foliage.chunk_bounds(cx, cz)
            mid_x, mid_z = (x0 + x1) / 2, (z0 + z1) / 2

            assert len(positions) == _count(chunk.instances) // 2
            assert 0.35 < np.mean(positions[:, 0] < mid_x) < 0.65
            assert 0.35 < np.mean(positions[:, 2] < mid_z) < 0.65


def test_impostor_discards_instances_and_near_restores_them(small_store, logger):
    foliage = _manager(small_store, logger)
    chunk = foliage.ensure_chunk(0, 0)
    original = {key: buf.copy() for key, buf in chunk.instances.items()}

    foliage.set_chunk_lod(0, 0, FoliageLOD.IMPOSTOR)

    expected = sum(math.ceil(len(buf) / 4) for buf in original.values())
    assert chunk.impostor.shape == (expected, 4)
    assert chunk.instances == {} and chunk.meshes == {}
    assert (chunk.impostor[:, 3] > 0).all()

    foliage.set_chunk_lod(0, 0, FoliageLOD.NEAR)

    assert chunk.impostor is None
    assert chunk.meshes.keys() == original.keys()
    for key in original:
        assert chunk.meshes[key].tobytes() == original[key].tobytes()


def test_far_disposes_the_chunk(small_store, logger):
    foliage = _manager(small_store, logger)
    foliage.ensure_chunk(0, 0)
    foliage.set_chunk_lod(0, 0, FoliageLOD.FAR)
    assert (0, 0) not in foliage.chunks
    assert foliage.ensure_chunk(0, 0, FoliageLOD.FAR) is None
    assert foliage.get_chunk_instances(0, 0) == {}


def test_never_meshes_and_impostor_together(small_store, logger):
    foliage = _manager(small_store, logger)
    foliage.ensure_chunk(0, 0)
    for lod in (FoliageLOD.MID, FoliageLOD.IMPOSTOR, FoliageLOD.MID, FoliageLOD.IMPOSTOR, FoliageLOD.NEAR):
        foliage.set_chunk_lod(0, 0, lod)
        chunk = foliage.chunks[(0, 0)]
        assert not (chunk.meshes and chunk.impostor is not None)


@pytest.mark.parametrize("key, expected", [
    ("grass_v2", "grass_v2"),
    ("grass", "grass_v0"),
    ("pebble_v3", "pebble_v0"),
    ("sandRock_v1", "sandRock_v1"),
])
def test_base_mesh_lookup(small_store, logger, key, expected):
    foliage = FoliageChunkManager(small_store, {}, logger)
    assert foliage.get_base_mesh(key).key == expected


def test_unknown_base_mesh(small_store, logger):
    foliage = FoliageChunkManager(small_store, {}, logger)
    assert foliage.get_base_mesh("fern_v0") is None
    assert len(foliage.base_meshes) == 13


def test_visibility_tiers_and_epsilon(small_store, logger):
    foliage = _manager(small_store, logger, lod_distances={'near': 10.0, 'mid': 20.0, 'far': 30.0})
    foliage.ensure_chunk(0, 0)

    assert foliage.update_visibility(19.0, 4.0)
    assert foliage.chunks[(0, 0)].lod == FoliageLOD.MID
    assert not foliage.update_visibility(19.5, 4.0)

    assert foliage.update_visibility(29.0, 4.0)
    assert foliage.chunks[(0, 0)].lod == FoliageLOD.IMPOSTOR
    assert foliage.update_visibility(4.0, 4.0)
    assert foliage.chunks[(0, 0)].lod == FoliageLOD.NEAR
    assert foliage.update_visibility(40.0, 4.0)
    assert (0, 0) not in foliage.chunks


def test_wrapping_measures_distance_on_the_tile_ring(small_store, logger):
    foliage = _manager(small_store, logger, lod_distances={'near': 10.0, 'mid': 20.0, 'far': 30.0})
    foliage.ensure_chunk(0, 0)
    foliage.set_use_wrapping(True)

    foliage.update_visibility(4.0 + 16.0 * 10, 4.0)

    assert foliage.chunks[(0, 0)].lod == FoliageLOD.NEAR


def test_regenerate_area_keeps_the_tier(small_store, logger):
    foliage = _manager(small_store, logger)
    foliage.ensure_chunk(0, 0, FoliageLOD.MID)
    small_store.active.splatmap.fill_with_material("sand")

    assert foliage.regenerate_area(4.0, 4.0, 1.0) == 1
    chunk = foliage.chunks[(0, 0)]
    assert chunk.lod == FoliageLOD.MID
    assert _count(chunk.instances) == 0

    assert foliage.regenerate_bounds(100.0, 100.0, 110.0, 110.0) == 0
    assert foliage.regenerate_area(100.0, 100.0, 1.0, generate_missing=False) == 0


def test_bounds_helpers_and_stats(small_store, logger):
    foliage = _manager(small_store, logger)
    assert foliage.chunks_in_bounds(0.0, 0.0, 16.0, 16.0) == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert foliage.load_bounds(0.0, 0.0, 16.0, 16.0, FoliageLOD.NEAR) == 4

    foliage.set_bounds_lod(0.0, 0.0, 8.0, 8.0, FoliageLOD.IMPOSTOR)
    stats = foliage.get_stats()
    assert stats['chunks'] == 4
    assert stats['total_instances'] == 3 * 512
    assert stats['impostors'] > 0

    assert foliage.dispose_bounds(0.0, 0.0, 16.0, 8.0) == 2
    foliage.dispose_all()
    assert foliage.get_stats() == {'chunks': 0, 'total_instances': 0, 'impostors': 0}
