# tests/test_cells.py

import pytest

from tile_world.streaming.cells import CellManager


@pytest.mark.parametrize("cell_size, tile_size", [(16.0, 64.0), (64.0, 16.0), (32.0, 32.0)])
def test_cells_of_a_tile_map_back_to_it(logger, cell_size, tile_size):
    cells = CellManager(cell_size, tile_size, logger)
    for tile in [(0, 0), (1, 0), (-1, -1), (3, -2)]:
        for cell in cells.tile_to_cells(*tile):
            assert tile in cells.cell_to_affected_tiles(*cell)


def test_several_cells_per_tile(logger):
    cells = CellManager(16.0, 64.0, logger)
    assert cells.cells_per_tile == 4.0
    covered = cells.tile_to_cells(1, 0)
    assert len(covered) == 16
    assert min(covered) == (4, 0) and max(covered) == (7, 3)
    assert cells.cell_to_tile(-1, 3) == (-1, 0)


def test_one_cell_spans_several_tiles(logger):
    cells = CellManager(64.0, 16.0, logger)
    assert cells.tile_to_cells(3, 5) == [(0, 1)]
    affected = cells.cell_to_affected_tiles(0, 1)
    assert len(affected) == 16
    assert (0, 4) in affected and (3, 7) in affected


def test_update_tile_size_recomputes_ratio(logger):
    cells = CellManager(16.0, 64.0, logger)
    cells.update_tile_size(32.0)
    assert cells.cells_per_tile == 2.0
    assert len(cells.tile_to_cells(0, 0)) == 4


def test_world_transforms(logger):
    cells = CellManager(16.0, 64.0, logger)
    assert cells.world_to_cell(-0.5, 17.0) == (-1, 1)
    assert cells.world_to_tile(-0.5, 70.0) == (-1, 1)
    assert cells.get_cell_center(1, -1) == (24.0, -8.0)
    assert cells.get_tile_center(0, 0) == (32.0, 32.0)


def test_neighbourhoods(logger):
    cells = CellManager(16.0, 64.0, logger)
    assert CellManager.get_cell_distance((0, 0), (3, -2)) == 3
    assert len(CellManager.get_cells_in_radius(5, 5, 2)) == 25
    tiles = cells.get_tiles_in_cell_radius(0, 0, 1)
    assert sorted(tiles) == [(-1, -1), (-1, 0), (0, -1), (0, 0)]
    assert len(tiles) == len(set(tiles))


def test_cell_lies_in_the_cells_of_its_tile(logger):
    cells = CellManager(16.0, 64.0, logger)
    for cell in [(0, 0), (5, -3), (-1, -9), (7, 7)]:
        assert cell in cells.tile_to_cells(*cells.cell_to_tile(*cell))


def test_large_cell_maps_to_one_of_its_tiles(logger):
    cells = CellManager(64.0, 16.0, logger)
    for cell in [(0, 0), (2, -1), (-3, 4)]:
        assert cells.cell_to_tile(*cell) in cells.cell_to_affected_tiles(*cell)
