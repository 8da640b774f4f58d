# tile_world/streaming/cells.py

"""
================================================================================
CELL <-> TILE COORDINATE MAPPER
================================================================================
The streaming system works on a grid of fixed-size cells; the editor works on
a grid of tiles whose size can change (e.g. on new-terrain creation). This
module converts between the two grids and world space.

Relationship between the grids (cells_per_tile = tile_size / cell_size):
    - cells_per_tile >= 1: several cells sit inside one tile.
    - cells_per_tile <  1: one cell spans ceil(1 / cells_per_tile)^2 tiles.

Data Contract:
---------------
- Inputs (on initialization):
    - cell_size (float), tile_size (float), logger (logging.Logger).
- Outputs: (x, z) cell tuples and (gx, gy) tile tuples.
- Side Effects: Logs size changes.
- Invariants: cells_per_tile is recomputed every time the tile size changes.
  For every cell c in tile_to_cells(t), t is in cell_to_affected_tiles(c)
  whenever one size is a whole multiple of the other.
================================================================================
"""

import logging
import math


class CellManager:
    """Stateless coordinate transforms, apart from the configured sizes."""

    def __init__(self, cell_size: float, tile_size: float, logger: logging.Logger):
        self.logger = logger
        self.cell_size = float(cell_size)
        self.tile_size = float(tile_size)
        self.cells_per_tile = self.tile_size / self.cell_size
        self.logger.debug(f"CellManager: cell_size={self.cell_size}, tile_size={self.tile_size}, "
                          f"cells_per_tile={self.cells_per_tile}")

    def update_tile_size(self, tile_size: float):
        self.tile_size = float(tile_size)
        self.cells_per_tile = self.tile_size / self.cell_size
        self.logger.info(f"CellManager: tile_size updated to {self.tile_size} (cells_per_tile={self.cells_per_tile})")

    # --- World Space ---
    def world_to_cell(self, world_x: float, world_z: float) -> tuple[int, int]:
        return math.floor(world_x / self.cell_size), math.floor(world_z / self.cell_size)

    def world_to_tile(self, world_x: float, world_z: float) -> tuple[int, int]:
        return math.floor(world_x / self.tile_size), math.floor(world_z / self.tile_size)

    def get_cell_center(self, cell_x: int, cell_z: int) -> tuple[float, float]:
        half = self.cell_size / 2
        return cell_x * self.cell_size + half, cell_z * self.cell_size + half

    def get_tile_center(self, gx: int, gy: int) -> tuple[float, float]:
        half = self.tile_size / 2
        return gx * self.tile_size + half, gy * self.tile_size + half

    # --- Cell <-> Tile ---
    def cell_to_tile(self, cell_x: int, cell_z: int) -> tuple[int, int]:
        """The tile containing the cell, or the first tile the cell contains."""
        return math.floor(cell_x / self.cells_per_tile), math.floor(cell_z / self.cells_per_tile)

    def tile_to_cells(self, gx: int, gy: int) -> list[tuple[int, int]]:
        """Every cell overlapping a tile."""
        if self.cells_per_tile >= 1:
            x0 = math.floor(gx * self.cells_per_tile)
            z0 = math.floor(gy * self.cells_per_tile)
            x1 = math.ceil((gx + 1) * self.cells_per_tile)
            z1 = math.ceil((gy + 1) * self.cells_per_tile)
            return [(x, z) for x in range(x0, x1) for z in range(z0, z1)]
        return [(math.floor(gx * self.cells_per_tile), math.floor(gy * self.cells_per_tile))]

    def cell_to_affected_tiles(self, cell_x: int, cell_z: int) -> list[tuple[int, int]]:
        if self.cells_per_tile >= 1:
            return [self.cell_to_tile(cell_x, cell_z)]
        tiles_per_cell = math.ceil(1 / self.cells_per_tile)
        start_x, start_z = self.cell_to_tile(cell_x, cell_z)
        return [(start_x + dx, start_z + dz) for dx in range(tiles_per_cell) for dz in range(tiles_per_cell)]

    # --- Neighbourhoods ---
    @staticmethod
    def get_cell_distance(cell_a: tuple[int, int], cell_b: tuple[int, int]) -> int:
        """Chebyshev distance between two cells."""
        return max(abs(cell_a[0] - cell_b[0]), abs(cell_a[1] - cell_b[1]))

    @staticmethod
    def get_cells_in_radius(center_x: int, center_z: int, radius: int) -> list[tuple[int, int]]:
        return [(center_x + dx, center_z + dz)
                for dx in range(-radius, radius + 1)
                for dz in range(-radius, radius + 1)]

    def get_tiles_in_cell_radius(self, center_x: int, center_z: int, radius: int) -> list[tuple[int, int]]:
        """Tiles touched by a square of cells, deduplicated, in first-seen order."""
        seen = {}
        for cell in self.get_cells_in_radius(center_x, center_z, radius):
            for tile in self.cell_to_affected_tiles(*cell):
                seen.setdefault(tile, None)
        return list(seen)
