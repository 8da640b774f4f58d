# tile_world/session.py

"""
================================================================================
EDITOR SESSION
================================================================================
This module wires the core systems together for one editing session:
the TileStore (raster data), the EdgeSynchronizer (seams), the streaming
CellManager/StreamingManager pair and the FoliageChunkManager.

The session owns the stroke lifecycle. While the pointer is down every brush
application mutates the tiles under the brush and protects the streaming
cells around it; on release one synchronization pass reconciles every touched
tile with its neighbours and the foliage on the affected tiles is rebuilt.

It is also the streaming collaborator: cell loads materialize tiles and, at
NEAR detail, generate foliage immediately.

Data Contract:
---------------
- Inputs (on initialization):
    - config (dict): Sections 'tile', 'brush', 'sync', 'streaming', 'foliage'.
    - logger (logging.Logger): The logger instance for all output.
- Public Methods:
    - new_terrain, install_tile, save_active_tile, set_tile_mode.
    - begin_stroke, apply_stroke, end_stroke.
    - load_cell, unload_cell, update_cell_lod (streaming collaborator).
    - update(anchor_x, anchor_z), set_streaming_enabled(flag), get_stats().
- Side Effects: Logs messages using the provided logger.
- Invariants: Edge synchronization only ever runs from end_stroke, after all
  of the stroke's mutations. Cells protected during a stroke are released
  when it ends.
================================================================================
"""

import logging

from . import codec
from . import config as DEFAULTS
from .foliage.chunks import FoliageChunkManager, FoliageLOD
from .library import TileLibrary
from .seams import EdgeSynchronizer
from .streaming.cells import CellManager
from .streaming.manager import StreamingLOD, StreamingManager
from .tiles import ACTIVE_KEY, PreconditionError, TileRaster, TileStore

PAINT_MATERIALS = tuple(DEFAULTS.MATERIAL_CHANNELS) + (DEFAULTS.WATER_MATERIAL,)
STREAMING_TO_FOLIAGE_LOD = {
    StreamingLOD.NEAR: FoliageLOD.NEAR,
    StreamingLOD.MID: FoliageLOD.MID,
    StreamingLOD.FAR: FoliageLOD.FAR,
}


class EditorSession:
    """One author's view of the tiled world."""

    def __init__(self, config: dict, logger: logging.Logger):
        self.logger = logger
        self.user_config = config

        # --- 1. Core Systems ---
        self.store = TileStore(config.get('tile', {}), logger)
        self.synchronizer = EdgeSynchronizer(config.get('sync', {}), logger)
        streaming_config = config.get('streaming', {})
        self.cell_manager = CellManager(
            streaming_config.get('cell_size', DEFAULTS.STREAMING_CELL_SIZE),
            self.store.tile_size, logger,
        )
        self.streaming = StreamingManager(self, streaming_config, logger, cell_manager=self.cell_manager)
        self.foliage = FoliageChunkManager(self.store, config.get('foliage', {}), logger)

        # --- 2. Brush & Stroke State ---
        brush_config = config.get('brush', {})
        self.brush = {
            'size': brush_config.get('size', DEFAULTS.DEFAULT_BRUSH_SIZE),
            'strength': brush_config.get('strength', DEFAULTS.DEFAULT_BRUSH_STRENGTH),
            'falloff': brush_config.get('falloff', DEFAULTS.DEFAULT_BRUSH_FALLOFF),
        }
        self.stroke_active = False
        self._stroke_touched: set[tuple[int, int]] = set()
        self._stroke_protected: set[tuple[int, int]] = set()

    # --- Terrain Lifecycle ---
    def new_terrain(self, resolution: int = None, size: float = None, seed: int = None) -> TileRaster:
        """Starts over with a fresh active tile, optionally seeded with tileable noise."""
        raster = self.store.create_active_tile(resolution, size)
        if seed is not None:
            raster.heightmap.generate_from_noise(seed)
            raster.heightmap.make_seamless()
        self._after_active_change()
        return raster

    def install_tile(self, raster: TileRaster):
        """Makes a loaded tile the active tile."""
        self.store.set_active_tile(raster)
        self._after_active_change()

    def _after_active_change(self):
        self.store.snapshot_template()
        self.cell_manager.update_tile_size(self.store.tile_size)
        self.foliage.dispose_all()
        size = self.store.tile_size
        chunks = self.foliage.load_bounds(0.0, 0.0, size, size, FoliageLOD.NEAR)
        self.logger.info(f"Active tile ready: {chunks} foliage chunk(s) generated.")

    def save_active_tile(self, library: TileLibrary, name: str, existing_id: str = None) -> str:
        """
        Persists the active tile with the foliage generated on it, refreshes
        the template and clears its dirty flags.
        """
        active = self.store.require_active()
        instances = self.foliage.collect_instances(*self._tile_bounds(*ACTIVE_KEY))
        foliage_data = {key: codec.encode_foliage_instances(buf) for key, buf in instances.items()}
        tile_id = library.save_tile_from_current(name, active, existing_id=existing_id, foliage_data=foliage_data)
        self.store.clear_dirty(*ACTIVE_KEY)
        self.store.snapshot_template()
        return tile_id

    def set_tile_mode(self, mode: str) -> list[tuple[int, int]]:
        regenerated = self.store.set_tile_mode(mode)
        for key in regenerated:
            self._regenerate_tile_foliage(key)
        return regenerated

    # --- Strokes ---
    def begin_stroke(self, world_x: float, world_z: float):
        self.stroke_active = True
        self._stroke_touched = set()
        self._protect_around(world_x, world_z)

    def apply_stroke(self, tool: str, world_x: float, world_z: float, delta_time: float) -> set:
        """
        Applies one brush step. Height tools sculpt; material names paint;
        'water' paints the water mask and then carves the basin under it;
        'carve' only carves.

        Returns:
            set: Grid keys touched by this step (empty if the step was aborted).
        """
        if not self.stroke_active:
            self.begin_stroke(world_x, world_z)
        else:
            self._protect_around(world_x, world_z)

        try:
            if tool in DEFAULTS.HEIGHT_TOOLS:
                touched = self.store.apply_brush(tool, world_x, world_z, self.brush, delta_time)
            elif tool == DEFAULTS.WATER_MATERIAL:
                touched = self.store.paint(tool, world_x, world_z, self.brush)
                touched |= self.store.carve_water(world_x, world_z, self.brush)
            elif tool == DEFAULTS.CARVE_TOOL:
                touched = self.store.carve_water(world_x, world_z, self.brush)
            elif tool in PAINT_MATERIALS:
                touched = self.store.paint(tool, world_x, world_z, self.brush)
            else:
                raise ValueError(f"Unknown tool '{tool}'")
        except PreconditionError as e:
            self.logger.error(f"Brush step aborted: {e}")
            return set()

        self._stroke_touched |= touched
        return touched

    def end_stroke(self) -> set:
        """
        Runs the synchronization pass for everything the stroke touched,
        rebuilds foliage on the affected tiles and releases cell protection.
        """
        touched, self._stroke_touched = self._stroke_touched, set()
        self.stroke_active = False
        affected = set()
        try:
            if touched:
                affected = self.synchronizer.full_sync_pass(self.store, touched)
                for key in sorted(affected):
                    self._regenerate_tile_foliage(key)
        except PreconditionError as e:
            self.logger.error(f"Sync pass aborted: {e}")
        finally:
            for cell in self._stroke_protected:
                self.streaming.unprotect_cell(*cell)
            self._stroke_protected = set()
        return affected

    def _protect_around(self, world_x: float, world_z: float):
        cx, cz = self.cell_manager.world_to_cell(world_x, world_z)
        for cell in CellManager.get_cells_in_radius(cx, cz, 1):
            if cell not in self._stroke_protected:
                self.streaming.protect_cell(*cell)
                self._stroke_protected.add(cell)

    def _tile_bounds(self, gx: int, gy: int) -> tuple[float, float, float, float]:
        ox, oz = self.store.tile_origin(gx, gy)
        size = self.store.tile_size
        return ox, oz, ox + size, oz + size

    def _cell_bounds(self, cell_x: int, cell_z: int) -> tuple[float, float, float, float]:
        size = self.cell_manager.cell_size
        return cell_x * size, cell_z * size, (cell_x + 1) * size, (cell_z + 1) * size

    def _regenerate_tile_foliage(self, key: tuple[int, int]):
        self.foliage.regenerate_bounds(*self._tile_bounds(*key))

    # --- Streaming Collaborator ---
    def load_cell(self, cell_x: int, cell_z: int, lod: StreamingLOD):
        for gx, gy in self.cell_manager.cell_to_affected_tiles(cell_x, cell_z):
            self.store.get_tile(gx, gy)
        if lod == StreamingLOD.NEAR:
            self.foliage.load_bounds(*self._cell_bounds(cell_x, cell_z), FoliageLOD.NEAR)
        return None

    def update_cell_lod(self, cell_x: int, cell_z: int, lod: StreamingLOD):
        bounds = self._cell_bounds(cell_x, cell_z)
        foliage_lod = STREAMING_TO_FOLIAGE_LOD[lod]
        if foliage_lod == FoliageLOD.FAR:
            self.foliage.dispose_bounds(*bounds)
        else:
            self.foliage.load_bounds(*bounds, foliage_lod)

    def unload_cell(self, cell_x: int, cell_z: int):
        self.foliage.dispose_bounds(*self._cell_bounds(cell_x, cell_z))
        still_needed = set()
        for (x, z) in self.streaming.cells:
            still_needed.update(self.cell_manager.cell_to_affected_tiles(x, z))
        for key in self.cell_manager.cell_to_affected_tiles(cell_x, cell_z):
            if key != ACTIVE_KEY and key not in still_needed:
                self.store.evict(*key)
        return None

    # --- Per-frame ---
    def set_streaming_enabled(self, enabled: bool):
        self.streaming.set_enabled(enabled)
        if not enabled:
            self.streaming.dispose()

    def update(self, anchor_x: float, anchor_z: float):
        if self.streaming.enabled:
            self.streaming.update(anchor_x, anchor_z)
        else:
            self.foliage.update_visibility(anchor_x, anchor_z)

    def get_stats(self) -> dict:
        return {
            'tiles': self.store.stats(),
            'streaming': self.streaming.get_stats(),
            'foliage': self.foliage.get_stats(),
        }
