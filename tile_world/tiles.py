# tile_world/tiles.py

"""
================================================================================
TILE STORE
================================================================================
This module contains the TileStore, the single owner of every tile's raster
buffers. Grid position (0, 0) is the "active" tile, always resident. Every
other position holds "editable tile data" that is materialized on demand,
either explicitly (loaded, brushed, synced) or synthesized from the default
tile template using checkerboard mirroring or plain cloning.

Brushes are applied in world coordinates and routed to every tile whose
bounds intersect the brush disc, so strokes across a border stay continuous.

Data Contract:
---------------
- Inputs (on initialization):
    - config (dict): Overrides for tile resolution/size, tile mode and brush
      defaults.
    - logger (logging.Logger): The logger instance for all output.
- Public Methods:
    - create_active_tile, set_active_tile, snapshot_template.
    - get_tile, peek_tile, set_tile, evict, set_tile_mode.
    - apply_brush, paint, carve_water: return the set of touched grid keys.
    - mark_dirty, get_dirty, clear_dirty, dirty_tiles.
- Side Effects: Logs messages using the provided logger.
- Invariants: Tile keys are (gx, gy) integer tuples. The active tile is never
  evicted. A dirty tile is only evicted when the caller forces it after an
  external save.
================================================================================
"""

import logging
import math
import time

from . import config as DEFAULTS
from .heightmap import Heightmap
from .splatmap import SplatMap
from . import water

ACTIVE_KEY = (0, 0)
DIRTY_CHANNELS = ("heightmap", "splatmap", "foliage", "water")


class PreconditionError(RuntimeError):
    """Raised when a mutating operation runs before a tile is initialized."""


class TileRaster:
    """
    The raster data of one tile: elevation, material weights and masks, and
    the tile's water plane.
    """

    def __init__(self, heightmap: Heightmap, splatmap: SplatMap,
                 sea_level: float = DEFAULTS.DEFAULT_SEA_LEVEL,
                 water_depth: float = DEFAULTS.DEFAULT_WATER_DEPTH,
                 explicit: bool = False):
        self.heightmap = heightmap
        self.splatmap = splatmap
        self.sea_level = sea_level
        self.water_depth = water_depth
        # False while the tile is an untouched template preview.
        self.explicit = explicit

    @classmethod
    def blank(cls, resolution: int, size: float, splat_resolution: int = None) -> 'TileRaster':
        """A flat, all-grass tile. Splat vertex count defaults to the heightmap's."""
        heightmap = Heightmap(resolution, size)
        splatmap = SplatMap(splat_resolution or heightmap.resolution)
        return cls(heightmap, splatmap)

    # --- Accessor interface for the rendering layer ---
    @property
    def resolution(self) -> int:
        return self.heightmap.resolution

    @property
    def splat_resolution(self) -> int:
        return self.splatmap.resolution

    @property
    def scale(self) -> float:
        return self.heightmap.scale

    def get_height(self, x: int, z: int) -> float:
        return self.heightmap.get_height(x, z)

    def set_height(self, x: int, z: int, value: float):
        self.heightmap.set_height(x, z, value)

    def get_weights(self, x: int, z: int) -> tuple:
        return self.splatmap.get_weights(x, z)

    def set_weights(self, x: int, z: int, weights):
        self.splatmap.set_weights(x, z, weights)

    def get_water_weight(self, x: int, z: int) -> float:
        return self.splatmap.get_water_weight(x, z)

    def has_water(self) -> bool:
        return self.sea_level > DEFAULTS.DEFAULT_SEA_LEVEL

    def copy(self, explicit: bool = None) -> 'TileRaster':
        return TileRaster(
            self.heightmap.copy(), self.splatmap.copy(),
            self.sea_level, self.water_depth,
            self.explicit if explicit is None else explicit,
        )

    def transformed(self, mirror_x: bool, mirror_z: bool) -> 'TileRaster':
        """A preview copy reflected across X and/or Z."""
        clone = self.copy(explicit=False)
        x_step = -1 if mirror_x else 1
        z_step = -1 if mirror_z else 1
        clone.heightmap.data[:] = self.heightmap.data[::z_step, ::x_step]
        clone.splatmap.data[:] = self.splatmap.data[::z_step, ::x_step]
        for dst, src in ((clone.splatmap.water_mask, self.splatmap.water_mask),
                         (clone.splatmap.wetness_mask, self.splatmap.wetness_mask),
                         (clone.splatmap.road_mask, self.splatmap.road_mask)):
            dst[:] = src[::z_step, ::x_step]
        return clone


class DirtyFlags:
    """Per-tile change tracking, cleared only after a successful save."""

    def __init__(self):
        self.heightmap = False
        self.splatmap = False
        self.foliage = False
        self.water = False
        self.last_modified = 0.0

    def mark(self, *channels: str):
        for channel in channels:
            if channel not in DIRTY_CHANNELS:
                raise ValueError(f"Unknown dirty channel '{channel}'")
            setattr(self, channel, True)
        self.last_modified = time.time()

    def clear(self):
        self.heightmap = self.splatmap = self.foliage = self.water = False

    @property
    def is_dirty(self) -> bool:
        return self.heightmap or self.splatmap or self.foliage or self.water


def mirror_flags(gx: int, gy: int) -> tuple[bool, bool]:
    """Checkerboard parity: mirror X on odd columns, Z on odd rows."""
    return gx % 2 != 0, gy % 2 != 0


class TileStore:
    """Owns the active tile and every materialized neighbour tile."""

    def __init__(self, config: dict, logger: logging.Logger):
        self.logger = logger
        self.user_config = config

        # --- Consolidate Configuration ---
        self.settings = {
            'tile_resolution': self.user_config.get('tile_resolution', DEFAULTS.DEFAULT_TILE_RESOLUTION),
            'tile_size': self.user_config.get('tile_size', DEFAULTS.DEFAULT_TILE_SIZE),
            'splat_resolution': self.user_config.get('splat_resolution', None),
            'tile_mode': self.user_config.get('tile_mode', DEFAULTS.DEFAULT_TILE_MODE),
            'shore_height': self.user_config.get('shore_height', DEFAULTS.DEFAULT_SHORE_HEIGHT),
            'water_blend_strength': self.user_config.get('water_blend_strength', DEFAULTS.DEFAULT_WATER_BLEND_STRENGTH),
        }
        if self.settings['tile_mode'] not in DEFAULTS.TILE_MODES:
            self.logger.warning(f"Unknown tile mode '{self.settings['tile_mode']}', using '{DEFAULTS.DEFAULT_TILE_MODE}'.")
            self.settings['tile_mode'] = DEFAULTS.DEFAULT_TILE_MODE

        self.active: TileRaster | None = None
        self._editable: dict[tuple[int, int], TileRaster] = {}
        self._dirty: dict[tuple[int, int], DirtyFlags] = {}
        self._template: TileRaster | None = None

    # --- Properties ---
    @property
    def tile_size(self) -> float:
        if self.active is not None:
            return self.active.scale
        return float(self.settings['tile_size'])

    @property
    def tile_mode(self) -> str:
        return self.settings['tile_mode']

    @property
    def template(self) -> TileRaster | None:
        return self._template

    def require_active(self) -> TileRaster:
        if self.active is None:
            raise PreconditionError("No active tile has been initialized")
        return self.active

    # --- Active Tile Lifecycle ---
    def create_active_tile(self, resolution: int = None, size: float = None) -> TileRaster:
        """Replaces the active tile with a blank one and drops all neighbour data."""
        resolution = resolution or self.settings['tile_resolution']
        size = size or self.settings['tile_size']
        raster = TileRaster.blank(resolution, size, self.settings['splat_resolution'])
        raster.explicit = True
        self.set_active_tile(raster)
        self.logger.info(f"Created new active tile: resolution={resolution}, size={size}")
        return raster

    def set_active_tile(self, raster: TileRaster):
        """Installs new active buffers wholesale; neighbours are rebuilt from a fresh template."""
        raster.explicit = True
        self.active = raster
        self._editable.clear()
        self._dirty = {ACTIVE_KEY: self._dirty.get(ACTIVE_KEY, DirtyFlags())}
        self.snapshot_template()

    def snapshot_template(self) -> TileRaster:
        """
        Captures the active tile as the default template for synthesized
        neighbours. Invalid material cells are repaired on both copies.
        """
        active = self.require_active()
        repaired = active.splatmap.repair_invalid_cells()
        if repaired:
            self.logger.warning(f"Repaired {repaired} invalid material cell(s) to 100% grass while snapshotting the template.")
        self._template = active.copy(explicit=False)
        self.logger.debug("Default tile template updated from the active tile.")
        return self._template

    # --- Tile Access ---
    def synthesize(self, gx: int, gy: int) -> TileRaster:
        """Builds a preview of (gx, gy) from the template under the current tile mode."""
        if self._template is None:
            self.snapshot_template()
        if self.tile_mode == "mirror":
            mirror_x, mirror_z = mirror_flags(gx, gy)
            return self._template.transformed(mirror_x, mirror_z)
        return self._template.copy(explicit=False)

    def get_tile(self, gx: int, gy: int) -> TileRaster:
        """Returns the tile at (gx, gy), materializing it from the template if needed."""
        key = (gx, gy)
        if key == ACTIVE_KEY:
            return self.require_active()
        raster = self._editable.get(key)
        if raster is None:
            raster = self.synthesize(gx, gy)
            self._editable[key] = raster
            self.logger.debug(f"Materialized tile {key} from template ({self.tile_mode}).")
        return raster

    def peek_tile(self, gx: int, gy: int) -> TileRaster | None:
        """Returns an already-materialized tile without creating one."""
        if (gx, gy) == ACTIVE_KEY:
            return self.active
        return self._editable.get((gx, gy))

    def set_tile(self, gx: int, gy: int, raster: TileRaster):
        """Stores explicit data for a non-active position (e.g. a loaded placement)."""
        if (gx, gy) == ACTIVE_KEY:
            self.set_active_tile(raster)
            return
        raster.explicit = True
        self._editable[(gx, gy)] = raster

    def is_materialized(self, gx: int, gy: int) -> bool:
        return (gx, gy) == ACTIVE_KEY or (gx, gy) in self._editable

    def materialized_keys(self) -> list[tuple[int, int]]:
        keys = list(self._editable.keys())
        if self.active is not None:
            keys.append(ACTIVE_KEY)
        return sorted(keys)

    def evict(self, gx: int, gy: int, force: bool = False) -> bool:
        """
        Drops a neighbour's data. Refuses the active tile, and refuses a dirty
        tile unless forced (the caller has saved it).
        """
        key = (gx, gy)
        if key == ACTIVE_KEY or key not in self._editable:
            return False
        flags = self._dirty.get(key)
        if flags is not None and flags.is_dirty and not force:
            self.logger.warning(f"Refusing to evict dirty tile {key} before it is saved.")
            return False
        del self._editable[key]
        self._dirty.pop(key, None)
        self.logger.debug(f"Evicted tile {key}.")
        return True

    def set_tile_mode(self, mode: str) -> list[tuple[int, int]]:
        """
        Switches between 'mirror' and 'clone' and regenerates every
        materialized preview that has not been explicitly edited.

        Returns:
            list: Grid keys whose previews were regenerated.
        """
        if mode not in DEFAULTS.TILE_MODES:
            raise ValueError(f"Unknown tile mode '{mode}'")
        if mode == self.settings['tile_mode']:
            return []
        self.settings['tile_mode'] = mode
        regenerated = []
        for key, raster in sorted(self._editable.items()):
            if not raster.explicit:
                self._editable[key] = self.synthesize(*key)
                regenerated.append(key)
        self.logger.info(f"Tile mode set to '{mode}', regenerated {len(regenerated)} preview tile(s).")
        return regenerated

    # --- Dirty Tracking ---
    def mark_dirty(self, gx: int, gy: int, *channels: str):
        self._dirty.setdefault((gx, gy), DirtyFlags()).mark(*channels)
        raster = self.peek_tile(gx, gy)
        if raster is not None:
            raster.explicit = True

    def get_dirty(self, gx: int, gy: int) -> DirtyFlags:
        return self._dirty.setdefault((gx, gy), DirtyFlags())

    def clear_dirty(self, gx: int, gy: int):
        """Called after an external save has completed."""
        flags = self._dirty.get((gx, gy))
        if flags is not None:
            flags.clear()

    def dirty_tiles(self) -> list[tuple[int, int]]:
        return sorted(key for key, flags in self._dirty.items() if flags.is_dirty)

    # --- Coordinates ---
    def world_to_tile(self, world_x: float, world_z: float) -> tuple[int, int]:
        size = self.tile_size
        return math.floor(world_x / size), math.floor(world_z / size)

    def tile_origin(self, gx: int, gy: int) -> tuple[float, float]:
        size = self.tile_size
        return gx * size, gy * size

    def tiles_in_radius(self, world_x: float, world_z: float, radius: float) -> list[tuple[int, int]]:
        """Every grid key whose square bounds intersect a disc."""
        size = self.tile_size
        gx0, gx1 = math.floor((world_x - radius) / size), math.floor((world_x + radius) / size)
        gy0, gy1 = math.floor((world_z - radius) / size), math.floor((world_z + radius) / size)
        return [(gx, gy) for gy in range(gy0, gy1 + 1) for gx in range(gx0, gx1 + 1)]

    # --- Brushes ---
    def apply_brush(self, tool: str, world_x: float, world_z: float, settings: dict, delta_time: float) -> set:
        """Sculpts every tile under the brush. Returns the touched grid keys."""
        self.require_active()
        size = settings.get('size', DEFAULTS.DEFAULT_BRUSH_SIZE)
        touched = set()
        for gx, gy in self.tiles_in_radius(world_x, world_z, size):
            ox, oz = self.tile_origin(gx, gy)
            raster = self.get_tile(gx, gy)
            if raster.heightmap.apply_brush(world_x - ox, world_z - oz, tool, settings, delta_time):
                self.mark_dirty(gx, gy, "heightmap", "foliage")
                touched.add((gx, gy))
        return touched

    def paint(self, material: str, world_x: float, world_z: float, settings: dict) -> set:
        """
        Paints a material on every tile under the brush. Painting water into a
        tile without a water plane derives its sea level from the ground height.
        """
        self.require_active()
        size = settings.get('size', DEFAULTS.DEFAULT_BRUSH_SIZE)
        strength = settings.get('strength', DEFAULTS.DEFAULT_BRUSH_STRENGTH)
        falloff = settings.get('falloff', DEFAULTS.DEFAULT_BRUSH_FALLOFF)
        is_water = material == DEFAULTS.WATER_MATERIAL

        touched = set()
        for gx, gy in self.tiles_in_radius(world_x, world_z, size):
            ox, oz = self.tile_origin(gx, gy)
            raster = self.get_tile(gx, gy)
            to_cells = (raster.splat_resolution - 1) / raster.scale
            modified = raster.splatmap.paint(
                (world_x - ox) * to_cells, (world_z - oz) * to_cells, size * to_cells,
                material, strength, falloff,
            )
            if not modified:
                continue
            if is_water:
                if not raster.has_water():
                    raster.sea_level = water.derive_sea_level(raster.heightmap, world_x - ox, world_z - oz)
                    self.logger.info(f"Derived sea level {raster.sea_level:.3f} for tile {(gx, gy)} from first water paint.")
                self.mark_dirty(gx, gy, "water", "foliage")
            else:
                self.mark_dirty(gx, gy, "splatmap", "foliage")
            touched.add((gx, gy))
        return touched

    def carve_water(self, world_x: float, world_z: float, settings: dict) -> set:
        """Carves basins under painted water and lines them with sand."""
        self.require_active()
        size = settings.get('size', DEFAULTS.DEFAULT_BRUSH_SIZE)
        strength = settings.get('strength', DEFAULTS.DEFAULT_BRUSH_STRENGTH)

        touched = set()
        for gx, gy in self.tiles_in_radius(world_x, world_z, size * DEFAULTS.WATER_SHORE_ZONE):
            raster = self.get_tile(gx, gy)
            if not raster.has_water():
                continue
            ox, oz = self.tile_origin(gx, gy)
            local_x, local_z = world_x - ox, world_z - oz
            carved = water.carve_water_basin(
                raster.heightmap, local_x, local_z, size,
                raster.sea_level, raster.water_depth, strength,
                blend_strength=self.settings['water_blend_strength'],
                shore_height=self.settings['shore_height'],
            )
            shored = water.paint_shore_sand(raster.splatmap, raster.scale, local_x, local_z, size, strength)
            if carved:
                self.mark_dirty(gx, gy, "heightmap", "foliage")
            if shored:
                self.mark_dirty(gx, gy, "splatmap")
            if carved or shored:
                touched.add((gx, gy))
        return touched

    def sample_height(self, world_x: float, world_z: float) -> float:
        """World-space height lookup across tiles (materialized or previewed)."""
        gx, gy = self.world_to_tile(world_x, world_z)
        ox, oz = self.tile_origin(gx, gy)
        raster = self.peek_tile(gx, gy) or self.synthesize(gx, gy)
        return raster.heightmap.get_interpolated_height(world_x - ox, world_z - oz)

    def stats(self) -> dict:
        return {
            'materialized': len(self._editable) + (1 if self.active is not None else 0),
            'explicit': sum(1 for r in self._editable.values() if r.explicit),
            'dirty': len(self.dirty_tiles()),
            'tile_mode': self.tile_mode,
        }
