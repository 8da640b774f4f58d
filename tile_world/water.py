# tile_world/water.py

"""
================================================================================
WATER BODY SHAPING
================================================================================
Terrain operations that accompany painting water: deriving a tile's sea level
from the first painted point, carving a basin under painted water and lining
it with a sand shore.

Data Contract:
---------------
- Inputs: A Heightmap / SplatMap, a tile-local world position, the brush
  radius (world units) and the tile's sea level and water depth.
- Outputs: bool (whether anything changed) or the derived sea level.
- Side Effects: Mutates the given buffers in place.
- Invariants: Carving only lowers terrain inside the water radius and only
  raises it in the shore ring; each call closes a fraction of the gap to the
  target, so it approaches but never overshoots.
================================================================================
"""

import numpy as np

from . import config as DEFAULTS
from .heightmap import Heightmap, brush_window, smoothstep
from .splatmap import SplatMap


def derive_sea_level(heightmap: Heightmap, world_x: float, world_z: float) -> float:
    """The water surface sits at the ground height where water was first painted."""
    return heightmap.get_interpolated_height(world_x, world_z)


def carve_profile(normalized_dist, sea_level: float, water_depth: float, shore_height: float):
    """
    Radial target heights and per-cell weights for the three carving zones.

    Returns:
        tuple: (target, weight, lowers) arrays. 'lowers' is True where the
        zone may only lower terrain, False where it may only raise it.
    """
    nd = np.asarray(normalized_dist, dtype=np.float64)
    floor = sea_level - water_depth

    deep = nd < DEFAULTS.WATER_DEEP_ZONE
    slope = (nd >= DEFAULTS.WATER_DEEP_ZONE) & (nd < DEFAULTS.WATER_SLOPE_ZONE)
    shore = (nd >= DEFAULTS.WATER_SLOPE_ZONE) & (nd <= DEFAULTS.WATER_SHORE_ZONE)

    slope_t = smoothstep((nd - DEFAULTS.WATER_DEEP_ZONE) / (DEFAULTS.WATER_SLOPE_ZONE - DEFAULTS.WATER_DEEP_ZONE))
    shore_t = smoothstep((nd - DEFAULTS.WATER_SLOPE_ZONE) / (DEFAULTS.WATER_SHORE_ZONE - DEFAULTS.WATER_SLOPE_ZONE))

    target = np.where(deep, floor, np.where(slope, floor + (sea_level - floor) * slope_t, sea_level + shore_height))
    weight = np.where(deep | slope, 1.0, np.where(shore, 1.0 - shore_t, 0.0))
    return target, weight, deep | slope


def carve_water_basin(heightmap: Heightmap, world_x: float, world_z: float, brush_radius: float,
                      sea_level: float, water_depth: float, strength: float,
                      blend_strength: float = DEFAULTS.DEFAULT_WATER_BLEND_STRENGTH,
                      shore_height: float = DEFAULTS.DEFAULT_SHORE_HEIGHT) -> bool:
    """
    Shapes the terrain under a water brush stroke over a disc of
    1.4 x brush_radius: a flat floor, a smoothstep bank up to sea level and a
    raised shore lip beyond it.
    """
    radius = brush_radius / heightmap.cell_size
    if radius <= 0:
        return False
    center_x = world_x / heightmap.cell_size
    center_z = world_z / heightmap.cell_size

    window = brush_window(center_x, center_z, radius * DEFAULTS.WATER_SHORE_ZONE, heightmap.resolution)
    if window is None:
        return False
    z0, z1, x0, x1, dist = window

    target, weight, lowers = carve_profile(dist / radius, sea_level, water_depth, shore_height)
    rate = strength * blend_strength * DEFAULTS.WATER_CARVE_RATE

    region = heightmap.data[z0:z1 + 1, x0:x1 + 1]
    current = region.astype(np.float64)
    step = (target - current) * weight * rate

    # 1. Banks and floor only ever go down, the shore lip only ever goes up.
    allowed = np.where(lowers, step < 0, step > 0)
    updated = np.where(allowed, current + step, current).astype(np.float32)

    changed = updated != region
    if not changed.any():
        return False
    region[changed] = updated[changed]
    heightmap.recalculate_min_max()
    return True


def paint_shore_sand(splatmap: SplatMap, tile_size: float, world_x: float, world_z: float,
                     brush_radius: float, strength: float) -> bool:
    """Paints a sand ring just outside the water radius."""
    to_cells = (splatmap.resolution - 1) / tile_size
    radius = brush_radius * to_cells
    return splatmap.paint_annulus(
        world_x * to_cells, world_z * to_cells,
        radius * DEFAULTS.SHORE_SAND_INNER,
        radius * DEFAULTS.SHORE_SAND_OUTER,
        "sand",
        strength * DEFAULTS.SHORE_SAND_STRENGTH,
    )
