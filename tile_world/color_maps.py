# tile_world/color_maps.py

"""
================================================================================
SHARED COLOR MAPPING UTILITIES
================================================================================
This module converts raw tile data (elevation, material weights, water) into
RGB color arrays for top-down previews.

It is a pure, stateless utility with no dependencies on Pygame, so both the
real-time editor renderer and the offline exporter use it.

Data Contract:
---------------
- Inputs: (R, R) height arrays, (R, R, 4) weight arrays, (R, R) masks,
  indexed [z, x].
- Outputs: uint8 arrays of shape (R, R, 3) indexed [x, z], ready for
  pygame.surfarray. Transpose axes 0 and 1 for Pillow.
- Side Effects: None.
================================================================================
"""
import numpy as np

from . import config as DEFAULTS
from .tiles import TileRaster

# --- Default Color Mappings ---
COLOR_MAP_MATERIALS = {
    "grass": (34, 139, 34),
    "dirt": (139, 90, 43),
    "rock": (112, 128, 144),
    "sand": (240, 230, 140),
}
COLOR_SHALLOW_WATER = (26, 102, 255)
COLOR_DEEP_WATER = (10, 20, 80)
COLOR_ROAD = (90, 80, 70)

# Light direction for hillshading (x, z, up), normalized below.
LIGHT_DIRECTION = np.array([-1.0, -1.0, 1.5])
AMBIENT_LIGHT = 0.35


def create_material_palette() -> np.ndarray:
    """A (4, 3) float palette in channel order."""
    palette = np.zeros((DEFAULTS.SPLAT_CHANNEL_COUNT, 3), dtype=np.float64)
    for material, channel in DEFAULTS.MATERIAL_CHANNELS.items():
        palette[channel] = COLOR_MAP_MATERIALS[material]
    return palette


def create_elevation_lut() -> np.ndarray:
    """A 256-entry grayscale LUT, dark for low ground."""
    gray = np.linspace(20, 235, 256)
    return np.stack([gray] * 3, axis=-1).astype(np.uint8)


def get_material_color_array(weights: np.ndarray) -> np.ndarray:
    """Blends the material palette by per-vertex weights."""
    colors = weights.astype(np.float64) @ create_material_palette()
    return np.transpose(np.clip(colors, 0, 255).astype(np.uint8), (1, 0, 2))


def get_elevation_color_array(heights: np.ndarray, min_height: float = None, max_height: float = None) -> np.ndarray:
    """Normalizes heights to [0, 1] (over the given or actual range) and maps them to grayscale."""
    low = float(heights.min()) if min_height is None else min_height
    high = float(heights.max()) if max_height is None else max_height
    span = high - low
    normalized = np.zeros_like(heights, dtype=np.float64) if span <= 0 else (heights - low) / span
    indices = (np.clip(normalized, 0.0, 1.0) * 255).astype(np.uint8)
    colors = create_elevation_lut()[indices]
    return np.transpose(colors, (1, 0, 2))


def calculate_hillshade(heights: np.ndarray, cell_size: float) -> np.ndarray:
    """Lambertian shading in [AMBIENT_LIGHT, 1] from the height gradient."""
    dz, dx = np.gradient(heights.astype(np.float64), cell_size)
    normals = np.stack([-dx, -dz, np.ones_like(dx)], axis=-1)
    normals /= np.linalg.norm(normals, axis=-1, keepdims=True)
    light = LIGHT_DIRECTION / np.linalg.norm(LIGHT_DIRECTION)
    lambert = np.clip(normals @ light, 0.0, 1.0)
    return AMBIENT_LIGHT + (1.0 - AMBIENT_LIGHT) * lambert


def get_terrain_color_array(raster: TileRaster) -> np.ndarray:
    """
    The full preview: material colors, roads, hillshading, then water where
    the water mask is painted and the ground lies below the tile's sea level.
    """
    heights = raster.heightmap.data
    colors = raster.splatmap.data.astype(np.float64) @ create_material_palette()

    # --- 1. Roads ---
    road = raster.splatmap.road_mask[..., np.newaxis].astype(np.float64)
    colors = colors * (1.0 - road) + np.array(COLOR_ROAD) * road

    # --- 2. Shading (splat and height grids may differ in size) ---
    if raster.splat_resolution == raster.resolution:
        colors *= calculate_hillshade(heights, raster.heightmap.cell_size)[..., np.newaxis]

    # --- 3. Water ---
    if raster.has_water() and raster.splat_resolution == raster.resolution:
        depth = raster.sea_level - heights.astype(np.float64)
        submerged = (depth > 0) & (raster.splatmap.water_mask > 0)
        depth_t = np.clip(depth / max(raster.water_depth, 1e-6), 0.0, 1.0)[..., np.newaxis]
        water_color = (1.0 - depth_t) * np.array(COLOR_SHALLOW_WATER) + depth_t * np.array(COLOR_DEEP_WATER)
        colors = np.where(submerged[..., np.newaxis], water_color, colors)

    return np.transpose(np.clip(colors, 0, 255).astype(np.uint8), (1, 0, 2))


def get_water_mask_color_array(water_mask: np.ndarray) -> np.ndarray:
    """The water mask alone, black to shallow-water blue."""
    t = np.clip(water_mask.astype(np.float64), 0.0, 1.0)[..., np.newaxis]
    colors = t * np.array(COLOR_SHALLOW_WATER)
    return np.transpose(colors.astype(np.uint8), (1, 0, 2))
