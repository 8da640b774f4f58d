# tile_world/config.py

"""
================================================================================
INTERNAL DEFAULT CONFIGURATION
================================================================================
This module contains the default, fallback internal constants for the tile
editor core. These values are used if they are not explicitly provided by the
user's configuration.

DO NOT MODIFY THIS FILE FOR A SPECIFIC PROJECT.
Instead, pass a configuration dictionary to the component instances.
================================================================================
"""

# --- Tile Defaults ---
# Heightmap resolution is the number of cells per side. The vertex count is
# always resolution + 1 so that neighbouring tiles share their border row.
DEFAULT_TILE_RESOLUTION = 512
DEFAULT_TILE_SIZE = 64.0  # World units per tile side.

# A sea level far below any sculpted terrain means "no water yet".
DEFAULT_SEA_LEVEL = -100.0
DEFAULT_WATER_DEPTH = 2.0

# Fallback tile name used when synthesizing a tile for a missing reference.
DEFAULT_TILE_NAME = "Untitled Tile"

# --- Brush Defaults ---
DEFAULT_BRUSH_SIZE = 5.0       # Radius in world units
DEFAULT_BRUSH_STRENGTH = 0.5
DEFAULT_BRUSH_FALLOFF = 0.5    # 0 = hard quadratic edge, 1 = linear (no attenuation curve)

# Height change per second at full strength and zero distance.
BRUSH_RATE_MULTIPLIER = 10.0
# Fraction of the gap to the target closed per application.
FLATTEN_RATE = 0.1
SMOOTH_RATE = 0.5
# Material paint lerp rate per application at full strength.
PAINT_RATE = 0.1

HEIGHT_TOOLS = ("raise", "lower", "flatten", "smooth")
# Re-carves basins under already painted water without painting more of it.
CARVE_TOOL = "carve"

# --- Materials ---
# Channel order of the 4-channel splat buffer. Water is NOT a splat channel,
# it lives in its own mask.
MATERIAL_CHANNELS = {
    "grass": 0,
    "dirt": 1,
    "rock": 2,
    "sand": 3,
}
WATER_MATERIAL = "water"
SPLAT_CHANNEL_COUNT = 4

# Cells whose weights sum to less than this are considered invalid.
SPLAT_SUM_EPSILON = 1e-6

# --- Water Body Carving ---
# Radial zones, as a fraction of the brush radius.
WATER_DEEP_ZONE = 0.6    # Inside this: flat basin floor at seaLevel - waterDepth
WATER_SLOPE_ZONE = 1.0   # Deep -> seaLevel smoothstep bank
WATER_SHORE_ZONE = 1.4   # Shore lip raised towards seaLevel + shoreHeight
WATER_CARVE_RATE = 0.03
DEFAULT_SHORE_HEIGHT = 0.3
DEFAULT_WATER_BLEND_STRENGTH = 1.0
# Sand annulus painted just outside the water radius.
SHORE_SAND_INNER = 0.9
SHORE_SAND_OUTER = 1.5
SHORE_SAND_STRENGTH = 0.5

# --- Seamless Synchronization ---
DEFAULT_HEIGHT_BLEND_WIDTH = 10
# A deliberately wide, very gradual transition for materials.
DEFAULT_SPLAT_BLEND_WIDTH = 30
TILE_MODES = ("mirror", "clone")
DEFAULT_TILE_MODE = "mirror"

# --- Template Seamless Pass ---
# Fraction of resolution used as the blend zone by make_seamless().
SEAMLESS_BLEND_FRACTION = 0.15
SEAMLESS_MIN_BLEND = 3          # Heights
SEAMLESS_SPLAT_MIN_BLEND = 8    # Material weights and masks

# --- Terrain Noise ---
DEFAULT_SEED = 1337
NOISE_AMPLITUDE = 10.0
NOISE_BASE_FREQUENCY = 4   # Noise periods across one tile (integer keeps it tileable)
NOISE_OCTAVES = 4
NOISE_PERSISTENCE = 0.5
NOISE_LACUNARITY = 2

# --- Streaming ---
STREAMING_CELL_SIZE = 64.0
STREAMING_NEAR_RADIUS = 1   # 3x3 cells
STREAMING_MID_RADIUS = 2    # 5x5 cells
STREAMING_FAR_RADIUS = 3    # 7x7 cells
STREAMING_UNLOAD_DELAY_S = 5.0
STREAMING_MAX_CONCURRENT_LOADS = 4
STREAMING_MAX_LOADS_PER_UPDATE = 2
# A full re-evaluation of the ring happens every N updates even when the
# anchor stays inside the same cell.
STREAMING_UPDATE_INTERVAL = 5

# --- Foliage ---
FOLIAGE_CHUNK_SIZE = 16.0
FOLIAGE_MAX_INSTANCES_PER_CHUNK = 5000
FOLIAGE_SEED = 12345
# Linear congruential generator constants.
LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280
FOLIAGE_MID_DENSITY = 0.5
IMPOSTOR_SAMPLING_RATE = 4
FOLIAGE_SIZE_BIAS_EXPONENT = 2.5
FOLIAGE_WATER_REJECT = 0.1
FOLIAGE_SLOPE_DELTA = 0.5
FOLIAGE_VARIATION_COUNT = 4
# Visibility distances (world units) for the distance-based LOD refresh.
FOLIAGE_LOD_DISTANCES = {
    "near": 100.0,
    "mid": 200.0,
    "far": 450.0,
}
# The anchor must move further than this before visibility is recomputed.
FOLIAGE_VISIBILITY_EPSILON = 1.0

# Per-type vegetation parameters. 'channel' indexes MATERIAL_CHANNELS.
FOLIAGE_TYPES = {
    "grass": {
        "base_density": 8.0, "min_scale": 0.4, "max_scale": 0.8,
        "channel": 0, "threshold": 0.3, "slope_max": 0.6, "y_offset": 0.0,
        "size_bias": 1.0, "tilt": False,
        "variations": 4, "seed_offset": 500, "color": (77, 128, 51),
    },
    "pebble": {
        "base_density": 0.5, "min_scale": 0.1, "max_scale": 0.25,
        "channel": 1, "threshold": 0.4, "slope_max": 0.8, "y_offset": -0.02,
        "size_bias": FOLIAGE_SIZE_BIAS_EXPONENT, "tilt": False,
        "variations": 1, "seed_offset": 1500, "color": (102, 89, 77),
    },
    "rock": {
        "base_density": 0.15, "min_scale": 0.2, "max_scale": 0.6,
        "channel": 2, "threshold": 0.3, "slope_max": 0.9, "y_offset": -0.05,
        "size_bias": FOLIAGE_SIZE_BIAS_EXPONENT, "tilt": True,
        "variations": 4, "seed_offset": 0, "color": (128, 128, 133),
    },
    "sandRock": {
        "base_density": 0.05, "min_scale": 0.15, "max_scale": 0.4,
        "channel": 3, "threshold": 0.5, "slope_max": 0.7, "y_offset": -0.03,
        "size_bias": FOLIAGE_SIZE_BIAS_EXPONENT, "tilt": True,
        "variations": 4, "seed_offset": 2500, "color": (153, 140, 115),
    },
}

# --- Tile Library ---
TILE_LIBRARY_DIR = "tile_library"
TILE_ID_PREFIX = "tile"
WORLD_PROJECT_VERSION = "1.0"
