# tile_world/heightmap.py

"""
================================================================================
HEIGHTMAP RASTER BUFFER
================================================================================
This module contains the Heightmap class, the elevation half of a tile's
raster data, and the falloff-based sculpting brushes that mutate it.

Data Contract:
---------------
- Inputs (on initialization):
    - resolution (int): Cells per side. The buffer holds resolution + 1
      vertices per side so that neighbouring tiles share a border row.
    - scale (float): World size of the tile in units.
- Public Methods:
    - get_height/set_height, get_interpolated_height: cell and world access.
    - apply_brush(world_x, world_z, tool, settings, delta_time): sculpting.
    - generate_flat, generate_from_noise, make_seamless: whole-tile passes.
    - load_from_data, to_base64, from_base64: bulk transfer.
- Side Effects: None outside the instance.
- Invariants: data.shape == (R, R), dtype float32, flat index == z * R + x.
================================================================================
"""

import math

import numpy as np
from scipy.ndimage import convolve, map_coordinates

from . import config as DEFAULTS
from . import codec
from . import noise

# 3x3 box kernel for the smooth tool.
_SMOOTH_KERNEL = np.ones((3, 3), dtype=np.float64)


def calculate_falloff(normalized_dist, falloff_strength: float):
    """
    Brush attenuation: clamp((1 - d)^(2 - 2*falloff), 0, 1).
    Returns exactly 0 for d >= 1, including the falloff == 1 case where the
    exponent is zero.
    """
    nd = np.asarray(normalized_dist, dtype=np.float64)
    base = np.clip(1.0 - nd, 0.0, 1.0)
    value = np.clip(np.power(base, 2.0 - falloff_strength * 2.0), 0.0, 1.0)
    return np.where(nd >= 1.0, 0.0, value)


def smoothstep(t):
    """Hermite ease in-out on [0, 1]."""
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def brush_window(center_x: float, center_z: float, radius: float, vertex_count: int):
    """
    Computes the clamped integer bounding box of a circular brush and the
    per-cell distances inside it.

    Returns:
        tuple: (z0, z1, x0, x1, dist) with inclusive bounds, or None when the
        brush lies entirely outside the grid.
    """
    min_x = max(0, math.floor(center_x - radius))
    max_x = min(vertex_count - 1, math.ceil(center_x + radius))
    min_z = max(0, math.floor(center_z - radius))
    max_z = min(vertex_count - 1, math.ceil(center_z + radius))
    if min_x > max_x or min_z > max_z:
        return None

    dx = np.arange(min_x, max_x + 1, dtype=np.float64)[np.newaxis, :] - center_x
    dz = np.arange(min_z, max_z + 1, dtype=np.float64)[:, np.newaxis] - center_z
    dist = np.sqrt(dx * dx + dz * dz)
    return min_z, max_z, min_x, max_x, dist


def resample_bilinear(src: np.ndarray, dst_count: int) -> np.ndarray:
    """
    Resamples a (n, n) or (n, n, c) grid to dst_count per side by normalized
    position, so corners map onto corners exactly.
    """
    src_count = src.shape[0]
    if src_count == dst_count:
        return src.astype(np.float32, copy=True)

    coords = np.linspace(0.0, src_count - 1, dst_count)
    zz, xx = np.meshgrid(coords, coords, indexing='ij')
    if src.ndim == 2:
        out = map_coordinates(src.astype(np.float64), [zz, xx], order=1, mode='nearest')
        return out.astype(np.float32)

    channels = [
        map_coordinates(src[:, :, c].astype(np.float64), [zz, xx], order=1, mode='nearest')
        for c in range(src.shape[2])
    ]
    return np.stack(channels, axis=-1).astype(np.float32)


class Heightmap:
    """An elevation grid for one tile."""

    def __init__(self, resolution: int, scale: float):
        self.resolution = resolution + 1  # Vertex count per side
        self.scale = float(scale)
        self.data = np.zeros((self.resolution, self.resolution), dtype=np.float32)
        self.min_height = 0.0
        self.max_height = 0.0

    @property
    def cell_size(self) -> float:
        """World units between two adjacent vertices."""
        return self.scale / (self.resolution - 1)

    def get_raw(self) -> np.ndarray:
        """Flat view of the buffer for bulk upload (index = z * R + x)."""
        return self.data.reshape(-1)

    # --- Cell Access ---
    def get_height(self, x: int, z: int) -> float:
        if x < 0 or x >= self.resolution or z < 0 or z >= self.resolution:
            return 0.0
        return float(self.data[z, x])

    def set_height(self, x: int, z: int, value: float):
        if x < 0 or x >= self.resolution or z < 0 or z >= self.resolution:
            return
        self.data[z, x] = value
        self.min_height = min(self.min_height, float(value))
        self.max_height = max(self.max_height, float(value))

    def recalculate_min_max(self):
        if self.data.size == 0:
            self.min_height = self.max_height = 0.0
            return
        self.min_height = float(self.data.min())
        self.max_height = float(self.data.max())

    def get_interpolated_height(self, world_x: float, world_z: float) -> float:
        """Bilinear height at a tile-local world position; outside vertices read as 0."""
        x = world_x / self.cell_size
        z = world_z / self.cell_size
        x0 = math.floor(x)
        z0 = math.floor(z)
        x_frac = x - x0
        z_frac = z - z0

        h00 = self.get_height(x0, z0)
        h10 = self.get_height(x0 + 1, z0)
        h01 = self.get_height(x0, z0 + 1)
        h11 = self.get_height(x0 + 1, z0 + 1)

        h0 = h00 * (1 - x_frac) + h10 * x_frac
        h1 = h01 * (1 - x_frac) + h11 * x_frac
        return h0 * (1 - z_frac) + h1 * z_frac

    # --- Generation ---
    def generate_flat(self, height: float = 0.0):
        self.data.fill(height)
        self.min_height = float(height)
        self.max_height = float(height)

    def generate_from_noise(self, seed: int, amplitude: float = DEFAULTS.NOISE_AMPLITUDE,
                            period: int = DEFAULTS.NOISE_BASE_FREQUENCY):
        """
        Fills the buffer with multi-octave noise that repeats exactly once per
        tile, so the result tiles seamlessly even in clone mode.
        """
        values = noise.tileable_field(
            seed, self.resolution,
            period=period,
            octaves=DEFAULTS.NOISE_OCTAVES,
            persistence=DEFAULTS.NOISE_PERSISTENCE,
            lacunarity=DEFAULTS.NOISE_LACUNARITY,
        )
        self.data[:] = (values * amplitude).astype(np.float32)
        self.recalculate_min_max()

    # --- Brushes ---
    def apply_brush(self, world_x: float, world_z: float, tool: str, settings: dict, delta_time: float) -> bool:
        """
        Applies a sculpting tool at a tile-local world position.

        Args:
            tool (str): One of 'raise', 'lower', 'flatten', 'smooth'.
            settings (dict): Brush settings with 'size' (world radius),
                'strength' and 'falloff' in [0, 1].
            delta_time (float): Seconds since the previous application.

        Returns:
            bool: True if any vertex changed.
        """
        if tool not in DEFAULTS.HEIGHT_TOOLS:
            raise ValueError(f"Unknown height tool '{tool}'")

        size = settings.get('size', DEFAULTS.DEFAULT_BRUSH_SIZE)
        strength = settings.get('strength', DEFAULTS.DEFAULT_BRUSH_STRENGTH)
        falloff_strength = settings.get('falloff', DEFAULTS.DEFAULT_BRUSH_FALLOFF)

        center_x = world_x / self.cell_size
        center_z = world_z / self.cell_size
        radius = size / self.cell_size
        if radius <= 0:
            return False

        window = brush_window(center_x, center_z, radius, self.resolution)
        if window is None:
            return False
        z0, z1, x0, x1, dist = window

        inside = dist <= radius
        if not inside.any():
            return False
        falloff = calculate_falloff(dist / radius, falloff_strength)

        region = self.data[z0:z1 + 1, x0:x1 + 1]
        current = region.astype(np.float64)

        if tool == "raise":
            updated = current + strength * falloff * delta_time * DEFAULTS.BRUSH_RATE_MULTIPLIER
        elif tool == "lower":
            updated = current - strength * falloff * delta_time * DEFAULTS.BRUSH_RATE_MULTIPLIER
        elif tool == "flatten":
            target = self.get_interpolated_height(world_x, world_z)
            updated = current + (target - current) * falloff * DEFAULTS.FLATTEN_RATE
        else:
            mean = self._neighbourhood_mean(z0, z1, x0, x1)
            updated = current + (mean - current) * falloff * DEFAULTS.SMOOTH_RATE

        updated = updated.astype(np.float32)
        changed = inside & (updated != region)
        if not changed.any():
            return False

        region[changed] = updated[changed]
        self.recalculate_min_max()
        return True

    def _neighbourhood_mean(self, z0: int, z1: int, x0: int, x1: int) -> np.ndarray:
        """Mean of each vertex's in-bounds 3x3 neighbourhood over the inclusive window."""
        ez0, ez1 = max(0, z0 - 1), min(self.resolution - 1, z1 + 1)
        ex0, ex1 = max(0, x0 - 1), min(self.resolution - 1, x1 + 1)
        expanded = self.data[ez0:ez1 + 1, ex0:ex1 + 1].astype(np.float64)

        sums = convolve(expanded, _SMOOTH_KERNEL, mode='constant', cval=0.0)
        counts = convolve(np.ones_like(expanded), _SMOOTH_KERNEL, mode='constant', cval=0.0)
        mean = sums / counts
        return mean[z0 - ez0:z1 - ez0 + 1, x0 - ex0:x1 - ex0 + 1]

    # --- Whole-Tile Passes ---
    def make_seamless(self):
        """
        Makes opposite borders identical so the tile repeats without a seam:
        edges are pulled towards the average of opposite edges with a smoothstep
        blend inwards, corners towards the average of all four.
        """
        res = self.resolution
        blend_width = max(DEFAULTS.SEAMLESS_MIN_BLEND, int(res * DEFAULTS.SEAMLESS_BLEND_FRACTION))
        self.data[:] = _seamless_blend(self.data.astype(np.float64), blend_width).astype(np.float32)
        self.recalculate_min_max()

    def load_from_data(self, src: np.ndarray, src_resolution: int = None):
        """Loads elevation values, resampling bilinearly if the vertex counts differ."""
        src = np.asarray(src, dtype=np.float32)
        if src_resolution is None:
            src_resolution = codec.infer_vertex_count(src.size)
            if src_resolution is None:
                raise codec.CodecError(f"Heightmap payload of {src.size} values is not square")
        grid = src.reshape(src_resolution, src_resolution)
        self.data[:] = resample_bilinear(grid, self.resolution)
        self.recalculate_min_max()

    def to_base64(self) -> str:
        return codec.encode_heightmap(self.data)

    def from_base64(self, encoded: str):
        """Decodes a persisted heightmap; a square payload of another size is resampled."""
        self.load_from_data(codec.decode_heightmap(encoded))

    def copy(self) -> 'Heightmap':
        clone = Heightmap(self.resolution - 1, self.scale)
        clone.data[:] = self.data
        clone.min_height = self.min_height
        clone.max_height = self.max_height
        return clone


def _seamless_blend(data: np.ndarray, blend_width: int) -> np.ndarray:
    """
    Opposite-edge averaging shared by the heightmap and the splat buffers.
    Works on (n, n) and (n, n, c) float arrays and returns a new array.
    """
    res = data.shape[0]
    left_right_avg = (data[:, 0] + data[:, res - 1]) / 2.0    # indexed by z
    top_bottom_avg = (data[0, :] + data[res - 1, :]) / 2.0    # indexed by x
    corner_avg = (left_right_avg[0] + left_right_avg[res - 1] + top_bottom_avg[0] + top_bottom_avg[res - 1]) / 4.0

    idx = np.arange(res)
    x_dist = np.minimum(idx, res - 1 - idx)[np.newaxis, :]
    z_dist = np.minimum(idx, res - 1 - idx)[:, np.newaxis]
    extra = (np.newaxis,) * (data.ndim - 2)

    out = data.copy()

    # 1. Left-right blend towards the per-row average.
    t_x = smoothstep(x_dist / blend_width)[(...,) + extra]
    lr_target = left_right_avg[:, np.newaxis]
    in_x = (x_dist < blend_width)[(...,) + extra]
    out = np.where(in_x, lr_target + (out - lr_target) * t_x, out)

    # 2. Top-bottom blend applied on top.
    t_z = smoothstep(z_dist / blend_width)[(...,) + extra]
    tb_target = top_bottom_avg[np.newaxis, :]
    in_z = (z_dist < blend_width)[(...,) + extra]
    out = np.where(in_z, tb_target + (out - tb_target) * t_z, out)

    # 3. Corner blend towards the four-corner average.
    corner_dist = np.sqrt(x_dist * x_dist + z_dist * z_dist)
    t_c = smoothstep(corner_dist / blend_width)[(...,) + extra]
    in_c = (corner_dist < blend_width)[(...,) + extra]
    out = np.where(in_c, corner_avg + (out - corner_avg) * t_c, out)

    # 4. Force exact edge and corner equality.
    row_avg = (out[:, 0] + out[:, res - 1]) / 2.0
    out[:, 0] = row_avg
    out[:, res - 1] = row_avg
    col_avg = (out[0, :] + out[res - 1, :]) / 2.0
    out[0, :] = col_avg
    out[res - 1, :] = col_avg
    for z, x in ((0, 0), (0, res - 1), (res - 1, 0), (res - 1, res - 1)):
        out[z, x] = corner_avg

    return out
