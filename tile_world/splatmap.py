# tile_world/splatmap.py

"""
================================================================================
MATERIAL BLEND (SPLAT) BUFFER
================================================================================
This module contains the SplatMap class: per-vertex blend weights for the four
ground materials (grass, dirt, rock, sand) plus three single-channel masks
(water, wetness, road) that are NOT part of the normalized weight set.

Data Contract:
---------------
- Inputs (on initialization):
    - vertex_count (int): Cells per side of the buffer.
- Public Methods:
    - get_weights/set_weights, get_water_weight and mask accessors.
    - paint(center_x, center_z, radius, material, strength, falloff).
    - repair_invalid_cells(), normalize_all(), make_seamless().
    - load_from_data, to_base64, from_base64.
- Side Effects: None outside the instance.
- Invariants: For every cell the 4 weights sum to 1 (after any paint,
  sync or repair); masks stay in [0, 1].
================================================================================
"""

import numpy as np

from . import config as DEFAULTS
from . import codec
from .heightmap import brush_window, calculate_falloff, resample_bilinear, _seamless_blend


def material_channel(material: str) -> int:
    """Channel index of a material; -1 for water, which uses its own mask."""
    if material == DEFAULTS.WATER_MATERIAL:
        return -1
    return DEFAULTS.MATERIAL_CHANNELS.get(material, 0)


class SplatMap:
    """Material weights and masks for one tile."""

    def __init__(self, vertex_count: int):
        self.resolution = vertex_count
        self.data = np.zeros((vertex_count, vertex_count, DEFAULTS.SPLAT_CHANNEL_COUNT), dtype=np.float32)
        self.water_mask = np.zeros((vertex_count, vertex_count), dtype=np.float32)
        self.wetness_mask = np.zeros((vertex_count, vertex_count), dtype=np.float32)
        self.road_mask = np.zeros((vertex_count, vertex_count), dtype=np.float32)
        self.fill_with_material("grass")

    def _in_bounds(self, x: int, z: int) -> bool:
        return 0 <= x < self.resolution and 0 <= z < self.resolution

    def get_raw(self) -> np.ndarray:
        """Flat RGBA view for bulk upload (index = (z * R + x) * 4 + channel)."""
        return self.data.reshape(-1)

    # --- Weights ---
    def get_weights(self, x: int, z: int) -> tuple:
        if not self._in_bounds(x, z):
            return (1.0, 0.0, 0.0, 0.0)
        return tuple(float(w) for w in self.data[z, x])

    def set_weights(self, x: int, z: int, weights):
        if not self._in_bounds(x, z):
            return
        self.data[z, x] = weights

    def fill_with_material(self, material: str):
        channel = material_channel(material)
        self.data.fill(0.0)
        if channel >= 0:
            self.data[:, :, channel] = 1.0

    # --- Masks ---
    def get_water_weight(self, x: int, z: int) -> float:
        if not self._in_bounds(x, z):
            return 0.0
        return float(self.water_mask[z, x])

    def get_wetness_weight(self, x: int, z: int) -> float:
        if not self._in_bounds(x, z):
            return 0.0
        return float(self.wetness_mask[z, x])

    def set_wetness_weight(self, x: int, z: int, value: float):
        if self._in_bounds(x, z):
            self.wetness_mask[z, x] = min(1.0, max(0.0, value))

    def get_road_weight(self, x: int, z: int) -> float:
        if not self._in_bounds(x, z):
            return 0.0
        return float(self.road_mask[z, x])

    def set_road_weight(self, x: int, z: int, value: float):
        if self._in_bounds(x, z):
            self.road_mask[z, x] = min(1.0, max(0.0, value))

    # --- Painting ---
    def paint(self, center_x: float, center_z: float, radius: float, material: str,
              strength: float, falloff: float) -> bool:
        """
        Paints a material in splat-cell coordinates. Regular materials lerp
        every channel towards the one-hot target and renormalize each touched
        cell; water accumulates into the water mask instead.

        Returns:
            bool: True if any cell was touched.
        """
        if radius <= 0:
            return False
        window = brush_window(center_x, center_z, radius, self.resolution)
        if window is None:
            return False
        z0, z1, x0, x1, dist = window

        inside = dist <= radius
        if not inside.any():
            return False
        paint_strength = strength * calculate_falloff(dist / radius, falloff) * DEFAULTS.PAINT_RATE

        channel = material_channel(material)
        if channel < 0:
            region = self.water_mask[z0:z1 + 1, x0:x1 + 1]
            painted = np.minimum(1.0, region + paint_strength)
            region[inside] = painted[inside]
            return True

        region = self.data[z0:z1 + 1, x0:x1 + 1]
        target = np.zeros(DEFAULTS.SPLAT_CHANNEL_COUNT, dtype=np.float64)
        target[channel] = 1.0
        current = region.astype(np.float64)
        lerped = current + (target - current) * paint_strength[..., np.newaxis]
        lerped = _normalized(lerped)
        region[inside] = lerped[inside].astype(np.float32)
        return True

    def paint_annulus(self, center_x: float, center_z: float, inner_radius: float, outer_radius: float,
                      material: str, strength: float) -> bool:
        """
        Paints a ring between two radii. Strength peaks mid-ring and fades to
        zero at both radii with a smoothstep profile.
        """
        channel = material_channel(material)
        if channel < 0 or outer_radius <= inner_radius:
            return False
        window = brush_window(center_x, center_z, outer_radius, self.resolution)
        if window is None:
            return False
        z0, z1, x0, x1, dist = window

        inside = (dist >= inner_radius) & (dist <= outer_radius)
        if not inside.any():
            return False
        half_width = (outer_radius - inner_radius) / 2.0
        mid = inner_radius + half_width
        t = np.clip(1.0 - np.abs(dist - mid) / half_width, 0.0, 1.0)
        paint_strength = strength * t * t * (3.0 - 2.0 * t)

        region = self.data[z0:z1 + 1, x0:x1 + 1]
        target = np.zeros(DEFAULTS.SPLAT_CHANNEL_COUNT, dtype=np.float64)
        target[channel] = 1.0
        current = region.astype(np.float64)
        lerped = _normalized(current + (target - current) * paint_strength[..., np.newaxis])
        region[inside] = lerped[inside].astype(np.float32)
        return True

    # --- Normalization & Repair ---
    def normalize_all(self):
        self.data[:] = _normalized(self.data.astype(np.float64)).astype(np.float32)

    def repair_invalid_cells(self) -> int:
        """
        Forces 100% grass on every cell whose weights are non-finite or sum to
        ~0, and renormalizes the rest.

        Returns:
            int: Number of repaired cells.
        """
        weights = self.data.astype(np.float64)
        sums = weights.sum(axis=-1)
        invalid = ~np.isfinite(weights).all(axis=-1) | ~np.isfinite(sums) | (sums <= DEFAULTS.SPLAT_SUM_EPSILON)
        repaired = int(invalid.sum())
        if repaired:
            self.data[invalid] = (1.0, 0.0, 0.0, 0.0)
        self.normalize_all()

        for mask in (self.water_mask, self.wetness_mask, self.road_mask):
            np.nan_to_num(mask, copy=False, nan=0.0, posinf=1.0, neginf=0.0)
            np.clip(mask, 0.0, 1.0, out=mask)
        return repaired

    def make_seamless(self):
        """Makes opposite borders of the weights and masks identical."""
        res = self.resolution
        blend_width = max(DEFAULTS.SEAMLESS_SPLAT_MIN_BLEND, int(res * DEFAULTS.SEAMLESS_BLEND_FRACTION))
        self.data[:] = _normalized(_seamless_blend(self.data.astype(np.float64), blend_width)).astype(np.float32)
        for mask in (self.water_mask, self.wetness_mask, self.road_mask):
            mask[:] = np.clip(_seamless_blend(mask.astype(np.float64), blend_width), 0.0, 1.0)

    # --- Bulk Transfer ---
    def load_from_data(self, src_data: np.ndarray, src_water_mask: np.ndarray, src_resolution: int):
        """Loads weights and the water mask, resampling bilinearly if the resolution differs."""
        grid = np.asarray(src_data, dtype=np.float32).reshape(src_resolution, src_resolution, DEFAULTS.SPLAT_CHANNEL_COUNT)
        water = np.asarray(src_water_mask, dtype=np.float32).reshape(src_resolution, src_resolution)
        self.data[:] = resample_bilinear(grid, self.resolution)
        self.water_mask[:] = resample_bilinear(water, self.resolution)
        if src_resolution != self.resolution:
            self.normalize_all()

    def to_base64(self) -> str:
        return codec.encode_splatmap(self.data, self.water_mask, self.wetness_mask, self.road_mask)

    def from_base64(self, encoded: str) -> int:
        """
        Decodes a persisted splat payload of any layout version.

        Returns:
            int: The detected layout version (0 when only weights were salvaged).
        """
        decoded = codec.decode_splatmap(encoded, self.resolution)
        shape = (self.resolution, self.resolution)
        self.data[:] = decoded['data'].reshape(shape + (DEFAULTS.SPLAT_CHANNEL_COUNT,))
        self.water_mask[:] = decoded['water_mask'].reshape(shape)
        self.wetness_mask[:] = decoded['wetness_mask'].reshape(shape)
        self.road_mask[:] = decoded['road_mask'].reshape(shape)
        return decoded['version']

    def copy(self) -> 'SplatMap':
        clone = SplatMap(self.resolution)
        clone.data[:] = self.data
        clone.water_mask[:] = self.water_mask
        clone.wetness_mask[:] = self.wetness_mask
        clone.road_mask[:] = self.road_mask
        return clone


def _normalized(weights: np.ndarray) -> np.ndarray:
    """Divides each cell by its channel sum where that sum is positive."""
    sums = weights.sum(axis=-1, keepdims=True)
    safe = np.where(sums > 0, sums, 1.0)
    return np.where(sums > 0, weights / safe, weights)
