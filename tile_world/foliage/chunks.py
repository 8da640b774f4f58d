# tile_world/foliage/chunks.py

"""
================================================================================
FOLIAGE CHUNK MANAGER
================================================================================
This module scatters vegetation (grass, pebbles, rocks, sand rocks) over the
terrain in fixed-size square chunks, independent of both the tile grid and
the streaming cell grid.

Generation is fully deterministic: every chunk seeds a linear congruential
generator from its world-space origin, draws candidate positions, and rejects
them by material weight, water, slope and a soft acceptance test. Accepted
instances become 4x4 transforms which are then shuffled with the same
generator so that any prefix of the buffer is a spatially uniform subsample.

LOD tiers per chunk:
    - NEAR:     every instance as a 3D transform.
    - MID:      a prefix of each shuffled buffer, floor(total / 2) per chunk.
    - IMPOSTOR: every Nth instance folded into one billboard batch.
    - FAR:      nothing; the chunk is disposed.

Data Contract:
---------------
- Inputs (on initialization):
    - terrain (TerrainSource): Resolves world positions to tile rasters.
    - config (dict): Overrides for chunk size, densities, LOD distances, etc.
    - logger (logging.Logger): The logger instance for all output.
- Public Methods:
    - ensure_chunk(cx, cz, lod), set_chunk_lod(cx, cz, lod), dispose_chunk.
    - load_bounds / set_bounds_lod / dispose_bounds for world rectangles.
    - regenerate_area(center_x, center_z, radius), update_visibility(x, z).
    - get_base_mesh(key), get_stats(), dispose_all().
- Side Effects: Logs messages using the provided logger.
- Invariants: A chunk never holds 3D instances and an impostor batch at the
  same time. The same chunk on the same terrain always yields the same
  instances.
================================================================================
"""

import enum
import logging
import math
import re
from typing import Protocol

import numpy as np

from .. import config as DEFAULTS
from ..tiles import TileRaster


class FoliageLOD(enum.IntEnum):
    NEAR = 0
    MID = 1
    IMPOSTOR = 2
    FAR = 3


class TerrainSource(Protocol):
    """What chunk generation needs from the tile store."""
    tile_size: float

    def world_to_tile(self, world_x: float, world_z: float) -> tuple[int, int]: ...
    def tile_origin(self, gx: int, gy: int) -> tuple[float, float]: ...
    def get_tile(self, gx: int, gy: int) -> TileRaster: ...


class LCGRandom:
    """The seeded linear congruential generator used for all scattering."""

    def __init__(self, seed: int):
        self.seed = int(seed)

    def random(self) -> float:
        self.seed = (self.seed * DEFAULTS.LCG_MULTIPLIER + DEFAULTS.LCG_INCREMENT) % DEFAULTS.LCG_MODULUS
        return self.seed / DEFAULTS.LCG_MODULUS

    def shuffle_rows(self, rows: np.ndarray) -> np.ndarray:
        """In-place Fisher-Yates shuffle of the rows of an array."""
        for i in range(len(rows) - 1, 0, -1):
            j = math.floor(self.random() * (i + 1))
            if j != i:
                rows[[i, j]] = rows[[j, i]]
        return rows


class BaseMesh:
    """A renderable template shared by every instance of one variation."""

    def __init__(self, type_name: str, variation: int, color: tuple):
        self.type_name = type_name
        self.variation = variation
        self.color = color

    @property
    def key(self) -> str:
        return f"{self.type_name}_v{self.variation}"

    def __repr__(self):
        return f"BaseMesh({self.key!r})"


class FoliageChunk:
    """One chunk's generated buffers and its current representation."""

    def __init__(self, x: int, z: int):
        self.x = x
        self.z = z
        self.lod = FoliageLOD.NEAR
        # Shuffled source transforms per variation key, (n, 16) each.
        self.instances: dict[str, np.ndarray] = {}
        # What is currently shown: 3D transforms per key, or one billboard batch.
        self.meshes: dict[str, np.ndarray] = {}
        self.impostor: np.ndarray | None = None

    def instance_count(self) -> int:
        return sum(len(m) for m in self.meshes.values())


# --- Generation Helpers ---
def compose_instance_matrix(x: float, y: float, z: float, scale: float,
                            rot_x: float = 0.0, rot_y: float = 0.0, rot_z: float = 0.0) -> np.ndarray:
    """
    A row-major 4x4 transform (row-vector convention): the upper 3x3 is the
    scaled rotation Rz * Rx * Ry and the translation sits at indices 12..14.
    """
    cx, sx = math.cos(rot_x), math.sin(rot_x)
    cy, sy = math.cos(rot_y), math.sin(rot_y)
    cz, sz = math.cos(rot_z), math.sin(rot_z)
    rx = np.array([[1, 0, 0], [0, cx, sx], [0, -sx, cx]])
    ry = np.array([[cy, 0, -sy], [0, 1, 0], [sy, 0, cy]])
    rz = np.array([[cz, sz, 0], [-sz, cz, 0], [0, 0, 1]])

    matrix = np.zeros((4, 4), dtype=np.float32)
    matrix[:3, :3] = (rz @ rx @ ry) * scale
    matrix[3] = (x, y, z, 1.0)
    return matrix.ravel()


def calculate_slope(raster: TileRaster, local_x: float, local_z: float,
                    delta: float = DEFAULTS.FOLIAGE_SLOPE_DELTA) -> float:
    """0 for flat ground, approaching 1 for vertical, from central differences."""
    size = raster.scale
    height = raster.heightmap.get_interpolated_height
    h_l = height(max(0.0, local_x - delta), local_z)
    h_r = height(min(size, local_x + delta), local_z)
    h_d = height(local_x, max(0.0, local_z - delta))
    h_u = height(local_x, min(size, local_z + delta))
    dx = (h_r - h_l) / (2 * delta)
    dz = (h_u - h_d) / (2 * delta)
    return 1.0 - 1.0 / math.sqrt(dx * dx + 1.0 + dz * dz)


def generate_type_instances(raster: TileRaster, origin: tuple[float, float], bounds: tuple[float, float, float, float],
                            type_name: str, type_config: dict, max_instances: int) -> dict[str, np.ndarray]:
    """
    Scatters one vegetation type over a world-space rectangle lying inside
    the given tile.

    Returns:
        dict: variation key -> shuffled (n, 16) float32 transform array.
    """
    start_x, start_z, end_x, end_z = bounds
    ox, oz = origin
    variations = type_config.get('variations', 1)
    rng = LCGRandom(math.floor(start_x * 1000 + start_z) + type_config.get('seed_offset', 0))

    area = (end_x - start_x) * (end_z - start_z)
    count = min(math.floor(area * type_config['base_density']), max_instances)
    splat_res = raster.splat_resolution
    channel = type_config['channel']
    buckets = [[] for _ in range(variations)]

    for _ in range(count):
        x = start_x + rng.random() * (end_x - start_x)
        z = start_z + rng.random() * (end_z - start_z)
        local_x, local_z = x - ox, z - oz

        # --- 1. Material, water and acceptance tests ---
        sx = min(splat_res - 1, max(0, math.floor(local_x / raster.scale * (splat_res - 1))))
        sz = min(splat_res - 1, max(0, math.floor(local_z / raster.scale * (splat_res - 1))))
        weight = raster.get_weights(sx, sz)[channel]
        if weight < type_config['threshold']:
            continue
        if raster.get_water_weight(sx, sz) > DEFAULTS.FOLIAGE_WATER_REJECT:
            continue
        if rng.random() > weight:
            continue

        # --- 2. Terrain fit ---
        y = raster.heightmap.get_interpolated_height(local_x, local_z)
        if calculate_slope(raster, local_x, local_z) > type_config['slope_max']:
            continue

        # --- 3. Transform ---
        size_random = rng.random() ** type_config.get('size_bias', DEFAULTS.FOLIAGE_SIZE_BIAS_EXPONENT)
        scale_base = type_config['min_scale'] + size_random * (type_config['max_scale'] - type_config['min_scale'])
        scale = scale_base * (0.8 + rng.random() * 0.4)
        rot_y = rng.random() * math.pi * 2
        rot_x = rot_z = 0.0
        if type_config.get('tilt'):
            rot_x = (rng.random() - 0.5) * 0.2
            rot_z = (rng.random() - 0.5) * 0.2
        variation = math.floor(rng.random() * variations) if variations > 1 else 0

        buckets[variation].append(compose_instance_matrix(x, y + type_config['y_offset'], z, scale, rot_x, rot_y, rot_z))

    result = {}
    for variation, rows in enumerate(buckets):
        if not rows:
            continue
        result[f"{type_name}_v{variation}"] = rng.shuffle_rows(np.stack(rows).astype(np.float32))
    return result


def density_counts(instances: dict[str, np.ndarray], density: float) -> dict[str, int]:
    """
    Splits floor(total * density) instances across the variation buffers by
    largest remainder, so the chunk as a whole keeps the exact fraction.
    """
    exact = {key: len(buf) * density for key, buf in instances.items()}
    counts = {key: math.floor(value) for key, value in exact.items()}
    spare = math.floor(sum(len(buf) for buf in instances.values()) * density) - sum(counts.values())
    by_remainder = sorted(exact, key=lambda key: (counts[key] - exact[key], key))
    for key in by_remainder[:max(spare, 0)]:
        counts[key] = min(counts[key] + 1, len(instances[key]))
    return counts


def impostor_batch(instances: dict[str, np.ndarray], sampling_rate: int) -> np.ndarray:
    """Every Nth instance as (x, y, z, scale) rows for a billboard batch."""
    rows = []
    for key in sorted(instances):
        sampled = instances[key][::sampling_rate]
        if len(sampled) == 0:
            continue
        scale = np.linalg.norm(sampled[:, 0:3], axis=1)
        rows.append(np.column_stack([sampled[:, 12:15], scale]))
    if not rows:
        return np.zeros((0, 4), dtype=np.float32)
    return np.concatenate(rows).astype(np.float32)


class FoliageChunkManager:
    """Owns every foliage chunk and its level of detail."""

    def __init__(self, terrain: TerrainSource, config: dict, logger: logging.Logger):
        self.terrain = terrain
        self.logger = logger
        self.user_config = config

        # --- Consolidate Configuration ---
        self.settings = {
            'chunk_size': float(self.user_config.get('chunk_size', DEFAULTS.FOLIAGE_CHUNK_SIZE)),
            'max_instances_per_chunk': int(self.user_config.get('max_instances_per_chunk', DEFAULTS.FOLIAGE_MAX_INSTANCES_PER_CHUNK)),
            'mid_density': float(self.user_config.get('mid_density', DEFAULTS.FOLIAGE_MID_DENSITY)),
            'impostor_sampling_rate': int(self.user_config.get('impostor_sampling_rate', DEFAULTS.IMPOSTOR_SAMPLING_RATE)),
            'lod_distances': dict(self.user_config.get('lod_distances', DEFAULTS.FOLIAGE_LOD_DISTANCES)),
            'visibility_epsilon': float(self.user_config.get('visibility_epsilon', DEFAULTS.FOLIAGE_VISIBILITY_EPSILON)),
            'use_wrapping': bool(self.user_config.get('use_wrapping', False)),
            'types': self.user_config.get('types', DEFAULTS.FOLIAGE_TYPES),
        }

        self.chunks: dict[tuple[int, int], FoliageChunk] = {}
        self.base_meshes: dict[str, BaseMesh] = {}
        self._last_anchor: tuple[float, float] | None = None
        self._create_base_meshes()

    def _create_base_meshes(self):
        for type_name, type_config in self.settings['types'].items():
            for variation in range(type_config.get('variations', 1)):
                mesh = BaseMesh(type_name, variation, type_config.get('color', (255, 255, 255)))
                self.base_meshes[mesh.key] = mesh
        self.logger.debug(f"Created {len(self.base_meshes)} foliage base meshes.")

    def get_base_mesh(self, key: str) -> BaseMesh | None:
        """Looks up '<type>_v<i>'; a bare type name or unknown index falls back to variation 0."""
        match = re.search(r"_v(\d+)$", key)
        type_name = key[:match.start()] if match else key
        variation = int(match.group(1)) if match else 0
        return self.base_meshes.get(f"{type_name}_v{variation}") or self.base_meshes.get(f"{type_name}_v0")

    # --- Chunk Geometry ---
    def chunk_bounds(self, cx: int, cz: int) -> tuple[float, float, float, float]:
        size = self.settings['chunk_size']
        return cx * size, cz * size, (cx + 1) * size, (cz + 1) * size

    def chunks_in_bounds(self, x0: float, z0: float, x1: float, z1: float) -> list[tuple[int, int]]:
        """Chunks whose area overlaps the half-open rectangle [x0, x1) x [z0, z1)."""
        size = self.settings['chunk_size']
        cx0, cz0 = math.floor(x0 / size), math.floor(z0 / size)
        cx1, cz1 = math.ceil(x1 / size) - 1, math.ceil(z1 / size) - 1
        return [(cx, cz) for cx in range(cx0, cx1 + 1) for cz in range(cz0, cz1 + 1)]

    # --- Generation ---
    def _generate(self, cx: int, cz: int) -> FoliageChunk:
        chunk = FoliageChunk(cx, cz)
        start_x, start_z, end_x, end_z = self.chunk_bounds(cx, cz)
        center_x, center_z = (start_x + end_x) / 2, (start_z + end_z) / 2

        # A chunk is generated against the tile that holds its centre, clipped to that tile.
        gx, gy = self.terrain.world_to_tile(center_x, center_z)
        ox, oz = self.terrain.tile_origin(gx, gy)
        raster = self.terrain.get_tile(gx, gy)
        bounds = (max(start_x, ox), max(start_z, oz),
                  min(end_x, ox + raster.scale), min(end_z, oz + raster.scale))

        for type_name, type_config in self.settings['types'].items():
            chunk.instances.update(generate_type_instances(
                raster, (ox, oz), bounds, type_name, type_config,
                self.settings['max_instances_per_chunk'],
            ))
        return chunk

    def ensure_chunk(self, cx: int, cz: int, lod: FoliageLOD = FoliageLOD.NEAR) -> FoliageChunk | None:
        """Generates a chunk if missing and brings it to the requested tier."""
        if lod == FoliageLOD.FAR:
            self.dispose_chunk(cx, cz)
            return None
        chunk = self.chunks.get((cx, cz))
        if chunk is None:
            chunk = self._generate(cx, cz)
            self.chunks[(cx, cz)] = chunk
            self._show(chunk, lod)
            self.logger.debug(f"Generated foliage chunk ({cx}, {cz}) at {lod.name}.")
            return chunk
        self.set_chunk_lod(cx, cz, lod)
        return chunk

    def set_chunk_lod(self, cx: int, cz: int, lod: FoliageLOD):
        chunk = self.chunks.get((cx, cz))
        if chunk is None or chunk.lod == lod:
            return
        if lod == FoliageLOD.FAR:
            self.dispose_chunk(cx, cz)
            return
        if chunk.lod == FoliageLOD.IMPOSTOR:
            # Individual identity was discarded; rebuild it deterministically.
            chunk.instances = self._generate(cx, cz).instances
        self._show(chunk, lod)

    def _show(self, chunk: FoliageChunk, lod: FoliageLOD):
        """Swaps the chunk's representation: the one being left is dropped first."""
        chunk.meshes = {}
        chunk.impostor = None
        if lod == FoliageLOD.NEAR:
            chunk.meshes = dict(chunk.instances)
        elif lod == FoliageLOD.MID:
            counts = density_counts(chunk.instances, self.settings['mid_density'])
            chunk.meshes = {key: buf[:counts[key]] for key, buf in chunk.instances.items()}
        elif lod == FoliageLOD.IMPOSTOR:
            chunk.impostor = impostor_batch(chunk.instances, self.settings['impostor_sampling_rate'])
            chunk.instances = {}
        chunk.lod = lod

    def dispose_chunk(self, cx: int, cz: int) -> bool:
        chunk = self.chunks.pop((cx, cz), None)
        if chunk is None:
            return False
        chunk.meshes = {}
        chunk.instances = {}
        chunk.impostor = None
        return True

    # --- Rectangles (streaming cells, tiles) ---
    def load_bounds(self, x0: float, z0: float, x1: float, z1: float, lod: FoliageLOD = FoliageLOD.NEAR) -> int:
        keys = self.chunks_in_bounds(x0, z0, x1, z1)
        for cx, cz in keys:
            self.ensure_chunk(cx, cz, lod)
        return len(keys)

    def set_bounds_lod(self, x0: float, z0: float, x1: float, z1: float, lod: FoliageLOD):
        for cx, cz in self.chunks_in_bounds(x0, z0, x1, z1):
            self.set_chunk_lod(cx, cz, lod)

    def dispose_bounds(self, x0: float, z0: float, x1: float, z1: float) -> int:
        return sum(self.dispose_chunk(cx, cz) for cx, cz in self.chunks_in_bounds(x0, z0, x1, z1))

    def regenerate_area(self, center_x: float, center_z: float, radius: float, generate_missing: bool = True) -> int:
        """
        Rebuilds every chunk touching a disc's bounding square, keeping each
        chunk's current tier. Missing chunks are created at NEAR.
        """
        count = 0
        for cx, cz in self.chunks_in_bounds(center_x - radius, center_z - radius, center_x + radius, center_z + radius):
            existing = self.chunks.get((cx, cz))
            if existing is None and not generate_missing:
                continue
            lod = existing.lod if existing is not None else FoliageLOD.NEAR
            self.dispose_chunk(cx, cz)
            self.ensure_chunk(cx, cz, lod)
            count += 1
        return count

    def regenerate_bounds(self, x0: float, z0: float, x1: float, z1: float) -> int:
        """Rebuilds only the chunks already present in a rectangle."""
        count = 0
        for cx, cz in self.chunks_in_bounds(x0, z0, x1, z1):
            existing = self.chunks.get((cx, cz))
            if existing is None:
                continue
            lod = existing.lod
            self.dispose_chunk(cx, cz)
            self.ensure_chunk(cx, cz, lod)
            count += 1
        return count

    # --- Distance-based LOD ---
    def update_visibility(self, anchor_x: float, anchor_z: float) -> bool:
        """
        Re-tiers every chunk by distance to the anchor. Skipped when the
        anchor has moved less than the visibility epsilon since the last run.

        Returns:
            bool: True if the chunks were re-evaluated.
        """
        if self._last_anchor is not None:
            moved = math.hypot(anchor_x - self._last_anchor[0], anchor_z - self._last_anchor[1])
            if moved < self.settings['visibility_epsilon']:
                return False
        self._last_anchor = (anchor_x, anchor_z)

        distances = self.settings['lod_distances']
        size = self.settings['chunk_size']
        wrap = self.terrain.tile_size if self.settings['use_wrapping'] else None

        for (cx, cz) in list(self.chunks):
            dx = anchor_x - (cx + 0.5) * size
            dz = anchor_z - (cz + 0.5) * size
            if wrap:
                dx, dz = _wrapped(dx, wrap), _wrapped(dz, wrap)
            distance = math.hypot(dx, dz)
            if distance < distances['near']:
                lod = FoliageLOD.NEAR
            elif distance < distances['mid']:
                lod = FoliageLOD.MID
            elif distance < distances['far']:
                lod = FoliageLOD.IMPOSTOR
            else:
                lod = FoliageLOD.FAR
            self.set_chunk_lod(cx, cz, lod)
        return True

    def set_use_wrapping(self, use_wrapping: bool):
        self.settings['use_wrapping'] = use_wrapping
        self._last_anchor = None

    # --- Queries ---
    def get_chunk_instances(self, cx: int, cz: int) -> dict[str, np.ndarray]:
        chunk = self.chunks.get((cx, cz))
        return {} if chunk is None else chunk.meshes

    def collect_instances(self, x0: float, z0: float, x1: float, z1: float) -> dict[str, np.ndarray]:
        """Every generated transform in a rectangle's chunks, concatenated per variation key."""
        gathered: dict[str, list] = {}
        for cx, cz in self.chunks_in_bounds(x0, z0, x1, z1):
            chunk = self.chunks.get((cx, cz))
            if chunk is None:
                continue
            for key, buf in chunk.instances.items():
                gathered.setdefault(key, []).append(buf)
        return {key: np.concatenate(bufs) for key, bufs in sorted(gathered.items())}

    def get_stats(self) -> dict:
        return {
            'chunks': len(self.chunks),
            'total_instances': sum(chunk.instance_count() for chunk in self.chunks.values()),
            'impostors': sum(len(c.impostor) for c in self.chunks.values() if c.impostor is not None),
        }

    def dispose_all(self):
        for key in list(self.chunks):
            self.dispose_chunk(*key)
        self._last_anchor = None


def _wrapped(delta: float, period: float) -> float:
    """Shortest signed offset on a ring of the given period."""
    delta = delta % period
    return delta - period if delta > period / 2 else delta
