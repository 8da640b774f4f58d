# tile_world/noise.py

"""
================================================================================
NOISE GENERATION UTILITIES
================================================================================
Tileable 2D Perlin noise for seeding terrain templates. Lattice corners are
wrapped modulo the octave period before hashing, so a field sampled over one
period lines up with copies of itself on every side.

Data Contract:
---------------
- Inputs:
    - seed (int): Shuffles the permutation table.
    - resolution (int): Samples per side of the returned field.
    - period (int): Lattice cells across the field in the first octave.
      Later octaves multiply it by the lacunarity, which must be an integer
      to keep the result periodic.
- Outputs:
    - tileable_field: a (resolution, resolution) float64 array indexed
      [z, x], roughly in [-1, 1].
- Side Effects: None.
- Invariants: field[:, 0] == field[:, -1] and field[0, :] == field[-1, :].
================================================================================
"""

import numpy as np
from numba import njit

# Unit and diagonal gradients; the diagonals are not normalized.
_GRADIENTS = np.array([
    [1, 0], [-1, 0], [0, 1], [0, -1],
    [1, 1], [-1, 1], [1, -1], [-1, -1],
], dtype=np.float64)


def make_permutation_table(seed: int) -> np.ndarray:
    """Doubled 0..255 permutation, so p[p[i] + j] never needs a wrap."""
    table = np.arange(256, dtype=np.int64)
    np.random.default_rng(seed).shuffle(table)
    return np.concatenate([table, table])


@njit
def _quintic(t):
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


@njit
def _corner(p, cx, cy, period, dx, dy):
    """Gradient contribution of lattice corner (cx, cy) at offset (dx, dy)."""
    h = p[p[(cx % period) & 255] + ((cy % period) & 255)]
    g = _GRADIENTS[h & 7]
    return g[0] * dx + g[1] * dy


@njit
def _lattice_noise(p, x, y, period):
    x0 = int(np.floor(x))
    y0 = int(np.floor(y))
    fx = x - x0
    fy = y - y0

    n00 = _corner(p, x0, y0, period, fx, fy)
    n10 = _corner(p, x0 + 1, y0, period, fx - 1.0, fy)
    n01 = _corner(p, x0, y0 + 1, period, fx, fy - 1.0)
    n11 = _corner(p, x0 + 1, y0 + 1, period, fx - 1.0, fy - 1.0)

    u = _quintic(fx)
    bottom = n00 + u * (n10 - n00)
    top = n01 + u * (n11 - n01)
    return bottom + _quintic(fy) * (top - bottom)


@njit
def _fractal_field(p, resolution, period, octaves, persistence, lacunarity):
    field = np.zeros((resolution, resolution))
    for zi in range(resolution):
        for xi in range(resolution):
            total = 0.0
            weight = 1.0
            scale = 1
            for _ in range(octaves):
                span = period * scale
                x = xi * span / (resolution - 1)
                z = zi * span / (resolution - 1)
                total += weight * _lattice_noise(p, x, z, span)
                weight *= persistence
                scale *= lacunarity
            field[zi, xi] = total
    return field


def tileable_field(seed: int, resolution: int, period: int = 4, octaves: int = 1,
                   persistence: float = 0.5, lacunarity: int = 2) -> np.ndarray:
    """
    Samples `octaves` layers of periodic noise over exactly one period.
    """
    if resolution < 2:
        raise ValueError(f"Noise field needs at least 2 samples per side, got {resolution}")
    p = make_permutation_table(seed)
    return _fractal_field(p, int(resolution), int(period), int(octaves), float(persistence), int(lacunarity))
