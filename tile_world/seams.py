# tile_world/seams.py

"""
================================================================================
EDGE SYNCHRONIZER
================================================================================
This module makes adjacent tiles' shared borders identical. Synchronization is
one-directional: the source tile (the one that was just edited) is treated as
ground truth, its border is copied onto the neighbour, and a margin of the
neighbour's interior is blended towards the copied values with a linear
falloff. Diagonal neighbours get the same treatment around the shared corner
point using 2D Euclidean distance.

Buffers of different resolutions are matched by normalized position along the
edge, sampling the source linearly.

Data Contract:
---------------
- Inputs (on initialization):
    - config (dict): 'height_blend_width' and 'splat_blend_width' overrides.
    - logger (logging.Logger): The logger instance for all output.
- Public Methods:
    - sync_two_edges_smooth(source, target, source_side, target_side)
    - sync_corner_area(source, target, source_corner, target_corner)
    - stitch_edge(source, target, source_side, target_side)
    - full_sync_pass(store, touched) -> set of affected grid keys
- Side Effects: Writes the target tile's buffers in place.
- Invariants: After an edge sync the target edge equals the source edge
  (exactly when resolutions match). After a full pass every synced boundary,
  corner vertices included, is equal on both tiles. Each shared boundary is
  processed once per pass regardless of visit order.
================================================================================
"""

import logging
from typing import Iterable

import numpy as np

from . import config as DEFAULTS
from .splatmap import _normalized
from .tiles import TileRaster, TileStore

SIDES = ("left", "right", "top", "bottom")
CORNERS = ("top_left", "top_right", "bottom_left", "bottom_right")

# Grid offset of a neighbour -> (side on the source, side on the neighbour).
# 'top' is z = 0, 'left' is x = 0; +gx is to the right, +gy is to the bottom.
EDGE_NEIGHBORS = {
    (1, 0): ("right", "left"),
    (-1, 0): ("left", "right"),
    (0, 1): ("bottom", "top"),
    (0, -1): ("top", "bottom"),
}
CORNER_NEIGHBORS = {
    (1, 1): ("bottom_right", "top_left"),
    (-1, 1): ("bottom_left", "top_right"),
    (1, -1): ("top_right", "bottom_left"),
    (-1, -1): ("top_left", "bottom_right"),
}
# Tile offset from a grid vertex -> the corner of that tile lying on the vertex.
VERTEX_CORNERS = {
    (-1, -1): "bottom_right",
    (0, -1): "bottom_left",
    (-1, 0): "top_right",
    (0, 0): "top_left",
}
# Vertex offsets (from the tile's own key) at the two ends of each side.
SIDE_VERTICES = {
    "left": ((0, 0), (0, 1)),
    "right": ((1, 0), (1, 1)),
    "top": ((0, 0), (1, 0)),
    "bottom": ((0, 1), (1, 1)),
}


def _edge_view(data: np.ndarray, side: str) -> np.ndarray:
    """
    A writable view of a (z, x[, c]) buffer rotated so the requested edge is
    row 0 and row d lies d cells inward. Column i runs along the edge in the
    same direction as the shared world axis.
    """
    if side == "top":
        return data
    if side == "bottom":
        return data[::-1]
    if side == "left":
        return data.swapaxes(0, 1)
    if side == "right":
        return data.swapaxes(0, 1)[::-1]
    raise ValueError(f"Unknown edge side '{side}'")


def _corner_view(data: np.ndarray, corner: str) -> np.ndarray:
    """A writable view with the requested corner moved to index [0, 0]."""
    if corner == "top_left":
        return data
    if corner == "top_right":
        return data[:, ::-1]
    if corner == "bottom_left":
        return data[::-1]
    if corner == "bottom_right":
        return data[::-1, ::-1]
    raise ValueError(f"Unknown corner '{corner}'")


def sample_edge(edge: np.ndarray, count: int) -> np.ndarray:
    """
    Resamples an edge line of length res1 to `count` samples by normalized
    position: t = i / (count - 1), source index = t * (res1 - 1).
    """
    res1 = edge.shape[0]
    if res1 == count:
        return edge.astype(np.float64)
    t = np.arange(count, dtype=np.float64) / max(count - 1, 1)
    float_i = t * (res1 - 1)
    src_x = np.arange(res1, dtype=np.float64)
    if edge.ndim == 1:
        return np.interp(float_i, src_x, edge)
    return np.stack([np.interp(float_i, src_x, edge[:, c]) for c in range(edge.shape[1])], axis=-1)


def copy_edge(source: np.ndarray, target: np.ndarray, source_side: str, target_side: str) -> np.ndarray:
    """Overwrites target's edge row with the resampled source edge and returns the copied values."""
    dst_view = _edge_view(target, target_side)
    src_values = sample_edge(_edge_view(source, source_side)[0], dst_view.shape[1])
    dst_view[0] = src_values
    return src_values


def blend_edge(source: np.ndarray, target: np.ndarray, source_side: str, target_side: str, blend_width: int):
    """
    Overwrites target's edge with the source edge and blends `blend_width - 1`
    interior rows towards it with weight 1 - d / blend_width.
    """
    src_values = copy_edge(source, target, source_side, target_side)
    dst_view = _edge_view(target, target_side)
    depth = min(blend_width, dst_view.shape[0])
    if depth <= 1:
        return
    d = np.arange(1, depth, dtype=np.float64)
    weight = 1.0 - d / blend_width
    weight = weight.reshape((-1,) + (1,) * (dst_view.ndim - 1))
    current = dst_view[1:depth].astype(np.float64)
    dst_view[1:depth] = current + (src_values[np.newaxis] - current) * weight


def blend_corner(source: np.ndarray, target: np.ndarray, source_corner: str, target_corner: str, blend_width: int):
    """
    Blends a square around the target's corner towards the source corner value
    with weight 1 - dist / blend_width, dist being the 2D distance from the corner.
    """
    src_value = _corner_view(source, source_corner)[0, 0].astype(np.float64)
    dst_view = _corner_view(target, target_corner)
    extent = min(blend_width, dst_view.shape[0], dst_view.shape[1])
    if extent <= 0:
        return
    jj, ii = np.mgrid[0:extent, 0:extent]
    dist = np.hypot(ii, jj)
    weight = np.clip(1.0 - dist / blend_width, 0.0, 1.0)
    weight = weight.reshape(weight.shape + (1,) * (dst_view.ndim - 2))
    current = dst_view[:extent, :extent].astype(np.float64)
    dst_view[:extent, :extent] = current + (src_value - current) * weight


def _paired_buffers(source: TileRaster, target: TileRaster):
    return (
        (source.heightmap.data, target.heightmap.data),
        (source.splatmap.data, target.splatmap.data),
        (source.splatmap.water_mask, target.splatmap.water_mask),
    )


class EdgeSynchronizer:
    """Reconciles the borders of edited tiles with their eight neighbours."""

    def __init__(self, config: dict, logger: logging.Logger):
        self.logger = logger
        self.user_config = config

        # --- Consolidate Configuration ---
        self.settings = {
            'height_blend_width': int(self.user_config.get('height_blend_width', DEFAULTS.DEFAULT_HEIGHT_BLEND_WIDTH)),
            'splat_blend_width': int(self.user_config.get('splat_blend_width', DEFAULTS.DEFAULT_SPLAT_BLEND_WIDTH)),
        }

    def sync_two_edges_smooth(self, source: TileRaster, target: TileRaster, source_side: str, target_side: str,
                              height_blend_width: int = None, splat_blend_width: int = None):
        """Copies the source edge onto the target and blends the target's margin."""
        height_bw = height_blend_width or self.settings['height_blend_width']
        splat_bw = splat_blend_width or self.settings['splat_blend_width']

        # --- 1. Height ---
        blend_edge(source.heightmap.data, target.heightmap.data, source_side, target_side, height_bw)
        target.heightmap.recalculate_min_max()

        # --- 2. Material weights and water (separate blend width) ---
        blend_edge(source.splatmap.data, target.splatmap.data, source_side, target_side, splat_bw)
        blend_edge(source.splatmap.water_mask, target.splatmap.water_mask, source_side, target_side, splat_bw)
        self._renormalize_edge(target, target_side, splat_bw)

    def sync_corner_area(self, source: TileRaster, target: TileRaster, source_corner: str, target_corner: str,
                         height_blend_width: int = None, splat_blend_width: int = None):
        """Blends the target's corner region towards the source's corner value."""
        height_bw = height_blend_width or self.settings['height_blend_width']
        splat_bw = splat_blend_width or self.settings['splat_blend_width']

        blend_corner(source.heightmap.data, target.heightmap.data, source_corner, target_corner, height_bw)
        target.heightmap.recalculate_min_max()

        blend_corner(source.splatmap.data, target.splatmap.data, source_corner, target_corner, splat_bw)
        blend_corner(source.splatmap.water_mask, target.splatmap.water_mask, source_corner, target_corner, splat_bw)
        view = _corner_view(target.splatmap.data, target_corner)
        extent = min(splat_bw, target.splat_resolution)
        view[:extent, :extent] = _normalized(view[:extent, :extent].astype(np.float64))

    def stitch_edge(self, source: TileRaster, target: TileRaster, source_side: str, target_side: str):
        """Re-copies the source boundary row onto the target without touching its interior."""
        for src, dst in _paired_buffers(source, target):
            copy_edge(src, dst, source_side, target_side)

    def _unify_shared_vertices(self, store: TileStore, edge_pairs: list, touched: set, affected: set):
        """
        Gives every affected tile meeting at the end of a synced edge the same
        corner value, taken from the smallest touched tile on that vertex.
        """
        vertices = set()
        for source_key, _, source_side, _ in edge_pairs:
            for dx, dy in SIDE_VERTICES[source_side]:
                vertices.add((source_key[0] + dx, source_key[1] + dy))

        for vx, vy in sorted(vertices):
            around = {(vx + ox, vy + oy): corner for (ox, oy), corner in VERTEX_CORNERS.items()
                      if (vx + ox, vy + oy) in affected}
            owners = sorted(key for key in around if key in touched)
            if not owners:
                continue
            owner_key = owners[0]
            owner = store.get_tile(*owner_key)
            for key, corner in around.items():
                if key == owner_key:
                    continue
                for src, dst in _paired_buffers(owner, store.get_tile(*key)):
                    _corner_view(dst, corner)[0, 0] = _corner_view(src, around[owner_key])[0, 0]

    def _renormalize_edge(self, target: TileRaster, side: str, blend_width: int):
        view = _edge_view(target.splatmap.data, side)
        depth = min(blend_width, view.shape[0])
        view[:depth] = _normalized(view[:depth].astype(np.float64))
        water = _edge_view(target.splatmap.water_mask, side)
        np.clip(water[:depth], 0.0, 1.0, out=water[:depth])

    # --- Full Pass ---
    def collect_pairs(self, touched: Iterable[tuple[int, int]]) -> tuple[list, list]:
        """
        Builds the deduplicated edge and corner pair lists for a set of touched
        tiles. A pair is keyed by (min, max) of its two grid keys; the source is
        the touched member, or the smaller key when both were touched.

        Returns:
            tuple: (edge_pairs, corner_pairs), each a sorted list of
            (source_key, target_key, source_side, target_side).
        """
        touched = set(touched)
        edges, corners = {}, {}
        for key in sorted(touched):
            for table, out in ((EDGE_NEIGHBORS, edges), (CORNER_NEIGHBORS, corners)):
                for (dx, dy) in table:
                    other = (key[0] + dx, key[1] + dy)
                    pair_key = (min(key, other), max(key, other))
                    if pair_key in out:
                        continue
                    source = pair_key[0] if other in touched else key
                    target = pair_key[1] if source == pair_key[0] else pair_key[0]
                    offset = (target[0] - source[0], target[1] - source[1])
                    source_side, target_side = table[offset]
                    out[pair_key] = (source, target, source_side, target_side)
        return [edges[k] for k in sorted(edges)], [corners[k] for k in sorted(corners)]

    def full_sync_pass(self, store: TileStore, touched: Iterable[tuple[int, int]]) -> set:
        """
        Reconciles every touched tile with its 4 edge and 4 corner neighbours.
        Corners are blended first, then edges. A final stitch re-copies every
        synced boundary row and gives the tiles meeting at each boundary end
        one shared corner value, so all synced edges end up exactly equal.

        Returns:
            set: touched tiles plus every neighbour written to; the caller
            regenerates dependent geometry/textures/foliage for these.
        """
        touched = set(touched)
        if not touched:
            return set()
        store.require_active()
        edge_pairs, corner_pairs = self.collect_pairs(touched)

        affected = set(touched)
        for source_key, target_key, source_corner, target_corner in corner_pairs:
            self.sync_corner_area(store.get_tile(*source_key), store.get_tile(*target_key),
                                  source_corner, target_corner)
            affected.add(target_key)
        for source_key, target_key, source_side, target_side in edge_pairs:
            self.sync_two_edges_smooth(store.get_tile(*source_key), store.get_tile(*target_key),
                                       source_side, target_side)
            affected.add(target_key)

        # --- Stitch: a later margin blend may cross an earlier shared edge ---
        for source_key, target_key, source_side, target_side in edge_pairs:
            self.stitch_edge(store.get_tile(*source_key), store.get_tile(*target_key), source_side, target_side)
        self._unify_shared_vertices(store, edge_pairs, touched, affected)
        for key in affected:
            store.get_tile(*key).heightmap.recalculate_min_max()

        for key in affected - touched:
            store.mark_dirty(*key, "heightmap", "splatmap", "foliage")
        self.logger.info(
            f"Sync pass: {len(touched)} touched tile(s), {len(edge_pairs)} edge pair(s), "
            f"{len(corner_pairs)} corner pair(s), {len(affected)} tile(s) affected."
        )
        return affected
