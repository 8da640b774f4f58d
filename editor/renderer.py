# editor/renderer.py

"""
================================================================================
EDITOR RENDERER
================================================================================
Draws the top-down view of the tiled world: one cached preview surface per
grid tile, foliage instance markers, the streaming cell overlay and the brush
cursor.

Data Contract:
---------------
- Inputs: an EditorSession (read-only) and the editor Camera.
- Caching: tile surfaces are cached per grid key and only rebuilt after
  `invalidate(keys)` or `clear_cache()`.
- Side Effects: Draws onto the given pygame surface.
================================================================================
"""

import logging
import math

import pygame

from tile_world import color_maps
from tile_world.streaming.manager import CellState
from tile_world.tiles import ACTIVE_KEY

GRID_COLOR = (0, 0, 0)
ACTIVE_OUTLINE_COLOR = (255, 215, 0)
BRUSH_COLOR = (255, 255, 255)
IMPOSTOR_COLOR = (200, 200, 200)
CELL_COLORS = {
    CellState.LOADING: (255, 165, 0),
    CellState.LOADED: (0, 200, 255),
}
PROTECTED_CELL_COLOR = (255, 60, 60)
# Foliage markers are skipped below this zoom (pixels per world unit).
FOLIAGE_MIN_ZOOM = 4.0


class WorldRenderer:
    """Renders tile previews and editor overlays."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._tile_surfaces: dict[tuple[int, int], pygame.Surface] = {}

    # --- Cache ---
    def invalidate(self, keys):
        for key in keys:
            self._tile_surfaces.pop(key, None)

    def clear_cache(self):
        self._tile_surfaces.clear()

    def _get_tile_surface(self, session, key: tuple[int, int]) -> pygame.Surface:
        surface = self._tile_surfaces.get(key)
        if surface is None:
            raster = session.store.peek_tile(*key) or session.store.synthesize(*key)
            color_array = color_maps.get_terrain_color_array(raster)
            surface = pygame.surfarray.make_surface(color_array)
            self._tile_surfaces[key] = surface
            self.logger.debug(f"Built preview surface for tile {key}.")
        return surface

    # --- Drawing ---
    def draw_tiles(self, screen: pygame.Surface, camera, session):
        """Draws every tile intersecting the viewport, scaled to the camera zoom."""
        if session.store.active is None:
            return
        tile_size = session.store.tile_size
        scaled_size = math.ceil(tile_size * camera.zoom)
        if scaled_size <= 1:
            return

        for gx, gy in camera.visible_tiles(tile_size):
            surface = self._get_tile_surface(session, (gx, gy))
            screen_pos = camera.world_to_screen(gx * tile_size, gy * tile_size)
            scaled_surface = pygame.transform.scale(surface, (scaled_size, scaled_size))
            screen.blit(scaled_surface, screen_pos)
            pygame.draw.rect(screen, GRID_COLOR, (*screen_pos, scaled_size, scaled_size), 1)

        active_pos = camera.world_to_screen(*session.store.tile_origin(*ACTIVE_KEY))
        pygame.draw.rect(screen, ACTIVE_OUTLINE_COLOR, (*active_pos, scaled_size, scaled_size), 2)

    def draw_foliage(self, screen: pygame.Surface, camera, session):
        """One pixel per instance (NEAR/MID) or per impostor sample."""
        if camera.zoom < FOLIAGE_MIN_ZOOM:
            return
        width, height = screen.get_size()
        foliage = session.foliage
        for chunk in foliage.chunks.values():
            for key, matrices in chunk.meshes.items():
                mesh = foliage.get_base_mesh(key)
                color = mesh.color if mesh is not None else BRUSH_COLOR
                for row in matrices:
                    sx, sy = camera.world_to_screen(row[12], row[14])
                    if 0 <= sx < width and 0 <= sy < height:
                        screen.set_at((sx, sy), color)
            if chunk.impostor is not None:
                for x, _, z, _ in chunk.impostor:
                    sx, sy = camera.world_to_screen(x, z)
                    if 0 <= sx < width and 0 <= sy < height:
                        screen.set_at((sx, sy), IMPOSTOR_COLOR)

    def draw_streaming_overlay(self, screen: pygame.Surface, camera, session):
        streaming = session.streaming
        if not streaming.enabled:
            return
        cell_size = session.cell_manager.cell_size
        scaled_size = math.ceil(cell_size * camera.zoom)
        for (cx, cz), cell in streaming.cells.items():
            pos = camera.world_to_screen(cx * cell_size, cz * cell_size)
            color = CELL_COLORS.get(cell.state)
            if color is not None:
                pygame.draw.rect(screen, color, (*pos, scaled_size, scaled_size), 1)
        for cx, cz in streaming.protected_cells:
            pos = camera.world_to_screen(cx * cell_size, cz * cell_size)
            pygame.draw.rect(screen, PROTECTED_CELL_COLOR, (*pos, scaled_size, scaled_size), 2)

    def draw_brush_cursor(self, screen: pygame.Surface, camera, world_pos, brush_size: float):
        if world_pos is None:
            return
        center = camera.world_to_screen(*world_pos)
        radius = max(1, int(brush_size * camera.zoom))
        pygame.draw.circle(screen, BRUSH_COLOR, center, radius, 1)
