# editor/camera.py

import math


class Camera:
    """
    Top-down camera over the tiled world. World X maps to screen X and
    world Z maps to screen Y; zoom is screen pixels per world unit.
    """

    def __init__(self, config: dict, view_width: int, view_height: int):
        self.config = config
        self.view_width = view_width
        self.view_height = view_height

        # Start centered on the active tile (0, 0).
        tile_size = config.get('tile', {}).get('tile_size', 64.0)
        self.x = tile_size / 2
        self.z = tile_size / 2
        self.zoom = config['camera'].get('start_zoom', 8.0)

        self.zoom_speed = config['camera']['zoom_speed']
        self.max_zoom = config['camera']['max_zoom']
        self.min_zoom = config['camera']['min_zoom']

        self.zoom_changed = True

    def world_to_screen(self, world_x, world_z):
        screen_x = (world_x - self.x) * self.zoom + self.view_width / 2
        screen_y = (world_z - self.z) * self.zoom + self.view_height / 2
        return int(screen_x), int(screen_y)

    def screen_to_world(self, screen_x, screen_y):
        world_x = (screen_x - self.view_width / 2) / self.zoom + self.x
        world_z = (screen_y - self.view_height / 2) / self.zoom + self.z
        return world_x, world_z

    def visible_bounds(self) -> tuple[float, float, float, float]:
        """World-space (x0, z0, x1, z1) of the viewport."""
        x0, z0 = self.screen_to_world(0, 0)
        x1, z1 = self.screen_to_world(self.view_width, self.view_height)
        return x0, z0, x1, z1

    def visible_tiles(self, tile_size: float) -> list[tuple[int, int]]:
        x0, z0, x1, z1 = self.visible_bounds()
        gx0, gx1 = math.floor(x0 / tile_size), math.floor(x1 / tile_size)
        gy0, gy1 = math.floor(z0 / tile_size), math.floor(z1 / tile_size)
        return [(gx, gy) for gy in range(gy0, gy1 + 1) for gx in range(gx0, gx1 + 1)]

    def pan(self, dx, dy):
        self.x += dx / self.zoom
        self.z += dy / self.zoom

    def zoom_in(self):
        old_zoom = self.zoom
        self.zoom = min(self.max_zoom, self.zoom * (1 + self.zoom_speed))
        if self.zoom != old_zoom:
            self.zoom_changed = True

    def zoom_out(self):
        old_zoom = self.zoom
        self.zoom = max(self.min_zoom, self.zoom * (1 - self.zoom_speed))
        if self.zoom != old_zoom:
            self.zoom_changed = True
