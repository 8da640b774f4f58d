# tile_world/streaming/manager.py

"""
================================================================================
STREAMING COORDINATOR
================================================================================
This module decides which streaming cells around a view anchor should be
resident, and at which level of detail. It owns no geometry: every
materialization is delegated to a collaborator object implementing the
StreamingCollaborator protocol.

Per-cell state machine:
    Unloaded -> Loading -> Loaded{Near, Mid, Far} -> Unloaded

The tier of a cell is chosen from its Chebyshev distance (in cells) to the
anchor cell, compared against the near/mid/far radii. Loads are queued
closest-first and started at most a few per update. A collaborator may finish
a load synchronously (return None) or hand back a concurrent.futures.Future;
in that case the cell stays Loading until a later update sees the future done.

Data Contract:
---------------
- Inputs (on initialization):
    - collaborator (StreamingCollaborator): Receives load/unload/LOD calls.
    - config (dict): Overrides for cell size, radii, unload delay and limits.
    - logger (logging.Logger): The logger instance for all output.
    - cell_manager (CellManager, optional): Used to keep the cells of the
      always-resident tile (0, 0) out of the load/unload cycle.
    - clock (callable, optional): Returns the current time in seconds.
- Public Methods:
    - update(anchor_x, anchor_z), force_load_around_position(x, z).
    - protect_cell / unprotect_cell / is_cell_protected / clear_all_protections.
    - unload_cell(x, z), set_enabled(flag), get_stats(), dispose().
- Side Effects: Calls into the collaborator; logs.
- Invariants: Cell keys are (x, z) tuples. Protected cells are never
  unloaded. Unloading a cell that is Loading, protected or absent is a no-op.
================================================================================
"""

import enum
import logging
import math
import time
from concurrent.futures import Future
from typing import Callable, Protocol

from .. import config as DEFAULTS
from .cells import CellManager


class CellState(enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class StreamingLOD(enum.IntEnum):
    NEAR = 0
    MID = 1
    FAR = 2


class StreamingCollaborator(Protocol):
    """
    The component that owns materialization. load_cell and unload_cell may
    return a Future when the work completes later.
    """

    def load_cell(self, cell_x: int, cell_z: int, lod: StreamingLOD) -> Future | None: ...
    def unload_cell(self, cell_x: int, cell_z: int) -> Future | None: ...
    def update_cell_lod(self, cell_x: int, cell_z: int, lod: StreamingLOD) -> None: ...


class StreamingCell:
    """Bookkeeping for one cell known to the coordinator."""

    __slots__ = ("x", "z", "state", "lod", "last_access_time", "pending")

    def __init__(self, x: int, z: int, lod: StreamingLOD, now: float):
        self.x = x
        self.z = z
        self.state = CellState.LOADING
        self.lod = lod
        self.last_access_time = now
        self.pending: Future | None = None


class StreamingManager:
    """Keeps the ring of cells around the view anchor loaded."""

    def __init__(self, collaborator: StreamingCollaborator, config: dict, logger: logging.Logger,
                 cell_manager: CellManager = None, clock: Callable[[], float] = time.monotonic):
        self.collaborator = collaborator
        self.logger = logger
        self.user_config = config
        self.cell_manager = cell_manager
        self.clock = clock

        # --- Consolidate Configuration ---
        self.settings = {
            'cell_size': float(self.user_config.get('cell_size', DEFAULTS.STREAMING_CELL_SIZE)),
            'near_radius': int(self.user_config.get('near_radius', DEFAULTS.STREAMING_NEAR_RADIUS)),
            'mid_radius': int(self.user_config.get('mid_radius', DEFAULTS.STREAMING_MID_RADIUS)),
            'far_radius': int(self.user_config.get('far_radius', DEFAULTS.STREAMING_FAR_RADIUS)),
            'unload_delay': float(self.user_config.get('unload_delay', DEFAULTS.STREAMING_UNLOAD_DELAY_S)),
            'max_concurrent_loads': int(self.user_config.get('max_concurrent_loads', DEFAULTS.STREAMING_MAX_CONCURRENT_LOADS)),
            'max_loads_per_update': int(self.user_config.get('max_loads_per_update', DEFAULTS.STREAMING_MAX_LOADS_PER_UPDATE)),
            'update_interval': int(self.user_config.get('update_interval', DEFAULTS.STREAMING_UPDATE_INTERVAL)),
        }

        self.cells: dict[tuple[int, int], StreamingCell] = {}
        self.load_queue: list[tuple[int, int]] = []
        self.protected_cells: set[tuple[int, int]] = set()
        self.current_cell = (0, 0)
        self.enabled = False
        self.active_loads = 0
        self._frame_counter = 0

    # --- Main Loop ---
    def update(self, anchor_x: float, anchor_z: float):
        """
        Called every frame. A full ring update runs when the anchor enters a
        new cell or every `update_interval` frames; the load queue and pending
        loads are serviced on every call.
        """
        if not self.enabled:
            return

        self._frame_counter += 1
        is_full_update = self._frame_counter >= self.settings['update_interval']
        if is_full_update:
            self._frame_counter = 0

        cell = self._world_to_cell(anchor_x, anchor_z)
        if cell != self.current_cell:
            self.current_cell = cell
            self.update_cells_around(*cell)
        elif is_full_update:
            self.update_cells_around(*cell)

        self._poll_pending_loads()
        self.process_load_queue()

    def _world_to_cell(self, world_x: float, world_z: float) -> tuple[int, int]:
        size = self.settings['cell_size']
        return math.floor(world_x / size), math.floor(world_z / size)

    def target_lod(self, distance: int) -> StreamingLOD:
        if distance <= self.settings['near_radius']:
            return StreamingLOD.NEAR
        if distance <= self.settings['mid_radius']:
            return StreamingLOD.MID
        return StreamingLOD.FAR

    def is_resident(self, cell_x: int, cell_z: int) -> bool:
        """True for cells that only cover the permanently loaded active tile."""
        if self.cell_manager is None:
            return False
        return self.cell_manager.cell_to_affected_tiles(cell_x, cell_z) == [(0, 0)]

    def update_cells_around(self, center_x: int, center_z: int):
        """Queues missing cells, retiers loaded ones and unloads stale ones."""
        now = self.clock()
        radius = self.settings['far_radius']
        required = set()

        # --- 1. Determine the required ring ---
        for dx in range(-radius, radius + 1):
            for dz in range(-radius, radius + 1):
                key = (center_x + dx, center_z + dz)
                if self.is_resident(*key):
                    continue
                required.add(key)
                lod = self.target_lod(max(abs(dx), abs(dz)))

                cell = self.cells.get(key)
                if cell is None:
                    self.queue_cell_load(key[0], key[1], lod)
                    continue
                cell.last_access_time = now
                if cell.state == CellState.LOADED and cell.lod != lod:
                    self._update_cell_lod(cell, lod)

        # --- 2. Unload stale cells ---
        for key, cell in list(self.cells.items()):
            if key in required or cell.state != CellState.LOADED:
                continue
            if now - cell.last_access_time > self.settings['unload_delay']:
                self.unload_cell(*key)

    # --- Loading ---
    def queue_cell_load(self, cell_x: int, cell_z: int, lod: StreamingLOD):
        """Registers a Loading cell and inserts it into the queue by distance."""
        key = (cell_x, cell_z)
        if key in self.cells:
            return
        self.cells[key] = StreamingCell(cell_x, cell_z, lod, self.clock())

        distance = CellManager.get_cell_distance(key, self.current_cell)
        for i, queued in enumerate(self.load_queue):
            if distance < CellManager.get_cell_distance(queued, self.current_cell):
                self.load_queue.insert(i, key)
                break
        else:
            self.load_queue.append(key)

    def process_load_queue(self):
        started = 0
        while (started < self.settings['max_loads_per_update']
               and self.load_queue
               and self.active_loads < self.settings['max_concurrent_loads']):
            key = self.load_queue.pop(0)
            cell = self.cells.get(key)
            if cell is None or cell.state != CellState.LOADING:
                continue
            started += 1
            self._start_load(cell)

    def _start_load(self, cell: StreamingCell):
        self.active_loads += 1
        try:
            result = self.collaborator.load_cell(cell.x, cell.z, cell.lod)
        except Exception:
            self.logger.error(f"Failed to load cell ({cell.x}, {cell.z}).", exc_info=True)
            self._finish_load(cell, succeeded=False)
            return

        if isinstance(result, Future) and not result.done():
            cell.pending = result
            self.logger.debug(f"Cell ({cell.x}, {cell.z}) loading asynchronously.")
            return
        self._finish_load(cell, succeeded=self._future_succeeded(cell, result))

    def _poll_pending_loads(self):
        for cell in list(self.cells.values()):
            if cell.pending is not None and cell.pending.done():
                future, cell.pending = cell.pending, None
                self._finish_load(cell, succeeded=self._future_succeeded(cell, future))

    def _future_succeeded(self, cell: StreamingCell, result) -> bool:
        if not isinstance(result, Future):
            return True
        if result.cancelled():
            self.logger.warning(f"Load of cell ({cell.x}, {cell.z}) was cancelled.")
            return False
        error = result.exception()
        if error is not None:
            self.logger.error(f"Failed to load cell ({cell.x}, {cell.z}).", exc_info=error)
            return False
        return True

    def _finish_load(self, cell: StreamingCell, succeeded: bool):
        self.active_loads -= 1
        key = (cell.x, cell.z)
        if succeeded:
            cell.state = CellState.LOADED
            self.logger.debug(f"Cell {key} loaded at {cell.lod.name}.")
        else:
            del self.cells[key]

    def _update_cell_lod(self, cell: StreamingCell, lod: StreamingLOD):
        cell.lod = lod
        self.collaborator.update_cell_lod(cell.x, cell.z, lod)

    # --- Unloading ---
    def unload_cell(self, cell_x: int, cell_z: int) -> bool:
        """Unloads a Loaded, unprotected cell. Anything else is a no-op."""
        key = (cell_x, cell_z)
        if key in self.protected_cells:
            return False
        cell = self.cells.get(key)
        if cell is None or cell.state != CellState.LOADED:
            return False
        del self.cells[key]
        self.collaborator.unload_cell(cell_x, cell_z)
        self.logger.debug(f"Cell {key} unloaded.")
        return True

    def force_load_around_position(self, world_x: float, world_z: float):
        """
        Teleport support: drops every cell, loads the near ring synchronously
        at Near detail and queues the rest of the ring.
        """
        center = self._world_to_cell(world_x, world_z)
        self.current_cell = center

        for key, cell in list(self.cells.items()):
            if cell.state == CellState.LOADED:
                self.collaborator.unload_cell(*key)
        self.cells.clear()
        self.load_queue.clear()
        # Outstanding futures belong to dropped cells and are never polled again.
        self.active_loads = 0

        now = self.clock()
        for key in CellManager.get_cells_in_radius(center[0], center[1], self.settings['near_radius']):
            if self.is_resident(*key):
                continue
            self.collaborator.load_cell(key[0], key[1], StreamingLOD.NEAR)
            cell = StreamingCell(key[0], key[1], StreamingLOD.NEAR, now)
            cell.state = CellState.LOADED
            self.cells[key] = cell

        self.update_cells_around(*center)
        self.logger.info(f"Force-loaded cells around cell {center}.")

    # --- Protection ---
    def protect_cell(self, cell_x: int, cell_z: int):
        self.protected_cells.add((cell_x, cell_z))

    def unprotect_cell(self, cell_x: int, cell_z: int):
        self.protected_cells.discard((cell_x, cell_z))

    def is_cell_protected(self, cell_x: int, cell_z: int) -> bool:
        return (cell_x, cell_z) in self.protected_cells

    def clear_all_protections(self):
        self.protected_cells.clear()

    # --- Misc ---
    def set_enabled(self, enabled: bool):
        self.enabled = enabled
        self.logger.info(f"Streaming {'enabled' if enabled else 'disabled'}.")

    def get_cell_state(self, cell_x: int, cell_z: int) -> CellState:
        cell = self.cells.get((cell_x, cell_z))
        return CellState.UNLOADED if cell is None else cell.state

    def get_stats(self) -> dict:
        states = [cell.state for cell in self.cells.values()]
        return {
            'total_cells': len(self.cells),
            'loaded_cells': states.count(CellState.LOADED),
            'loading_cells': states.count(CellState.LOADING),
            'queue_length': len(self.load_queue),
            'protected_cells': len(self.protected_cells),
        }

    def dispose(self):
        for key, cell in list(self.cells.items()):
            if cell.state == CellState.LOADED:
                self.collaborator.unload_cell(*key)
        self.cells.clear()
        self.load_queue.clear()
