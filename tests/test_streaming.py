# tests/test_streaming.py

from concurrent.futures import Future

from tile_world.streaming.cells import CellManager
from tile_world.streaming.manager import CellState, StreamingLOD, StreamingManager


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeCollaborator:
    """Records every call; load results come from `result_factory`."""

    def __init__(self, result_factory=lambda: None):
        self.result_factory = result_factory
        self.loads = []
        self.unloads = []
        self.lod_updates = []

    def load_cell(self, cell_x, cell_z, lod):
        self.loads.append((cell_x, cell_z, lod))
        return self.result_factory()

    def unload_cell(self, cell_x, cell_z):
        self.unloads.append((cell_x, cell_z))

    def update_cell_lod(self, cell_x, cell_z, lod):
        self.lod_updates.append((cell_x, cell_z, lod))


def _manager(logger, collaborator=None, cell_manager=None, **overrides):
    config = {'cell_size': 16.0, **overrides}
    clock = FakeClock()
    manager = StreamingManager(collaborator or FakeCollaborator(), config, logger,
                               cell_manager=cell_manager, clock=clock)
    return manager, clock


def _load_everything(manager):
    while manager.load_queue:
        manager.process_load_queue()


def test_ring_covers_the_far_radius(logger):
    manager, _ = _manager(logger)
    manager.update_cells_around(0, 0)
    assert len(manager.cells) == 49
    assert len(manager.load_queue) == 49


def test_resident_tile_cells_are_skipped(logger):
    manager, _ = _manager(logger, cell_manager=CellManager(16.0, 16.0, logger))
    manager.update_cells_around(0, 0)
    assert len(manager.cells) == 48
    assert manager.get_cell_state(0, 0) == CellState.UNLOADED


def test_loads_start_closest_first_and_are_rate_limited(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update_cells_around(0, 0)

    manager.process_load_queue()

    assert len(collaborator.loads) == 2
    assert collaborator.loads[0] == (0, 0, StreamingLOD.NEAR)
    x, z, lod = collaborator.loads[1]
    assert max(abs(x), abs(z)) == 1 and lod == StreamingLOD.NEAR
    assert manager.get_cell_state(0, 0) == CellState.LOADED
    assert manager.active_loads == 0


def test_tiers_follow_chebyshev_distance(logger):
    manager, _ = _manager(logger)
    assert manager.target_lod(0) == StreamingLOD.NEAR
    assert manager.target_lod(1) == StreamingLOD.NEAR
    assert manager.target_lod(2) == StreamingLOD.MID
    assert manager.target_lod(3) == StreamingLOD.FAR
    manager.update_cells_around(0, 0)
    assert manager.cells[(3, -2)].lod == StreamingLOD.FAR
    assert manager.cells[(-2, 2)].lod == StreamingLOD.MID


def test_pending_future_keeps_cell_loading(logger):
    futures = []

    def make_future():
        futures.append(Future())
        return futures[-1]

    manager, _ = _manager(logger, FakeCollaborator(make_future))
    manager.set_enabled(True)
    manager.update_cells_around(0, 0)
    manager.process_load_queue()

    assert manager.get_cell_state(0, 0) == CellState.LOADING
    assert manager.active_loads == 2

    futures[0].set_result(None)
    manager.update(8.0, 8.0)

    assert manager.get_cell_state(0, 0) == CellState.LOADED
    # One finished, two more started.
    assert manager.active_loads == 3


def test_failed_future_drops_the_cell(logger):
    failed = Future()
    failed.set_exception(RuntimeError("disk on fire"))
    manager, _ = _manager(logger, FakeCollaborator(lambda: failed))
    manager.update_cells_around(0, 0)
    manager.process_load_queue()

    assert manager.get_cell_state(0, 0) == CellState.UNLOADED
    assert (0, 0) not in manager.cells
    assert manager.active_loads == 0


def test_raising_collaborator_drops_the_cell(logger):
    def explode():
        raise RuntimeError("boom")

    manager, _ = _manager(logger, FakeCollaborator(explode))
    manager.update_cells_around(0, 0)
    manager.process_load_queue()

    assert manager.get_cell_state(0, 0) == CellState.UNLOADED
    assert manager.active_loads == 0
    # A later ring update queues it again.
    manager.update_cells_around(0, 0)
    assert manager.get_cell_state(0, 0) == CellState.LOADING


def test_max_concurrent_loads(logger):
    collaborator = FakeCollaborator(Future)
    manager, _ = _manager(logger, collaborator, max_concurrent_loads=4)
    manager.update_cells_around(0, 0)
    for _ in range(5):
        manager.process_load_queue()
    assert len(collaborator.loads) == 4
    assert manager.get_stats()['loading_cells'] == 49


def test_unload_is_a_no_op_unless_loaded_and_unprotected(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update_cells_around(0, 0)
    manager.process_load_queue()

    assert not manager.unload_cell(9, 9)              # absent
    assert not manager.unload_cell(3, 3)              # still loading
    manager.protect_cell(0, 0)
    assert manager.is_cell_protected(0, 0)
    assert not manager.unload_cell(0, 0)              # protected
    assert collaborator.unloads == []

    manager.unprotect_cell(0, 0)
    assert manager.unload_cell(0, 0)
    assert collaborator.unloads == [(0, 0)]


def test_stale_cells_unload_after_the_delay(logger):
    collaborator = FakeCollaborator()
    manager, clock = _manager(logger, collaborator, unload_delay=5.0)
    manager.update_cells_around(0, 0)
    _load_everything(manager)
    manager.protect_cell(-3, -3)

    manager.update_cells_around(20, 20)
    assert collaborator.unloads == []

    clock.now = 6.0
    manager.update_cells_around(20, 20)

    assert len(collaborator.unloads) == 48
    assert (-3, -3) not in collaborator.unloads
    assert manager.get_cell_state(-3, -3) == CellState.LOADED
    manager.clear_all_protections()
    assert not manager.is_cell_protected(-3, -3)


def test_moving_the_anchor_retiers_loaded_cells(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update_cells_around(0, 0)
    _load_everything(manager)

    manager.update_cells_around(1, 0)

    assert (2, 0, StreamingLOD.NEAR) in collaborator.lod_updates
    assert (-2, 0, StreamingLOD.FAR) in collaborator.lod_updates
    assert manager.cells[(2, 0)].lod == StreamingLOD.NEAR


def test_update_only_runs_when_enabled(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update(20.0, 8.0)
    assert manager.cells == {}

    manager.set_enabled(True)
    manager.update(20.0, 8.0)
    assert manager.current_cell == (1, 0)
    assert len(manager.cells) == 49
    assert len(collaborator.loads) == 2


def test_force_load_around_position(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update_cells_around(0, 0)
    _load_everything(manager)
    collaborator.loads.clear()

    manager.force_load_around_position(40.0, 40.0)

    assert manager.current_cell == (2, 2)
    assert len(collaborator.unloads) == 49
    assert len(collaborator.loads) == 9
    assert all(lod == StreamingLOD.NEAR for _, _, lod in collaborator.loads)
    stats = manager.get_stats()
    assert stats['loaded_cells'] == 9
    assert stats['queue_length'] == 40
    assert stats['total_cells'] == 49


def test_dispose_unloads_loaded_cells(logger):
    collaborator = FakeCollaborator()
    manager, _ = _manager(logger, collaborator)
    manager.update_cells_around(0, 0)
    manager.process_load_queue()
    manager.dispose()
    assert len(collaborator.unloads) == 2
    assert manager.get_stats() == {
        'total_cells': 0, 'loaded_cells': 0, 'loading_cells': 0, 'queue_length': 0, 'protected_cells': 0,
    }
