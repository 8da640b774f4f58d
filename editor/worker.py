# editor/worker.py

import logging

# The exporter has no GUI dependencies, so it is safe to run in a worker process.
from export_world import export_world


def export_world_worker(library_dir: str, output_dir: str, grid_size: int, tile_id: str,
                        tile_mode: str, logger: logging.Logger):
    """
    Exports the saved active tile and its grid as a world package. Designed
    to be run in a separate process so the editor UI does not freeze.
    """
    try:
        logger.info(f"WORKER: Starting export of tile {tile_id} to '{output_dir}'...")
        # Pool workers are daemonic and cannot start their own pool.
        ok = export_world(library_dir, output_dir, grid_size=grid_size, tile_id=tile_id,
                          tile_mode=tile_mode, processes=1, logger=logger)
        logger.info(f"WORKER: Export {'complete' if ok else 'produced nothing'}.")
        return ok
    except Exception as e:
        # Use exc_info=True to log the full traceback from the worker process
        logger.critical(f"WORKER: An exception occurred during export: {e}", exc_info=True)
        return False
