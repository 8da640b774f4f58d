# export_world.py

"""
================================================================================
OFFLINE WORLD EXPORTER SCRIPT
================================================================================
This script is a command-line tool for exporting a tile library as a world:
a PNG preview of every library tile, a PNG preview of every grid position of
an N x N world built from one template tile (mirrored or cloned, with optional
manual placements), a manifest mapping grid positions to preview images, and
the world project JSON.

Grid previews are rendered in parallel by a process pool and deduplicated by
content hash, so a mirrored world stores at most four distinct images.

Usage:
    python export_world.py --library tile_library --output exports/MyWorld
        [--grid 4] [--tile TILE_ID] [--mode mirror|clone] [--name NAME]
        [--place GX,GY,TILE_ID ...]
================================================================================
"""
import os
import sys
import json
import logging
import argparse
import time
import hashlib
import collections
import multiprocessing
import numpy as np
from PIL import Image
from tqdm import tqdm

from tile_world import color_maps
from tile_world import config as DEFAULTS
from tile_world.library import TileLibrary, export_world_project, record_to_raster
from tile_world.tiles import TileStore


# --- Helper for Uniform Preview Compression ---
def save_preview_png(color_array: np.ndarray, directory: str, file_name: str) -> str:
    """
    Saves a preview using a tiered, lossless compression strategy with Pillow.
    """
    os.makedirs(directory, exist_ok=True)
    file_path = os.path.join(directory, f"{file_name}.png")

    # Color arrays are indexed [x, z]; Pillow expects (height, width, channels).
    img_data = np.ascontiguousarray(np.transpose(color_array, (1, 0, 2)))

    # Tier 1: Perfectly uniform color.
    if (img_data == img_data[0, 0]).all():
        img = Image.new('RGB', (1, 1), tuple(int(c) for c in img_data[0, 0]))
        img.save(file_path, 'PNG')
        return 'uniform'

    img = Image.fromarray(img_data, 'RGB')

    # Tier 2: Low color count, palettized.
    colors = img.getcolors(256)
    if colors:
        img = img.quantize(colors=256)
        img.save(file_path, 'PNG')
        return 'palettized'

    # Tier 3: Full RGB.
    img.save(file_path, 'PNG')
    return 'full'


# --- Global variables for worker processes ---
worker_store = None
worker_placements = {}
worker_grid_dir = ""


def init_worker(template_record: dict, tile_mode: str, placement_records: dict, grid_dir: str):
    """Initializes the global state for each worker process."""
    global worker_store, worker_placements, worker_grid_dir

    worker_logger = logging.getLogger(f"Worker-{os.getpid()}")
    worker_store = TileStore({'tile_mode': tile_mode}, worker_logger)
    worker_store.set_active_tile(record_to_raster(template_record, worker_logger))
    worker_placements = {key: record_to_raster(record, worker_logger) for key, record in placement_records.items()}
    worker_grid_dir = grid_dir


def process_grid_tile(coords):
    """
    Renders and SAVES the preview of one grid position. Returns only minimal metadata.
    """
    gx, gy = coords
    raster = worker_placements.get(coords) or worker_store.peek_tile(gx, gy) or worker_store.synthesize(gx, gy)
    color_array = color_maps.get_terrain_color_array(raster)

    file_hash = hashlib.md5(color_array.tobytes()).hexdigest()
    compression_type = save_preview_png(color_array, worker_grid_dir, file_hash)
    return {'gx': gx, 'gy': gy, 'hash': file_hash, 'compression_type': compression_type}


def parse_placement(text: str) -> tuple[tuple[int, int], str]:
    """'GX,GY,TILE_ID' -> ((gx, gy), tile_id)."""
    parts = text.split(',')
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Placement must look like GX,GY,TILE_ID, got '{text}'")
    try:
        return (int(parts[0]), int(parts[1])), parts[2]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Grid coordinates must be integers, got '{text}'")


# --- Main Export Function ---
def export_world(library_dir: str, output_dir: str, grid_size: int = 3, tile_id: str = None,
                 tile_mode: str = DEFAULTS.DEFAULT_TILE_MODE, name: str = None,
                 placements: dict = None, processes: int = None, logger: logging.Logger = None) -> bool:
    """
    Exports a library as a world package. Returns False if there is nothing
    to export.

    processes=1 renders in the calling process (required when the caller is
    itself a pool worker).
    """
    logger = logger or logging.getLogger("Exporter")
    placements = dict(placements or {})

    # 1. --- Load the library and pick the template tile ---
    library = TileLibrary(library_dir, logger)
    tile_list = library.get_tile_list()
    if not tile_list:
        logger.critical(f"Tile library '{library_dir}' is empty. Nothing to export.")
        return False
    tile_id = tile_id or tile_list[0]['id']
    template_record = library.get_tile(tile_id)
    if template_record is None:
        logger.critical(f"Tile '{tile_id}' not found in library '{library_dir}'.")
        return False
    name = name or template_record['name']
    logger.info(f"Exporting world '{name}' from template tile '{template_record['name']}' ({tile_id}), mode '{tile_mode}'.")

    placement_records = {}
    for key, placed_id in list(placements.items()):
        record = library.get_tile(placed_id)
        if key == (0, 0):
            logger.warning("Placement at (0, 0) ignored; that position always holds the template tile.")
            del placements[key]
        elif record is None:
            logger.warning(f"Placement {key} references missing tile '{placed_id}'; it is left out of the export.")
            del placements[key]
        else:
            placement_records[key] = record

    # 2. --- Prepare Output Directories ---
    tiles_dir = os.path.join(output_dir, "tiles")
    grid_dir = os.path.join(output_dir, "grid")
    os.makedirs(output_dir, exist_ok=True)

    start_time = time.perf_counter()

    # 3. --- Library previews ---
    for ref in tqdm(tile_list, desc="Library Tiles"):
        raster = library.load_tile(ref['id'])
        save_preview_png(color_maps.get_terrain_color_array(raster), tiles_dir, ref['id'])

    # 4. --- Grid previews (Parallelized) ---
    tasks = [(gx, gy) for gy in range(grid_size) for gx in range(grid_size)]
    manifest = np.empty((grid_size, grid_size), dtype=object)
    saved_hashes = set()
    compression_stats = collections.Counter()

    init_args = (template_record, tile_mode, placement_records, grid_dir)
    if processes is None:
        processes = max(1, multiprocessing.cpu_count() - 1)

    def collect(results_iterator):
        for result in tqdm(results_iterator, total=len(tasks), desc="Grid Tiles"):
            manifest[result['gy'], result['gx']] = result['hash']
            if result['hash'] not in saved_hashes:
                saved_hashes.add(result['hash'])
                compression_stats[result['compression_type']] += 1

    if processes > 1:
        logger.info(f"Using {processes} worker processes.")
        with multiprocessing.Pool(processes=processes, initializer=init_worker, initargs=init_args) as pool:
            collect(pool.imap_unordered(process_grid_tile, tasks))
    else:
        init_worker(*init_args)
        collect(map(process_grid_tile, tasks))

    # --- Finalization ---
    with open(os.path.join(output_dir, "manifest.json"), 'w') as f:
        json.dump({
            'world_name': name,
            'grid_size': grid_size,
            'tile_mode': tile_mode,
            'grid': manifest.tolist(),
            'tiles': {ref['id']: ref['name'] for ref in tile_list},
            'foliage_instances': {
                ref['id']: sum(len(buf) for buf in library.load_tile_foliage(ref['id']).values())
                for ref in tile_list
            },
        }, f, indent=2)

    store = TileStore({'tile_mode': tile_mode}, logger)
    store.set_active_tile(library.load_tile(tile_id))
    project = export_world_project(name, store, library, placements, grid_size)
    with open(os.path.join(output_dir, "world_project.json"), 'w') as f:
        json.dump(project, f)

    end_time = time.perf_counter()
    logger.info(f"Export complete! Total time: {end_time - start_time:.2f} seconds.")
    logger.info(
        f"  - Grid: {len(tasks)} positions -> {len(saved_hashes)} unique previews saved "
        f"({compression_stats['uniform']} uniform, {compression_stats['palettized']} palettized, {compression_stats['full']} full)"
    )
    logger.info(f"World package saved to: {output_dir}")
    return True


# --- Command-Line Interface ---
if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline world exporter for the tile world editor.")
    parser.add_argument("--library", type=str, default=DEFAULTS.TILE_LIBRARY_DIR,
                        help="Directory holding the tile library JSON files.")
    parser.add_argument("--output", type=str, required=True, help="Directory to write the world package to.")
    parser.add_argument("--grid", type=int, default=3, help="Export an N x N grid of tiles.")
    parser.add_argument("--tile", type=str, default=None,
                        help="Template tile id (defaults to the most recently modified tile).")
    parser.add_argument("--mode", choices=DEFAULTS.TILE_MODES, default=DEFAULTS.DEFAULT_TILE_MODE,
                        help="How neighbours are derived from the template.")
    parser.add_argument("--name", type=str, default=None, help="World name (defaults to the template tile's name).")
    parser.add_argument("--place", type=parse_placement, action='append', default=[],
                        help="Manual placement GX,GY,TILE_ID. May be repeated.")
    parser.add_argument("--processes", type=int, default=None, help="Worker processes (1 renders in-process).")
    args = parser.parse_args()

    # --- Setup Logging ---
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

    ok = export_world(
        args.library, args.output, grid_size=args.grid, tile_id=args.tile, tile_mode=args.mode,
        name=args.name, placements=dict(args.place), processes=args.processes,
    )
    sys.exit(0 if ok else 1)
