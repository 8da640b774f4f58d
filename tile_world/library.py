# tile_world/library.py

"""
================================================================================
TILE LIBRARY & WORLD PROJECTS
================================================================================
Persistence for authored tiles. The TileLibrary keeps a directory of tile
records, one JSON file per tile, in the persisted tile format:

    { id, name, createdAt, modifiedAt, resolution, size,
      heightmap: base64(float32[n]), splatmap: base64(float32[4n]),
      waterMask: base64(float32[n]), seaLevel, waterDepth,
      connections: {left?, right?, top?, bottom?}, foliageData? }

'resolution' counts cells, so every buffer holds (resolution + 1)^2 vertices.

A world project bundles the active tile, the library tiles it references and
the manual placements of those tiles on the grid.

Data Contract:
---------------
- Inputs (on initialization):
    - library_dir (str): Directory holding the tile JSON files.
    - logger (logging.Logger): The logger instance for all output.
- Outputs: Tile ids, tile records (dicts), TileRaster objects, JSON strings.
- Side Effects: Reads and writes JSON files in library_dir.
- Invariants: Ids are unique and of the form 'tile_<ms>_<base36>'. Malformed
  tile data never raises out of a load: it falls back to a default tile.
================================================================================
"""

import json
import logging
import os
import random
import string
import time
from datetime import datetime, timezone

import numpy as np

from . import config as DEFAULTS
from . import codec
from .tiles import TileRaster, TileStore

_BASE36 = string.digits + string.ascii_lowercase
CONNECTION_SIDES = ("left", "right", "top", "bottom")


def generate_tile_id() -> str:
    suffix = "".join(random.choices(_BASE36, k=7))
    return f"{DEFAULTS.TILE_ID_PREFIX}_{int(time.time() * 1000)}_{suffix}"


def utc_timestamp() -> str:
    """ISO-8601 UTC with milliseconds, so timestamps sort lexicographically."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# --- Record <-> Raster ---
def raster_to_record(raster: TileRaster, tile_id: str, name: str, created_at: str = None,
                     foliage_data: dict = None, connections: dict = None) -> dict:
    now = utc_timestamp()
    record = {
        'id': tile_id,
        'name': name,
        'createdAt': created_at or now,
        'modifiedAt': now,
        'resolution': raster.resolution - 1,
        'size': raster.scale,
        'heightmap': raster.heightmap.to_base64(),
        'splatmap': codec.encode_float32_array(raster.splatmap.data),
        'waterMask': codec.encode_float32_array(raster.splatmap.water_mask),
        'seaLevel': raster.sea_level,
        'waterDepth': raster.water_depth,
        'connections': {k: v for k, v in (connections or {}).items() if k in CONNECTION_SIDES},
    }
    if foliage_data:
        record['foliageData'] = dict(foliage_data)
    return record


def record_to_raster(record: dict, logger: logging.Logger) -> TileRaster:
    """
    Rebuilds a tile from its record. Legacy splat layouts are detected by
    length. Data that cannot be decoded at all yields a fresh default tile.
    """
    resolution = int(record.get('resolution', DEFAULTS.DEFAULT_TILE_RESOLUTION))
    size = float(record.get('size', DEFAULTS.DEFAULT_TILE_SIZE))
    raster = TileRaster.blank(resolution, size)
    raster.sea_level = float(record.get('seaLevel', DEFAULTS.DEFAULT_SEA_LEVEL))
    raster.water_depth = float(record.get('waterDepth', DEFAULTS.DEFAULT_WATER_DEPTH))
    vertex_count = raster.resolution

    try:
        heights = codec.decode_heightmap(record['heightmap'])
        raster.heightmap.load_from_data(heights)
    except (KeyError, codec.CodecError) as e:
        logger.warning(f"Tile '{record.get('id')}': unreadable heightmap ({e}); using a flat default.")
        return TileRaster.blank(resolution, size)

    try:
        splat = codec.decode_splatmap(record['splatmap'], vertex_count)
    except (KeyError, codec.CodecError) as e:
        logger.warning(f"Tile '{record.get('id')}': unreadable splatmap ({e}); using all grass.")
        splat = None

    if splat is not None:
        if splat['version'] == 0:
            logger.warning(f"Tile '{record.get('id')}': splatmap length matches no known layout; salvaged leading weights.")
        shape = (vertex_count, vertex_count)
        raster.splatmap.data[:] = splat['data'].reshape(shape + (DEFAULTS.SPLAT_CHANNEL_COUNT,))
        raster.splatmap.water_mask[:] = splat['water_mask'].reshape(shape)
        raster.splatmap.wetness_mask[:] = splat['wetness_mask'].reshape(shape)
        raster.splatmap.road_mask[:] = splat['road_mask'].reshape(shape)

    if record.get('waterMask'):
        try:
            water = codec.decode_float32_array(record['waterMask'])
            if water.size == vertex_count * vertex_count:
                raster.splatmap.water_mask[:] = water.reshape(vertex_count, vertex_count)
            else:
                logger.warning(f"Tile '{record.get('id')}': water mask size {water.size} does not match; ignored.")
        except codec.CodecError as e:
            logger.warning(f"Tile '{record.get('id')}': unreadable water mask ({e}); ignored.")

    repaired = raster.splatmap.repair_invalid_cells()
    if repaired:
        logger.warning(f"Tile '{record.get('id')}': repaired {repaired} invalid material cell(s).")
    return raster


def decode_foliage_data(foliage_data: dict | None) -> dict[str, np.ndarray]:
    """Variation key -> (n, 16) transforms; unreadable entries are dropped."""
    decoded = {}
    for key, encoded in (foliage_data or {}).items():
        try:
            decoded[key] = codec.decode_foliage_instances(encoded)
        except codec.CodecError:
            continue
    return decoded


# --- Validation ---
def validate_tile_record(data) -> list[str]:
    if not isinstance(data, dict):
        return ["Tile record must be a JSON object"]
    errors = []
    for field in ('id', 'name', 'heightmap', 'splatmap'):
        if not data.get(field):
            errors.append(f"Missing required field: {field}")
    if not isinstance(data.get('resolution'), (int, float)) or isinstance(data.get('resolution'), bool):
        errors.append("Invalid or missing: resolution")
    if not isinstance(data.get('size'), (int, float)) or isinstance(data.get('size'), bool):
        errors.append("Invalid or missing: size")
    return errors


def validate_world_project(data) -> list[str]:
    if not isinstance(data, dict):
        return ["World project must be a JSON object"]
    errors = []
    for field in ('version', 'name'):
        if not data.get(field):
            errors.append(f"Missing required field: {field}")
    if not (data.get('terrain') or data.get('mainTile') or data.get('tiles')):
        errors.append("No terrain data found (terrain, mainTile, or tiles)")
    return errors


class TileLibrary:
    """A directory-backed collection of tile records."""

    def __init__(self, library_dir: str, logger: logging.Logger):
        self.library_dir = library_dir
        self.logger = logger
        self.tiles: dict[str, dict] = {}
        self.active_tile_id: str | None = None
        os.makedirs(self.library_dir, exist_ok=True)
        self._load_all()

    def _path(self, tile_id: str) -> str:
        return os.path.join(self.library_dir, f"{tile_id}.json")

    def _load_all(self):
        for filename in sorted(os.listdir(self.library_dir)):
            if not filename.endswith('.json'):
                continue
            path = os.path.join(self.library_dir, filename)
            try:
                with open(path, 'r') as f:
                    record = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                self.logger.warning(f"Skipping unreadable tile file '{path}': {e}")
                continue
            errors = validate_tile_record(record)
            if errors:
                self.logger.warning(f"Skipping invalid tile file '{path}': {'; '.join(errors)}")
                continue
            self.tiles[record['id']] = record
        self.logger.info(f"Tile library '{self.library_dir}' loaded with {len(self.tiles)} tile(s).")

    def _write(self, record: dict):
        with open(self._path(record['id']), 'w') as f:
            json.dump(record, f)

    # --- CRUD ---
    def create_tile(self, name: str, resolution: int = DEFAULTS.DEFAULT_TILE_RESOLUTION,
                    size: float = DEFAULTS.DEFAULT_TILE_SIZE) -> str:
        """A blank, flat, all-grass tile with no water plane."""
        raster = TileRaster.blank(resolution, size)
        record = raster_to_record(raster, generate_tile_id(), name)
        self.tiles[record['id']] = record
        self._write(record)
        self.logger.info(f"Created tile '{name}' ({record['id']}).")
        return record['id']

    def save_tile_from_current(self, name: str, raster: TileRaster, existing_id: str = None,
                               foliage_data: dict = None, connections: dict = None) -> str:
        """
        Stores a raster as a new tile, or updates an existing one keeping its
        creation time, foliage and connections unless new ones are given.
        """
        existing = self.tiles.get(existing_id) if existing_id else None
        tile_id = existing_id or generate_tile_id()
        record = raster_to_record(
            raster, tile_id, name,
            created_at=existing['createdAt'] if existing else None,
            foliage_data=foliage_data if foliage_data is not None else (existing or {}).get('foliageData'),
            connections=connections or (existing or {}).get('connections'),
        )
        self.tiles[tile_id] = record
        self._write(record)
        self.active_tile_id = tile_id
        self.logger.info(f"Saved tile '{name}' ({tile_id}).")
        return tile_id

    def get_tile(self, tile_id: str) -> dict | None:
        return self.tiles.get(tile_id)

    def load_tile(self, tile_id: str) -> TileRaster | None:
        record = self.tiles.get(tile_id)
        if record is None:
            return None
        self.active_tile_id = tile_id
        return record_to_raster(record, self.logger)

    def load_tile_foliage(self, tile_id: str) -> dict[str, np.ndarray]:
        """The foliage transforms saved with a tile, per variation key."""
        record = self.tiles.get(tile_id)
        return {} if record is None else decode_foliage_data(record.get('foliageData'))

    def delete_tile(self, tile_id: str) -> bool:
        if self.tiles.pop(tile_id, None) is None:
            return False
        if self.active_tile_id == tile_id:
            self.active_tile_id = None
        path = self._path(tile_id)
        if os.path.exists(path):
            os.remove(path)
        self.logger.info(f"Deleted tile {tile_id}.")
        return True

    def rename_tile(self, tile_id: str, name: str) -> bool:
        record = self.tiles.get(tile_id)
        if record is None:
            return False
        record['name'] = name
        record['modifiedAt'] = utc_timestamp()
        self._write(record)
        return True

    def get_tile_list(self) -> list[dict]:
        """Lightweight references, most recently modified first."""
        refs = [{key: tile[key] for key in ('id', 'name', 'createdAt', 'modifiedAt', 'resolution', 'size')}
                for tile in self.tiles.values()]
        return sorted(refs, key=lambda ref: ref['modifiedAt'], reverse=True)

    # --- Import / Export ---
    def export_tile(self, tile_id: str) -> str | None:
        record = self.tiles.get(tile_id)
        return None if record is None else json.dumps(record)

    def import_tile(self, text: str) -> str | None:
        """Imports a tile record under a fresh id. Returns None for invalid input."""
        record = codec.parse_json(text)
        errors = validate_tile_record(record)
        if errors:
            self.logger.error(f"Failed to import tile: {'; '.join(errors)}")
            return None
        record['id'] = generate_tile_id()
        record['modifiedAt'] = utc_timestamp()
        self.tiles[record['id']] = record
        self._write(record)
        self.logger.info(f"Imported tile '{record['name']}' as {record['id']}.")
        return record['id']


# --- World Projects ---
def export_world_project(name: str, store: TileStore, library: TileLibrary,
                         placements: dict[tuple[int, int], str] = None, grid_size: int = 1) -> dict:
    """Serializes the active tile, the referenced library tiles and their placements."""
    active = store.require_active()
    placements = placements or {}
    now = utc_timestamp()
    referenced = sorted(set(placements.values()))
    return {
        'version': DEFAULTS.WORLD_PROJECT_VERSION,
        'name': name,
        'createdAt': now,
        'modifiedAt': now,
        'mainTile': {
            'terrain': {
                'size': active.scale,
                'resolution': active.resolution - 1,
                'heightmap': active.heightmap.to_base64(),
                'splatmap': codec.encode_float32_array(active.splatmap.data),
                'waterMask': codec.encode_float32_array(active.splatmap.water_mask),
            },
            'foliage': {},
        },
        'tiles': [library.get_tile(tile_id) for tile_id in referenced if library.get_tile(tile_id)],
        'worldGrid': {
            'manualPlacements': [{'gridX': gx, 'gridY': gy, 'tileId': tile_id}
                                 for (gx, gy), tile_id in sorted(placements.items())],
            'gridSize': grid_size,
        },
        'settings': {
            'seamlessTiling': store.tile_mode == "mirror",
            'waterLevel': active.sea_level,
            'waterDepth': active.water_depth,
        },
    }


def _grass_stand_in(store: TileStore, key: tuple[int, int]) -> TileRaster:
    """The template as it would appear at `key`, painted all grass and dry."""
    raster = store.synthesize(*key)
    raster.splatmap.fill_with_material("grass")
    raster.splatmap.water_mask.fill(0.0)
    return raster


def load_world_project(data, store: TileStore, logger: logging.Logger) -> dict:
    """
    Installs a world project into the store.

    Returns:
        dict: 'success', 'errors', 'warnings' and 'placements' (grid key ->
        tile id for every placement applied).
    """
    if isinstance(data, str):
        data = codec.parse_json(data)
        if data is None:
            return {'success': False, 'errors': ["Invalid JSON format"], 'warnings': [], 'placements': {}}
    errors = validate_world_project(data)
    if errors:
        return {'success': False, 'errors': errors, 'warnings': [], 'placements': {}}

    warnings = []
    settings = data.get('settings') or {}
    records = {t['id']: t for t in data.get('tiles') or [] if isinstance(t, dict) and t.get('id')}

    # --- 1. Active tile ---
    terrain = (data.get('mainTile') or {}).get('terrain') or data.get('terrain')
    if terrain:
        main_record = dict(terrain, id='main', seaLevel=settings.get('waterLevel', DEFAULTS.DEFAULT_SEA_LEVEL),
                           waterDepth=settings.get('waterDepth', DEFAULTS.DEFAULT_WATER_DEPTH))
        store.set_active_tile(record_to_raster(main_record, logger))
    elif records:
        store.set_active_tile(record_to_raster(next(iter(records.values())), logger))
    store.set_tile_mode("mirror" if settings.get('seamlessTiling', True) else "clone")

    # --- 2. Manual placements ---
    applied = {}
    grid = data.get('worldGrid') or {}
    for placement in grid.get('manualPlacements') or []:
        key = (int(placement['gridX']), int(placement['gridY']))
        tile_id = placement.get('tileId')
        if key == (0, 0):
            continue
        record = records.get(tile_id)
        if record is None:
            message = f"Placement {key} references missing tile '{tile_id}'; using a grass tile from the template ({store.tile_mode})."
            logger.warning(message)
            warnings.append(message)
            store.set_tile(*key, _grass_stand_in(store, key))
        else:
            store.set_tile(*key, record_to_raster(record, logger))
        applied[key] = tile_id

    logger.info(f"Loaded world project '{data['name']}' with {len(applied)} placement(s).")
    return {'success': True, 'errors': [], 'warnings': warnings, 'placements': applied}
