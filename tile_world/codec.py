# tile_world/codec.py

"""
================================================================================
RASTER CODEC
================================================================================
Pure encoding/decoding helpers for the persisted tile format. Every float
buffer is stored as base64 of its raw little-endian float32 bytes, so a
decode(encode(buffer)) round trip is bit-exact.

Splat buffers carry their masks appended after the 4-channel weights. Three
layouts exist and are told apart purely by decoded length:
    - v3: weights + water + wetness + road
    - v2: weights + water
    - v1: weights only

Data Contract:
---------------
- Inputs: NumPy arrays (any shape, any float dtype) or base64 strings.
- Outputs: base64 strings, or flat float32 NumPy arrays.
- Side Effects: None.
- Invariants: Decoding never returns a view into shared memory; callers may
  mutate the result freely.
================================================================================
"""

import base64
import binascii
import json
import math

import numpy as np

from . import config as DEFAULTS

# Explicit little-endian float32, independent of the host byte order.
FLOAT32_LE = np.dtype('<f4')

# Floats per foliage instance (one 4x4 transform matrix).
MATRIX_FLOATS = 16


class CodecError(ValueError):
    """Raised when a persisted buffer cannot be decoded."""


# --- Core float32 <-> base64 ---
def encode_float32_array(arr: np.ndarray) -> str:
    """Encodes an array as base64 of its little-endian float32 bytes."""
    flat = np.ascontiguousarray(arr, dtype=FLOAT32_LE).ravel()
    return base64.b64encode(flat.tobytes()).decode('ascii')


def decode_float32_array(encoded: str) -> np.ndarray:
    """Decodes a base64 string back into a flat, writable float32 array."""
    if not isinstance(encoded, str):
        raise CodecError(f"Expected a base64 string, got {type(encoded).__name__}")
    try:
        raw = base64.b64decode(encoded.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CodecError(f"Invalid base64 payload: {e}") from e

    if len(raw) % FLOAT32_LE.itemsize != 0:
        raise CodecError(f"Payload of {len(raw)} bytes is not a whole number of float32 values")

    return np.frombuffer(raw, dtype=FLOAT32_LE).astype(np.float32)


# --- Heightmap Specialization ---
def encode_heightmap(data: np.ndarray) -> str:
    return encode_float32_array(data)


def decode_heightmap(encoded: str) -> np.ndarray:
    return decode_float32_array(encoded)


# --- SplatMap Specialization ---
def encode_splatmap(data: np.ndarray, water_mask: np.ndarray,
                    wetness_mask: np.ndarray = None, road_mask: np.ndarray = None) -> str:
    """
    Packs weights and masks into one buffer. The extended (v3) layout is only
    written when both wetness and road masks are supplied and non-empty.
    """
    parts = [np.asarray(data, dtype=np.float32).ravel(), np.asarray(water_mask, dtype=np.float32).ravel()]
    has_extended = (
        wetness_mask is not None and road_mask is not None
        and np.size(wetness_mask) > 0 and np.size(road_mask) > 0
    )
    if has_extended:
        parts.append(np.asarray(wetness_mask, dtype=np.float32).ravel())
        parts.append(np.asarray(road_mask, dtype=np.float32).ravel())
    return encode_float32_array(np.concatenate(parts))


def decode_splatmap(encoded: str, vertex_count: int) -> dict:
    """
    Decodes a splat payload for a buffer of `vertex_count` cells per side,
    detecting the layout version by length.

    Returns:
        dict: 'data' (n*4), 'water_mask', 'wetness_mask', 'road_mask' (n each)
        and 'version' (3, 2, 1 or 0 when the length matched no known layout and
        only the leading weights could be recovered).
    """
    view = decode_float32_array(encoded)
    mask_size = vertex_count * vertex_count
    data_length = mask_size * DEFAULTS.SPLAT_CHANNEL_COUNT

    result = {
        'data': np.zeros(data_length, dtype=np.float32),
        'water_mask': np.zeros(mask_size, dtype=np.float32),
        'wetness_mask': np.zeros(mask_size, dtype=np.float32),
        'road_mask': np.zeros(mask_size, dtype=np.float32),
    }

    if view.size == data_length + mask_size * 3:
        offset = data_length
        result['data'][:] = view[:data_length]
        result['water_mask'][:] = view[offset:offset + mask_size]
        offset += mask_size
        result['wetness_mask'][:] = view[offset:offset + mask_size]
        offset += mask_size
        result['road_mask'][:] = view[offset:offset + mask_size]
        result['version'] = 3
    elif view.size == data_length + mask_size:
        result['data'][:] = view[:data_length]
        result['water_mask'][:] = view[data_length:]
        result['version'] = 2
    elif view.size == data_length:
        result['data'][:] = view
        result['version'] = 1
    else:
        # Unknown layout: splat weights take priority, anything missing stays zero.
        copy_len = min(view.size, data_length)
        result['data'][:copy_len] = view[:copy_len]
        result['version'] = 0

    return result


def infer_vertex_count(value_count: int, channels: int = 1) -> int | None:
    """Returns n when value_count == n*n*channels, otherwise None."""
    if value_count <= 0 or value_count % channels != 0:
        return None
    n = math.isqrt(value_count // channels)
    return n if n * n * channels == value_count else None


# --- Foliage Instances ---
def encode_foliage_instances(matrices: np.ndarray) -> str:
    """Encodes an (n, 16) array of instance transforms."""
    return encode_float32_array(matrices)


def decode_foliage_instances(encoded: str) -> np.ndarray:
    """Decodes instance transforms into an (n, 16) array, dropping a partial trailing matrix."""
    flat = decode_float32_array(encoded)
    count = get_instance_count(flat)
    return flat[:count * MATRIX_FLOATS].reshape(count, MATRIX_FLOATS)


def get_instance_count(matrices: np.ndarray) -> int:
    return int(np.size(matrices)) // MATRIX_FLOATS


# --- Validation & JSON ---
def validate_array_size(arr: np.ndarray, resolution: int, channels: int = 1) -> bool:
    """Checks a decoded array against a tile resolution (which stores resolution + 1 vertices)."""
    res = resolution + 1
    return int(np.size(arr)) == res * res * channels


def parse_json(text: str):
    """Parses JSON, returning None instead of raising on malformed input."""
    try:
        return json.loads(text)
    except (TypeError, json.JSONDecodeError):
        return None
