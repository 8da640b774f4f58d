# tile_world/__init__.py

# This file makes the 'tile_world' directory a Python package.
# It also defines the public API of the core library.

from .heightmap import Heightmap
from .splatmap import SplatMap
from .tiles import TileRaster, TileStore, PreconditionError
from .seams import EdgeSynchronizer
from .library import TileLibrary
from .session import EditorSession
from .codec import CodecError

__all__ = [
    "Heightmap", "SplatMap", "TileRaster", "TileStore", "PreconditionError",
    "EdgeSynchronizer", "TileLibrary", "EditorSession", "CodecError",
]
