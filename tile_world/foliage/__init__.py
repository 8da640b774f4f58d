# tile_world/foliage/__init__.py

# This file makes the 'foliage' directory a Python package.

from .chunks import BaseMesh, FoliageChunk, FoliageChunkManager, FoliageLOD, LCGRandom

__all__ = ["BaseMesh", "FoliageChunk", "FoliageChunkManager", "FoliageLOD", "LCGRandom"]
