# tile_world/streaming/__init__.py

# This file makes the 'streaming' directory a Python package.

from .cells import CellManager
from .manager import CellState, StreamingCollaborator, StreamingLOD, StreamingManager

__all__ = ["CellManager", "CellState", "StreamingCollaborator", "StreamingLOD", "StreamingManager"]
