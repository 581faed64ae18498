"""
Processing Module

- BlockProcessor: fixed-capacity tile processor owning the host/device buffers
- process_raster: in-memory driver running a processor over a whole raster
"""

from .block_processor import BlockProcessor, select_backend
from .raster import process_raster

__all__ = [
    "BlockProcessor",
    "select_backend",
    "process_raster",
]
