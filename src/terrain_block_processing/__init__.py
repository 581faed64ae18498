"""
Terrain Block Processing Package

Tiled 3x3 terrain analysis for elevation rasters larger than device memory.
A raster is split into haloed tiles, each tile is pushed through a
fixed-capacity BlockProcessor that runs a stencil operator (slope, aspect,
hillshade, curvatures) on a CUDA device or a compiled CPU loop, and the
trimmed outputs are stitched back together.
"""

__version__ = "0.1.0"

from .errors import (
    BlockProcessingError,
    AcceleratorInitError,
    AcceleratorExecutionError,
    UnsupportedOperationError,
)
from .tiling import BlockRect, TilePair, RasterTiler
from .operators import Operator, RasterCommand, SlopeAlgorithm, resolve_operator
from .processing import BlockProcessor, process_raster
from .utils import EngineConfig, load_config, setup_logger

__all__ = [
    "BlockProcessingError",
    "AcceleratorInitError",
    "AcceleratorExecutionError",
    "UnsupportedOperationError",
    "BlockRect",
    "TilePair",
    "RasterTiler",
    "Operator",
    "RasterCommand",
    "SlopeAlgorithm",
    "resolve_operator",
    "BlockProcessor",
    "process_raster",
    "EngineConfig",
    "load_config",
    "setup_logger",
]
