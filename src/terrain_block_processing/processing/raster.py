"""
In-memory tiling driver.

Splits a DEM held in memory into haloed tiles, pushes each tile through a
single BlockProcessor and stitches the trimmed outputs back together.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np

from ..acceleration.memory import CELL_DTYPE
from ..tiling import RasterTiler
from .block_processor import BlockProcessor, OperatorSelection

logger = logging.getLogger(__name__)


def process_raster(
    dem: np.ndarray,
    operator: OperatorSelection,
    cell_size_x: float = 1.0,
    cell_size_y: float = 1.0,
    *,
    block_height: int = 1024,
    block_width: int = 1024,
    backend: str = "auto",
    device_id: int = 0,
    processor: Optional[BlockProcessor] = None,
) -> np.ndarray:
    """
    Run a stencil operator over a whole raster, one tile at a time.

    The outermost ring of the raster has no full neighborhood and is 0 in
    the result.

    Args:
        dem: 2D elevation array (rows x cols)
        operator: Operator tag, command name, or (command, algorithm) tuple
        cell_size_x: Cell size along columns
        cell_size_y: Cell size along rows
        block_height: Maximum output rows per tile
        block_width: Maximum output columns per tile
        backend: 'auto', 'cuda' or 'cpu'
        device_id: CUDA device ordinal
        processor: Existing processor to reuse; it must be large enough for
            the tiler's input windows and is left open on return

    Returns:
        float32 array shaped like ``dem``
    """
    dem = np.asarray(dem)
    if dem.ndim != 2:
        raise ValueError(f"Expected a 2D raster, got shape {dem.shape}")

    tiler = RasterTiler(dem.shape[0], dem.shape[1], block_height, block_width)
    max_h, max_w = tiler.max_input_shape()

    owns_processor = processor is None
    if processor is None:
        processor = BlockProcessor(
            operator, max_h, max_w, cell_size_x, cell_size_y,
            backend=backend, device_id=device_id,
        )
    elif processor.max_height * processor.max_width < max_h * max_w:
        raise ValueError(
            f"Processor capacity {processor.max_height}x{processor.max_width} "
            f"too small for {max_h}x{max_w} input tiles"
        )

    result = np.zeros(dem.shape, dtype=CELL_DTYPE)
    t0 = time.time()
    try:
        for n, pair in enumerate(tiler.tiles(), start=1):
            src, dst = pair.input_rect, pair.output_rect
            processor.load_tile(dem[src.row_start:src.row_end, src.col_start:src.col_end], src)
            processor.process_tile(src, dst)
            result[dst.row_start:dst.row_end, dst.col_start:dst.col_end] = processor.output_view(dst)
            if n % 100 == 0:
                logger.info(f"Processed {n}/{len(tiler)} tiles")
    finally:
        if owns_processor:
            processor.close()

    logger.info(
        f"{processor.operator.value}: {dem.shape[0]}x{dem.shape[1]} raster in "
        f"{len(tiler)} tiles ({time.time() - t0:.2f}s, backend={processor.backend})"
    )
    return result
