"""
Input-to-output cell addressing and the tile-edge policy.

Each input cell either:
- maps outside the output window (SKIP: halo-only cell, nothing written),
- sits on the input window boundary (EDGE: neighborhood incomplete, writes 0),
- or is strictly interior (STENCIL: writes the operator value).

``classify_cell`` works on plain integers so it can be compiled for both
kernel targets. ``map_input_cell`` and ``process_tile_reference`` are the
serial, rectangle-based forms used to check the kernels.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from ..operators.commands import Operator
from ..operators.stencils import get_stencil
from ..tiling import BlockRect

SKIP = 0
EDGE = 1
STENCIL = 2

# Value written where the neighborhood is incomplete
EDGE_VALUE = 0.0


def classify_cell(row, col, in_height, in_width, out_height, out_width, delta_row, delta_col):
    """Classify input cell (row, col); see module docstring for the codes."""
    out_row = row + delta_row
    out_col = col + delta_col
    if out_row < 0 or out_row >= out_height or out_col < 0 or out_col >= out_width:
        return SKIP
    if row == 0 or col == 0 or row == in_height - 1 or col == in_width - 1:
        return EDGE
    return STENCIL


def map_input_cell(row: int, col: int, input_rect: BlockRect, output_rect: BlockRect) -> Tuple[int, int, int]:
    """
    Map a local input cell to its local output cell.

    Args:
        row: Row inside the input window (0-based)
        col: Column inside the input window (0-based)
        input_rect: Haloed input window
        output_rect: Trimmed output window

    Returns:
        (kind, out_row, out_col) where kind is SKIP, EDGE or STENCIL. The
        output position is returned even for SKIP cells.
    """
    delta_row, delta_col = input_rect.offset_to(output_rect)
    kind = classify_cell(
        row, col,
        input_rect.height, input_rect.width,
        output_rect.height, output_rect.width,
        delta_row, delta_col,
    )
    return kind, row + delta_row, col + delta_col


def process_tile_reference(
    values: np.ndarray,
    input_rect: BlockRect,
    output_rect: BlockRect,
    operator: Operator,
    cell_size_x: float = 1.0,
    cell_size_y: float = 1.0,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Serial rendition of the per-cell rule.

    Args:
        values: Input cells, at least input_rect.size values in row-major order
            (flat or shaped like the input window)
        input_rect: Haloed input window
        output_rect: Trimmed output window
        operator: Operator tag
        cell_size_x: Cell size along columns
        cell_size_y: Cell size along rows
        out: Optional flat output buffer; skipped cells keep their content.
            A zero-filled buffer is allocated when omitted.

    Returns:
        Output window as a (height, width) float32 array
    """
    stencil = get_stencil(operator)
    src = np.asarray(values).reshape(-1)[: input_rect.size].reshape(input_rect.height, input_rect.width)
    if out is None:
        out = np.zeros(output_rect.size, dtype=np.float32)
    dst = out.reshape(-1)[: output_rect.size]

    for row in range(input_rect.height):
        for col in range(input_rect.width):
            kind, out_row, out_col = map_input_cell(row, col, input_rect, output_rect)
            if kind == SKIP:
                continue
            idx = out_row * output_rect.width + out_col
            if kind == EDGE:
                dst[idx] = EDGE_VALUE
                continue
            dst[idx] = stencil(
                float(src[row - 1, col - 1]), float(src[row - 1, col]), float(src[row - 1, col + 1]),
                float(src[row, col - 1]), float(src[row, col]), float(src[row, col + 1]),
                float(src[row + 1, col - 1]), float(src[row + 1, col]), float(src[row + 1, col + 1]),
                float(cell_size_x), float(cell_size_y),
            )

    return dst.reshape(output_rect.height, output_rect.width)
