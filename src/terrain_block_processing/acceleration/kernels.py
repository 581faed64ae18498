"""Compiled stencil kernels.

One kernel is specialized per (operator, target) pair and cached. Both
targets cover the input window with 16x16 work-groups and apply the same
per-cell rule from ``addressing.classify_cell``:

- ``cuda``: a Numba CUDA kernel, one thread per input cell, launched over a
  grid of ceil(width/16) x ceil(height/16) blocks. The x axis walks columns
  so neighboring threads in a warp read neighboring cells.
- ``cpu``: a Numba parallel loop over the same work-group grid.

Kernels take flat row-major buffers:
    kernel(inp, out, in_height, in_width, out_height, out_width,
           delta_row, delta_col, cell_size_x, cell_size_y)
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Callable, Tuple

import numba
import numpy as np

from ..operators.commands import Operator
from ..operators.stencils import get_stencil
from .addressing import EDGE, STENCIL, EDGE_VALUE, classify_cell

logger = logging.getLogger(__name__)

WORK_GROUP: Tuple[int, int] = (16, 16)

TARGETS = ("cuda", "cpu")

# Launch signature of the CUDA kernel: flat float32 buffers, int64 extents
# and offsets, float64 cell sizes (see ``launch``)
CUDA_SIGNATURE = (
    "void(float32[::1], float32[::1], int64, int64, int64, int64, "
    "int64, int64, float64, float64)"
)


def launch_grid(height: int, width: int, work_group: Tuple[int, int] = WORK_GROUP) -> Tuple[int, int]:
    """Number of work-groups needed to cover a height x width window."""
    return (
        int(math.ceil(height / work_group[0])),
        int(math.ceil(width / work_group[1])),
    )


def _build_cpu_kernel(stencil: Callable) -> Callable:
    cell_fn = numba.njit(stencil)
    classify = numba.njit(classify_cell)
    group_rows, group_cols = WORK_GROUP

    @numba.njit(parallel=True)
    def kernel(inp, out, in_height, in_width, out_height, out_width,
               delta_row, delta_col, cell_size_x, cell_size_y):
        grid_rows = (in_height + group_rows - 1) // group_rows
        grid_cols = (in_width + group_cols - 1) // group_cols
        for group in numba.prange(grid_rows * grid_cols):
            # prange indices may be unsigned; keep the arithmetic signed
            g = np.int64(group)
            row0 = (g // grid_cols) * group_rows
            col0 = (g % grid_cols) * group_cols
            for tr in range(group_rows):
                row = row0 + tr
                if row >= in_height:
                    break
                for tc in range(group_cols):
                    col = col0 + tc
                    if col >= in_width:
                        break
                    kind = classify(row, col, in_height, in_width,
                                    out_height, out_width, delta_row, delta_col)
                    if kind == EDGE:
                        out[(row + delta_row) * out_width + col + delta_col] = EDGE_VALUE
                    elif kind == STENCIL:
                        up = (row - 1) * in_width + col
                        mid = row * in_width + col
                        down = (row + 1) * in_width + col
                        out[(row + delta_row) * out_width + col + delta_col] = cell_fn(
                            float(inp[up - 1]), float(inp[up]), float(inp[up + 1]),
                            float(inp[mid - 1]), float(inp[mid]), float(inp[mid + 1]),
                            float(inp[down - 1]), float(inp[down]), float(inp[down + 1]),
                            cell_size_x, cell_size_y,
                        )

    return kernel


def _build_cuda_kernel(stencil: Callable) -> Callable:
    from numba import cuda

    cell_fn = cuda.jit(device=True)(stencil)
    classify = cuda.jit(device=True)(classify_cell)

    @cuda.jit
    def kernel(inp, out, in_height, in_width, out_height, out_width,
               delta_row, delta_col, cell_size_x, cell_size_y):
        col, row = cuda.grid(2)
        if row >= in_height or col >= in_width:
            return
        kind = classify(row, col, in_height, in_width,
                        out_height, out_width, delta_row, delta_col)
        if kind == EDGE:
            out[(row + delta_row) * out_width + col + delta_col] = EDGE_VALUE
        elif kind == STENCIL:
            up = (row - 1) * in_width + col
            mid = row * in_width + col
            down = (row + 1) * in_width + col
            out[(row + delta_row) * out_width + col + delta_col] = cell_fn(
                float(inp[up - 1]), float(inp[up]), float(inp[up + 1]),
                float(inp[mid - 1]), float(inp[mid]), float(inp[mid + 1]),
                float(inp[down - 1]), float(inp[down]), float(inp[down + 1]),
                cell_size_x, cell_size_y,
            )

    return kernel


@lru_cache(maxsize=None)
def get_kernel(operator: Operator, target: str) -> Callable:
    """
    Return the kernel specialized for an operator on a target.

    Raises:
        UnsupportedOperationError: No stencil registered for the operator
        ValueError: Unknown target
    """
    stencil = get_stencil(operator)
    if target == "cpu":
        kernel = _build_cpu_kernel(stencil)
    elif target == "cuda":
        kernel = _build_cuda_kernel(stencil)
    else:
        raise ValueError(f"Unknown kernel target '{target}', expected one of {TARGETS}")
    logger.debug(f"Built {target} kernel for {operator.value}")
    return kernel


def prefer_l1_cache(operator: Operator) -> None:
    """
    Compile the CUDA kernel for an operator in the current context and set
    its cache configuration to prefer L1 over shared memory.

    The kernel reads its 3x3 neighborhood straight from global memory and
    uses no shared memory.

    Raises:
        UnsupportedOperationError: No stencil registered for the operator
    """
    kernel = get_kernel(operator, "cuda")
    compiled = kernel.compile(CUDA_SIGNATURE)
    compiled.library.get_cufunc().cache_config(prefer_cache=True)
    logger.debug(f"L1 cache preference set for {operator.value} kernel")


def launch(kernel: Callable, target: str, inp, out, in_height: int, in_width: int,
           out_height: int, out_width: int, delta_row: int, delta_col: int,
           cell_size_x: float, cell_size_y: float) -> None:
    """Launch a kernel over an in_height x in_width input window."""
    args = (inp, out, np.int64(in_height), np.int64(in_width),
            np.int64(out_height), np.int64(out_width),
            np.int64(delta_row), np.int64(delta_col),
            np.float64(cell_size_x), np.float64(cell_size_y))
    if target == "cuda":
        grid_rows, grid_cols = launch_grid(in_height, in_width)
        kernel[(grid_cols, grid_rows), WORK_GROUP](*args)
    else:
        kernel(*args)
