"""
Tile geometry for block processing.

Provides:
- BlockRect: immutable row/column window inside a raster
- TilePair: the (input, output) rectangle pair for one tile
- RasterTiler: enumerates tile pairs covering a raster with a one-cell halo

A tile's input window carries a halo so that every output cell owned by the
tile has its full 3x3 neighborhood available. At raster edges the halo cannot
extend past the raster, so the outermost raster ring has no neighborhood and
comes out of the engine as 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

# Cells added on each side of an output window
HALO = 1


@dataclass(frozen=True)
class BlockRect:
    """Rectangular window of a raster in cell coordinates.

    Attributes:
        row_start: First row of the window (may be negative for a halo above the raster)
        col_start: First column of the window (may be negative for a halo left of the raster)
        height: Number of rows (> 0)
        width: Number of columns (> 0)
    """
    row_start: int
    col_start: int
    height: int
    width: int

    def __post_init__(self) -> None:
        if self.height <= 0 or self.width <= 0:
            raise ValueError(
                f"BlockRect needs positive extent, got height={self.height}, width={self.width}"
            )

    @property
    def row_end(self) -> int:
        """One past the last row."""
        return self.row_start + self.height

    @property
    def col_end(self) -> int:
        """One past the last column."""
        return self.col_start + self.width

    @property
    def size(self) -> int:
        """Number of cells in the window."""
        return self.height * self.width

    def contains(self, row_index: int, col_index: int) -> bool:
        """Half-open containment test."""
        return (
            self.row_start <= row_index < self.row_end
            and self.col_start <= col_index < self.col_end
        )

    def equals(self, other: "BlockRect") -> bool:
        return self == other

    def offset_to(self, other: "BlockRect") -> Tuple[int, int]:
        """Return (delta_row, delta_col) mapping local cells of self into other.

        A cell at local position (r, c) in self sits at local position
        (r + delta_row, c + delta_col) in other.
        """
        return self.row_start - other.row_start, self.col_start - other.col_start


@dataclass(frozen=True)
class TilePair:
    """Input (haloed) and output (trimmed) windows of a single tile."""
    input_rect: BlockRect
    output_rect: BlockRect


class RasterTiler:
    """Split a raster into block-sized output windows with haloed input windows.

    Output windows partition the raster row by row. Each input window extends
    the output window by HALO cells on every side, clipped to the raster.

    Attributes:
        height: Raster rows
        width: Raster columns
        block_height: Maximum output rows per tile
        block_width: Maximum output columns per tile
        n_block_rows: Number of tile rows
        n_block_cols: Number of tile columns
    """

    def __init__(self, height: int, width: int, block_height: int, block_width: int) -> None:
        if height <= 0 or width <= 0:
            raise ValueError(f"Raster must be non-empty, got {height}x{width}")
        if block_height <= 0 or block_width <= 0:
            raise ValueError(f"Block size must be positive, got {block_height}x{block_width}")
        self.height = int(height)
        self.width = int(width)
        self.block_height = int(block_height)
        self.block_width = int(block_width)
        self.n_block_rows = int(math.ceil(self.height / self.block_height))
        self.n_block_cols = int(math.ceil(self.width / self.block_width))

    def __len__(self) -> int:
        return self.n_block_rows * self.n_block_cols

    def max_input_shape(self) -> Tuple[int, int]:
        """Largest input window any tile can have; sizes the processor buffers."""
        return (
            min(self.block_height + 2 * HALO, self.height),
            min(self.block_width + 2 * HALO, self.width),
        )

    def tiles(self) -> Iterator[TilePair]:
        """Yield tile pairs row by row."""
        for j in range(self.n_block_rows):
            r0 = j * self.block_height
            r1 = min(self.height, r0 + self.block_height)
            in_r0 = max(0, r0 - HALO)
            in_r1 = min(self.height, r1 + HALO)

            for i in range(self.n_block_cols):
                c0 = i * self.block_width
                c1 = min(self.width, c0 + self.block_width)
                in_c0 = max(0, c0 - HALO)
                in_c1 = min(self.width, c1 + HALO)

                yield TilePair(
                    input_rect=BlockRect(in_r0, in_c0, in_r1 - in_r0, in_c1 - in_c0),
                    output_rect=BlockRect(r0, c0, r1 - r0, c1 - c0),
                )

    def tile_list(self) -> List[TilePair]:
        return list(self.tiles())
