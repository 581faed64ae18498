"""
Tests for tile geometry: BlockRect and RasterTiler.
"""

import itertools

import numpy as np
import pytest

from terrain_block_processing.tiling import BlockRect, RasterTiler, TilePair


class TestBlockRect:
    """Test BlockRect containment and equality."""

    def test_accessors(self):
        """Test the derived end coordinates and size."""
        rect = BlockRect(2, 3, 4, 5)
        assert rect.row_start == 2
        assert rect.col_start == 3
        assert rect.height == 4
        assert rect.width == 5
        assert rect.row_end == 6
        assert rect.col_end == 8
        assert rect.size == 20

    def test_contains_matches_half_open_bounds(self):
        """contains() is true iff start <= index < start + extent on both axes."""
        for row_start, col_start, height, width in [(0, 0, 1, 1), (-1, -1, 3, 4), (5, -2, 2, 7)]:
            rect = BlockRect(row_start, col_start, height, width)
            for row, col in itertools.product(range(-4, 12), range(-4, 12)):
                expected = (row_start <= row < row_start + height) and (col_start <= col < col_start + width)
                assert rect.contains(row, col) == expected, (rect, row, col)

    def test_contains_edges(self):
        """Test that the window is half-open."""
        rect = BlockRect(0, 0, 3, 3)
        assert rect.contains(0, 0)
        assert rect.contains(2, 2)
        assert not rect.contains(3, 0)
        assert not rect.contains(0, 3)
        assert not rect.contains(-1, 0)

    def test_negative_origin(self):
        """Test windows starting before the raster origin."""
        rect = BlockRect(-1, -1, 5, 5)
        assert rect.contains(-1, -1)
        assert rect.contains(3, 3)
        assert not rect.contains(4, 0)

    def test_equality_is_field_wise(self):
        """Test equality on all four fields."""
        a = BlockRect(1, 2, 3, 4)
        assert a == a
        assert a.equals(a)
        assert a == BlockRect(1, 2, 3, 4)
        assert BlockRect(1, 2, 3, 4) == a
        assert a != BlockRect(1, 2, 3, 5)
        assert a != BlockRect(1, 2, 4, 4)
        assert a != BlockRect(0, 2, 3, 4)
        assert a != BlockRect(1, 3, 3, 4)
        assert not a.equals(BlockRect(1, 2, 3, 5))

    def test_hashable(self):
        """Test that rectangles can be used as dict keys."""
        assert len({BlockRect(0, 0, 2, 2), BlockRect(0, 0, 2, 2), BlockRect(0, 1, 2, 2)}) == 2

    def test_immutable(self):
        """Test that fields cannot be reassigned."""
        rect = BlockRect(0, 0, 2, 2)
        with pytest.raises(AttributeError):
            rect.height = 5

    @pytest.mark.parametrize("height,width", [(0, 1), (1, 0), (-2, 3)])
    def test_rejects_empty_extent(self, height, width):
        """Test rejection of a zero or negative extent."""
        with pytest.raises(ValueError):
            BlockRect(0, 0, height, width)

    def test_offset_to(self):
        """Test the input to output offset."""
        inp = BlockRect(9, 9, 5, 5)
        out = BlockRect(10, 10, 3, 3)
        assert inp.offset_to(out) == (-1, -1)
        assert out.offset_to(out) == (0, 0)


class TestRasterTiler:
    """Test tile pair enumeration."""

    def test_single_tile_covers_raster_without_halo(self):
        """Test a raster smaller than one block."""
        tiler = RasterTiler(10, 12, 64, 64)
        pairs = tiler.tile_list()
        assert len(pairs) == 1
        assert pairs[0] == TilePair(BlockRect(0, 0, 10, 12), BlockRect(0, 0, 10, 12))

    def test_interior_halo_and_edge_clipping(self):
        """Test interior halos and clipping at raster edges."""
        tiler = RasterTiler(10, 10, 4, 4)
        pairs = tiler.tile_list()
        assert len(pairs) == len(tiler) == 9

        first = pairs[0]
        assert first.output_rect == BlockRect(0, 0, 4, 4)
        # No halo above/left of the raster, one cell below/right
        assert first.input_rect == BlockRect(0, 0, 5, 5)

        middle = pairs[4]
        assert middle.output_rect == BlockRect(4, 4, 4, 4)
        assert middle.input_rect == BlockRect(3, 3, 6, 6)

        last = pairs[-1]
        assert last.output_rect == BlockRect(8, 8, 2, 2)
        assert last.input_rect == BlockRect(7, 7, 3, 3)

    @pytest.mark.parametrize("shape,block", [((10, 10), (4, 4)), ((7, 13), (3, 5)), ((5, 5), (1, 1))])
    def test_outputs_partition_raster(self, shape, block):
        """Test that output windows cover the raster exactly once."""
        tiler = RasterTiler(shape[0], shape[1], block[0], block[1])
        coverage = np.zeros(shape, dtype=int)
        max_h, max_w = tiler.max_input_shape()
        for pair in tiler.tiles():
            out, inp = pair.output_rect, pair.input_rect
            coverage[out.row_start:out.row_end, out.col_start:out.col_end] += 1
            # Input window contains the output window and stays in the raster
            assert inp.contains(out.row_start, out.col_start)
            assert inp.contains(out.row_end - 1, out.col_end - 1)
            assert inp.row_start >= 0 and inp.col_start >= 0
            assert inp.row_end <= shape[0] and inp.col_end <= shape[1]
            assert inp.height <= max_h and inp.width <= max_w
        np.testing.assert_array_equal(coverage, 1)

    def test_max_input_shape(self):
        """Test the largest haloed input window."""
        assert RasterTiler(100, 100, 16, 32).max_input_shape() == (18, 34)
        assert RasterTiler(10, 5, 16, 32).max_input_shape() == (10, 5)

    def test_rejects_invalid_sizes(self):
        """Test rejection of non-positive raster and block sizes."""
        with pytest.raises(ValueError):
            RasterTiler(0, 10, 4, 4)
        with pytest.raises(ValueError):
            RasterTiler(10, 10, 0, 4)
