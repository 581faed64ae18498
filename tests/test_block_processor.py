"""
Tests for BlockProcessor on the CPU (managed memory) backend, plus CUDA
checks that only run when a device is present.
"""

import math

import numpy as np
import pytest
from numba.core.errors import NumbaError

from terrain_block_processing.acceleration.addressing import process_tile_reference
from terrain_block_processing.acceleration.hardware_detection import get_gpu_info
from terrain_block_processing.errors import (
    AcceleratorExecutionError,
    AcceleratorInitError,
    UnsupportedOperationError,
)
from terrain_block_processing.operators import STENCILS, Operator
from terrain_block_processing.processing import block_processor as bp_module
from terrain_block_processing.processing.block_processor import BlockProcessor, select_backend
from terrain_block_processing.tiling import BlockRect

requires_cuda = pytest.mark.skipif(not get_gpu_info().available, reason="CUDA device not available")

PLANE_SLOPE = math.degrees(math.atan(5.0))


def plane_tile(height, width):
    """z = 3 * row + 4 * col: gradient magnitude 5 with unit cells."""
    rows, cols = np.mgrid[0:height, 0:width]
    return (3.0 * rows + 4.0 * cols + 100.0).astype(np.float32)


@pytest.fixture
def processor():
    """Slope (Burrough) processor sized for 8x8 tiles."""
    bp = BlockProcessor(Operator.SLOPE_BURROUGH, 8, 8, 1.0, 1.0, backend="cpu")
    yield bp
    bp.close()


class TestConstruction:
    """Test processor construction and buffer allocation."""

    def test_buffers_match_capacity(self, processor):
        """Test that all buffers are flat float32 arrays of the full capacity."""
        assert processor.backend == "cpu"
        assert processor.capacity == 64
        assert processor.input_buffer.shape == (64,)
        assert processor.output_buffer.shape == (64,)
        assert processor.input_buffer.dtype == np.float32
        assert not np.shares_memory(processor.input_buffer, processor.output_buffer)

    def test_operator_from_names(self):
        """Test operator selection from command and algorithm names."""
        with BlockProcessor(("slope", "ZevenbergenThorne"), 4, 4, backend="cpu") as bp:
            assert bp.operator is Operator.SLOPE_ZEVENBERGEN
        with BlockProcessor("hillshade", 4, 4, backend="cpu") as bp:
            assert bp.operator is Operator.HILLSHADE

    def test_unknown_algorithm_rejected_before_allocation(self, monkeypatch):
        """Test that an unknown algorithm fails before any buffer is allocated."""
        calls = []
        monkeypatch.setattr(bp_module, "create_buffer_pair", lambda *a: calls.append(a))
        with pytest.raises(UnsupportedOperationError):
            BlockProcessor(("slope", "Horn"), 4, 4, backend="cpu")
        assert calls == []

    @pytest.mark.parametrize("kwargs", [
        dict(max_height=0, max_width=4),
        dict(max_height=4, max_width=-1),
        dict(max_height=4, max_width=4, cell_size_x=0.0),
        dict(max_height=4, max_width=4, cell_size_y=-2.0),
    ])
    def test_invalid_dimensions(self, kwargs):
        """Test rejection of non-positive tile sizes and cell sizes."""
        with pytest.raises(ValueError):
            BlockProcessor(Operator.ASPECT, backend="cpu", **kwargs)

    def test_unknown_backend(self):
        """Test rejection of an unknown backend name."""
        with pytest.raises(ValueError):
            BlockProcessor(Operator.ASPECT, 4, 4, backend="opencl")

    def test_allocation_failure_releases_partial_buffers(self, monkeypatch):
        """Test that a failed allocation releases the buffers already allocated."""
        allocated = []
        real_create = bp_module.create_buffer_pair

        def failing_create(capacity, backend):
            if allocated:
                raise MemoryError("out of memory")
            pair = real_create(capacity, backend)
            allocated.append(pair)
            return pair

        monkeypatch.setattr(bp_module, "create_buffer_pair", failing_create)
        with pytest.raises(AcceleratorInitError, match="out of memory"):
            BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu")
        assert allocated[0].released

    @pytest.mark.skipif(get_gpu_info().available, reason="CUDA device present")
    def test_cuda_requested_without_device(self):
        """Test that requesting CUDA without a device is an init error."""
        with pytest.raises(AcceleratorInitError):
            BlockProcessor(Operator.ASPECT, 4, 4, backend="cuda")

    def test_auto_backend(self):
        """Test that auto selects CUDA only when a device is usable."""
        expected = "cuda" if get_gpu_info().available else "cpu"
        assert select_backend("auto") == expected


class TestProcessTile:
    """Test tile processing on the CPU backend."""

    def test_end_to_end_haloed_interior_tile(self, processor):
        """5x5 input window, inner 3x3 output window: all nine outputs computed."""
        inp = BlockRect(9, 9, 5, 5)
        out = BlockRect(10, 10, 3, 3)
        processor.load_tile(plane_tile(5, 5), inp)

        processor.process_tile(inp, out)

        np.testing.assert_allclose(processor.output_view(out), PLANE_SLOPE, rtol=1e-6)

    def test_same_window_has_zero_ring(self, processor):
        """delta = 0 with identical windows: interior computed, outer ring 0."""
        rect = BlockRect(20, 30, 5, 5)
        processor.load_tile(plane_tile(5, 5), rect)

        processor.process_tile(rect, rect)

        result = processor.output_view(rect)
        np.testing.assert_allclose(result[1:-1, 1:-1], PLANE_SLOPE, rtol=1e-6)
        ring = np.ones((5, 5), dtype=bool)
        ring[1:-1, 1:-1] = False
        np.testing.assert_array_equal(result[ring], 0.0)

    def test_zero_offset_smaller_output(self, processor):
        """5x5 input, 3x3 output at the same origin: first row/column are input edges."""
        inp = BlockRect(0, 0, 5, 5)
        out = BlockRect(0, 0, 3, 3)
        processor.load_tile(plane_tile(5, 5), inp)

        processor.process_tile(inp, out)

        result = processor.output_view(out)
        np.testing.assert_array_equal(result[0, :], 0.0)
        np.testing.assert_array_equal(result[:, 0], 0.0)
        np.testing.assert_allclose(result[1:, 1:], PLANE_SLOPE, rtol=1e-6)

    def test_raster_corner_tile(self, processor):
        """Test a tile whose input window hangs off the raster corner."""
        rng = np.random.default_rng(7)
        values = rng.uniform(0.0, 30.0, (5, 5)).astype(np.float32)
        inp = BlockRect(-1, -1, 5, 5)
        out = BlockRect(0, 0, 4, 4)
        processor.load_tile(values, inp)

        processor.process_tile(inp, out)

        expected = process_tile_reference(values, inp, out, Operator.SLOPE_BURROUGH)
        np.testing.assert_allclose(processor.output_view(out), expected, rtol=1e-5, atol=1e-5)
        # Last input row/column are window edges
        np.testing.assert_array_equal(processor.output_view(out)[3, :], 0.0)
        np.testing.assert_array_equal(processor.output_view(out)[:, 3], 0.0)

    def test_skipped_cells_are_not_written(self, processor):
        """Test that cells mapping outside the output window leave the buffer untouched."""
        processor.output_buffer[:] = 99.0
        inp = BlockRect(-1, -1, 5, 5)
        out = BlockRect(0, 0, 2, 2)
        processor.load_tile(plane_tile(5, 5), inp)

        processor.process_tile(inp, out)

        np.testing.assert_allclose(processor.output_buffer[:4], PLANE_SLOPE, rtol=1e-6)
        np.testing.assert_array_equal(processor.output_buffer[4:], 99.0)

    def test_idempotent(self, processor):
        """Test that processing the same tile twice gives identical output."""
        rng = np.random.default_rng(11)
        values = rng.uniform(0.0, 500.0, (8, 8)).astype(np.float32)
        inp = BlockRect(4, 4, 8, 8)
        out = BlockRect(5, 5, 6, 6)

        processor.load_tile(values, inp)
        processor.process_tile(inp, out)
        first = processor.output_view(out).copy()
        processor.process_tile(inp, out)

        np.testing.assert_array_equal(processor.output_view(out), first)
        assert processor.tiles_processed == 2

    def test_tiles_up_to_capacity(self, processor):
        """Test tiles of various shapes within the capacity."""
        for height, width in [(8, 8), (1, 8), (8, 1), (3, 7)]:
            rect = BlockRect(0, 0, height, width)
            processor.load_tile(np.zeros((height, width), dtype=np.float32), rect)
            processor.process_tile(rect, rect)
            np.testing.assert_array_equal(processor.output_view(rect), 0.0)

    def test_tile_over_capacity_rejected(self, processor):
        """Test that a tile over the capacity raises instead of truncating."""
        rect = BlockRect(0, 0, 9, 8)
        with pytest.raises(ValueError, match="capacity"):
            processor.process_tile(rect, BlockRect(0, 0, 8, 8))

    def test_load_tile_size_mismatch(self, processor):
        """Test that tile values must match the window size."""
        with pytest.raises(ValueError):
            processor.load_tile(np.zeros((3, 3)), BlockRect(0, 0, 4, 4))

    def test_unsupported_operator_before_any_transfer(self, monkeypatch):
        """Test that an operator without a stencil fails before any upload."""
        monkeypatch.delitem(STENCILS, Operator.ASPECT)
        with BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu") as bp:
            uploads = []
            monkeypatch.setattr(bp._input, "upload", lambda count: uploads.append(count))
            rect = BlockRect(0, 0, 4, 4)
            with pytest.raises(UnsupportedOperationError):
                bp.process_tile(rect, rect)
            assert uploads == []

    @pytest.mark.parametrize("operator", list(Operator))
    def test_kernel_matches_reference(self, operator):
        """Test every compiled operator against the serial reference path."""
        rng = np.random.default_rng(5)
        rows, cols = np.mgrid[0:12, 0:10]
        values = (np.sin(rows / 3.0) * 20.0 + cols * 1.5 + rng.normal(0.0, 0.5, rows.shape)).astype(np.float32)
        inp = BlockRect(-1, 6, 12, 10)
        out = BlockRect(0, 7, 10, 8)

        with BlockProcessor(operator, 12, 10, 2.0, 3.0, backend="cpu") as bp:
            bp.load_tile(values, inp)
            bp.process_tile(inp, out)
            result = bp.output_view(out).copy()

        expected = process_tile_reference(values, inp, out, operator, 2.0, 3.0)
        np.testing.assert_allclose(result, expected, rtol=1e-5, atol=1e-3)

    def test_work_group_remainders(self):
        """Windows that are not multiples of 16 are fully covered."""
        rng = np.random.default_rng(2)
        values = rng.uniform(0.0, 10.0, (37, 21)).astype(np.float32)
        rect = BlockRect(0, 0, 37, 21)

        with BlockProcessor(Operator.SLOPE_ZEVENBERGEN, 40, 40, backend="cpu") as bp:
            bp.output_buffer[:] = np.nan
            bp.load_tile(values, rect)
            bp.process_tile(rect, rect)
            result = bp.output_view(rect).copy()

        assert np.all(np.isfinite(result))
        expected = process_tile_reference(values, rect, rect, Operator.SLOPE_ZEVENBERGEN)
        np.testing.assert_allclose(result, expected, rtol=1e-5, atol=1e-4)


class KernelLaunchError(NumbaError):
    """Numba driver style failure carrying a CUDA status code."""

    def __init__(self, code, msg):
        super().__init__(f"[{code}] {msg}")
        self.code = code
        self.msg = msg


class TestCachePreference:
    """Test the L1 cache preference step of device setup."""

    def test_applies_to_processor_operator(self, monkeypatch):
        """Test that the preference is set on the kernel of the processor's operator."""
        configured = []
        monkeypatch.setattr(bp_module, "prefer_l1_cache", configured.append)

        with BlockProcessor(Operator.PLAN_CURVATURE, 4, 4, backend="cpu") as bp:
            bp._set_cache_preference()

        assert configured == [Operator.PLAN_CURVATURE]

    def test_operator_without_stencil_deferred(self, monkeypatch):
        """Test that a missing stencil is left for process_tile to report."""
        monkeypatch.delitem(STENCILS, Operator.ASPECT)
        with BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu") as bp:
            bp._set_cache_preference()
            rect = BlockRect(0, 0, 4, 4)
            with pytest.raises(UnsupportedOperationError):
                bp.process_tile(rect, rect)


class TestExecutionErrors:
    """Test that accelerator failures inside process_tile surface as execution errors."""

    RECT = BlockRect(0, 0, 4, 4)

    def test_launch_failure_carries_status(self, processor, monkeypatch):
        """Test that a launch failure keeps the driver status and description."""
        def failing_launch(*args):
            raise KernelLaunchError(719, "CUDA_ERROR_LAUNCH_FAILED")

        monkeypatch.setattr(bp_module, "launch", failing_launch)
        processor.load_tile(plane_tile(4, 4), self.RECT)

        with pytest.raises(AcceleratorExecutionError) as excinfo:
            processor.process_tile(self.RECT, self.RECT)

        err = excinfo.value
        assert err.status == 719
        assert err.description == "CUDA_ERROR_LAUNCH_FAILED"
        assert "slope_burrough" in str(err)
        assert isinstance(err.__cause__, KernelLaunchError)
        assert processor.tiles_processed == 0

    def test_launch_failure_without_status(self, processor, monkeypatch):
        """Test that a compiler-side Numba error is wrapped with no status."""
        def failing_launch(*args):
            raise NumbaError("launch failed")

        monkeypatch.setattr(bp_module, "launch", failing_launch)

        with pytest.raises(AcceleratorExecutionError) as excinfo:
            processor.process_tile(self.RECT, self.RECT)

        assert excinfo.value.status is None
        assert excinfo.value.description == "launch failed"

    def test_launch_failure_skips_download(self, processor, monkeypatch):
        """Test that nothing is copied back after a failed launch."""
        downloads = []

        def failing_launch(*args):
            raise KernelLaunchError(700, "CUDA_ERROR_ILLEGAL_ADDRESS")

        monkeypatch.setattr(bp_module, "launch", failing_launch)
        monkeypatch.setattr(processor._output, "download", downloads.append)

        with pytest.raises(AcceleratorExecutionError):
            processor.process_tile(self.RECT, self.RECT)
        assert downloads == []

    def test_non_accelerator_error_not_wrapped(self, processor, monkeypatch):
        """Test that errors outside Numba and CUDA propagate unchanged."""
        def failing_launch(*args):
            raise RuntimeError("unrelated failure")

        monkeypatch.setattr(bp_module, "launch", failing_launch)

        with pytest.raises(RuntimeError, match="unrelated failure") as excinfo:
            processor.process_tile(self.RECT, self.RECT)
        assert not isinstance(excinfo.value, AcceleratorExecutionError)

    def test_upload_failure_stops_before_launch(self, processor, monkeypatch):
        """Test that a failed host to device copy propagates and skips the launch."""
        launches = []

        def failing_upload(count):
            raise AcceleratorExecutionError("Host to device transfer failed", 2, "out of memory")

        monkeypatch.setattr(processor._input, "upload", failing_upload)
        monkeypatch.setattr(bp_module, "launch", lambda *args: launches.append(args))

        with pytest.raises(AcceleratorExecutionError) as excinfo:
            processor.process_tile(self.RECT, self.RECT)

        assert excinfo.value.status == 2
        assert excinfo.value.description == "out of memory"
        assert launches == []
        assert processor.tiles_processed == 0

    def test_download_failure_propagates(self, processor, monkeypatch):
        """Test that a failed device to host copy propagates as an execution error."""
        def failing_download(count):
            raise AcceleratorExecutionError("Device to host transfer failed", 700, "illegal address")

        monkeypatch.setattr(processor._output, "download", failing_download)
        processor.load_tile(plane_tile(4, 4), self.RECT)

        with pytest.raises(AcceleratorExecutionError, match="Device to host"):
            processor.process_tile(self.RECT, self.RECT)
        assert processor.tiles_processed == 0


class TestTeardown:
    """Test processor teardown."""

    def test_close_is_idempotent(self):
        """Test that close can be called repeatedly."""
        bp = BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu")
        bp.close()
        bp.close()
        assert bp.closed

    def test_closed_processor_rejects_work(self):
        """Test that a closed processor raises an execution error."""
        bp = BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu")
        bp.close()
        rect = BlockRect(0, 0, 4, 4)
        with pytest.raises(AcceleratorExecutionError):
            bp.process_tile(rect, rect)
        with pytest.raises(AcceleratorExecutionError):
            _ = bp.input_buffer

    def test_context_manager_closes(self):
        """Test that leaving the context closes the processor."""
        with BlockProcessor(Operator.ASPECT, 4, 4, backend="cpu") as bp:
            assert not bp.closed
        assert bp.closed


@requires_cuda
class TestCudaBackend:
    """Test the CUDA backend on a real device."""

    def test_cuda_matches_reference(self):
        """Test the CUDA kernel against the serial reference path."""
        rng = np.random.default_rng(9)
        values = rng.uniform(0.0, 100.0, (40, 35)).astype(np.float32)
        inp = BlockRect(-1, -1, 40, 35)
        out = BlockRect(0, 0, 39, 34)

        with BlockProcessor(Operator.SLOPE_BURROUGH, 40, 40, 1.0, 1.0, backend="cuda") as bp:
            assert bp.backend == "cuda"
            bp.load_tile(values, inp)
            bp.process_tile(inp, out)
            result = bp.output_view(out).copy()

        expected = process_tile_reference(values, inp, out, Operator.SLOPE_BURROUGH)
        np.testing.assert_allclose(result, expected, rtol=1e-4, atol=1e-3)
