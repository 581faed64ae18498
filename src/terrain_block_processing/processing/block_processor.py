"""
Block processor: runs one stencil operator over one tile at a time.

The processor owns four buffers sized for the largest tile it will ever see
(host input, host output, device input, device output). The caller fills
the host input buffer, calls ``process_tile`` and reads the host output
buffer. Buffers are allocated once and reused for every tile.

Example:
    with BlockProcessor(Operator.SLOPE_BURROUGH, 514, 514, 10.0, 10.0) as bp:
        for pair in tiler.tiles():
            bp.load_tile(dem[...], pair.input_rect)
            bp.process_tile(pair.input_rect, pair.output_rect)
            result = bp.output_view(pair.output_rect)
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Tuple, Union

import numpy as np

from ..acceleration.hardware_detection import check_gpu_memory, get_gpu_info
from ..acceleration.kernels import get_kernel, launch, launch_grid, prefer_l1_cache
from ..acceleration.memory import BufferPair, CELL_DTYPE, create_buffer_pair
from ..errors import (
    AcceleratorExecutionError,
    AcceleratorInitError,
    UnsupportedOperationError,
    describe_accelerator_error,
)
from ..operators.commands import Operator, resolve_operator
from ..operators.stencils import get_stencil
from ..tiling import BlockRect

logger = logging.getLogger(__name__)

BACKENDS = ("auto", "cuda", "cpu")

OperatorSelection = Union[Operator, str, Tuple[str, Optional[str]]]


def _cuda_error_types() -> tuple:
    """Exception types raised by CuPy and Numba for CUDA failures."""
    import cupy as cp
    from numba.cuda.cudadrv.driver import CudaAPIError, CudaSupportError

    return (
        cp.cuda.runtime.CUDARuntimeError,
        cp.cuda.driver.CUDADriverError,
        cp.cuda.memory.OutOfMemoryError,
        CudaAPIError,
        CudaSupportError,
    )


def _kernel_error_types(backend: str) -> tuple:
    from numba.core.errors import NumbaError

    if backend == "cuda":
        return _cuda_error_types() + (NumbaError,)
    return (NumbaError,)


def select_backend(backend: str = "auto", device_id: int = 0) -> str:
    """Resolve 'auto' to 'cuda' when a device is usable, else 'cpu'."""
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}', expected one of {BACKENDS}")
    if backend != "auto":
        return backend
    return "cuda" if get_gpu_info(device_id).available else "cpu"


class BlockProcessor:
    """
    Fixed-capacity tile processor for one stencil operator.

    Attributes:
        operator: Operator tag dispatched for every tile
        max_height: Maximum input window rows
        max_width: Maximum input window columns
        cell_size_x: Cell size along columns (x)
        cell_size_y: Cell size along rows (y)
        backend: 'cuda' or 'cpu'
        device_id: CUDA device ordinal (cuda backend only)
        tiles_processed: Number of successful process_tile calls
    """

    def __init__(
        self,
        operator: OperatorSelection,
        max_height: int,
        max_width: int,
        cell_size_x: float = 1.0,
        cell_size_y: float = 1.0,
        *,
        backend: str = "auto",
        device_id: int = 0,
    ):
        """
        Select the device and allocate the buffers.

        Args:
            operator: Operator tag, command name, or (command, algorithm) tuple
            max_height: Largest tile height that will be submitted (> 0)
            max_width: Largest tile width that will be submitted (> 0)
            cell_size_x: Physical cell size along x (> 0)
            cell_size_y: Physical cell size along y (> 0)
            backend: 'auto', 'cuda' or 'cpu'
            device_id: CUDA device ordinal

        Raises:
            UnsupportedOperationError: Unknown command or algorithm name
            ValueError: Non-positive dimensions or cell sizes
            AcceleratorInitError: Device selection, configuration or allocation failed
        """
        self._input: Optional[BufferPair] = None
        self._output: Optional[BufferPair] = None
        self._closed = True
        self.tiles_processed = 0

        if isinstance(operator, tuple):
            self.operator = resolve_operator(*operator)
        else:
            self.operator = resolve_operator(operator)

        if max_height <= 0 or max_width <= 0:
            raise ValueError(f"Maximum tile size must be positive, got {max_height}x{max_width}")
        if cell_size_x <= 0 or cell_size_y <= 0:
            raise ValueError(f"Cell sizes must be positive, got ({cell_size_x}, {cell_size_y})")

        self.max_height = int(max_height)
        self.max_width = int(max_width)
        self.capacity = self.max_height * self.max_width
        self.cell_size_x = float(cell_size_x)
        self.cell_size_y = float(cell_size_y)
        self.device_id = int(device_id)
        self.backend = select_backend(backend, self.device_id)

        try:
            if self.backend == "cuda":
                self._init_device()
            self._input = create_buffer_pair(self.capacity, self.backend)
            self._output = create_buffer_pair(self.capacity, self.backend)
        except AcceleratorInitError:
            self._release()
            raise
        except Exception as e:
            self._release()
            status, description = describe_accelerator_error(e)
            raise AcceleratorInitError(
                f"Failed to initialize {self.backend} backend "
                f"(status={status}: {description})"
            ) from e

        self._closed = False
        logger.info(
            f"BlockProcessor ready: operator={self.operator.value}, backend={self.backend}, "
            f"capacity={self.max_height}x{self.max_width} "
            f"({4 * self._input.nbytes / 1024**2:.1f} MB in 4 buffers)"
        )

    # ------------------------------------------------------------------
    # Device lifecycle
    # ------------------------------------------------------------------

    def _init_device(self) -> None:
        import cupy as cp
        from numba import cuda

        info = get_gpu_info(self.device_id)
        if not info.available:
            raise AcceleratorInitError(
                f"CUDA device {self.device_id} unavailable: {info.error_message}"
            )

        try:
            cp.cuda.Device(self.device_id).use()
            cuda.select_device(self.device_id)
        except _cuda_error_types() as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorInitError(
                f"Failed to select CUDA device {self.device_id} (status={status}: {description})"
            ) from e

        self._set_cache_preference()

        required = 4 * self.capacity * np.dtype(CELL_DTYPE).itemsize
        has_memory, free_gb = check_gpu_memory(required, self.device_id)
        if free_gb is not None and not has_memory:
            raise AcceleratorInitError(
                f"Not enough device memory for {self.max_height}x{self.max_width} tiles "
                f"({required / 1024**3:.2f} GB needed, {free_gb:.2f} GB free)"
            )
        logger.info(f"Using CUDA device {self.device_id}: {info.device_name}")

    def _set_cache_preference(self) -> None:
        try:
            prefer_l1_cache(self.operator)
        except UnsupportedOperationError:
            # Reported by process_tile before any transfer
            logger.debug(f"No kernel for {self.operator.value}; cache preference not set")
        except _cuda_error_types() as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorInitError(
                f"Failed to set L1 cache preference (status={status}: {description})"
            ) from e

    def _release(self) -> None:
        for pair in (self._input, self._output):
            if pair is not None:
                pair.release()
        self._input = None
        self._output = None

    def close(self) -> None:
        """
        Release the buffers and reset the device. Safe to call repeatedly.

        Failures are logged, never raised.
        """
        if self._closed and self._input is None and self._output is None:
            return
        self._closed = True
        try:
            self._release()
        except Exception as e:
            logger.warning(f"Failed to release buffers: {e}")

        if self.backend == "cuda":
            try:
                import cupy as cp
                from numba import cuda

                cp.get_default_memory_pool().free_all_blocks()
                cp.get_default_pinned_memory_pool().free_all_blocks()
                cuda.close()
            except Exception as e:
                logger.warning(f"Failed to reset CUDA device {self.device_id}: {e}")

        logger.debug(f"BlockProcessor closed after {self.tiles_processed} tiles")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "BlockProcessor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self):
        self.close()

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def _pairs(self) -> Tuple[BufferPair, BufferPair]:
        if self._closed or self._input is None or self._output is None:
            raise AcceleratorExecutionError("BlockProcessor is closed")
        return self._input, self._output

    @property
    def input_buffer(self) -> np.ndarray:
        """Flat host input buffer (full capacity)."""
        return self._pairs()[0].host

    @property
    def output_buffer(self) -> np.ndarray:
        """Flat host output buffer (full capacity)."""
        return self._pairs()[1].host

    def _check_fits(self, rect: BlockRect) -> None:
        if rect.size > self.capacity:
            raise ValueError(
                f"Tile {rect.height}x{rect.width} ({rect.size} cells) exceeds "
                f"buffer capacity {self.max_height}x{self.max_width} ({self.capacity} cells)"
            )

    def input_view(self, rect: BlockRect) -> np.ndarray:
        """Host input buffer viewed as a rect.height x rect.width array."""
        self._check_fits(rect)
        return self.input_buffer[: rect.size].reshape(rect.height, rect.width)

    def output_view(self, rect: BlockRect) -> np.ndarray:
        """Host output buffer viewed as a rect.height x rect.width array."""
        self._check_fits(rect)
        return self.output_buffer[: rect.size].reshape(rect.height, rect.width)

    def load_tile(self, values: np.ndarray, rect: BlockRect) -> None:
        """Copy a tile's values into the host input buffer."""
        values = np.asarray(values)
        if values.size != rect.size:
            raise ValueError(
                f"Tile values have {values.size} cells, expected {rect.height}x{rect.width}"
            )
        self.input_view(rect)[...] = values.reshape(rect.height, rect.width)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_tile(self, input_rect: BlockRect, output_rect: BlockRect) -> None:
        """
        Run the operator over one tile.

        The host input buffer must already hold input_rect.height *
        input_rect.width cells in row-major order. On return the first
        output_rect.height * output_rect.width cells of the host output
        buffer hold the result; cells whose input maps outside the output
        window are not written.

        Args:
            input_rect: Haloed input window
            output_rect: Trimmed output window

        Raises:
            UnsupportedOperationError: No stencil registered for the operator
            ValueError: Tile larger than the buffer capacity
            AcceleratorExecutionError: Transfer, launch or synchronization failed
        """
        # Operator check comes first: nothing touches the device for an unknown stencil
        get_stencil(self.operator)
        inp, out = self._pairs()
        self._check_fits(input_rect)
        self._check_fits(output_rect)

        delta_row, delta_col = input_rect.offset_to(output_rect)
        t0 = time.time()

        inp.upload(input_rect.size)

        try:
            kernel = get_kernel(self.operator, self.backend)
            launch(
                kernel, self.backend, inp.device, out.device,
                input_rect.height, input_rect.width,
                output_rect.height, output_rect.width,
                delta_row, delta_col,
                self.cell_size_x, self.cell_size_y,
            )
            self._synchronize()
        except UnsupportedOperationError:
            raise
        except _kernel_error_types(self.backend) as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorExecutionError(
                f"Kernel {self.operator.value} failed on tile {input_rect}", status, description
            ) from e

        out.download(output_rect.size)
        self._synchronize()

        self.tiles_processed += 1
        logger.debug(
            f"Tile in={input_rect} out={output_rect} delta=({delta_row}, {delta_col}) "
            f"grid={launch_grid(input_rect.height, input_rect.width)} "
            f"in {time.time() - t0:.4f}s"
        )

    def _synchronize(self) -> None:
        if self.backend != "cuda":
            return
        import cupy as cp

        try:
            cp.cuda.runtime.deviceSynchronize()
        except _cuda_error_types() as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorExecutionError("Device synchronization failed", status, description) from e
