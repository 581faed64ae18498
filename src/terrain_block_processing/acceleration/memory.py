"""
Paired host/device buffers.

A BufferPair holds one host buffer and one device buffer of identical
capacity, plus explicit transfers between them. Two backends:

- CudaBufferPair: pinned host memory and a device allocation through CuPy.
- ManagedBufferPair: a single host allocation standing in for both sides;
  the transfers are no-ops but callers still go through them.

All buffers are flat float32 arrays; tiles use their first height*width
cells in row-major order.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np

from ..errors import AcceleratorExecutionError, describe_accelerator_error

logger = logging.getLogger(__name__)

CELL_DTYPE = np.float32


class BufferPair:
    """Host buffer plus device buffer with matched capacity."""

    backend = "none"

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self.host: Optional[np.ndarray] = None
        self.device: Any = None

    @property
    def nbytes(self) -> int:
        return self.capacity * np.dtype(CELL_DTYPE).itemsize

    @property
    def released(self) -> bool:
        return self.host is None and self.device is None

    def _check_count(self, count: int) -> int:
        if self.released:
            raise AcceleratorExecutionError("Buffer pair already released")
        count = int(count)
        if count < 0 or count > self.capacity:
            raise ValueError(f"Transfer of {count} cells exceeds buffer capacity {self.capacity}")
        return count

    def upload(self, count: int) -> None:
        """Copy the first ``count`` cells host -> device."""
        raise NotImplementedError

    def download(self, count: int) -> None:
        """Copy the first ``count`` cells device -> host."""
        raise NotImplementedError

    def release(self) -> None:
        self.host = None
        self.device = None


class ManagedBufferPair(BufferPair):
    """Unified allocation: host and device views are the same array."""

    backend = "cpu"

    def __init__(self, capacity: int):
        super().__init__(capacity)
        self.host = np.zeros(self.capacity, dtype=CELL_DTYPE)
        self.device = self.host

    def upload(self, count: int) -> None:
        self._check_count(count)

    def download(self, count: int) -> None:
        self._check_count(count)


class CudaBufferPair(BufferPair):
    """Pinned host buffer and CuPy device buffer."""

    backend = "cuda"

    def __init__(self, capacity: int):
        import cupy as cp

        super().__init__(capacity)
        self._cp = cp
        self._pinned = cp.cuda.alloc_pinned_memory(self.nbytes)
        self.host = np.frombuffer(self._pinned, dtype=CELL_DTYPE, count=self.capacity)
        self.host[:] = 0
        self.device = cp.zeros(self.capacity, dtype=CELL_DTYPE)

    def upload(self, count: int) -> None:
        count = self._check_count(count)
        if count == 0:
            return
        try:
            self.device[:count].set(self.host[:count])
        except self._cuda_errors() as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorExecutionError("Host to device transfer failed", status, description) from e

    def download(self, count: int) -> None:
        count = self._check_count(count)
        if count == 0:
            return
        try:
            self.device[:count].get(out=self.host[:count])
        except self._cuda_errors() as e:
            status, description = describe_accelerator_error(e)
            raise AcceleratorExecutionError("Device to host transfer failed", status, description) from e

    def _cuda_errors(self):
        cp = self._cp
        return (
            cp.cuda.runtime.CUDARuntimeError,
            cp.cuda.driver.CUDADriverError,
            cp.cuda.memory.OutOfMemoryError,
        )

    def release(self) -> None:
        self.device = None
        self.host = None
        self._pinned = None


def create_buffer_pair(capacity: int, backend: str) -> BufferPair:
    """Allocate a buffer pair for the given backend ('cuda' or 'cpu')."""
    if backend == "cuda":
        return CudaBufferPair(capacity)
    if backend == "cpu":
        return ManagedBufferPair(capacity)
    raise ValueError(f"Unknown buffer backend '{backend}'")
