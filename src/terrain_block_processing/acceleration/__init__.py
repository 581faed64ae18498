"""
Acceleration Module

This module provides the accelerator side of block processing:
- Hardware detection (hardware_detection.py)
- Paired host/device buffers (memory.py)
- Cell addressing and edge policy (addressing.py)
- Compiled CPU/CUDA stencil kernels (kernels.py)
"""

from .hardware_detection import (
    GPUInfo,
    detect_gpu,
    get_gpu_info,
    check_gpu_memory,
    clear_gpu_cache,
)
from .memory import (
    CELL_DTYPE,
    BufferPair,
    CudaBufferPair,
    ManagedBufferPair,
    create_buffer_pair,
)
from .addressing import (
    SKIP,
    EDGE,
    STENCIL,
    EDGE_VALUE,
    classify_cell,
    map_input_cell,
    process_tile_reference,
)
from .kernels import CUDA_SIGNATURE, WORK_GROUP, get_kernel, launch, launch_grid, prefer_l1_cache

__all__ = [
    # Hardware
    "GPUInfo",
    "detect_gpu",
    "get_gpu_info",
    "check_gpu_memory",
    "clear_gpu_cache",
    # Buffers
    "CELL_DTYPE",
    "BufferPair",
    "CudaBufferPair",
    "ManagedBufferPair",
    "create_buffer_pair",
    # Addressing
    "SKIP",
    "EDGE",
    "STENCIL",
    "EDGE_VALUE",
    "classify_cell",
    "map_input_cell",
    "process_tile_reference",
    # Kernels
    "CUDA_SIGNATURE",
    "WORK_GROUP",
    "get_kernel",
    "launch",
    "launch_grid",
    "prefer_l1_cache",
]
