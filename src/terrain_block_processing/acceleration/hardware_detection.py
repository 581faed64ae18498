"""
CUDA hardware detection.

Decides whether the CUDA backend can be used and reports device details.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class GPUInfo:
    """GPU device information."""

    available: bool
    device_count: int
    device_id: int = 0
    device_name: Optional[str] = None
    memory_gb: Optional[float] = None
    free_memory_gb: Optional[float] = None
    cuda_version: Optional[str] = None
    compute_capability: Optional[tuple] = None
    error_message: Optional[str] = None


def detect_gpu(device_id: int = 0) -> GPUInfo:
    """
    Detect a usable CUDA device.

    Both CuPy (memory and transfers) and Numba (kernels) have to see the
    device for the CUDA backend to work. Returns an unavailable marker with
    an error message instead of raising.

    Args:
        device_id: CUDA device ordinal to inspect

    Returns:
        GPUInfo with device details, or unavailable marker with error message
    """
    try:
        import cupy as cp
        from numba import cuda

        if not cp.cuda.is_available():
            logger.info("CUDA not available - using CPU backend")
            return GPUInfo(available=False, device_count=0, device_id=device_id,
                           error_message="CUDA runtime not available")

        device_count = cp.cuda.runtime.getDeviceCount()
        if device_id >= device_count:
            logger.info(f"CUDA device {device_id} not present ({device_count} found) - using CPU backend")
            return GPUInfo(available=False, device_count=device_count, device_id=device_id,
                           error_message=f"Device {device_id} not found ({device_count} devices)")

        if not cuda.is_available():
            logger.info("Numba cannot reach the CUDA driver - using CPU backend")
            return GPUInfo(available=False, device_count=device_count, device_id=device_id,
                           error_message="Numba CUDA support not available")

        device = cp.cuda.Device(device_id)
        free_bytes, total_bytes = device.mem_info

        # Compute capability comes back as e.g. "86" -> (8, 6)
        cc_str = str(device.compute_capability)
        if len(cc_str) >= 2:
            compute_capability = (int(cc_str[0]), int(cc_str[1:]))
        else:
            compute_capability = (int(cc_str), 0)

        props: Dict = cp.cuda.runtime.getDeviceProperties(device_id)
        name = props["name"]
        device_name = name.decode("utf-8") if isinstance(name, bytes) else str(name)

        info = GPUInfo(
            available=True,
            device_count=device_count,
            device_id=device_id,
            device_name=device_name,
            memory_gb=total_bytes / 1024**3,
            free_memory_gb=free_bytes / 1024**3,
            cuda_version=str(cp.cuda.runtime.runtimeGetVersion()),
            compute_capability=compute_capability,
        )
        logger.info(
            f"GPU detected: {info.device_name} "
            f"({info.memory_gb:.1f} GB, "
            f"compute {info.compute_capability[0]}.{info.compute_capability[1]})"
        )
        return info

    except ImportError as e:
        logger.info(f"CuPy/Numba CUDA not installed - using CPU backend: {e}")
        return GPUInfo(available=False, device_count=0, device_id=device_id,
                       error_message="CuPy not installed")

    except Exception as e:
        logger.warning(f"GPU detection failed - using CPU backend: {e}")
        return GPUInfo(available=False, device_count=0, device_id=device_id,
                       error_message=str(e))


def check_gpu_memory(required_bytes: int, device_id: int = 0) -> tuple[bool, Optional[float]]:
    """
    Check whether the device has room for an allocation.

    Args:
        required_bytes: Bytes about to be allocated on the device
        device_id: CUDA device ordinal

    Returns:
        Tuple of (has_sufficient_memory, free_gb); free_gb is None when unknown
    """
    try:
        import cupy as cp

        free_bytes, _ = cp.cuda.Device(device_id).mem_info
        free_gb = free_bytes / 1024**3
        has_sufficient = free_bytes >= required_bytes
        if not has_sufficient:
            logger.warning(
                f"Insufficient GPU memory: {free_gb:.2f} GB free, "
                f"{required_bytes / 1024**3:.2f} GB required"
            )
        return has_sufficient, free_gb

    except ImportError:
        return False, None
    except Exception as e:
        logger.warning(f"Failed to check GPU memory: {e}")
        return False, None


# Per-device detection cache
_gpu_info_cache: Dict[int, GPUInfo] = {}


def get_gpu_info(device_id: int = 0) -> GPUInfo:
    """Detect on first call for a device and cache the result."""
    if device_id not in _gpu_info_cache:
        _gpu_info_cache[device_id] = detect_gpu(device_id)
    return _gpu_info_cache[device_id]


def clear_gpu_cache() -> None:
    """Forget cached detection results."""
    _gpu_info_cache.clear()
