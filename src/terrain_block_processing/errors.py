"""
Exception hierarchy for block processing.

Three failure kinds are distinguished so a caller can report which part of
the run broke:

- AcceleratorInitError: device selection, cache configuration or buffer
  allocation failed while building a BlockProcessor.
- AcceleratorExecutionError: a transfer, kernel launch or synchronization
  failed while processing a tile. Carries the underlying status code.
- UnsupportedOperationError: the requested operator (or its algorithm
  variant) has no registered stencil.
"""

from __future__ import annotations

from typing import Optional, Tuple, Union

StatusCode = Union[int, str, None]


class BlockProcessingError(RuntimeError):
    """Base class for all block processing failures."""


class AcceleratorInitError(BlockProcessingError):
    """Raised when the accelerator cannot be prepared for processing."""


class AcceleratorExecutionError(BlockProcessingError):
    """Raised when a transfer, launch or synchronization fails."""

    def __init__(self, message: str, status: StatusCode = None, description: Optional[str] = None):
        self.status = status
        self.description = description
        if status is not None or description:
            message = f"{message} (status={status}: {description})"
        super().__init__(message)


class UnsupportedOperationError(BlockProcessingError):
    """Raised when an operator selection does not match any known stencil."""


def describe_accelerator_error(err: BaseException) -> Tuple[StatusCode, str]:
    """
    Extract a (status, description) pair from a CUDA exception.

    CuPy errors expose ``status``, Numba driver errors expose ``code`` and
    ``msg``. Anything else is described by its class name and text.
    """
    status = getattr(err, "status", None)
    if status is None:
        status = getattr(err, "code", None)
    description = getattr(err, "msg", None) or str(err) or type(err).__name__
    return status, description
