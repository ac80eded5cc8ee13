"""Shared utility functions"""

import math
import threading

import numpy as np

from .constants import TWO_PI

_kernel_state = threading.local()


def clamp(value: float, min_value: float, max_value: float) -> float:
    """Clamp a value between min and max"""
    return max(min_value, min(value, max_value))


def wrap_angles(angles: np.ndarray) -> np.ndarray:
    """Wrap angles in radians to [-π, π)

    Args:
        angles: Angles in radians (any range)

    Returns:
        Equivalent angles in [-π, π)
    """
    return np.mod(np.asarray(angles, dtype=np.float64) + math.pi, TWO_PI) - math.pi


def use_serial_kernels(enabled: bool = True) -> None:
    """
    Run numba batch kernels single-threaded on the calling thread.

    Build workers call this on startup: the worker pool already runs builds
    in parallel, and numba's threading layer must not be entered from pool
    threads or from forked pool processes.
    """
    _kernel_state.serial = enabled


def serial_kernels_enabled() -> bool:
    """True when the calling thread must use the serial batch kernels."""
    return getattr(_kernel_state, 'serial', False)
