"""
3x3 terrain stencils.

Every stencil takes the full neighborhood and the cell sizes::

    a b c
    d e f
    g h i

``e`` is the center cell, rows run north to south and columns west to east.
The functions are plain Python over scalars so the same source can be run
directly (reference path) or compiled with Numba for the CPU and CUDA
kernels. Only ``math`` functions supported by both Numba targets are used.
"""

from __future__ import annotations

import math
from typing import Callable, Dict

from ..errors import UnsupportedOperationError
from .commands import Operator

# Hillshade illumination (degrees)
HILLSHADE_ALTITUDE = 45.0
HILLSHADE_AZIMUTH = 315.0
HILLSHADE_Z_FACTOR = 1.0

# Aspect value for cells with no downslope direction
FLAT_ASPECT = -1.0

StencilFn = Callable[..., float]


def slope_burrough(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    """Slope in degrees from Horn's third-order finite difference (Burrough & McDonnell)."""
    dz_dx = ((c + 2.0 * f + i) - (a + 2.0 * d + g)) / (8.0 * cell_size_x)
    dz_dy = ((g + 2.0 * h + i) - (a + 2.0 * b + c)) / (8.0 * cell_size_y)
    return math.atan(math.sqrt(dz_dx * dz_dx + dz_dy * dz_dy)) * 180.0 / math.pi


def slope_zevenbergen(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    """Slope in degrees from Zevenbergen & Thorne's second-order central difference."""
    dz_dx = (f - d) / (2.0 * cell_size_x)
    dz_dy = (h - b) / (2.0 * cell_size_y)
    return math.atan(math.sqrt(dz_dx * dz_dx + dz_dy * dz_dy)) * 180.0 / math.pi


def aspect(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    """Downslope direction in compass degrees (0 = north, clockwise), -1 when flat."""
    dz_dx = ((c + 2.0 * f + i) - (a + 2.0 * d + g)) / (8.0 * cell_size_x)
    dz_dy = ((g + 2.0 * h + i) - (a + 2.0 * b + c)) / (8.0 * cell_size_y)
    if dz_dx == 0.0 and dz_dy == 0.0:
        return FLAT_ASPECT
    value = math.atan2(dz_dy, -dz_dx) * 180.0 / math.pi
    if value < 0.0:
        return 90.0 - value
    if value > 90.0:
        return 360.0 - value + 90.0
    return 90.0 - value


def hillshade(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    """Shaded relief brightness (0-255) for a light at HILLSHADE_AZIMUTH / HILLSHADE_ALTITUDE."""
    zenith = (90.0 - HILLSHADE_ALTITUDE) * math.pi / 180.0
    azimuth = (360.0 - HILLSHADE_AZIMUTH + 90.0) * math.pi / 180.0

    dz_dx = ((c + 2.0 * f + i) - (a + 2.0 * d + g)) / (8.0 * cell_size_x)
    dz_dy = ((g + 2.0 * h + i) - (a + 2.0 * b + c)) / (8.0 * cell_size_y)
    slope_rad = math.atan(HILLSHADE_Z_FACTOR * math.sqrt(dz_dx * dz_dx + dz_dy * dz_dy))

    if dz_dx != 0.0:
        aspect_rad = math.atan2(dz_dy, -dz_dx)
        if aspect_rad < 0.0:
            aspect_rad += 2.0 * math.pi
    elif dz_dy > 0.0:
        aspect_rad = math.pi / 2.0
    elif dz_dy < 0.0:
        aspect_rad = 2.0 * math.pi - math.pi / 2.0
    else:
        aspect_rad = 0.0

    shade = 255.0 * (
        math.cos(zenith) * math.cos(slope_rad)
        + math.sin(zenith) * math.sin(slope_rad) * math.cos(azimuth - aspect_rad)
    )
    if shade < 0.0:
        return 0.0
    return shade


# Curvatures follow the Zevenbergen & Thorne partial quartic surface:
#   D = d2z/dx2 / 2, E = d2z/dy2 / 2, F = d2z/dxdy / 4, G = dz/dx, H = dz/dy
# with H taken north minus south. Results are in 1/100 z-units; positive
# total curvature means upwardly convex.


def total_curvature(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    coef_d = ((d + f) / 2.0 - e) / (cell_size_x * cell_size_x)
    coef_e = ((b + h) / 2.0 - e) / (cell_size_y * cell_size_y)
    return -2.0 * (coef_d + coef_e) * 100.0


def plan_curvature(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    coef_d = ((d + f) / 2.0 - e) / (cell_size_x * cell_size_x)
    coef_e = ((b + h) / 2.0 - e) / (cell_size_y * cell_size_y)
    coef_f = (-a + c + g - i) / (4.0 * cell_size_x * cell_size_y)
    coef_g = (-d + f) / (2.0 * cell_size_x)
    coef_h = (b - h) / (2.0 * cell_size_y)
    gradient = coef_g * coef_g + coef_h * coef_h
    if gradient == 0.0:
        return 0.0
    return (
        2.0 * (coef_d * coef_h * coef_h + coef_e * coef_g * coef_g - coef_f * coef_g * coef_h)
        / gradient * 100.0
    )


def profile_curvature(a, b, c, d, e, f, g, h, i, cell_size_x, cell_size_y):
    coef_d = ((d + f) / 2.0 - e) / (cell_size_x * cell_size_x)
    coef_e = ((b + h) / 2.0 - e) / (cell_size_y * cell_size_y)
    coef_f = (-a + c + g - i) / (4.0 * cell_size_x * cell_size_y)
    coef_g = (-d + f) / (2.0 * cell_size_x)
    coef_h = (b - h) / (2.0 * cell_size_y)
    gradient = coef_g * coef_g + coef_h * coef_h
    if gradient == 0.0:
        return 0.0
    return (
        -2.0 * (coef_d * coef_g * coef_g + coef_e * coef_h * coef_h + coef_f * coef_g * coef_h)
        / gradient * 100.0
    )


STENCILS: Dict[Operator, StencilFn] = {
    Operator.SLOPE_BURROUGH: slope_burrough,
    Operator.SLOPE_ZEVENBERGEN: slope_zevenbergen,
    Operator.HILLSHADE: hillshade,
    Operator.ASPECT: aspect,
    Operator.TOTAL_CURVATURE: total_curvature,
    Operator.PLAN_CURVATURE: plan_curvature,
    Operator.PROFILE_CURVATURE: profile_curvature,
}


def get_stencil(operator: Operator) -> StencilFn:
    """Look up the stencil registered for an operator."""
    try:
        return STENCILS[operator]
    except KeyError:
        raise UnsupportedOperationError(
            f"No stencil registered for operator '{getattr(operator, 'value', operator)}'"
        ) from None
