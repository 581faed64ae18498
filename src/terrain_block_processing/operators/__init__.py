"""
Operators Module

Terrain stencil operators and their selection:
- RasterCommand / SlopeAlgorithm: user-facing command and variant names
- Operator: resolved tag the engine dispatches on
- STENCILS: registry of 3x3 neighborhood formulas
"""

from .commands import (
    Operator,
    RasterCommand,
    SlopeAlgorithm,
    parse_command,
    parse_slope_algorithm,
    resolve_operator,
)
from .stencils import (
    STENCILS,
    FLAT_ASPECT,
    get_stencil,
    slope_burrough,
    slope_zevenbergen,
    aspect,
    hillshade,
    total_curvature,
    plan_curvature,
    profile_curvature,
)

__all__ = [
    "Operator",
    "RasterCommand",
    "SlopeAlgorithm",
    "parse_command",
    "parse_slope_algorithm",
    "resolve_operator",
    "STENCILS",
    "FLAT_ASPECT",
    "get_stencil",
    "slope_burrough",
    "slope_zevenbergen",
    "aspect",
    "hillshade",
    "total_curvature",
    "plan_curvature",
    "profile_curvature",
]
