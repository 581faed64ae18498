"""
Operator selection.

A terrain command plus an optional algorithm variant resolves to a single
Operator tag. The tag is what the Block Processor dispatches on.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Union

from ..errors import UnsupportedOperationError

logger = logging.getLogger(__name__)


class RasterCommand(str, Enum):
    SLOPE = "slope"
    HILLSHADE = "hillshade"
    ASPECT = "aspect"
    TOTAL_CURVATURE = "total_curvature"
    PLAN_CURVATURE = "plan_curvature"
    PROFILE_CURVATURE = "profile_curvature"


class SlopeAlgorithm(str, Enum):
    BURROUGH = "burrough"
    ZEVENBERGEN_THORNE = "zevenbergen_thorne"


class Operator(str, Enum):
    """One tag per stencil formula."""
    SLOPE_BURROUGH = "slope_burrough"
    SLOPE_ZEVENBERGEN = "slope_zevenbergen"
    HILLSHADE = "hillshade"
    ASPECT = "aspect"
    TOTAL_CURVATURE = "total_curvature"
    PLAN_CURVATURE = "plan_curvature"
    PROFILE_CURVATURE = "profile_curvature"


_SLOPE_OPERATORS = {
    SlopeAlgorithm.BURROUGH: Operator.SLOPE_BURROUGH,
    SlopeAlgorithm.ZEVENBERGEN_THORNE: Operator.SLOPE_ZEVENBERGEN,
}

_COMMAND_OPERATORS = {
    RasterCommand.HILLSHADE: Operator.HILLSHADE,
    RasterCommand.ASPECT: Operator.ASPECT,
    RasterCommand.TOTAL_CURVATURE: Operator.TOTAL_CURVATURE,
    RasterCommand.PLAN_CURVATURE: Operator.PLAN_CURVATURE,
    RasterCommand.PROFILE_CURVATURE: Operator.PROFILE_CURVATURE,
}


def _normalize(name: str) -> str:
    # "ZevenbergenThorne", "zevenbergen-thorne" and "Zevenbergen Thorne" all match
    text = name.strip()
    out = []
    for i, ch in enumerate(text):
        if ch in "- ":
            out.append("_")
        elif ch.isupper() and i > 0 and text[i - 1].islower():
            out.append("_" + ch.lower())
        else:
            out.append(ch.lower())
    return "".join(out)


def parse_command(command: Union[RasterCommand, str]) -> RasterCommand:
    if isinstance(command, RasterCommand):
        return command
    try:
        return RasterCommand(_normalize(command))
    except ValueError:
        raise UnsupportedOperationError(
            f"Unsupported raster command '{command}'. "
            f"Expected one of: {', '.join(c.value for c in RasterCommand)}"
        ) from None


def parse_slope_algorithm(algorithm: Union[SlopeAlgorithm, str]) -> SlopeAlgorithm:
    if isinstance(algorithm, SlopeAlgorithm):
        return algorithm
    key = _normalize(algorithm)
    if key == "zevenbergen":
        key = SlopeAlgorithm.ZEVENBERGEN_THORNE.value
    try:
        return SlopeAlgorithm(key)
    except ValueError:
        raise UnsupportedOperationError(
            f"Unsupported slope algorithm '{algorithm}'. "
            f"Expected one of: {', '.join(a.value for a in SlopeAlgorithm)}"
        ) from None


def resolve_operator(
    command: Union[Operator, RasterCommand, str],
    algorithm: Optional[Union[SlopeAlgorithm, str]] = None,
) -> Operator:
    """
    Resolve a command and optional algorithm variant to an Operator tag.

    Args:
        command: Operator tag, RasterCommand, or command name (case-insensitive)
        algorithm: Slope algorithm variant. Defaults to Burrough for slope;
            must be omitted for every other command.

    Returns:
        Operator tag

    Raises:
        UnsupportedOperationError: Unknown command, unknown algorithm, or an
            algorithm given for a command that has no variants.
    """
    if isinstance(command, Operator):
        if algorithm is not None:
            raise UnsupportedOperationError(
                f"Operator {command.value} is already resolved; algorithm '{algorithm}' not accepted"
            )
        return command

    if isinstance(command, str) and not isinstance(command, RasterCommand):
        # Accept resolved tag names such as "slope_zevenbergen" as well
        try:
            op = Operator(_normalize(command))
        except ValueError:
            op = None
        if op is not None and op.value != RasterCommand.SLOPE.value and algorithm is None:
            return op

    cmd = parse_command(command)

    if cmd is RasterCommand.SLOPE:
        alg = SlopeAlgorithm.BURROUGH if algorithm is None else parse_slope_algorithm(algorithm)
        op = _SLOPE_OPERATORS[alg]
    else:
        if algorithm is not None:
            raise UnsupportedOperationError(
                f"Command '{cmd.value}' has no algorithm variants; got '{algorithm}'"
            )
        op = _COMMAND_OPERATORS[cmd]

    logger.debug(f"Resolved command={cmd.value} algorithm={algorithm} -> {op.value}")
    return op
