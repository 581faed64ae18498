"""
Run a terrain operator over a DEM stored as a NumPy .npy file.

Reads settings from YAML (config/default.yaml unless --config is given),
tiles the DEM, runs it through a BlockProcessor and saves the result.
"""

import sys
import argparse
from pathlib import Path

import numpy as np

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from terrain_block_processing import BlockProcessingError, process_raster
from terrain_block_processing.utils.config import load_config
from terrain_block_processing.utils.logging import setup_logger_from_config


def main() -> int:
    parser = argparse.ArgumentParser(description="Tiled terrain analysis")
    parser.add_argument("input", type=str, help="Input DEM (.npy, 2D)")
    parser.add_argument("output", type=str, help="Output raster (.npy)")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument("--command", type=str, default=None, help="Override operator.command")
    parser.add_argument("--algorithm", type=str, default=None, help="Override operator.algorithm")
    parser.add_argument("--backend", type=str, default=None, choices=["auto", "cuda", "cpu"],
                        help="Override accelerator.backend")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.command is not None:
        cfg.operator.command = args.command
    if args.algorithm is not None:
        cfg.operator.algorithm = args.algorithm
    if args.backend is not None:
        cfg.accelerator.backend = args.backend

    logger = setup_logger_from_config(cfg.logging)

    dem = np.load(args.input)
    logger.info(f"Loaded DEM {args.input} with shape {dem.shape}")

    try:
        result = process_raster(
            dem,
            cfg.operator.resolve(),
            cfg.operator.cell_size_x,
            cfg.operator.cell_size_y,
            block_height=cfg.blocks.block_height,
            block_width=cfg.blocks.block_width,
            backend=cfg.accelerator.backend,
            device_id=cfg.accelerator.device_id,
        )
    except BlockProcessingError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    np.save(args.output, result)
    logger.info(f"Saved {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
