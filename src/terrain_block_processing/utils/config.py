"""
Configuration management for terrain-block-processing.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml

from ..operators.commands import Operator, resolve_operator


# -----------------------
# Typed config structures
# -----------------------


class OperatorConfig(BaseModel):
    command: str = Field(default="slope", description="Terrain command: slope, hillshade, aspect, total_curvature, plan_curvature, profile_curvature")
    algorithm: Optional[str] = Field(
        default=None,
        description="Algorithm variant (slope only): 'Burrough' or 'ZevenbergenThorne'; None = Burrough",
    )
    cell_size_x: float = Field(default=1.0, gt=0, description="Cell size along columns in ground units")
    cell_size_y: float = Field(default=1.0, gt=0, description="Cell size along rows in ground units")

    def resolve(self) -> Operator:
        """Resolve command/algorithm to an Operator tag (raises UnsupportedOperationError)."""
        return resolve_operator(self.command, self.algorithm)


class BlockConfig(BaseModel):
    block_height: int = Field(default=1024, gt=0, description="Maximum output rows per tile")
    block_width: int = Field(default=1024, gt=0, description="Maximum output columns per tile")


class AcceleratorConfig(BaseModel):
    backend: Literal["auto", "cuda", "cpu"] = Field(
        default="auto",
        description="'cuda' requires a CUDA device; 'cpu' runs the compiled parallel loop; 'auto' picks cuda when available",
    )
    device_id: int = Field(default=0, ge=0, description="CUDA device ordinal")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class EngineConfig(BaseModel):
    operator: OperatorConfig = Field(default_factory=OperatorConfig)
    blocks: BlockConfig = Field(default_factory=BlockConfig)
    accelerator: AcceleratorConfig = Field(default_factory=AcceleratorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/terrain_block_processing/utils/config.py
    so the root is three parents up from the utils directory.
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> EngineConfig:
    """
    Load configuration from YAML into a typed EngineConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default EngineConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        EngineConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return EngineConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
