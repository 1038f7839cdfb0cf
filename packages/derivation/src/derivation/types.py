"""
derivation/types.py - Pydantic configuration for the resolution engine

All configuration is validated and frozen. A process-wide default is kept
here and can be replaced with configure().
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Strategy(str, Enum):
    """Search strategy."""

    DFS = "dfs"
    IDDFS = "iddfs"


# =============================================================================
# RESOLVER CONFIGURATION
# =============================================================================

class ResolverConfig(BaseModel):
    """Configuration for goal resolution."""

    initial_depth: int = Field(
        default=1,
        ge=1,
        le=10000,
        description="First derivation-height bound tried by iterative deepening"
    )
    max_depth: int = Field(
        default=64,
        ge=1,
        le=10000,
        description="Largest bound tried before reporting no derivation"
    )
    depth_step: int = Field(default=1, ge=1, le=1000, description="Bound increment per iteration")
    stop_when_exhausted: bool = Field(
        default=True,
        description="Stop deepening once an iteration fails without hitting the bound"
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> ResolverConfig:
        if self.max_depth < self.initial_depth:
            raise ValueError(
                f"max_depth ({self.max_depth}) must be >= initial_depth ({self.initial_depth})"
            )
        return self

    def depths(self) -> range:
        """Bounds tried by iterative deepening, in order."""
        return range(self.initial_depth, self.max_depth + 1, self.depth_step)

    model_config = {"frozen": True}


# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================

_config = ResolverConfig()


def configure(
    initial_depth: int | None = None,
    max_depth: int | None = None,
    depth_step: int | None = None,
    stop_when_exhausted: bool | None = None,
) -> ResolverConfig:
    """Configure global resolver defaults.

    Returns:
        Updated configuration
    """
    global _config

    updates = {}
    if initial_depth is not None:
        updates["initial_depth"] = initial_depth
    if max_depth is not None:
        updates["max_depth"] = max_depth
    if depth_step is not None:
        updates["depth_step"] = depth_step
    if stop_when_exhausted is not None:
        updates["stop_when_exhausted"] = stop_when_exhausted

    if updates:
        _config = ResolverConfig(**{**_config.model_dump(), **updates})

    return _config


def get_config() -> ResolverConfig:
    """Get current configuration."""
    return _config
