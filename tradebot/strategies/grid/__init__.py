"""Grid strategy package: level generation, settings and the grid state machine."""

from .grid_calculator import (
    ActiveLevels,
    GeneratedGridLevel,
    GridCalculator,
    GridGenerationResult,
    GridParams,
    GridSpacing,
    generate_grid_levels,
    get_active_levels,
    get_deterministic_active_levels,
)
from .grid_config import GridStrategyParams
from .grid_strategy import GridPosition, GridStrategy, LiveGridOrder

__all__ = [
    "ActiveLevels",
    "GeneratedGridLevel",
    "GridCalculator",
    "GridGenerationResult",
    "GridParams",
    "GridSpacing",
    "generate_grid_levels",
    "get_active_levels",
    "get_deterministic_active_levels",
    "GridStrategyParams",
    "GridStrategy",
    "GridPosition",
    "LiveGridOrder",
]
