"""
GridCalculator - deterministic grid level generation and active level selection.

Supports:
- Arithmetic grids (evenly spaced price levels)
- Geometric grids (constant ratio between levels)
- Tiered price rounding so identical inputs always yield identical levels
- Selection of the N nearest unexecuted levels on each side of the market
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from tradebot.api.models import OrderSide
from tradebot.core.exceptions import ConfigurationError
from tradebot.utils.logger import get_logger

logger = get_logger(__name__)

# Used when neither a live price nor a base price is available
DEFAULT_REFERENCE_PRICE = Decimal("50000")
DEFAULT_BOUND_OFFSET = Decimal("0.2")
MIN_ACTIVE_LEVELS = 1
MAX_ACTIVE_LEVELS = 10


# =============================================================================
# Enums & Data Structures
# =============================================================================


class GridSpacing(str, Enum):
    """Grid spacing mode."""

    ARITHMETIC = "arithmetic"
    GEOMETRIC = "geometric"


@dataclass(frozen=True)
class GeneratedGridLevel:
    """A single grid price point with a side fixed at generation time."""

    index: int
    price: Decimal
    side: OrderSide

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "price": str(self.price),
            "side": self.side.value,
        }


@dataclass
class GridParams:
    """Inputs for grid generation."""

    grid_quantity: int
    grid_mode: GridSpacing = GridSpacing.ARITHMETIC
    upper_bound: Decimal | None = None
    lower_bound: Decimal | None = None
    base_price: Decimal | None = None
    active_levels: int = 2

    def validate(self) -> None:
        """Raise ConfigurationError on values no reference price can fix."""
        if self.grid_quantity < 2:
            raise ConfigurationError(
                f"Invalid grid_quantity: {self.grid_quantity}. Must be at least 2."
            )
        if (
            self.upper_bound is not None
            and self.lower_bound is not None
            and self.upper_bound <= self.lower_bound
        ):
            raise ConfigurationError(
                f"Invalid bounds: upper_bound ({self.upper_bound}) must be greater "
                f"than lower_bound ({self.lower_bound})"
            )

    @property
    def active_levels_per_side(self) -> int:
        """Configured active levels clamped to the supported range."""
        return max(MIN_ACTIVE_LEVELS, min(MAX_ACTIVE_LEVELS, self.active_levels or 2))


@dataclass
class GridGenerationResult:
    """Full level set plus the bounds it was generated between."""

    levels: list[GeneratedGridLevel]
    nearest_index: int
    upper_bound: Decimal
    lower_bound: Decimal
    reference_price: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": [level.to_dict() for level in self.levels],
            "nearest_index": self.nearest_index,
            "upper_bound": str(self.upper_bound),
            "lower_bound": str(self.lower_bound),
            "reference_price": str(self.reference_price),
        }


@dataclass
class ActiveLevels:
    """Levels that should carry live orders."""

    buy_levels: list[GeneratedGridLevel] = field(default_factory=list)
    sell_levels: list[GeneratedGridLevel] = field(default_factory=list)

    @property
    def active_indices(self) -> frozenset[int]:
        return frozenset(level.index for level in self.buy_levels + self.sell_levels)

    @property
    def all_levels(self) -> list[GeneratedGridLevel]:
        return self.buy_levels + self.sell_levels


# =============================================================================
# Grid Calculator
# =============================================================================


class GridCalculator:
    """
    Price math for grid generation.

    Every method is a pure function of its arguments.
    """

    @staticmethod
    def price_precision(price: Decimal) -> Decimal:
        """Rounding step for a price: coarser for higher-priced assets."""
        if price >= 100000:
            return Decimal("1")
        if price >= 1000:
            return Decimal("0.1")
        if price >= 100:
            return Decimal("0.01")
        if price >= 10:
            return Decimal("0.001")
        return Decimal("0.0001")

    @staticmethod
    def round_price(price: Decimal) -> Decimal:
        """Round a price half-up to its tier precision."""
        return price.quantize(GridCalculator.price_precision(price), rounding=ROUND_HALF_UP)

    @staticmethod
    def calculate_arithmetic_levels(
        upper_bound: Decimal,
        lower_bound: Decimal,
        num_levels: int,
    ) -> list[Decimal]:
        """Unrounded evenly spaced prices from lower to upper bound."""
        step = (upper_bound - lower_bound) / (num_levels - 1)
        return [lower_bound + step * i for i in range(num_levels)]

    @staticmethod
    def calculate_geometric_levels(
        upper_bound: Decimal,
        lower_bound: Decimal,
        num_levels: int,
    ) -> list[Decimal]:
        """Unrounded constant-ratio prices from lower to upper bound."""
        if lower_bound <= 0:
            raise ConfigurationError("lower_bound must be positive for a geometric grid")

        ratio = (upper_bound / lower_bound) ** (Decimal(1) / Decimal(num_levels - 1))
        prices = [lower_bound * ratio**i for i in range(num_levels)]
        # The fractional power is inexact; the top level must equal the bound
        prices[-1] = upper_bound
        return prices

    @staticmethod
    def calculate_levels(
        upper_bound: Decimal,
        lower_bound: Decimal,
        num_levels: int,
        spacing: GridSpacing = GridSpacing.ARITHMETIC,
    ) -> list[Decimal]:
        """Unrounded level prices for the given spacing mode."""
        if spacing == GridSpacing.GEOMETRIC:
            return GridCalculator.calculate_geometric_levels(
                upper_bound, lower_bound, num_levels
            )
        return GridCalculator.calculate_arithmetic_levels(upper_bound, lower_bound, num_levels)

    @staticmethod
    def find_nearest_index(prices: list[Decimal], target: Decimal) -> int:
        """Index of the price closest to *target*; the lowest index wins ties."""
        nearest_index = 0
        min_distance: Decimal | None = None
        for i, price in enumerate(prices):
            distance = abs(price - target)
            if min_distance is None or distance < min_distance:
                min_distance = distance
                nearest_index = i
        return nearest_index


# =============================================================================
# Generation & selection
# =============================================================================


def generate_grid_levels(
    params: GridParams,
    reference_price: Decimal | None = None,
) -> GridGenerationResult:
    """
    Generate the full, ordered level set for a grid.

    Missing bounds default to reference ±20%. A level is a buy when its
    unrounded price is below the reference price, otherwise a sell.

    Raises:
        ConfigurationError: If bounds are inverted, the lower bound is not
            positive, or fewer than 2 levels are requested
    """
    params.validate()

    reference = reference_price or params.base_price or DEFAULT_REFERENCE_PRICE
    upper = params.upper_bound or reference * (1 + DEFAULT_BOUND_OFFSET)
    lower = params.lower_bound or reference * (1 - DEFAULT_BOUND_OFFSET)

    if upper <= lower:
        raise ConfigurationError(
            f"Invalid bounds: upper_bound ({upper}) must be greater than lower_bound ({lower})"
        )
    if lower <= 0:
        raise ConfigurationError(f"Invalid bounds: lower_bound ({lower}) must be positive")

    raw_prices = GridCalculator.calculate_levels(
        upper, lower, params.grid_quantity, params.grid_mode
    )

    levels = [
        GeneratedGridLevel(
            index=i,
            price=min(upper, max(lower, GridCalculator.round_price(price))),
            side=OrderSide.BUY if price < reference else OrderSide.SELL,
        )
        for i, price in enumerate(raw_prices)
    ]

    return GridGenerationResult(
        levels=levels,
        nearest_index=GridCalculator.find_nearest_index(raw_prices, reference),
        upper_bound=upper,
        lower_bound=lower,
        reference_price=reference,
    )


def get_active_levels(
    levels: list[GeneratedGridLevel],
    current_price: Decimal,
    levels_per_side: int,
    executed_indices: set[int] | frozenset[int] = frozenset(),
) -> ActiveLevels:
    """
    Pick the nearest unexecuted levels on each side of the current price.

    Buys are levels strictly below the price, nearest first; sells are
    levels strictly above it, nearest first. A level priced exactly at the
    current price is on neither side.
    """
    buy_candidates = sorted(
        (
            level
            for level in levels
            if level.price < current_price and level.index not in executed_indices
        ),
        key=lambda level: level.price,
        reverse=True,
    )
    sell_candidates = sorted(
        (
            level
            for level in levels
            if level.price > current_price and level.index not in executed_indices
        ),
        key=lambda level: level.price,
    )

    return ActiveLevels(
        buy_levels=buy_candidates[:levels_per_side],
        sell_levels=sell_candidates[:levels_per_side],
    )


def get_deterministic_active_levels(
    params: GridParams,
    current_price: Decimal,
    executed_indices: set[int] | frozenset[int] = frozenset(),
) -> tuple[GridGenerationResult, ActiveLevels]:
    """Generate levels against *current_price* and select the active ones."""
    generation = generate_grid_levels(params, current_price)
    active = get_active_levels(
        generation.levels,
        current_price,
        params.active_levels_per_side,
        executed_indices,
    )
    logger.debug(
        "active_levels_selected",
        current_price=str(current_price),
        buys=[str(level.price) for level in active.buy_levels],
        sells=[str(level.price) for level in active.sell_levels],
    )
    return generation, active
