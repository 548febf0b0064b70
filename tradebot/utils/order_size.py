"""
Order size calculation.

Converts an investment amount (USD or base asset) into an asset-denominated
order size, rounded to the exchange's size precision. Strategy-specific
wrappers cover grid, DCA, martingale and portfolio sizing.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

DEFAULT_SIZE_DECIMALS = 4
DCA_SIZE_DECIMALS = 6


@dataclass(frozen=True)
class OrderSizeResult:
    """Calculated size plus the amount it was derived from."""

    order_size: Decimal
    total_base_amount: Decimal
    calculation_details: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_size": str(self.order_size),
            "total_base_amount": str(self.total_base_amount),
            "calculation_details": self.calculation_details,
        }


def round_size(value: Decimal, decimals: int) -> Decimal:
    """Round a size half-up to *decimals* places."""
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def calculate_order_size(
    investment_amount: Decimal,
    current_price: Decimal,
    investment_unit: str = "usd",
    grid_quantity: int = 1,
    size_decimals: int = DEFAULT_SIZE_DECIMALS,
    symbol: str = "",
) -> OrderSizeResult:
    """
    Convert an investment into a per-order asset size.

    Args:
        investment_amount: Amount to invest, in USD or base asset
        current_price: Price used for the USD conversion
        investment_unit: "usd" or "asset"
        grid_quantity: Number of orders the investment is split across
        size_decimals: Exchange size precision
        symbol: Asset symbol, only used in the details string

    Raises:
        ValueError: On a non-positive price or grid quantity
    """
    if grid_quantity < 1:
        raise ValueError("grid_quantity must be at least 1")

    if investment_unit == "usd":
        if current_price <= 0:
            raise ValueError("current_price must be positive")
        total_base_amount = investment_amount / current_price
        details = (
            f"${investment_amount} USD / ${current_price} = "
            f"{round_size(total_base_amount, 6)} {symbol}"
        )
    else:
        total_base_amount = investment_amount
        details = f"{investment_amount} {symbol} (already in base asset)"

    order_size = round_size(total_base_amount / grid_quantity, size_decimals)

    if grid_quantity > 1:
        details = f"{details} / {grid_quantity} levels = {order_size} {symbol} per order"

    return OrderSizeResult(
        order_size=order_size,
        total_base_amount=total_base_amount,
        calculation_details=details.strip(),
    )


def calculate_grid_order_size(
    investment_amount: Decimal,
    grid_quantity: int,
    current_price: Decimal,
    investment_unit: str = "usd",
    size_decimals: int = DEFAULT_SIZE_DECIMALS,
    symbol: str = "",
) -> OrderSizeResult:
    """Split a grid investment evenly across all of its levels."""
    return calculate_order_size(
        investment_amount,
        current_price,
        investment_unit=investment_unit,
        grid_quantity=grid_quantity,
        size_decimals=size_decimals,
        symbol=symbol,
    )


def calculate_martingale_order_size(
    order_size_usd: Decimal,
    current_price: Decimal,
    size_decimals: int = DEFAULT_SIZE_DECIMALS,
    symbol: str = "",
) -> OrderSizeResult:
    """Size one martingale step from its USD amount."""
    return calculate_order_size(
        order_size_usd,
        current_price,
        investment_unit="usd",
        size_decimals=size_decimals,
        symbol=symbol,
    )


def calculate_dca_order_size(
    order_size_usd: Decimal,
    min_order_size_usd: Decimal,
    max_order_size_usd: Decimal,
    current_price: Decimal,
) -> Decimal:
    """
    Size one DCA buy.

    ``order_size / price`` clamped to ``[min / price, max / price]`` and
    rounded to 6 decimals.
    """
    if current_price <= 0:
        raise ValueError("current_price must be positive")

    size = order_size_usd / current_price
    size = max(min_order_size_usd / current_price, size)
    size = min(max_order_size_usd / current_price, size)
    return round_size(size, DCA_SIZE_DECIMALS)


def calculate_portfolio_order_size(
    value_difference_usd: Decimal,
    current_price: Decimal,
    size_decimals: int = DCA_SIZE_DECIMALS,
) -> Decimal:
    """Convert a rebalance value delta into an unsigned asset size."""
    if current_price <= 0:
        raise ValueError("current_price must be positive")
    return round_size(abs(value_difference_usd) / current_price, size_decimals)
