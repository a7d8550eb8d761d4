"""
Keeper compensation.

The fee is priced in USD and paid in collateral:

    fee_usd = execution_cost_usd + max(profit_margin_usd, execution_cost_usd * profit_margin_percentage)

clamped to `[keeper_fee_lower_bound, keeper_fee_upper_bound]` (USD) and
converted at the oracle price.
"""

from __future__ import annotations

import logging

from ..core.decimal_math import clamp, divide_decimal, multiply_decimal
from ..core.errors import InvalidBounds, InvalidFee
from .oracle import OracleModule

logger = logging.getLogger(__name__)


class KeeperFee:
    def __init__(
        self,
        oracle: OracleModule,
        *,
        execution_cost_usd: int,
        profit_margin_usd: int,
        profit_margin_percentage: int,
        keeper_fee_lower_bound: int,
        keeper_fee_upper_bound: int,
    ) -> None:
        self.oracle = oracle
        self.set_parameters(
            execution_cost_usd=execution_cost_usd,
            profit_margin_usd=profit_margin_usd,
            profit_margin_percentage=profit_margin_percentage,
            keeper_fee_lower_bound=keeper_fee_lower_bound,
            keeper_fee_upper_bound=keeper_fee_upper_bound,
        )

    def set_parameters(
        self,
        *,
        execution_cost_usd: int,
        profit_margin_usd: int,
        profit_margin_percentage: int,
        keeper_fee_lower_bound: int,
        keeper_fee_upper_bound: int,
    ) -> None:
        if execution_cost_usd < 0:
            raise InvalidFee(execution_cost_usd)
        if profit_margin_usd < 0:
            raise InvalidFee(profit_margin_usd)
        if profit_margin_percentage < 0:
            raise InvalidFee(profit_margin_percentage)
        if keeper_fee_lower_bound <= 0 or keeper_fee_upper_bound < keeper_fee_lower_bound:
            raise InvalidBounds(keeper_fee_lower_bound, keeper_fee_upper_bound)
        self.execution_cost_usd = execution_cost_usd
        self.profit_margin_usd = profit_margin_usd
        self.profit_margin_percentage = profit_margin_percentage
        self.keeper_fee_lower_bound = keeper_fee_lower_bound
        self.keeper_fee_upper_bound = keeper_fee_upper_bound
        logger.info(
            "keeper fee parameters: cost=%d margin=%d/%d bounds=[%d, %d]",
            execution_cost_usd, profit_margin_usd, profit_margin_percentage,
            keeper_fee_lower_bound, keeper_fee_upper_bound,
        )

    def set_execution_cost_usd(self, execution_cost_usd: int) -> None:
        """Update the estimated execution cost (e.g. from a gas price feed)."""
        if execution_cost_usd < 0:
            raise InvalidFee(execution_cost_usd)
        self.execution_cost_usd = execution_cost_usd

    def get_keeper_fee_usd(self) -> int:
        margin = max(
            self.profit_margin_usd,
            multiply_decimal(self.execution_cost_usd, self.profit_margin_percentage),
        )
        return clamp(
            self.execution_cost_usd + margin,
            self.keeper_fee_lower_bound,
            self.keeper_fee_upper_bound,
        )

    def get_keeper_fee(self) -> int:
        """Keeper fee in collateral at the current oracle price."""
        price, _ = self.oracle.get_price()
        return divide_decimal(self.get_keeper_fee_usd(), price)
