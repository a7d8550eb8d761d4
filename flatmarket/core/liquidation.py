"""Liquidation of under-collateralised positions.

A position is liquidatable when its settled margin is at or below

    liquidation_margin = liquidation_fee + size * liquidation_buffer_ratio

where the keeper's liquidation fee is ``size * liquidation_fee_ratio`` clamped
(in quote terms) to ``[lower_bound, upper_bound]``.

Payout waterfall on liquidation, with ``m`` the settled margin and ``f`` the
fee:

- ``m > f``:       keeper gets ``f``, the pool is credited ``m - f``;
- ``0 < m <= f``:  keeper gets ``m``, the pool gets nothing;
- ``m <= 0``:      keeper gets nothing, the pool absorbs the shortfall.

The owner receives nothing in every case.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..state.balances import VAULT_ACCOUNT
from . import perp_math
from .decimal_math import UNIT
from .errors import CannotLiquidate, InvalidBounds, InvalidFee
from .invariants import run_liquidation_invariant_checks
from .types import DEFAULT_MAX_AGE, Account, Event, LiquidationResult, ModuleKey, TokenId
from .vault import Vault

logger = logging.getLogger(__name__)

MAX_LIQUIDATION_FEE_RATIO: int = UNIT // 10
MAX_LIQUIDATION_BUFFER_RATIO: int = UNIT // 10


class LiquidationModule:
    key = ModuleKey.LIQUIDATION_MODULE

    def __init__(
        self,
        vault: Vault,
        *,
        liquidation_fee_ratio: int,
        liquidation_buffer_ratio: int,
        liquidation_fee_lower_bound: int,
        liquidation_fee_upper_bound: int,
    ) -> None:
        _validate_ratios(liquidation_fee_ratio, liquidation_buffer_ratio)
        _validate_fee_bounds(liquidation_fee_lower_bound, liquidation_fee_upper_bound)
        self.vault = vault
        self.liquidation_fee_ratio = liquidation_fee_ratio
        self.liquidation_buffer_ratio = liquidation_buffer_ratio
        self.liquidation_fee_lower_bound = liquidation_fee_lower_bound
        self.liquidation_fee_upper_bound = liquidation_fee_upper_bound

    # -- Views -------------------------------------------------------------------

    def _price(self, price: Optional[int]) -> int:
        if price is not None:
            return price
        current, _ = self.vault.oracle.get_price(DEFAULT_MAX_AGE)
        return current

    def get_liquidation_fee(self, additional_size: int, price: Optional[int] = None) -> int:
        return perp_math.liquidation_fee(
            additional_size,
            self.liquidation_fee_ratio,
            self.liquidation_fee_lower_bound,
            self.liquidation_fee_upper_bound,
            self._price(price),
        )

    def get_liquidation_margin(self, additional_size: int, price: Optional[int] = None) -> int:
        return perp_math.liquidation_margin(
            additional_size,
            self.liquidation_fee_ratio,
            self.liquidation_buffer_ratio,
            self.liquidation_fee_lower_bound,
            self.liquidation_fee_upper_bound,
            self._price(price),
        )

    def can_liquidate(self, token_id: TokenId, price: Optional[int] = None) -> bool:
        """True when the position's margin, funding projected to now, is at or below its liquidation margin."""
        position = self.vault.get_position(token_id)
        price = self._price(price)
        summary = perp_math.position_summary(position, self.vault.next_cumulative_funding(), price)
        return perp_math.can_liquidate(
            summary.margin_after_settlement,
            self.get_liquidation_margin(position.additional_size, price),
        )

    def liquidation_price(self, token_id: TokenId, price: Optional[int] = None) -> int:
        """Point estimate of the price at which the position becomes liquidatable.

        Funding and the liquidation margin are evaluated at `price` (default:
        the current oracle price) and held fixed.
        """
        position = self.vault.get_position(token_id)
        liq_margin = self.get_liquidation_margin(position.additional_size, self._price(price))
        return perp_math.approx_liquidation_price(position, self.vault.next_cumulative_funding(), liq_margin)

    # -- Execution ---------------------------------------------------------------

    def liquidate(self, token_id: TokenId, keeper: Account, price_update: Any = None) -> LiquidationResult:
        """Liquidate `token_id`, paying `keeper` per the waterfall.

        A keeper losing a race against another liquidation (or a close) sees
        ``CannotLiquidate``.
        """
        vault = self.vault
        with vault.atomic():
            vault.require_not_paused(self.key)
            if price_update is not None:
                vault.oracle.update_price(price_update)
            vault.settle_funding_fees()
            if not vault.state.position_registry.exists(token_id):
                raise CannotLiquidate(token_id)
            result = run_liquidation_invariant_checks(
                vault, token_id, lambda: self._liquidate(token_id, keeper),
            )
        logger.info(
            "liquidated position %d: keeper %s fee %d, settled margin %d, pool credit %d",
            token_id, keeper, result.liquidation_fee, result.margin_after_settlement, result.pool_credit,
        )
        return result

    def _liquidate(self, token_id: TokenId, keeper: Account) -> LiquidationResult:
        vault = self.vault
        price = self._price(None)
        position = vault.get_position(token_id)
        summary = perp_math.position_summary(position, vault.cumulative_funding, price)
        liq_margin = self.get_liquidation_margin(position.additional_size, price)
        if not perp_math.can_liquidate(summary.margin_after_settlement, liq_margin):
            raise CannotLiquidate(token_id)

        fee = self.get_liquidation_fee(position.additional_size, price)
        keeper_paid, pool_credit = perp_math.liquidation_payouts(summary.margin_after_settlement, fee)

        leverage = vault.get_module(ModuleKey.LEVERAGE_MODULE)
        leverage.remove_position(self, token_id, price)
        vault.update_stable_collateral_total(self, pool_credit - summary.profit_loss)
        leverage.burn(self, token_id)
        vault.transfer_collateral(self, VAULT_ACCOUNT, keeper, keeper_paid)

        vault.emit(
            Event.POSITION_LIQUIDATED,
            token_id=token_id,
            keeper=keeper,
            price=price,
            liquidation_fee=keeper_paid,
            margin_after_settlement=summary.margin_after_settlement,
            pool_credit=pool_credit,
        )
        return LiquidationResult(
            token_id=token_id,
            keeper=keeper,
            liquidation_fee=keeper_paid,
            margin_after_settlement=summary.margin_after_settlement,
            pool_credit=pool_credit,
        )

    # -- Owner setters -----------------------------------------------------------

    def set_liquidation_fee_ratio(self, sender: Account, ratio: int) -> None:
        self.vault.only_owner(sender)
        _validate_ratios(ratio, self.liquidation_buffer_ratio)
        self.liquidation_fee_ratio = ratio
        self.vault.emit(Event.PARAMETER_SET, name="liquidationFeeRatio", value=ratio)
        logger.info("liquidation fee ratio set to %d", ratio)

    def set_liquidation_buffer_ratio(self, sender: Account, ratio: int) -> None:
        self.vault.only_owner(sender)
        _validate_ratios(self.liquidation_fee_ratio, ratio)
        self.liquidation_buffer_ratio = ratio
        self.vault.emit(Event.PARAMETER_SET, name="liquidationBufferRatio", value=ratio)
        logger.info("liquidation buffer ratio set to %d", ratio)

    def set_liquidation_fee_bounds(self, sender: Account, lower: int, upper: int) -> None:
        self.vault.only_owner(sender)
        _validate_fee_bounds(lower, upper)
        self.liquidation_fee_lower_bound = lower
        self.liquidation_fee_upper_bound = upper
        self.vault.emit(Event.PARAMETER_SET, name="liquidationFeeBounds", value=(lower, upper))
        logger.info("liquidation fee bounds set to [%d, %d]", lower, upper)


def _validate_ratios(fee_ratio: int, buffer_ratio: int) -> None:
    if fee_ratio < 0 or fee_ratio > MAX_LIQUIDATION_FEE_RATIO:
        raise InvalidFee(fee_ratio)
    if buffer_ratio < 0 or buffer_ratio > MAX_LIQUIDATION_BUFFER_RATIO:
        raise InvalidFee(buffer_ratio)


def _validate_fee_bounds(lower: int, upper: int) -> None:
    if lower <= 0 or upper < lower:
        raise InvalidBounds(lower, upper)
