"""Position ledger: leveraged longs as lockable non-fungible positions.

Open, adjust and close are executed by the order modules after the delayed
announcement; this module only applies them to the ledger. Whoever calls an
``execute_*`` method has already moved the order's escrowed collateral into
the vault and pays the keeper.

Every mutation realises the position's PnL into the pool
(``stable_collateral_total -= pnl``) and re-bases what remains, so
``margin_deposited_total`` only ever carries margin plus settled funding.
"""

from __future__ import annotations

import logging
from typing import Any, List

from ..state.balances import VAULT_ACCOUNT
from . import perp_math
from .decimal_math import UNIT
from .errors import (
    HighSlippage,
    InvalidFee,
    InvalidLeverageCriteria,
    LeverageTooHigh,
    LeverageTooLow,
    MarginTooSmall,
    PositionCreatesBadDebt,
    ValueNotPositive,
    ZeroValue,
)
from .types import (
    DEFAULT_MAX_AGE,
    Account,
    AnnouncedLeverageAdjust,
    AnnouncedLeverageClose,
    AnnouncedLeverageOpen,
    Event,
    ModuleKey,
    Position,
    PositionSummary,
    TokenId,
)
from .vault import Vault

logger = logging.getLogger(__name__)

MAX_LEVERAGE_TRADING_FEE: int = UNIT // 100


class LeverageModule:
    """Leveraged long positions (the long side of the market)."""

    key = ModuleKey.LEVERAGE_MODULE

    def __init__(
        self,
        vault: Vault,
        *,
        leverage_trading_fee: int,
        margin_min: int,
        leverage_min: int,
        leverage_max: int,
    ) -> None:
        _validate_trading_fee(leverage_trading_fee)
        _validate_leverage_criteria(margin_min, leverage_min, leverage_max)
        self.vault = vault
        self.leverage_trading_fee = leverage_trading_fee
        self.margin_min = margin_min
        self.leverage_min = leverage_min
        self.leverage_max = leverage_max

    # -- Views -------------------------------------------------------------------

    def get_position(self, token_id: TokenId) -> Position:
        return self.vault.get_position(token_id)

    def get_position_summary(self, token_id: TokenId, max_age: int = DEFAULT_MAX_AGE) -> PositionSummary:
        """PnL, accrued funding and settled margin at the latest price, funding projected to now."""
        position = self.vault.get_position(token_id)
        price, _ = self.vault.oracle.get_price(max_age)
        return perp_math.position_summary(position, self.vault.next_cumulative_funding(), price)

    def close_pool_loss(self, token_id: TokenId, keeper_fee: int) -> int:
        """Pool value a close of `token_id` would give up at the latest price."""
        summary = self.get_position_summary(token_id)
        return perp_math.close_pool_loss(summary.margin_after_settlement, keeper_fee)

    def get_trade_fee(self, size: int) -> int:
        return perp_math.trade_fee(size, self.leverage_trading_fee)

    def check_leverage_criteria(self, margin: int, additional_size: int) -> None:
        if margin < self.margin_min:
            raise MarginTooSmall(self.margin_min, margin)
        lev = perp_math.leverage(margin, additional_size)
        if lev < self.leverage_min:
            raise LeverageTooLow(self.leverage_min, lev)
        if lev > self.leverage_max:
            raise LeverageTooHigh(self.leverage_max, lev)

    def owner_of(self, token_id: TokenId) -> Account:
        return self.vault.state.position_registry.owner_of(token_id)

    def tokens_of(self, account: Account) -> List[TokenId]:
        return self.vault.state.position_registry.tokens_of(account)

    def is_locked(self, token_id: TokenId) -> bool:
        return self.vault.state.position_registry.is_locked(token_id)

    # -- Execution ---------------------------------------------------------------

    def execute_open(self, caller: Any, account: Account, max_age: int, order: AnnouncedLeverageOpen) -> TokenId:
        """Mint a position; margin and trade fee are already in the vault."""
        vault = self.vault
        vault.require_authorized(caller)
        price, _ = vault.oracle.get_price(max_age)
        if price > order.max_fill_price:
            raise HighSlippage(price, order.max_fill_price)

        self.check_leverage_criteria(order.margin_amount, order.additional_size)
        vault.check_skew_max(order.additional_size, order.trade_fee)
        self._check_not_liquidatable(order.margin_amount, order.additional_size, price)

        token_id = vault.state.position_registry.mint(account)
        vault.set_position(self, token_id, Position(
            last_price=price,
            margin_deposited=order.margin_amount,
            additional_size=order.additional_size,
            entry_cumulative_funding=vault.cumulative_funding,
        ))
        vault.update_global_position_data(self, price, order.margin_amount, order.additional_size)
        vault.update_stable_collateral_total(self, order.trade_fee)

        vault.emit(
            Event.LEVERAGE_OPEN,
            account=account,
            token_id=token_id,
            price=price,
            margin=order.margin_amount,
            size=order.additional_size,
        )
        return token_id

    def execute_adjust(self, caller: Any, max_age: int, order: AnnouncedLeverageAdjust, keeper_fee: int) -> int:
        """Re-base the position at the current price and apply the deltas.

        A positive margin delta (plus fees) is already in the vault; otherwise
        the fees come out of the position's margin and a negative margin delta
        is paid out to the owner here. Returns the new margin.
        """
        vault = self.vault
        vault.require_authorized(caller)
        token_id = order.token_id
        position = vault.get_position(token_id)
        price, _ = vault.oracle.get_price(max_age)
        _check_adjust_fill_price(order, price)

        summary = perp_math.position_summary(position, vault.cumulative_funding, price)
        new_margin, new_size = adjusted_margin_and_size(position, summary, order, keeper_fee)
        if new_margin <= 0:
            raise ValueNotPositive("newMargin")
        if new_size <= 0:
            raise ValueNotPositive("newAdditionalSize")
        self.check_leverage_criteria(new_margin, new_size)
        if order.additional_size_adjustment > 0:
            vault.check_skew_max(order.additional_size_adjustment, order.trade_fee)
        self._check_not_liquidatable(new_margin, new_size, price)

        vault.update_stable_collateral_total(self, order.trade_fee - summary.profit_loss)
        self._remove_from_global(position, summary)
        vault.update_global_position_data(self, price, new_margin, new_size)
        vault.set_position(self, token_id, Position(
            last_price=price,
            margin_deposited=new_margin,
            additional_size=new_size,
            entry_cumulative_funding=vault.cumulative_funding,
        ))
        if order.margin_adjustment < 0:
            vault.transfer_collateral(self, VAULT_ACCOUNT, self.owner_of(token_id), -order.margin_adjustment)

        vault.emit(
            Event.LEVERAGE_ADJUST,
            token_id=token_id,
            price=price,
            margin_adjustment=order.margin_adjustment,
            size_adjustment=order.additional_size_adjustment,
            new_margin=new_margin,
            new_size=new_size,
        )
        return new_margin

    def execute_close(self, caller: Any, max_age: int, order: AnnouncedLeverageClose, keeper_fee: int) -> int:
        """Settle and burn the position, paying the owner what is left after fees.

        The keeper fee stays in the vault for the caller to pay out. When the
        settled margin cannot cover the fees the owner gets nothing and the
        pool absorbs the shortfall. Returns the amount sent to the owner.
        """
        vault = self.vault
        vault.require_authorized(caller)
        token_id = order.token_id
        position = vault.get_position(token_id)
        owner = self.owner_of(token_id)
        price, _ = vault.oracle.get_price(max_age)
        if price < order.min_fill_price:
            raise HighSlippage(price, order.min_fill_price)

        summary = perp_math.position_summary(position, vault.cumulative_funding, price)
        payout, pool_credit = perp_math.close_payouts(
            summary.margin_after_settlement, summary.profit_loss, order.trade_fee, keeper_fee,
        )
        if payout == 0:
            logger.warning(
                "position %d closed with settled margin %d below fees %d; pool absorbs the shortfall",
                token_id, summary.margin_after_settlement, order.trade_fee + keeper_fee,
            )

        vault.update_stable_collateral_total(self, pool_credit)
        self._remove_from_global(position, summary)
        self.burn(self, token_id)

        vault.transfer_collateral(self, VAULT_ACCOUNT, owner, payout)

        vault.emit(
            Event.LEVERAGE_CLOSE,
            account=owner,
            token_id=token_id,
            price=price,
            profit_loss=summary.profit_loss,
            accrued_funding=summary.accrued_funding,
            payout=payout,
        )
        return payout

    def remove_position(self, caller: Any, token_id: TokenId, price: int) -> PositionSummary:
        """Take a position out of the global totals at `price` without paying anyone.

        The caller settles the returned summary (liquidation).
        """
        vault = self.vault
        vault.require_authorized(caller)
        position = vault.get_position(token_id)
        summary = perp_math.position_summary(position, vault.cumulative_funding, price)
        self._remove_from_global(position, summary)
        return summary

    def burn(self, caller: Any, token_id: TokenId) -> None:
        """Delete the position record and token, and drop every order on it."""
        vault = self.vault
        vault.require_authorized(caller)
        vault.delete_position(self, token_id)
        vault.state.position_registry.burn(token_id)
        limit_orders = vault.find_module(ModuleKey.LIMIT_ORDER)
        if limit_orders is not None:
            limit_orders.reset_limit_order(self, token_id)
        delayed_orders = vault.find_module(ModuleKey.DELAYED_ORDER)
        if delayed_orders is not None:
            delayed_orders.cancel_orders_for_position(self, token_id)

    # -- Locks / transfers -------------------------------------------------------

    def lock(self, caller: Any, token_id: TokenId, module_key: ModuleKey) -> None:
        self.vault.require_authorized(caller)
        self.vault.state.position_registry.lock(token_id, module_key)

    def unlock(self, caller: Any, token_id: TokenId, module_key: ModuleKey) -> None:
        self.vault.require_authorized(caller)
        self.vault.state.position_registry.unlock(token_id, module_key)

    def transfer(self, sender: Account, to: Account, token_id: TokenId) -> None:
        with self.vault.atomic():
            self.vault.state.position_registry.transfer(token_id, sender, to)

    # -- Owner setters -----------------------------------------------------------

    def set_leverage_trading_fee(self, sender: Account, fee: int) -> None:
        self.vault.only_owner(sender)
        _validate_trading_fee(fee)
        self.leverage_trading_fee = fee
        self.vault.emit(Event.PARAMETER_SET, name="leverageTradingFee", value=fee)
        logger.info("leverage trading fee set to %d", fee)

    def set_leverage_criteria(self, sender: Account, margin_min: int, leverage_min: int, leverage_max: int) -> None:
        self.vault.only_owner(sender)
        _validate_leverage_criteria(margin_min, leverage_min, leverage_max)
        self.margin_min = margin_min
        self.leverage_min = leverage_min
        self.leverage_max = leverage_max
        self.vault.emit(
            Event.PARAMETER_SET,
            name="leverageCriteria",
            value=(margin_min, leverage_min, leverage_max),
        )
        logger.info("leverage criteria set: margin_min=%d leverage=[%d, %d]", margin_min, leverage_min, leverage_max)

    # -- Internals ---------------------------------------------------------------

    def _remove_from_global(self, position: Position, summary: PositionSummary) -> None:
        self.vault.update_global_position_data(
            self,
            position.last_price,
            -(position.margin_deposited + summary.accrued_funding),
            -position.additional_size,
        )

    def _check_not_liquidatable(self, margin: int, additional_size: int, price: int) -> None:
        liquidation = self.vault.get_module(ModuleKey.LIQUIDATION_MODULE)
        if perp_math.can_liquidate(margin, liquidation.get_liquidation_margin(additional_size, price)):
            raise PositionCreatesBadDebt()


def adjusted_margin_and_size(
    position: Position,
    summary: PositionSummary,
    order: AnnouncedLeverageAdjust,
    keeper_fee: int,
) -> tuple[int, int]:
    """Margin and size after an adjustment.

    Fees are escrowed on top of a positive margin delta, otherwise taken from
    the settled margin.
    """
    new_margin = summary.margin_after_settlement + order.margin_adjustment
    if order.margin_adjustment <= 0:
        new_margin -= order.trade_fee + keeper_fee
    return new_margin, position.additional_size + order.additional_size_adjustment


def _check_adjust_fill_price(order: AnnouncedLeverageAdjust, price: int) -> None:
    if order.additional_size_adjustment > 0 and price > order.fill_price:
        raise HighSlippage(price, order.fill_price)
    if order.additional_size_adjustment < 0 and price < order.fill_price:
        raise HighSlippage(price, order.fill_price)


def _validate_trading_fee(fee: int) -> None:
    if fee < 0 or fee > MAX_LEVERAGE_TRADING_FEE:
        raise InvalidFee(fee)


def _validate_leverage_criteria(margin_min: int, leverage_min: int, leverage_max: int) -> None:
    if margin_min <= 0:
        raise ZeroValue("marginMin")
    if leverage_min <= 0 or leverage_max <= leverage_min:
        raise InvalidLeverageCriteria()
