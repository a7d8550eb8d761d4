"""Price-threshold close orders attached to positions.

A limit order closes its position once the price is at or below the lower
threshold (stop loss) or at or above the upper threshold (take profit). It is
independent of the owner's delayed-order slot, persists until executed or
cancelled, and disappears with its position.

Execution follows the delayed-order timing rules: not before ``min_age`` has
passed since the announcement, and only with a price that is no older than
the announcement (capped at ``max_executability_age``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..state.balances import VAULT_ACCOUNT
from .errors import (
    ExecutableTimeNotReached,
    InvalidThresholds,
    LimitOrderInvalid,
    LimitOrderPriceNotInRange,
)
from .invariants import run_order_invariant_checks
from .types import (
    Account,
    AnnouncedLeverageClose,
    Event,
    LimitOrder,
    ModuleKey,
    OrderExecuted,
    OrderType,
    TokenId,
)
from .vault import Vault

logger = logging.getLogger(__name__)


class LimitOrderModule:
    key = ModuleKey.LIMIT_ORDER

    def __init__(self, vault: Vault) -> None:
        self.vault = vault

    @property
    def _leverage(self) -> Any:
        return self.vault.get_module(ModuleKey.LEVERAGE_MODULE)

    def get_limit_order(self, token_id: TokenId) -> Optional[LimitOrder]:
        return self.vault.state.limit_orders.get(token_id)

    def announce_limit_order(
        self,
        account: Account,
        token_id: TokenId,
        price_lower_threshold: int,
        price_upper_threshold: int,
    ) -> LimitOrder:
        """Create the limit order of `token_id`, or replace its thresholds."""
        vault = self.vault
        with vault.atomic():
            vault.require_not_paused(self.key)
            vault.settle_funding_fees()
            vault.state.position_registry.require_owner(token_id, account)
            if price_lower_threshold >= price_upper_threshold:
                raise InvalidThresholds(price_lower_threshold, price_upper_threshold)

            order = LimitOrder(
                token_id=token_id,
                price_lower_threshold=price_lower_threshold,
                price_upper_threshold=price_upper_threshold,
                executable_at_time=vault.clock.now(),
            )
            vault.state.limit_orders[token_id] = order
            self._leverage.lock(self, token_id, self.key)
            vault.emit(
                Event.LIMIT_ORDER_ANNOUNCED,
                account=account,
                token_id=token_id,
                price_lower_threshold=price_lower_threshold,
                price_upper_threshold=price_upper_threshold,
            )
        logger.debug("limit order on %d: [%d, %d]", token_id, price_lower_threshold, price_upper_threshold)
        return order

    def cancel_limit_order(self, account: Account, token_id: TokenId) -> None:
        vault = self.vault
        with vault.atomic():
            vault.state.position_registry.require_owner(token_id, account)
            if token_id not in vault.state.limit_orders:
                raise LimitOrderInvalid(token_id)
            self._clear(token_id)
        logger.info("limit order on %d cancelled by %s", token_id, account)

    def reset_limit_order(self, caller: Any, token_id: TokenId) -> None:
        """Drop the limit order of a position that is being burned (no-op if none)."""
        self.vault.require_authorized(caller)
        if token_id in self.vault.state.limit_orders:
            self._clear(token_id)

    def _clear(self, token_id: TokenId, cancelled: bool = True) -> None:
        vault = self.vault
        del vault.state.limit_orders[token_id]
        if vault.state.position_registry.exists(token_id):
            self._leverage.unlock(self, token_id, self.key)
        if cancelled:
            vault.emit(Event.LIMIT_ORDER_CANCELLED, token_id=token_id)

    def execute_limit_order(self, token_id: TokenId, keeper: Account, price_update: Any = None) -> OrderExecuted:
        """Close the position if the price is outside its thresholds."""
        vault = self.vault
        with vault.atomic():
            vault.require_not_paused(self.key)
            vault.require_not_paused(ModuleKey.LEVERAGE_MODULE)
            if price_update is not None:
                vault.oracle.update_price(price_update)
            vault.settle_funding_fees()

            order = vault.state.limit_orders.get(token_id)
            if order is None:
                raise LimitOrderInvalid(token_id)
            now = vault.clock.now()
            executable_from = order.executable_at_time + vault.min_executability_age
            if now < executable_from:
                raise ExecutableTimeNotReached(executable_from)
            max_age = min(now - order.executable_at_time, vault.max_executability_age)
            price, _ = vault.oracle.get_price(max_age)
            if not order.in_range(price):
                raise LimitOrderPriceNotInRange(price, order.price_lower_threshold, order.price_upper_threshold)

            leverage = self._leverage
            owner = leverage.owner_of(token_id)
            keeper_fee = vault.get_module(ModuleKey.KEEPER_FEE).get_keeper_fee()
            close = AnnouncedLeverageClose(
                token_id=token_id,
                min_fill_price=0,
                trade_fee=leverage.get_trade_fee(leverage.get_position(token_id).additional_size),
            )
            self._clear(token_id, cancelled=False)

            def _close() -> int:
                payout = leverage.execute_close(self, max_age, close, keeper_fee)
                vault.transfer_collateral(self, VAULT_ACCOUNT, keeper, keeper_fee)
                return payout

            payout = run_order_invariant_checks(
                vault,
                _close,
                label=OrderType.LIMIT_CLOSE.name,
                pool_loss=leverage.close_pool_loss(token_id, keeper_fee),
            )
            vault.emit(
                Event.LIMIT_ORDER_EXECUTED,
                account=owner,
                token_id=token_id,
                keeper=keeper,
                price=price,
                keeper_fee=keeper_fee,
            )
        logger.info("limit order on %d executed at %d by %s (payout %d)", token_id, price, keeper, payout)
        return OrderExecuted(owner, OrderType.LIMIT_CLOSE, keeper, keeper_fee, payout, token_id)
