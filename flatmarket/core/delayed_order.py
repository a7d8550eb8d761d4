"""Two-phase (announce / execute) orders.

Each account owns at most one pending order. The lifecycle is::

    None --announce_*--> Announced --execute_order--> None
                         Announced --cancel_existing_order (after expiry)--> None

Announcing escrows the collateral the order will need (deposit amount or
margin, plus fees) in the escrow account, or locks the shares / position it
references. Execution is bound to a price published no earlier than the
announcement (oracle max age = ``now - executable_at_time``) and must happen
inside ``[executable_at_time + min_age, executable_at_time + max_age]``.

Keepers race to execute; the order is removed before dispatch, so a losing
keeper sees ``EmptyOrder``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from ..state.balances import ESCROW_ACCOUNT, VAULT_ACCOUNT
from .errors import (
    AmountTooSmall,
    EmptyOrder,
    ExecutableTimeNotReached,
    HighSlippage,
    InvalidFee,
    NotEnoughBalanceForWithdraw,
    OrderAlreadyExists,
    OrderHasExpired,
    OrderHasNotExpired,
    ValueNotPositive,
    ZeroValue,
)
from .invariants import run_order_invariant_checks
from .leverage_module import adjusted_margin_and_size
from .types import (
    DEFAULT_MAX_AGE,
    Account,
    AnnouncedLeverageAdjust,
    AnnouncedLeverageClose,
    AnnouncedLeverageOpen,
    AnnouncedStableDeposit,
    AnnouncedStableWithdraw,
    Event,
    ModuleKey,
    Order,
    OrderData,
    OrderExecuted,
    OrderType,
    TokenId,
)
from .vault import Vault

logger = logging.getLogger(__name__)


class DelayedOrderModule:
    """Pending-order slots keyed by account."""

    key = ModuleKey.DELAYED_ORDER

    def __init__(self, vault: Vault, min_deposit_amount: int = 0) -> None:
        if min_deposit_amount < 0:
            raise ValueNotPositive("minDepositAmount")
        self.vault = vault
        self.min_deposit_amount = min_deposit_amount

    # -- Collaborators -----------------------------------------------------------

    @property
    def _stable(self) -> Any:
        return self.vault.get_module(ModuleKey.STABLE_MODULE)

    @property
    def _leverage(self) -> Any:
        return self.vault.get_module(ModuleKey.LEVERAGE_MODULE)

    def _current_price(self) -> int:
        price, _ = self.vault.oracle.get_price(DEFAULT_MAX_AGE)
        return price

    # -- Views -------------------------------------------------------------------

    def get_announced_order(self, account: Account) -> Optional[Order]:
        return self.vault.state.orders.get(account)

    def has_expired(self, order: Order) -> bool:
        return self.vault.clock.now() > order.executable_at_time + self.vault.max_executability_age

    # -- Announce ----------------------------------------------------------------

    def announce_stable_deposit(
        self,
        account: Account,
        deposit_amount: int,
        min_amount_out: int,
        keeper_fee: Optional[int] = None,
    ) -> Order:
        with self.vault.atomic():
            fee = self._prepare_announcement(account, keeper_fee, ModuleKey.STABLE_MODULE)
            if deposit_amount <= 0 or deposit_amount < self.min_deposit_amount:
                raise AmountTooSmall(deposit_amount, self.min_deposit_amount)
            self.vault.check_collateral_cap(deposit_amount)
            quoted = self._stable.stable_deposit_quote(deposit_amount)
            if quoted < min_amount_out:
                raise HighSlippage(quoted, min_amount_out)

            escrow = deposit_amount + fee
            self.vault.transfer_collateral(self, account, ESCROW_ACCOUNT, escrow)
            return self._record(
                account,
                OrderType.STABLE_DEPOSIT,
                fee,
                AnnouncedStableDeposit(deposit_amount=deposit_amount, min_amount_out=min_amount_out),
                escrow,
            )

    def announce_stable_withdraw(
        self,
        account: Account,
        withdraw_amount: int,
        min_amount_out: int,
        keeper_fee: Optional[int] = None,
    ) -> Order:
        with self.vault.atomic():
            fee = self._prepare_announcement(account, keeper_fee, ModuleKey.STABLE_MODULE)
            stable = self._stable
            if withdraw_amount <= 0:
                raise ValueNotPositive("withdrawAmount")
            available = self.vault.state.shares.unlocked_of(account)
            if withdraw_amount > available:
                raise NotEnoughBalanceForWithdraw(account, available, withdraw_amount)

            amount_out, _ = stable.stable_withdraw_quote(withdraw_amount)
            if amount_out < fee:
                raise AmountTooSmall(amount_out, fee)
            if amount_out - fee < min_amount_out:
                raise HighSlippage(amount_out - fee, min_amount_out)
            if withdraw_amount < stable.total_supply:
                self.vault.check_skew_max(0, -amount_out)

            stable.lock(self, account, withdraw_amount)
            return self._record(
                account,
                OrderType.STABLE_WITHDRAW,
                fee,
                AnnouncedStableWithdraw(withdraw_amount=withdraw_amount, min_amount_out=min_amount_out),
            )

    def announce_leverage_open(
        self,
        account: Account,
        margin_amount: int,
        additional_size: int,
        max_fill_price: int,
        keeper_fee: Optional[int] = None,
    ) -> Order:
        with self.vault.atomic():
            fee = self._prepare_announcement(account, keeper_fee, ModuleKey.LEVERAGE_MODULE)
            leverage = self._leverage
            leverage.check_leverage_criteria(margin_amount, additional_size)
            price = self._current_price()
            if price > max_fill_price:
                raise HighSlippage(price, max_fill_price)
            self.vault.check_skew_max(additional_size, 0)

            trade_fee = leverage.get_trade_fee(additional_size)
            escrow = margin_amount + trade_fee + fee
            self.vault.transfer_collateral(self, account, ESCROW_ACCOUNT, escrow)
            return self._record(
                account,
                OrderType.LEVERAGE_OPEN,
                fee,
                AnnouncedLeverageOpen(
                    margin_amount=margin_amount,
                    additional_size=additional_size,
                    max_fill_price=max_fill_price,
                    trade_fee=trade_fee,
                ),
                escrow,
            )

    def announce_leverage_adjust(
        self,
        account: Account,
        token_id: TokenId,
        margin_adjustment: int,
        additional_size_adjustment: int,
        fill_price: int,
        keeper_fee: Optional[int] = None,
    ) -> Order:
        with self.vault.atomic():
            fee = self._prepare_announcement(account, keeper_fee, ModuleKey.LEVERAGE_MODULE)
            leverage = self._leverage
            self.vault.state.position_registry.require_owner(token_id, account)
            if margin_adjustment == 0 and additional_size_adjustment == 0:
                raise ZeroValue("marginAdjustment|additionalSizeAdjustment")

            price = self._current_price()
            if additional_size_adjustment > 0 and price > fill_price:
                raise HighSlippage(price, fill_price)
            if additional_size_adjustment < 0 and price < fill_price:
                raise HighSlippage(price, fill_price)

            trade_fee = leverage.get_trade_fee(additional_size_adjustment) if additional_size_adjustment > 0 else 0
            data = AnnouncedLeverageAdjust(
                token_id=token_id,
                margin_adjustment=margin_adjustment,
                additional_size_adjustment=additional_size_adjustment,
                fill_price=fill_price,
                trade_fee=trade_fee,
            )
            position = leverage.get_position(token_id)
            summary = leverage.get_position_summary(token_id)
            new_margin, new_size = adjusted_margin_and_size(position, summary, data, fee)
            if new_margin <= 0:
                raise ValueNotPositive("newMargin")
            if new_size <= 0:
                raise ValueNotPositive("newAdditionalSize")
            leverage.check_leverage_criteria(new_margin, new_size)
            if additional_size_adjustment > 0:
                self.vault.check_skew_max(additional_size_adjustment, 0)

            escrow = 0
            if margin_adjustment > 0:
                escrow = margin_adjustment + trade_fee + fee
                self.vault.transfer_collateral(self, account, ESCROW_ACCOUNT, escrow)
            leverage.lock(self, token_id, self.key)
            return self._record(account, OrderType.LEVERAGE_ADJUST, fee, data, escrow)

    def announce_leverage_close(
        self,
        account: Account,
        token_id: TokenId,
        min_fill_price: int,
        keeper_fee: Optional[int] = None,
    ) -> Order:
        with self.vault.atomic():
            fee = self._prepare_announcement(account, keeper_fee, ModuleKey.LEVERAGE_MODULE)
            leverage = self._leverage
            self.vault.state.position_registry.require_owner(token_id, account)
            position = leverage.get_position(token_id)
            trade_fee = leverage.get_trade_fee(position.additional_size)

            leverage.lock(self, token_id, self.key)
            return self._record(
                account,
                OrderType.LEVERAGE_CLOSE,
                fee,
                AnnouncedLeverageClose(token_id=token_id, min_fill_price=min_fill_price, trade_fee=trade_fee),
            )

    def _prepare_announcement(self, account: Account, keeper_fee: Optional[int], target: ModuleKey) -> int:
        """Common announce checks; returns the keeper fee to escrow."""
        vault = self.vault
        vault.require_not_paused(self.key)
        vault.require_not_paused(target)
        vault.settle_funding_fees()

        existing = vault.state.orders.get(account)
        if existing is not None:
            if not self.has_expired(existing):
                raise OrderAlreadyExists(account)
            logger.warning("replacing expired %s order of %s", existing.order_type.name, account)
            self._cancel(account, existing)

        current_fee = vault.get_module(ModuleKey.KEEPER_FEE).get_keeper_fee()
        if keeper_fee is None:
            return current_fee
        if keeper_fee < current_fee:
            raise InvalidFee(keeper_fee)
        return keeper_fee

    def _record(
        self,
        account: Account,
        order_type: OrderType,
        keeper_fee: int,
        data: OrderData,
        escrowed: int = 0,
    ) -> Order:
        order = Order(
            order_type=order_type,
            keeper_fee=keeper_fee,
            executable_at_time=self.vault.clock.now(),
            order_data=data,
            escrowed=escrowed,
        )
        self.vault.state.orders[account] = order
        self.vault.emit(
            Event.ORDER_ANNOUNCED,
            account=account,
            order_type=order_type.name,
            keeper_fee=keeper_fee,
            executable_at_time=order.executable_at_time,
        )
        logger.debug("announced %s for %s", order_type.name, account)
        return order

    # -- Execute -----------------------------------------------------------------

    def execute_order(self, account: Account, keeper: Account, price_update: Any = None) -> OrderExecuted:
        """Execute the pending order of `account`, paying `keeper` its fee."""
        vault = self.vault
        with vault.atomic():
            vault.require_not_paused(self.key)
            if price_update is not None:
                vault.oracle.update_price(price_update)
            vault.settle_funding_fees()

            order = vault.state.orders.pop(account, None)
            if order is None:
                raise EmptyOrder(account)
            target, executor = _DISPATCH[order.order_type]
            vault.require_not_paused(target)
            self._check_executable(order)
            max_age = vault.clock.now() - order.executable_at_time
            pool_loss = 0
            if order.order_type is OrderType.LEVERAGE_CLOSE:
                pool_loss = self._leverage.close_pool_loss(order.order_data.token_id, order.keeper_fee)

            receipt = run_order_invariant_checks(
                vault,
                lambda: executor(self, account, keeper, order, max_age),
                label=order.order_type.name,
                pool_loss=pool_loss,
            )
            vault.emit(
                Event.ORDER_EXECUTED,
                account=account,
                order_type=order.order_type.name,
                keeper=keeper,
                keeper_fee=order.keeper_fee,
            )
        self._notify_points(account, order)
        logger.info(
            "executed %s for %s by %s (keeper fee %d, amount %d)",
            order.order_type.name, account, keeper, order.keeper_fee, receipt.amount,
        )
        return receipt

    def _check_executable(self, order: Order) -> None:
        vault = self.vault
        now = vault.clock.now()
        executable_from = order.executable_at_time + vault.min_executability_age
        if now < executable_from:
            raise ExecutableTimeNotReached(executable_from)
        expires_at = order.executable_at_time + vault.max_executability_age
        if now > expires_at:
            raise OrderHasExpired(expires_at)

    def _execute_stable_deposit(self, account: Account, keeper: Account, order: Order, max_age: int) -> OrderExecuted:
        data = order.order_data
        self.vault.transfer_collateral(self, ESCROW_ACCOUNT, VAULT_ACCOUNT, data.deposit_amount)
        self.vault.transfer_collateral(self, ESCROW_ACCOUNT, keeper, order.keeper_fee)
        minted = self._stable.execute_deposit(self, account, max_age, data)
        return OrderExecuted(account, order.order_type, keeper, order.keeper_fee, minted)

    def _execute_stable_withdraw(self, account: Account, keeper: Account, order: Order, max_age: int) -> OrderExecuted:
        data = order.order_data
        amount_out, _ = self._stable.execute_withdraw(self, account, max_age, data)
        if amount_out < order.keeper_fee:
            raise AmountTooSmall(amount_out, order.keeper_fee)
        user_amount = amount_out - order.keeper_fee
        if user_amount < data.min_amount_out:
            raise HighSlippage(user_amount, data.min_amount_out)
        self.vault.transfer_collateral(self, VAULT_ACCOUNT, keeper, order.keeper_fee)
        self.vault.transfer_collateral(self, VAULT_ACCOUNT, account, user_amount)
        return OrderExecuted(account, order.order_type, keeper, order.keeper_fee, user_amount)

    def _execute_leverage_open(self, account: Account, keeper: Account, order: Order, max_age: int) -> OrderExecuted:
        data = order.order_data
        self.vault.transfer_collateral(self, ESCROW_ACCOUNT, VAULT_ACCOUNT, data.margin_amount + data.trade_fee)
        self.vault.transfer_collateral(self, ESCROW_ACCOUNT, keeper, order.keeper_fee)
        token_id = self._leverage.execute_open(self, account, max_age, data)
        return OrderExecuted(account, order.order_type, keeper, order.keeper_fee, data.margin_amount, token_id)

    def _execute_leverage_adjust(self, account: Account, keeper: Account, order: Order, max_age: int) -> OrderExecuted:
        data = order.order_data
        leverage = self._leverage
        leverage.unlock(self, data.token_id, self.key)
        if data.margin_adjustment > 0:
            self.vault.transfer_collateral(self, ESCROW_ACCOUNT, VAULT_ACCOUNT, data.margin_adjustment + data.trade_fee)
            self.vault.transfer_collateral(self, ESCROW_ACCOUNT, keeper, order.keeper_fee)
        new_margin = leverage.execute_adjust(self, max_age, data, order.keeper_fee)
        if data.margin_adjustment <= 0:
            self.vault.transfer_collateral(self, VAULT_ACCOUNT, keeper, order.keeper_fee)
        return OrderExecuted(account, order.order_type, keeper, order.keeper_fee, new_margin, data.token_id)

    def _execute_leverage_close(self, account: Account, keeper: Account, order: Order, max_age: int) -> OrderExecuted:
        data = order.order_data
        leverage = self._leverage
        leverage.unlock(self, data.token_id, self.key)
        payout = leverage.execute_close(self, max_age, data, order.keeper_fee)
        self.vault.transfer_collateral(self, VAULT_ACCOUNT, keeper, order.keeper_fee)
        return OrderExecuted(account, order.order_type, keeper, order.keeper_fee, payout, data.token_id)

    def _notify_points(self, account: Account, order: Order) -> None:
        """Incentive notifications never fail the execution that triggered them."""
        points = self.vault.find_module(ModuleKey.POINTS_MODULE)
        if points is None:
            return
        data = order.order_data
        try:
            if order.order_type is OrderType.STABLE_DEPOSIT:
                points.on_deposit(account, data.deposit_amount)
            elif order.order_type is OrderType.LEVERAGE_OPEN:
                points.on_leverage_open(account, data.additional_size)
            elif order.order_type is OrderType.LEVERAGE_ADJUST and data.additional_size_adjustment > 0:
                points.on_leverage_open(account, data.additional_size_adjustment)
        except Exception:
            logger.exception("points notification failed for %s (%s)", account, order.order_type.name)

    # -- Cancel ------------------------------------------------------------------

    def cancel_existing_order(self, account: Account) -> None:
        """Cancel an expired order; callable by anyone once ``max_age`` has passed."""
        vault = self.vault
        with vault.atomic():
            order = vault.state.orders.get(account)
            if order is None:
                raise EmptyOrder(account)
            if not self.has_expired(order):
                raise OrderHasNotExpired(order.executable_at_time + vault.max_executability_age)
            self._cancel(account, order)
        logger.info("cancelled expired %s order of %s", order.order_type.name, account)

    def cancel_orders_for_position(self, caller: Any, token_id: TokenId) -> None:
        """Drop every pending adjust/close on a position that is being burned."""
        self.vault.require_authorized(caller)
        for account, order in sorted(self.vault.state.orders.items()):
            if order.token_id == token_id:
                logger.info("cancelling %s order of %s on burned position %d", order.order_type.name, account, token_id)
                self._cancel(account, order)

    def _cancel(self, account: Account, order: Order) -> None:
        """Release locks, refund escrow and clear the slot."""
        vault = self.vault
        data = order.order_data
        if order.order_type is OrderType.STABLE_WITHDRAW:
            self._stable.unlock(self, account, data.withdraw_amount)
        elif order.order_type in (OrderType.LEVERAGE_ADJUST, OrderType.LEVERAGE_CLOSE):
            if vault.state.position_registry.exists(data.token_id):
                self._leverage.unlock(self, data.token_id, self.key)
        if order.escrowed:
            vault.transfer_collateral(self, ESCROW_ACCOUNT, account, order.escrowed)
        del vault.state.orders[account]
        vault.emit(Event.ORDER_CANCELLED, account=account, order_type=order.order_type.name)

    # -- Owner setters -----------------------------------------------------------

    def set_min_deposit_amount(self, sender: Account, amount: int) -> None:
        self.vault.only_owner(sender)
        if amount < 0:
            raise ValueNotPositive("minDepositAmount")
        self.min_deposit_amount = amount
        self.vault.emit(Event.PARAMETER_SET, name="minDepositAmount", value=amount)
        logger.info("min deposit amount set to %d", amount)


Executor = Callable[[DelayedOrderModule, Account, Account, Order, int], OrderExecuted]

_DISPATCH: Dict[OrderType, Tuple[ModuleKey, Executor]] = {
    OrderType.STABLE_DEPOSIT: (ModuleKey.STABLE_MODULE, DelayedOrderModule._execute_stable_deposit),
    OrderType.STABLE_WITHDRAW: (ModuleKey.STABLE_MODULE, DelayedOrderModule._execute_stable_withdraw),
    OrderType.LEVERAGE_OPEN: (ModuleKey.LEVERAGE_MODULE, DelayedOrderModule._execute_leverage_open),
    OrderType.LEVERAGE_ADJUST: (ModuleKey.LEVERAGE_MODULE, DelayedOrderModule._execute_leverage_adjust),
    OrderType.LEVERAGE_CLOSE: (ModuleKey.LEVERAGE_MODULE, DelayedOrderModule._execute_leverage_close),
}
