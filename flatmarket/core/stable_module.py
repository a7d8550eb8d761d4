"""Share ledger: issuance and redemption of pooled-collateral shares.

Shares are minted and burned at the collateral-per-share prevailing at
execution time:

    collateral_per_share = stable_collateral_total_after_settlement * 1e18 / total_supply

(1e18 when no shares exist). Rounding always favours the pool: deposits mint
`floor(amount / cps)` shares, withdrawals pay out `floor(shares * cps)`.
"""

from __future__ import annotations

import logging
from typing import Any, Tuple

from . import perp_math
from .decimal_math import UNIT, multiply_decimal
from .errors import (
    AmountTooSmall,
    HighSlippage,
    InvalidFee,
    MaxSkewReached,
    PriceImpactDuringFullWithdraw,
    PriceImpactDuringWithdraw,
    ValueNotPositive,
)
from .types import (
    DEFAULT_MAX_AGE,
    Account,
    AnnouncedStableDeposit,
    AnnouncedStableWithdraw,
    Event,
    ModuleKey,
)
from .vault import Vault

logger = logging.getLogger(__name__)

# Share supply floor; only a full exit may go below it (to exactly zero).
MIN_LIQUIDITY: int = 10_000

# Accepted collateral-per-share drift across a withdraw (rounding only).
PRICE_IMPACT_TOLERANCE: int = 10**6

MAX_STABLE_WITHDRAW_FEE: int = UNIT // 100


def full_exit_dust(supply: int) -> int:
    """Most collateral a fee-free redemption of all `supply` shares can leave behind."""
    return supply // UNIT + 1


class StableModule:
    """Pooled-collateral shares (the short side of the market)."""

    key = ModuleKey.STABLE_MODULE

    def __init__(self, vault: Vault, stable_withdraw_fee: int = 0) -> None:
        if stable_withdraw_fee < 0 or stable_withdraw_fee > MAX_STABLE_WITHDRAW_FEE:
            raise InvalidFee(stable_withdraw_fee)
        self.vault = vault
        self.stable_withdraw_fee = stable_withdraw_fee

    # -- Views -------------------------------------------------------------------

    @property
    def total_supply(self) -> int:
        return self.vault.state.shares.total_supply

    def balance_of(self, account: Account) -> int:
        return self.vault.state.shares.balance_of(account)

    def get_locked_amount(self, account: Account) -> int:
        return self.vault.state.shares.locked_of(account)

    def stable_collateral_total_after_settlement_raw(self, max_age: int = DEFAULT_MAX_AGE) -> int:
        """Pool value net of trader PnL and unsettled funding; may be negative."""
        vault = self.vault
        price, _ = vault.oracle.get_price(max_age)
        long_pnl = perp_math.funding_adjusted_long_pnl_total(
            vault.global_positions, price, vault.next_cumulative_funding(),
        )
        return vault.stable_collateral_total - long_pnl

    def stable_collateral_total_after_settlement(self, max_age: int = DEFAULT_MAX_AGE) -> int:
        return max(0, self.stable_collateral_total_after_settlement_raw(max_age))

    def stable_collateral_per_share(self, max_age: int = DEFAULT_MAX_AGE) -> int:
        supply = self.total_supply
        if supply == 0:
            return UNIT
        return self.stable_collateral_total_after_settlement(max_age) * UNIT // supply

    def stable_deposit_quote(self, deposit_amount: int, max_age: int = DEFAULT_MAX_AGE) -> int:
        """Shares minted for `deposit_amount` at the current collateral per share."""
        per_share = self.stable_collateral_per_share(max_age)
        if per_share == 0:
            raise ValueNotPositive("stableCollateralPerShare")
        return deposit_amount * UNIT // per_share

    def stable_withdraw_quote(self, withdraw_amount: int, max_age: int = DEFAULT_MAX_AGE) -> Tuple[int, int]:
        """``(amount_out, withdraw_fee)`` for redeeming `withdraw_amount` shares now.

        `amount_out` is already net of the withdraw fee; the final withdrawal
        of the whole supply is fee-free.
        """
        amount = withdraw_amount * self.stable_collateral_per_share(max_age) // UNIT
        if withdraw_amount >= self.total_supply:
            return amount, 0
        fee = multiply_decimal(amount, self.stable_withdraw_fee)
        return amount - fee, fee

    # -- Execution (called by the order module) ---------------------------------

    def execute_deposit(self, caller: Any, account: Account, max_age: int, order: AnnouncedStableDeposit) -> int:
        """Mint shares for a deposit whose collateral already sits in the vault."""
        vault = self.vault
        vault.require_authorized(caller)
        vault.check_collateral_cap(order.deposit_amount)

        minted = self.stable_deposit_quote(order.deposit_amount, max_age)
        if minted < order.min_amount_out:
            raise HighSlippage(minted, order.min_amount_out)

        vault.update_stable_collateral_total(self, order.deposit_amount)
        vault.state.shares.mint(account, minted)
        if self.total_supply < MIN_LIQUIDITY:
            raise AmountTooSmall(self.total_supply, MIN_LIQUIDITY)

        vault.emit(Event.DEPOSIT, account=account, deposit_amount=order.deposit_amount, minted=minted)
        return minted

    def execute_withdraw(
        self,
        caller: Any,
        account: Account,
        max_age: int,
        order: AnnouncedStableWithdraw,
    ) -> Tuple[int, int]:
        """Burn locked shares; return ``(amount_out, withdraw_fee)``.

        The caller pays `amount_out` out of the vault. The withdraw fee stays in
        the pool.
        """
        vault = self.vault
        vault.require_authorized(caller)
        shares = vault.state.shares

        per_share_before = self.stable_collateral_per_share(max_age)
        amount = order.withdraw_amount * per_share_before // UNIT

        shares.unlock(account, order.withdraw_amount)
        shares.burn(account, order.withdraw_amount)
        vault.update_stable_collateral_total(self, -amount)

        supply = self.total_supply
        if supply > 0:
            if supply < MIN_LIQUIDITY:
                raise AmountTooSmall(supply, MIN_LIQUIDITY)
            per_share_after = self.stable_collateral_per_share(max_age)
            if per_share_after < per_share_before - PRICE_IMPACT_TOLERANCE:
                raise PriceImpactDuringWithdraw(per_share_before, per_share_after)
            withdraw_fee = multiply_decimal(amount, self.stable_withdraw_fee)
            vault.update_stable_collateral_total(self, withdraw_fee)
            vault.check_skew_max(0, 0)
        else:
            size_open = vault.global_positions.size_opened_total
            if size_open != 0:
                raise MaxSkewReached(size_open)
            # Burning every share may strand at most the truncation dust of
            # the two floor divisions above.
            leftover = vault.stable_collateral_total
            if leftover < 0 or leftover > full_exit_dust(order.withdraw_amount):
                raise PriceImpactDuringFullWithdraw(leftover)
            withdraw_fee = 0

        vault.emit(
            Event.WITHDRAW,
            account=account,
            withdraw_amount=order.withdraw_amount,
            amount=amount,
            withdraw_fee=withdraw_fee,
        )
        return amount - withdraw_fee, withdraw_fee

    # -- Locks / transfers -------------------------------------------------------

    def lock(self, caller: Any, account: Account, amount: int) -> None:
        self.vault.require_authorized(caller)
        self.vault.state.shares.lock(account, amount)

    def unlock(self, caller: Any, account: Account, amount: int) -> None:
        self.vault.require_authorized(caller)
        self.vault.state.shares.unlock(account, amount)

    def transfer(self, sender: Account, to: Account, amount: int) -> None:
        """Move unlocked shares between holders."""
        with self.vault.atomic():
            self.vault.state.shares.transfer(sender, to, amount)

    # -- Owner setters -----------------------------------------------------------

    def set_stable_withdraw_fee(self, sender: Account, fee: int) -> None:
        self.vault.only_owner(sender)
        if fee < 0 or fee > MAX_STABLE_WITHDRAW_FEE:
            raise InvalidFee(fee)
        self.stable_withdraw_fee = fee
        self.vault.emit(Event.PARAMETER_SET, name="stableWithdrawFee", value=fee)
        logger.info("stable withdraw fee set to %d", fee)

