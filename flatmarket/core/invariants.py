"""Ledger invariants and the guards that enforce them around executions.

Two layers:

1. Static invariants over the current ledger state. Each ``inv_*`` function
   returns True when the invariant holds; ``check_all()`` returns the list of
   violated invariant IDs (empty = all pass).
2. Transition guards. ``run_order_invariant_checks()`` and
   ``run_liquidation_invariant_checks()`` capture the collateral net and the
   collateral per share before and after an operation and compare them:

   - the collateral net (``vault balance - (stable total + margin total)``)
     must be non-negative and unchanged,
   - collateral per share must not decrease across an order execution,
   - across a liquidation it must move by exactly the pool credit of the
     liquidation waterfall spread over the share supply.

   Both tolerate ``TOLERANCE`` wei of rounding.

Any violation is logged at error level and raised as ``InvariantViolation``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, TypeVar

from . import perp_math
from .decimal_math import UNIT, abs_val, div_trunc
from .errors import InvariantViolation
from .stable_module import MIN_LIQUIDITY
from .types import DEFAULT_MAX_AGE, ModuleKey, TokenId

if TYPE_CHECKING:
    from .vault import Vault

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOLERANCE: int = 10**6


# -- Snapshots ---------------------------------------------------------------

@dataclass(frozen=True)
class GuardSnapshot:
    collateral_net: int
    collateral_per_share: int
    total_supply: int


def collateral_net(vault: Vault) -> int:
    """Vault balance minus what the ledger says it owes (pool + positions)."""
    tracked = vault.stable_collateral_total + vault.global_positions.margin_deposited_total
    return vault.collateral_balance() - tracked


def collateral_per_share_unclamped(vault: Vault) -> int:
    """Collateral per share without the zero floor, so bad debt stays visible."""
    supply = vault.state.shares.total_supply
    if supply == 0:
        return UNIT
    stable = vault.get_module(ModuleKey.STABLE_MODULE)
    return div_trunc(stable.stable_collateral_total_after_settlement_raw(DEFAULT_MAX_AGE) * UNIT, supply)


def capture(vault: Vault) -> GuardSnapshot:
    return GuardSnapshot(
        collateral_net=collateral_net(vault),
        collateral_per_share=collateral_per_share_unclamped(vault),
        total_supply=vault.state.shares.total_supply,
    )


# -- Transition checks -------------------------------------------------------

def _collateral_net_violations(before: GuardSnapshot, after: GuardSnapshot) -> list[str]:
    violations = []
    if after.collateral_net < 0:
        violations.append("collateral_net_negative")
    if abs_val(after.collateral_net - before.collateral_net) > TOLERANCE:
        violations.append("collateral_net_changed")
    return violations


def _raise_if_violated(violations: list[str], operation: str) -> None:
    if violations:
        logger.error("invariant violation after %s: %s", operation, ", ".join(violations))
        raise InvariantViolation(violations)


def run_order_invariant_checks(
    vault: Vault,
    operation: Callable[[], T],
    label: str = "order",
    pool_loss: int = 0,
) -> T:
    """Run `operation` and verify conservation and share monotonicity around it.

    `pool_loss` is collateral the pool is known to give up (a close whose
    margin does not cover the keeper fee); the share price may fall by that
    much.
    """
    before = capture(vault)
    result = operation()
    after = capture(vault)

    violations = _collateral_net_violations(before, after)
    # An empty supply resets the share price to 1.0 by definition.
    if before.total_supply > 0 and after.total_supply > 0:
        floor = before.collateral_per_share - div_trunc(pool_loss * UNIT, before.total_supply)
        if after.collateral_per_share < floor - TOLERANCE:
            violations.append("collateral_per_share_decreased")
    violations.extend(check_all(vault))
    _raise_if_violated(violations, label)
    return result


def run_liquidation_invariant_checks(vault: Vault, token_id: TokenId, operation: Callable[[], T]) -> T:
    """Run a liquidation and verify the share price moved by the predicted pool credit."""
    liquidation = vault.get_module(ModuleKey.LIQUIDATION_MODULE)
    position = vault.get_position(token_id)
    price, _ = vault.oracle.get_price(DEFAULT_MAX_AGE)
    summary = perp_math.position_summary(position, vault.next_cumulative_funding(), price)
    fee = liquidation.get_liquidation_fee(position.additional_size, price)
    _, expected_credit = perp_math.liquidation_payouts(summary.margin_after_settlement, fee)

    before = capture(vault)
    result = operation()
    after = capture(vault)

    violations = _collateral_net_violations(before, after)
    if before.total_supply > 0:
        expected = before.collateral_per_share + div_trunc(expected_credit * UNIT, before.total_supply)
        if abs_val(after.collateral_per_share - expected) > TOLERANCE:
            violations.append("liquidation_collateral_per_share")
    violations.extend(check_all(vault))
    _raise_if_violated(violations, f"liquidation of {token_id}")
    return result


# -- Static invariants -------------------------------------------------------

def inv_collateral_net_non_negative(vault: Vault) -> bool:
    return collateral_net(vault) >= 0


def inv_min_liquidity(vault: Vault) -> bool:
    supply = vault.state.shares.total_supply
    return supply == 0 or supply >= MIN_LIQUIDITY


def inv_full_exit_has_no_size(vault: Vault) -> bool:
    if vault.state.shares.total_supply != 0:
        return True
    return vault.global_positions.size_opened_total == 0


def inv_sizes_sum(vault: Vault) -> bool:
    total = sum(p.additional_size for p in vault.state.positions.values())
    return total == vault.global_positions.size_opened_total


def inv_flat_book_zeroed(vault: Vault) -> bool:
    gp = vault.global_positions
    if gp.size_opened_total != 0:
        return True
    return gp.margin_deposited_total == 0 and gp.average_entry_price == 0


def inv_positions_owned(vault: Vault) -> bool:
    registry = vault.state.position_registry
    return set(vault.state.positions) == set(registry)


def inv_limit_orders_reference_positions(vault: Vault) -> bool:
    return all(token_id in vault.state.positions for token_id in vault.state.limit_orders)


def inv_share_locks_within_balance(vault: Vault) -> bool:
    return vault.state.shares.locks_within_balance()


def inv_balances_non_negative(vault: Vault) -> bool:
    return vault.state.collateral.verify_non_negative()


INVARIANT_REGISTRY: dict[str, Callable[[Vault], bool]] = {
    "collateral_net_non_negative": inv_collateral_net_non_negative,
    "min_liquidity": inv_min_liquidity,
    "full_exit_has_no_size": inv_full_exit_has_no_size,
    "sizes_sum": inv_sizes_sum,
    "flat_book_zeroed": inv_flat_book_zeroed,
    "positions_owned": inv_positions_owned,
    "limit_orders_reference_positions": inv_limit_orders_reference_positions,
    "share_locks_within_balance": inv_share_locks_within_balance,
    "balances_non_negative": inv_balances_non_negative,
}


def check_all(vault: Vault) -> list[str]:
    """Return the IDs of every violated static invariant."""
    return [name for name, check in INVARIANT_REGISTRY.items() if not check(vault)]
