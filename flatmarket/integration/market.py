"""
Market wiring.

`deploy_market()` builds every component of one market from a
`MarketConfig`, registers them with the vault under their module keys and
returns a `Market` handle holding them all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.decimal_math import from_wad
from ..core.delayed_order import DelayedOrderModule
from ..core.invariants import check_all
from ..core.leverage_module import LeverageModule
from ..core.limit_order import LimitOrderModule
from ..core.liquidation import LiquidationModule
from ..core.stable_module import StableModule
from ..core.types import Account, ModuleKey
from ..core.vault import Vault
from ..state.clock import BlockClock
from .config import MarketConfig
from .keeper_fee import KeeperFee
from .oracle import OracleModule, PriceUpdate
from .points import PointsModule

logger = logging.getLogger(__name__)


@dataclass
class Market:
    """Handle on a deployed market."""

    config: MarketConfig
    owner: Account
    clock: BlockClock
    vault: Vault
    oracle: OracleModule
    keeper_fee: KeeperFee
    stable: StableModule
    leverage: LeverageModule
    delayed_orders: DelayedOrderModule
    limit_orders: LimitOrderModule
    liquidation: LiquidationModule
    points: Optional[PointsModule] = None

    def fund(self, account: Account, amount: int) -> None:
        """Credit wallet collateral to `account` (faucet for simulations and tests)."""
        self.vault.state.collateral.add(account, amount)

    def wallet(self, account: Account) -> int:
        return self.vault.state.collateral.get(account)

    def set_price(self, price: int) -> None:
        """Publish `price` on both feeds at the current time."""
        self.oracle.set_onchain_price(price, self.clock.now())
        self.oracle.update_price(self.price_update(price))

    def price_update(self, price: int) -> PriceUpdate:
        """Off-chain update stamped now, as a keeper would attach to an execution."""
        return PriceUpdate(price=price, timestamp=self.clock.now())

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly snapshot of the vault and the share pool."""
        vault = self.vault
        gp = vault.global_positions
        return {
            "timestamp": self.clock.now(),
            "collateral_balance": from_wad(vault.collateral_balance()),
            "stable_collateral_total": from_wad(vault.stable_collateral_total),
            "margin_deposited_total": from_wad(gp.margin_deposited_total),
            "size_opened_total": from_wad(gp.size_opened_total),
            "average_entry_price": from_wad(gp.average_entry_price),
            "cumulative_funding": from_wad(vault.cumulative_funding),
            "share_supply": from_wad(self.stable.total_supply),
            "collateral_per_share": from_wad(self.stable.stable_collateral_per_share()),
            "open_positions": len(vault.state.position_registry),
            "violations": check_all(vault),
        }


def deploy_market(
    config: Optional[MarketConfig] = None,
    owner: Account = "owner",
    clock: Optional[BlockClock] = None,
) -> Market:
    """Build and wire a complete market."""
    config = config or MarketConfig()
    clock = clock or BlockClock()

    vc = config.vault
    vault = Vault(
        owner,
        clock,
        max_funding_velocity=vc.max_funding_velocity,
        max_velocity_skew=vc.max_velocity_skew,
        skew_fraction_max=vc.skew_fraction_max,
        stable_collateral_cap=vc.stable_collateral_cap,
        min_executability_age=vc.min_executability_age,
        max_executability_age=vc.max_executability_age,
    )
    oracle = OracleModule(
        clock,
        max_diff_percent=config.oracle.max_diff_percent,
        onchain_price_expiry=config.oracle.onchain_price_expiry,
        offchain_max_price_age=config.oracle.offchain_max_price_age,
    )
    kc = config.keeper_fee
    keeper_fee = KeeperFee(
        oracle,
        execution_cost_usd=kc.execution_cost_usd,
        profit_margin_usd=kc.profit_margin_usd,
        profit_margin_percentage=kc.profit_margin_percentage,
        keeper_fee_lower_bound=kc.keeper_fee_lower_bound,
        keeper_fee_upper_bound=kc.keeper_fee_upper_bound,
    )
    stable = StableModule(vault, stable_withdraw_fee=config.stable.stable_withdraw_fee)
    lc = config.leverage
    leverage = LeverageModule(
        vault,
        leverage_trading_fee=lc.leverage_trading_fee,
        margin_min=lc.margin_min,
        leverage_min=lc.leverage_min,
        leverage_max=lc.leverage_max,
    )
    delayed_orders = DelayedOrderModule(vault, min_deposit_amount=config.stable.min_deposit_amount)
    limit_orders = LimitOrderModule(vault)
    qc = config.liquidation
    liquidation = LiquidationModule(
        vault,
        liquidation_fee_ratio=qc.liquidation_fee_ratio,
        liquidation_buffer_ratio=qc.liquidation_buffer_ratio,
        liquidation_fee_lower_bound=qc.liquidation_fee_lower_bound,
        liquidation_fee_upper_bound=qc.liquidation_fee_upper_bound,
    )
    points = None
    if config.points.enabled:
        points = PointsModule(config.points.points_per_deposit, config.points.points_per_size)

    modules = {
        ModuleKey.ORACLE_MODULE: oracle,
        ModuleKey.KEEPER_FEE: keeper_fee,
        ModuleKey.STABLE_MODULE: stable,
        ModuleKey.LEVERAGE_MODULE: leverage,
        ModuleKey.DELAYED_ORDER: delayed_orders,
        ModuleKey.LIMIT_ORDER: limit_orders,
        ModuleKey.LIQUIDATION_MODULE: liquidation,
    }
    if points is not None:
        modules[ModuleKey.POINTS_MODULE] = points
    for key, module in modules.items():
        vault.add_authorized_module(owner, key, module)

    logger.info("deployed market owned by %s with %d modules", owner, len(modules))
    return Market(
        config=config,
        owner=owner,
        clock=clock,
        vault=vault,
        oracle=oracle,
        keeper_fee=keeper_fee,
        stable=stable,
        leverage=leverage,
        delayed_orders=delayed_orders,
        limit_orders=limit_orders,
        liquidation=liquidation,
        points=points,
    )
