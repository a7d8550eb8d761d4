"""Global ledger of a flatmarket: collateral, aggregate positions and funding.

All mutable ledger state lives in one ``LedgerState`` owned by the ``Vault``.
Components (stable/leverage/order/liquidation modules) are registered under a
``ModuleKey`` and pass themselves as ``caller`` to every mutation primitive;
an unregistered caller is rejected with ``OnlyAuthorizedModule``.

Entry points run inside ``Vault.atomic()``: the state is snapshotted on entry
and restored if any exception escapes, so a rejected call never leaves a
partial mutation behind. The clock and the registered collaborators (oracle,
keeper fee, points) are outside the snapshot.

Accounting identity maintained by every primitive sequence:

    collateral_balance() == stable_collateral_total + margin_deposited_total
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Set

from ..state.balances import VAULT_ACCOUNT, BalanceTable
from ..state.clock import BlockClock
from ..state.lockable import LockablePositionRegistry, LockableShareTable
from . import perp_math
from .decimal_math import UNIT, div_trunc, from_wad
from .errors import (
    DepositCapReached,
    InvalidMaxFundingVelocity,
    InvalidMaxVelocitySkew,
    InvalidSkewFractionMax,
    MaxSkewReached,
    OnlyAuthorizedModule,
    OnlyOwner,
    Paused,
    PositionNotFound,
    ZeroAddress,
    ZeroValue,
)
from .types import (
    LEDGER_MODULES,
    Account,
    Event,
    GlobalPositions,
    LedgerEvent,
    LimitOrder,
    ModuleKey,
    Order,
    Position,
    TokenId,
    VaultSummary,
)

logger = logging.getLogger(__name__)

# skew_fraction_max below 1.0 would cap longs below the pool size
MIN_SKEW_FRACTION_MAX: int = UNIT


@dataclass
class LedgerState:
    """Every piece of mutable ledger state; deep-copied by ``Vault.atomic()``."""

    collateral: BalanceTable = field(default_factory=BalanceTable)
    shares: LockableShareTable = field(default_factory=LockableShareTable)
    position_registry: LockablePositionRegistry = field(default_factory=LockablePositionRegistry)
    positions: Dict[TokenId, Position] = field(default_factory=dict)
    global_positions: GlobalPositions = field(default_factory=GlobalPositions)
    stable_collateral_total: int = 0
    cumulative_funding: int = 0
    last_recomputed_funding_timestamp: int = 0
    orders: Dict[Account, Order] = field(default_factory=dict)
    limit_orders: Dict[TokenId, LimitOrder] = field(default_factory=dict)
    events: List[LedgerEvent] = field(default_factory=list)


class Vault:
    """The global ledger and module registry."""

    def __init__(
        self,
        owner: Account,
        clock: BlockClock,
        *,
        max_funding_velocity: int,
        max_velocity_skew: int,
        skew_fraction_max: int,
        stable_collateral_cap: int,
        min_executability_age: int,
        max_executability_age: int,
    ) -> None:
        if not owner:
            raise ZeroAddress("owner")
        self.owner = owner
        self.clock = clock
        self.state = LedgerState(last_recomputed_funding_timestamp=clock.now())
        self._modules: Dict[ModuleKey, Any] = {}
        self._paused: Set[ModuleKey] = set()
        self._atomic_depth = 0

        _validate_max_funding_velocity(max_funding_velocity)
        _validate_max_velocity_skew(max_velocity_skew)
        _validate_skew_fraction_max(skew_fraction_max)
        _validate_stable_collateral_cap(stable_collateral_cap)
        _validate_executability_age(min_executability_age, max_executability_age)
        self.max_funding_velocity = max_funding_velocity
        self.max_velocity_skew = max_velocity_skew
        self.skew_fraction_max = skew_fraction_max
        self.stable_collateral_cap = stable_collateral_cap
        self.min_executability_age = min_executability_age
        self.max_executability_age = max_executability_age

    # -- Atomicity ---------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[LedgerState]:
        """Run a block against the ledger; restore the entry state if it raises.

        Nested blocks join the outermost one.
        """
        if self._atomic_depth:
            yield self.state
            return
        snapshot = copy.deepcopy(self.state)
        self._atomic_depth += 1
        try:
            yield self.state
        except Exception:
            self.state = snapshot
            raise
        finally:
            self._atomic_depth -= 1

    # -- Registry / authorization ------------------------------------------------

    def only_owner(self, sender: Account) -> None:
        if sender != self.owner:
            raise OnlyOwner(sender)

    def add_authorized_module(self, sender: Account, module_key: ModuleKey, module: Any) -> None:
        self.only_owner(sender)
        if module is None:
            raise ZeroAddress(module_key.value)
        self._modules[module_key] = module
        logger.info("authorized module %s (%s)", module_key.value, type(module).__name__)

    def remove_authorized_module(self, sender: Account, module_key: ModuleKey) -> None:
        self.only_owner(sender)
        self._modules.pop(module_key, None)
        logger.info("removed module %s", module_key.value)

    def get_module(self, module_key: ModuleKey) -> Any:
        try:
            return self._modules[module_key]
        except KeyError:
            raise ZeroAddress(module_key.value) from None

    def find_module(self, module_key: ModuleKey) -> Optional[Any]:
        return self._modules.get(module_key)

    def is_authorized(self, caller: Any) -> bool:
        """True if `caller` is a registered ledger component.

        Collaborators (oracle, keeper fee, points) are registered for lookup
        only and never pass.
        """
        return any(
            self._modules.get(key) is caller for key in LEDGER_MODULES if key in self._modules
        )

    def require_authorized(self, caller: Any) -> None:
        if not self.is_authorized(caller):
            raise OnlyAuthorizedModule(caller)

    @property
    def oracle(self) -> Any:
        return self.get_module(ModuleKey.ORACLE_MODULE)

    # -- Pause flags -------------------------------------------------------------

    def pause(self, sender: Account, module_key: ModuleKey) -> None:
        self.only_owner(sender)
        self._paused.add(module_key)
        logger.info("paused %s", module_key.value)

    def unpause(self, sender: Account, module_key: ModuleKey) -> None:
        self.only_owner(sender)
        self._paused.discard(module_key)
        logger.info("unpaused %s", module_key.value)

    def is_paused(self, module_key: ModuleKey) -> bool:
        return module_key in self._paused

    def require_not_paused(self, module_key: ModuleKey) -> None:
        if module_key in self._paused:
            raise Paused(module_key.value)

    # -- Events ------------------------------------------------------------------

    def emit(self, event: Event, **fields: Any) -> None:
        self.state.events.append(LedgerEvent(event=event, timestamp=self.clock.now(), fields=fields))

    # -- Views -------------------------------------------------------------------

    @property
    def stable_collateral_total(self) -> int:
        return self.state.stable_collateral_total

    @property
    def global_positions(self) -> GlobalPositions:
        return self.state.global_positions

    @property
    def cumulative_funding(self) -> int:
        return self.state.cumulative_funding

    def collateral_balance(self) -> int:
        """Collateral actually held by the vault account."""
        return self.state.collateral.get(VAULT_ACCOUNT)

    def get_position(self, token_id: TokenId) -> Position:
        try:
            return self.state.positions[token_id]
        except KeyError:
            raise PositionNotFound(token_id) from None

    def get_current_skew(self) -> int:
        return perp_math.market_skew(
            self.state.global_positions.size_opened_total,
            self.state.stable_collateral_total,
        )

    def get_current_funding_rate(self) -> int:
        """Per-day funding velocity at the current skew."""
        return perp_math.funding_rate_velocity(
            self.get_current_skew(),
            self.state.stable_collateral_total,
            self.max_funding_velocity,
            self.max_velocity_skew,
        )

    def next_cumulative_funding(self) -> int:
        """Funding accumulator as it would be after settling now."""
        elapsed = self.clock.now() - self.state.last_recomputed_funding_timestamp
        return perp_math.next_cumulative_funding(
            self.state.cumulative_funding, self.get_current_funding_rate(), elapsed,
        )

    def get_vault_summary(self) -> VaultSummary:
        return VaultSummary(
            stable_collateral_total=self.state.stable_collateral_total,
            global_positions=self.state.global_positions,
            cumulative_funding=self.state.cumulative_funding,
            last_recomputed_funding_timestamp=self.state.last_recomputed_funding_timestamp,
            funding_rate_velocity=self.get_current_funding_rate(),
            market_skew=self.get_current_skew(),
            collateral_balance=self.collateral_balance(),
        )

    # -- Funding -----------------------------------------------------------------

    def settle_funding_fees(self) -> int:
        """Advance the accumulator to now and move the net funding between pool and longs.

        Returns the funding credited to the long side (negative when longs pay).
        A second call at the same timestamp is a no-op.
        """
        s = self.state
        now = self.clock.now()
        elapsed = now - s.last_recomputed_funding_timestamp
        if elapsed == 0:
            return 0
        new_cumulative = self.next_cumulative_funding()
        funding_to_longs = perp_math.accrued_funding_total(s.global_positions, new_cumulative)

        s.global_positions = replace(
            s.global_positions,
            margin_deposited_total=s.global_positions.margin_deposited_total + funding_to_longs,
            last_cumulative_funding=new_cumulative,
        )
        s.stable_collateral_total -= funding_to_longs
        s.cumulative_funding = new_cumulative
        s.last_recomputed_funding_timestamp = now

        if funding_to_longs:
            self.emit(Event.FUNDING_SETTLED, funding_to_longs=funding_to_longs, cumulative_funding=new_cumulative)
        logger.debug(
            "settled funding over %ds: %s to longs, cumulative %s",
            elapsed, from_wad(funding_to_longs), from_wad(new_cumulative),
        )
        return funding_to_longs

    # -- Limits ------------------------------------------------------------------

    def check_skew_max(self, size_increase: int, stable_collateral_change: int) -> None:
        """Reject if ``(size_opened_total + size_increase) / (stable_total + change)`` exceeds the cap."""
        long_total = self.state.global_positions.size_opened_total + size_increase
        pool_total = self.state.stable_collateral_total + stable_collateral_change
        if long_total <= 0:
            return
        if pool_total <= 0:
            raise MaxSkewReached(long_total)
        fraction = perp_math.skew_fraction(long_total, pool_total)
        if fraction > self.skew_fraction_max:
            raise MaxSkewReached(fraction)

    def check_collateral_cap(self, deposit_amount: int) -> None:
        if self.state.stable_collateral_total + deposit_amount > self.stable_collateral_cap:
            raise DepositCapReached(self.stable_collateral_cap)

    # -- Mutation primitives (authorized modules only) ---------------------------

    def update_stable_collateral_total(self, caller: Any, delta: int) -> None:
        self.require_authorized(caller)
        self.state.stable_collateral_total += delta

    def update_global_position_data(
        self,
        caller: Any,
        price: int,
        margin_delta: int,
        additional_size_delta: int,
    ) -> None:
        """Apply a margin/size change; `price` weights the average entry price.

        Opening size enters at the fill price, closing size leaves at the
        position's `last_price`. Once no size is open, whatever rounding
        residue is left in the margin total belongs to the pool.
        """
        self.require_authorized(caller)
        s = self.state
        gp = s.global_positions
        new_size = gp.size_opened_total + additional_size_delta
        if new_size < 0:
            raise ValueError(f"size_opened_total would go negative: {new_size}")
        if new_size == 0:
            average_price = 0
        else:
            weighted = gp.size_opened_total * gp.average_entry_price + additional_size_delta * price
            average_price = max(0, div_trunc(weighted, new_size))
        new_margin = gp.margin_deposited_total + margin_delta
        if new_size == 0 and new_margin != 0:
            logger.debug("folding margin residue %d into stable collateral", new_margin)
            s.stable_collateral_total += new_margin
            new_margin = 0
        s.global_positions = replace(
            gp,
            margin_deposited_total=new_margin,
            size_opened_total=new_size,
            average_entry_price=average_price,
        )

    def set_position(self, caller: Any, token_id: TokenId, position: Position) -> None:
        self.require_authorized(caller)
        self.state.positions[token_id] = position

    def delete_position(self, caller: Any, token_id: TokenId) -> None:
        self.require_authorized(caller)
        if self.state.positions.pop(token_id, None) is None:
            raise PositionNotFound(token_id)

    def transfer_collateral(self, caller: Any, src: Account, dst: Account, amount: int) -> None:
        """Move collateral between ledger accounts (vault, escrow, users)."""
        self.require_authorized(caller)
        self.state.collateral.transfer(src, dst, amount)

    # -- Owner setters -----------------------------------------------------------

    def _parameter_set(self, name: str, value: Any) -> None:
        self.emit(Event.PARAMETER_SET, name=name, value=value)
        logger.info("vault parameter %s set to %s", name, value)

    def set_max_funding_velocity(self, sender: Account, value: int) -> None:
        self.only_owner(sender)
        _validate_max_funding_velocity(value)
        with self.atomic():
            self.settle_funding_fees()
            self.max_funding_velocity = value
            self._parameter_set("maxFundingVelocity", value)

    def set_max_velocity_skew(self, sender: Account, value: int) -> None:
        self.only_owner(sender)
        _validate_max_velocity_skew(value)
        with self.atomic():
            self.settle_funding_fees()
            self.max_velocity_skew = value
            self._parameter_set("maxVelocitySkew", value)

    def set_skew_fraction_max(self, sender: Account, value: int) -> None:
        self.only_owner(sender)
        _validate_skew_fraction_max(value)
        self.skew_fraction_max = value
        self._parameter_set("skewFractionMax", value)

    def set_stable_collateral_cap(self, sender: Account, value: int) -> None:
        self.only_owner(sender)
        _validate_stable_collateral_cap(value)
        self.stable_collateral_cap = value
        self._parameter_set("stableCollateralCap", value)

    def set_executability_age(self, sender: Account, min_age: int, max_age: int) -> None:
        self.only_owner(sender)
        _validate_executability_age(min_age, max_age)
        self.min_executability_age = min_age
        self.max_executability_age = max_age
        self._parameter_set("executabilityAge", (min_age, max_age))

    def __repr__(self) -> str:
        return (
            f"Vault(stable={self.state.stable_collateral_total}, "
            f"size={self.state.global_positions.size_opened_total}, "
            f"modules={sorted(k.value for k in self._modules)})"
        )


# -- Parameter validation -----------------------------------------------------

def _validate_max_funding_velocity(value: int) -> None:
    if value < 0:
        raise InvalidMaxFundingVelocity(value)


def _validate_max_velocity_skew(value: int) -> None:
    if value <= 0 or value > UNIT:
        raise InvalidMaxVelocitySkew(value)


def _validate_skew_fraction_max(value: int) -> None:
    if value < MIN_SKEW_FRACTION_MAX:
        raise InvalidSkewFractionMax(value)


def _validate_stable_collateral_cap(value: int) -> None:
    if value <= 0:
        raise ZeroValue("stableCollateralCap")


def _validate_executability_age(min_age: int, max_age: int) -> None:
    if min_age == 0:
        raise ZeroValue("minExecutabilityAge")
    if max_age == 0:
        raise ZeroValue("maxExecutabilityAge")
