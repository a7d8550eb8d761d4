"""Data types for the flatmarket ledger.

Records are frozen dataclasses; the ledger replaces them wholesale on update
(`dataclasses.replace()`), never mutates them in place.

Units/conventions:
- all amounts, sizes, prices and rates are 18-decimal ints ("wad"),
- `margin_deposited` and the global margin total are signed,
- timestamps are integer seconds from the block clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Mapping, Union


Account = str
TokenId = int

# Oracle max age that disables the staleness check (u32 max).
DEFAULT_MAX_AGE: int = 2**32 - 1


def _require_int(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")


def _require_non_negative(name: str, value: Any) -> None:
    _require_int(name, value)
    if value < 0:
        raise ValueError(f"{name} must be non-negative: {value}")


@unique
class ModuleKey(Enum):
    """Registry keys of the vault's components and collaborators."""
    STABLE_MODULE = "stableModule"
    LEVERAGE_MODULE = "leverageModule"
    ORACLE_MODULE = "oracleModule"
    DELAYED_ORDER = "delayedOrder"
    LIMIT_ORDER = "limitOrder"
    LIQUIDATION_MODULE = "liquidationModule"
    KEEPER_FEE = "keeperFee"
    POINTS_MODULE = "pointsModule"


# Components allowed to call the vault's mutation primitives
LEDGER_MODULES: frozenset = frozenset({
    ModuleKey.STABLE_MODULE,
    ModuleKey.LEVERAGE_MODULE,
    ModuleKey.DELAYED_ORDER,
    ModuleKey.LIMIT_ORDER,
    ModuleKey.LIQUIDATION_MODULE,
})


@unique
class OrderType(Enum):
    NONE = 0
    STABLE_DEPOSIT = 1
    STABLE_WITHDRAW = 2
    LEVERAGE_OPEN = 3
    LEVERAGE_CLOSE = 4
    LEVERAGE_ADJUST = 5
    LIMIT_CLOSE = 6


@unique
class Event(Enum):
    """One member per ledger event kind."""
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    LEVERAGE_OPEN = "LeverageOpen"
    LEVERAGE_ADJUST = "LeverageAdjust"
    LEVERAGE_CLOSE = "LeverageClose"
    ORDER_ANNOUNCED = "OrderAnnounced"
    ORDER_EXECUTED = "OrderExecuted"
    ORDER_CANCELLED = "OrderCancelled"
    LIMIT_ORDER_ANNOUNCED = "LimitOrderAnnounced"
    LIMIT_ORDER_CANCELLED = "LimitOrderCancelled"
    LIMIT_ORDER_EXECUTED = "LimitOrderExecuted"
    POSITION_LIQUIDATED = "PositionLiquidated"
    FUNDING_SETTLED = "FundingSettled"
    PARAMETER_SET = "ParameterSet"


@dataclass(frozen=True)
class Position:
    """A leveraged long, owned through the position registry."""

    last_price: int
    margin_deposited: int
    additional_size: int
    entry_cumulative_funding: int

    def __post_init__(self) -> None:
        _require_int("last_price", self.last_price)
        _require_int("margin_deposited", self.margin_deposited)
        _require_non_negative("additional_size", self.additional_size)
        _require_int("entry_cumulative_funding", self.entry_cumulative_funding)
        if self.last_price <= 0:
            raise ValueError(f"last_price must be positive: {self.last_price}")


@dataclass(frozen=True)
class GlobalPositions:
    """Aggregate of every open position."""

    margin_deposited_total: int = 0
    size_opened_total: int = 0
    average_entry_price: int = 0
    last_cumulative_funding: int = 0

    def __post_init__(self) -> None:
        _require_int("margin_deposited_total", self.margin_deposited_total)
        _require_non_negative("size_opened_total", self.size_opened_total)
        _require_non_negative("average_entry_price", self.average_entry_price)
        _require_int("last_cumulative_funding", self.last_cumulative_funding)


@dataclass(frozen=True)
class PositionSummary:
    profit_loss: int
    accrued_funding: int
    margin_after_settlement: int


@dataclass(frozen=True)
class VaultSummary:
    stable_collateral_total: int
    global_positions: GlobalPositions
    cumulative_funding: int
    last_recomputed_funding_timestamp: int
    funding_rate_velocity: int
    market_skew: int
    collateral_balance: int


# -- Order payloads ------------------------------------------------------------

@dataclass(frozen=True)
class AnnouncedStableDeposit:
    deposit_amount: int
    min_amount_out: int


@dataclass(frozen=True)
class AnnouncedStableWithdraw:
    withdraw_amount: int
    min_amount_out: int


@dataclass(frozen=True)
class AnnouncedLeverageOpen:
    margin_amount: int
    additional_size: int
    max_fill_price: int
    trade_fee: int


@dataclass(frozen=True)
class AnnouncedLeverageAdjust:
    token_id: TokenId
    margin_adjustment: int
    additional_size_adjustment: int
    fill_price: int
    trade_fee: int


@dataclass(frozen=True)
class AnnouncedLeverageClose:
    token_id: TokenId
    min_fill_price: int
    trade_fee: int


OrderData = Union[
    AnnouncedStableDeposit,
    AnnouncedStableWithdraw,
    AnnouncedLeverageOpen,
    AnnouncedLeverageAdjust,
    AnnouncedLeverageClose,
]

_PAYLOAD_TYPES: dict[OrderType, type] = {
    OrderType.STABLE_DEPOSIT: AnnouncedStableDeposit,
    OrderType.STABLE_WITHDRAW: AnnouncedStableWithdraw,
    OrderType.LEVERAGE_OPEN: AnnouncedLeverageOpen,
    OrderType.LEVERAGE_ADJUST: AnnouncedLeverageAdjust,
    OrderType.LEVERAGE_CLOSE: AnnouncedLeverageClose,
}


@dataclass(frozen=True)
class Order:
    """The single delayed-order slot of an account.

    `escrowed` is the collateral held by the order escrow on the account's
    behalf (refunded on cancel, released on execution).
    """

    order_type: OrderType
    keeper_fee: int
    executable_at_time: int
    order_data: OrderData
    escrowed: int = 0

    def __post_init__(self) -> None:
        if self.order_type in (OrderType.NONE, OrderType.LIMIT_CLOSE):
            raise ValueError(f"not a delayed order type: {self.order_type}")
        expected = _PAYLOAD_TYPES[self.order_type]
        if not isinstance(self.order_data, expected):
            raise TypeError(
                f"{self.order_type.name} order needs {expected.__name__}, got {type(self.order_data).__name__}"
            )
        _require_non_negative("keeper_fee", self.keeper_fee)
        _require_non_negative("executable_at_time", self.executable_at_time)
        _require_non_negative("escrowed", self.escrowed)

    @property
    def token_id(self) -> TokenId | None:
        """Position referenced by an adjust/close order, else None."""
        return getattr(self.order_data, "token_id", None)


@dataclass(frozen=True)
class LimitOrder:
    """Persistent conditional close attached to one position."""

    token_id: TokenId
    price_lower_threshold: int
    price_upper_threshold: int
    executable_at_time: int

    def __post_init__(self) -> None:
        _require_non_negative("price_lower_threshold", self.price_lower_threshold)
        _require_non_negative("price_upper_threshold", self.price_upper_threshold)
        _require_non_negative("executable_at_time", self.executable_at_time)

    def in_range(self, price: int) -> bool:
        return price <= self.price_lower_threshold or price >= self.price_upper_threshold


@dataclass(frozen=True)
class OrderExecuted:
    """Receipt returned by a successful order execution.

    `amount` is order-type specific: shares minted (deposit), collateral paid
    out (withdraw/close), new margin (open/adjust).
    """

    account: Account
    order_type: OrderType
    keeper: Account
    keeper_fee: int
    amount: int
    token_id: TokenId | None = None


@dataclass(frozen=True)
class LiquidationResult:
    token_id: TokenId
    keeper: Account
    liquidation_fee: int
    margin_after_settlement: int
    pool_credit: int


@dataclass(frozen=True)
class LedgerEvent:
    event: Event
    timestamp: int
    fields: Mapping[str, Any] = field(default_factory=dict)
