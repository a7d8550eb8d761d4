"""
Core flatmarket ledger: fixed-point math, perp math, domain types and errors.

Stateful components live in their own modules (`vault`, `stable_module`,
`leverage_module`, `delayed_order`, `limit_order`, `liquidation`,
`invariants`) and are wired together by `flatmarket.integration.market`.
"""

from .decimal_math import UNIT, div_trunc, divide_decimal, from_wad, multiply_decimal, to_wad
from .errors import FlatcoinError, InvariantViolation
from .types import (
    DEFAULT_MAX_AGE,
    Event,
    GlobalPositions,
    LimitOrder,
    LiquidationResult,
    ModuleKey,
    Order,
    OrderExecuted,
    OrderType,
    Position,
    PositionSummary,
    VaultSummary,
)

__all__ = [
    "DEFAULT_MAX_AGE",
    "Event",
    "FlatcoinError",
    "GlobalPositions",
    "InvariantViolation",
    "LimitOrder",
    "LiquidationResult",
    "ModuleKey",
    "Order",
    "OrderExecuted",
    "OrderType",
    "Position",
    "PositionSummary",
    "UNIT",
    "VaultSummary",
    "div_trunc",
    "divide_decimal",
    "from_wad",
    "multiply_decimal",
    "to_wad",
]
