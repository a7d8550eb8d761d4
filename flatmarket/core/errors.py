"""Exception types for the flatmarket ledger.

Every rejection raises a subclass of ``FlatcoinError``; the enclosing entry
point rolls the ledger back (see ``Vault.atomic``), so a raised error always
means "no state change". ``retryable`` marks failures a keeper should retry
after waiting or refreshing the price.

``InvariantViolation`` is different: it signals a ledger bug, is logged at
error level by the guard and must not be retried.
"""

from __future__ import annotations

from typing import Any


class FlatcoinError(Exception):
    """Root of every ledger rejection."""

    retryable: bool = False


# -- Kinds ---------------------------------------------------------------------

class SlippageError(FlatcoinError):
    """Price or share value moved beyond what the caller accepted."""


class CapacityError(FlatcoinError):
    """Caps, skew limits and minimum sizes."""


class MarginError(FlatcoinError):
    """Leverage and margin bounds."""


class OrderTimingError(FlatcoinError):
    """Order is outside its executability window."""

    retryable = True


class OrderError(FlatcoinError):
    """Order slot / balance / lock state does not allow the request."""


class LiquidationError(FlatcoinError):
    retryable = True


class OracleError(FlatcoinError):
    retryable = True


class AuthorizationError(FlatcoinError):
    pass


class ConfigurationError(FlatcoinError):
    """A parameter setter received a value outside its domain."""


# -- Slippage ------------------------------------------------------------------

class HighSlippage(SlippageError):
    def __init__(self, supplied: int, accepted: int) -> None:
        self.supplied = supplied
        self.accepted = accepted
        super().__init__(f"high slippage: supplied {supplied}, accepted {accepted}")


class PriceImpactDuringWithdraw(SlippageError):
    def __init__(self, before: int, after: int) -> None:
        self.before = before
        self.after = after
        super().__init__(f"collateral per share moved during withdraw: {before} -> {after}")


class PriceImpactDuringFullWithdraw(SlippageError):
    def __init__(self, leftover: int) -> None:
        self.leftover = leftover
        super().__init__(f"full withdraw left {leftover} collateral in an empty pool")



# -- Capacity ------------------------------------------------------------------

class DepositCapReached(CapacityError):
    def __init__(self, collateral_cap: int) -> None:
        self.collateral_cap = collateral_cap
        super().__init__(f"stable collateral cap reached: {collateral_cap}")


class MaxSkewReached(CapacityError):
    """`value` is the offending skew fraction, or the open size when the pool would be empty."""

    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"max skew reached: {value}")


class AmountTooSmall(CapacityError):
    def __init__(self, amount: int, min_amount: int) -> None:
        self.amount = amount
        self.min_amount = min_amount
        super().__init__(f"amount {amount} below minimum {min_amount}")


# -- Margin / leverage ---------------------------------------------------------

class MarginTooSmall(MarginError):
    def __init__(self, margin_min: int, margin: int) -> None:
        self.margin_min = margin_min
        self.margin = margin
        super().__init__(f"margin {margin} below minimum {margin_min}")


class LeverageTooLow(MarginError):
    def __init__(self, leverage_min: int, leverage: int) -> None:
        self.leverage_min = leverage_min
        self.leverage = leverage
        super().__init__(f"leverage {leverage} below minimum {leverage_min}")


class LeverageTooHigh(MarginError):
    def __init__(self, leverage_max: int, leverage: int) -> None:
        self.leverage_max = leverage_max
        self.leverage = leverage
        super().__init__(f"leverage {leverage} above maximum {leverage_max}")


class PositionCreatesBadDebt(MarginError):
    def __init__(self) -> None:
        super().__init__("position would be liquidatable immediately")


class ValueNotPositive(MarginError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} must be positive")


# -- Order timing --------------------------------------------------------------

class ExecutableTimeNotReached(OrderTimingError):
    def __init__(self, executable_time: int) -> None:
        self.executable_time = executable_time
        super().__init__(f"order executable from {executable_time}")


class OrderHasExpired(OrderTimingError):
    retryable = False

    def __init__(self, expired_at: int) -> None:
        self.expired_at = expired_at
        super().__init__(f"order expired at {expired_at}")


class OrderHasNotExpired(OrderTimingError):
    def __init__(self, expires_at: int) -> None:
        self.expires_at = expires_at
        super().__init__(f"order cancellable after {expires_at}")


class LimitOrderPriceNotInRange(OrderTimingError):
    def __init__(self, price: int, lower: int, upper: int) -> None:
        self.price = price
        self.lower = lower
        self.upper = upper
        super().__init__(f"price {price} strictly inside limit range ({lower}, {upper})")


# -- Order state ---------------------------------------------------------------

class EmptyOrder(OrderError):
    def __init__(self, account: str) -> None:
        self.account = account
        super().__init__(f"no pending order for {account}")


class OrderAlreadyExists(OrderError):
    def __init__(self, account: str) -> None:
        self.account = account
        super().__init__(f"{account} already has a pending order")


class LimitOrderInvalid(OrderError):
    def __init__(self, token_id: int) -> None:
        self.token_id = token_id
        super().__init__(f"no limit order for position {token_id}")


class InvalidThresholds(OrderError):
    def __init__(self, lower: int, upper: int) -> None:
        self.lower = lower
        self.upper = upper
        super().__init__(f"limit thresholds must satisfy lower < upper: {lower} >= {upper}")


class NotEnoughBalanceForWithdraw(OrderError):
    def __init__(self, account: str, available: int, requested: int) -> None:
        self.account = account
        self.available = available
        self.requested = requested
        super().__init__(f"{account} has {available} unlocked shares, requested {requested}")


class InsufficientBalance(OrderError):
    def __init__(self, account: str, balance: int, required: int) -> None:
        self.account = account
        self.balance = balance
        self.required = required
        super().__init__(f"{account} holds {balance} collateral, needs {required}")


class TokenLocked(OrderError):
    def __init__(self, token_id: int) -> None:
        self.token_id = token_id
        super().__init__(f"position {token_id} is locked by a pending order")


class PositionNotFound(FlatcoinError):
    def __init__(self, token_id: int) -> None:
        self.token_id = token_id
        super().__init__(f"position {token_id} does not exist")


# -- Liquidation ---------------------------------------------------------------

class CannotLiquidate(LiquidationError):
    def __init__(self, token_id: int) -> None:
        self.token_id = token_id
        super().__init__(f"position {token_id} is not liquidatable")


# -- Oracle --------------------------------------------------------------------

class PriceStale(OracleError):
    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"stale price from {source} source")


class PriceInvalid(OracleError):
    retryable = False

    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"invalid price from {source} source")


class PriceMismatch(OracleError):
    def __init__(self, diff_percent: int) -> None:
        self.diff_percent = diff_percent
        super().__init__(f"on-chain/off-chain price deviation {diff_percent} exceeds limit")


# -- Authorization -------------------------------------------------------------

class OnlyOwner(AuthorizationError):
    def __init__(self, caller: Any) -> None:
        self.caller = caller
        super().__init__(f"caller {caller!r} is not the owner")


class OnlyAuthorizedModule(AuthorizationError):
    def __init__(self, caller: Any) -> None:
        self.caller = caller
        super().__init__(f"caller {type(caller).__name__} is not an authorized module")


class NotTokenOwner(AuthorizationError):
    def __init__(self, token_id: int, account: str) -> None:
        self.token_id = token_id
        self.account = account
        super().__init__(f"{account} does not own position {token_id}")


class Paused(AuthorizationError):
    retryable = True

    def __init__(self, module_key: Any) -> None:
        self.module_key = module_key
        super().__init__(f"module {module_key} is paused")


# -- Configuration -------------------------------------------------------------

class ZeroAddress(ConfigurationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} must not be empty")


class ZeroValue(ConfigurationError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} must be non-zero")


class InvalidSkewFractionMax(ConfigurationError):
    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"invalid skew fraction max: {value}")


class InvalidMaxFundingVelocity(ConfigurationError):
    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"invalid max funding velocity: {value}")


class InvalidMaxVelocitySkew(ConfigurationError):
    def __init__(self, value: int) -> None:
        self.value = value
        super().__init__(f"invalid max velocity skew: {value}")


class InvalidLeverageCriteria(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("leverage bounds must satisfy 0 < leverage_min < leverage_max")


class InvalidFee(ConfigurationError):
    def __init__(self, fee: int) -> None:
        self.fee = fee
        super().__init__(f"invalid fee: {fee}")


class InvalidBounds(ConfigurationError):
    def __init__(self, lower: int, upper: int) -> None:
        self.lower = lower
        self.upper = upper
        super().__init__(f"invalid bounds: lower {lower}, upper {upper}")


# -- Invariants ----------------------------------------------------------------

class InvariantViolation(FlatcoinError):
    """Raised when a ledger invariant fails around an execution."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
