"""Pure perpetual-market arithmetic: skew, funding, PnL and liquidation math.

Every function is stateless and operates on 18-decimal ints (see
`decimal_math`). Sizes and margins are collateral-asset units, prices are quote
per collateral, the funding accumulator is a unitless per-size quantity.

Sign conventions:
- skew > 0 means the longs are larger than the pool (long-skewed),
- a positive funding velocity moves the accumulator up, which debits longs
  (`accrued_funding` is negative for them) and credits the pool.
"""

from __future__ import annotations

from .decimal_math import (
    SECONDS_PER_DAY,
    UNIT,
    abs_val,
    clamp,
    div_trunc,
    divide_decimal,
    mul_div,
    multiply_decimal,
)
from .types import GlobalPositions, Position, PositionSummary


# -- Skew --------------------------------------------------------------------

def market_skew(size_opened_total: int, stable_collateral_total: int) -> int:
    """Long notional minus pool collateral (collateral units)."""
    return size_opened_total - stable_collateral_total


def proportional_skew(skew: int, stable_collateral_total: int) -> int:
    """Skew as a fraction of the pool, bounded to [-1, 1]. Zero for an empty pool."""
    if stable_collateral_total <= 0:
        return 0
    return clamp(divide_decimal(skew, stable_collateral_total), -UNIT, UNIT)


def skew_fraction(size_opened_total: int, stable_collateral_total: int) -> int:
    """Long size per unit of pool collateral, used by the skew cap."""
    if stable_collateral_total <= 0:
        raise ZeroDivisionError("skew fraction undefined for an empty pool")
    return divide_decimal(size_opened_total, stable_collateral_total)


# -- Funding -----------------------------------------------------------------

def funding_rate_velocity(
    skew: int,
    stable_collateral_total: int,
    max_funding_velocity: int,
    max_velocity_skew: int,
) -> int:
    """Per-day funding velocity: ``clamp(pskew / max_velocity_skew, -1, 1) * max_funding_velocity``."""
    if stable_collateral_total <= 0:
        return 0
    pskew = proportional_skew(skew, stable_collateral_total)
    bounded = clamp(divide_decimal(pskew, max_velocity_skew), -UNIT, UNIT)
    return multiply_decimal(bounded, max_funding_velocity)


def proportional_elapsed_time(elapsed_seconds: int) -> int:
    """Elapsed time as a fraction of a day (wad)."""
    if elapsed_seconds < 0:
        raise ValueError(f"elapsed time must be non-negative: {elapsed_seconds}")
    return elapsed_seconds * UNIT // SECONDS_PER_DAY


def unrecorded_funding(velocity: int, elapsed_seconds: int) -> int:
    """Accumulator increment for `elapsed_seconds` at a constant velocity."""
    return multiply_decimal(velocity, proportional_elapsed_time(elapsed_seconds))


def next_cumulative_funding(cumulative_funding: int, velocity: int, elapsed_seconds: int) -> int:
    return cumulative_funding + unrecorded_funding(velocity, elapsed_seconds)


def accrued_funding(additional_size: int, entry_cumulative_funding: int, current_cumulative_funding: int) -> int:
    """Funding owed to (positive) or by (negative) a long of `additional_size`."""
    return multiply_decimal(additional_size, entry_cumulative_funding - current_cumulative_funding)


def accrued_funding_total(global_positions: GlobalPositions, current_cumulative_funding: int) -> int:
    """Funding owed to all longs since the last global settlement."""
    return accrued_funding(
        global_positions.size_opened_total,
        global_positions.last_cumulative_funding,
        current_cumulative_funding,
    )


# -- PnL ---------------------------------------------------------------------

def profit_loss(additional_size: int, last_price: int, price: int) -> int:
    """Collateral-denominated PnL: ``size * (price - last_price) / price``."""
    if price <= 0:
        raise ValueError(f"price must be positive: {price}")
    return div_trunc(additional_size * (price - last_price), price)


def profit_loss_total(global_positions: GlobalPositions, price: int) -> int:
    """Aggregate unrealised PnL of every long at `price` (via the average entry price)."""
    if global_positions.size_opened_total == 0:
        return 0
    return profit_loss(global_positions.size_opened_total, global_positions.average_entry_price, price)


def funding_adjusted_long_pnl_total(
    global_positions: GlobalPositions,
    price: int,
    next_cumulative: int,
) -> int:
    """Unrealised PnL plus unsettled funding owed to the long side."""
    return profit_loss_total(global_positions, price) + accrued_funding_total(global_positions, next_cumulative)


def margin_after_settlement(margin_deposited: int, pnl: int, funding: int) -> int:
    """May be negative (bad debt)."""
    return margin_deposited + pnl + funding


def position_summary(position: Position, next_cumulative: int, price: int) -> PositionSummary:
    pnl = profit_loss(position.additional_size, position.last_price, price)
    funding = accrued_funding(position.additional_size, position.entry_cumulative_funding, next_cumulative)
    return PositionSummary(
        profit_loss=pnl,
        accrued_funding=funding,
        margin_after_settlement=margin_after_settlement(position.margin_deposited, pnl, funding),
    )


# -- Fees / leverage ---------------------------------------------------------

def trade_fee(size: int, fee_rate: int) -> int:
    return multiply_decimal(abs_val(size), fee_rate)


def leverage(margin: int, additional_size: int) -> int:
    """Size per unit of margin (wad)."""
    if margin <= 0:
        raise ValueError(f"margin must be positive: {margin}")
    return divide_decimal(additional_size, margin)


# -- Liquidation -------------------------------------------------------------

def liquidation_fee(
    additional_size: int,
    liquidation_fee_ratio: int,
    liquidation_fee_lower_bound: int,
    liquidation_fee_upper_bound: int,
    price: int,
) -> int:
    """Keeper reward in collateral, clamped in quote terms to the configured bounds."""
    if price <= 0:
        raise ValueError(f"price must be positive: {price}")
    proportional_fee = multiply_decimal(additional_size, liquidation_fee_ratio)
    fee_quote = multiply_decimal(proportional_fee, price)
    if fee_quote > liquidation_fee_upper_bound:
        return divide_decimal(liquidation_fee_upper_bound, price)
    if fee_quote < liquidation_fee_lower_bound:
        return divide_decimal(liquidation_fee_lower_bound, price)
    return proportional_fee


def liquidation_margin(
    additional_size: int,
    liquidation_fee_ratio: int,
    liquidation_buffer_ratio: int,
    liquidation_fee_lower_bound: int,
    liquidation_fee_upper_bound: int,
    price: int,
) -> int:
    """Margin at or below which a position of `additional_size` is liquidatable."""
    fee = liquidation_fee(
        additional_size, liquidation_fee_ratio,
        liquidation_fee_lower_bound, liquidation_fee_upper_bound, price,
    )
    return fee + multiply_decimal(additional_size, liquidation_buffer_ratio)


def can_liquidate(margin_after: int, liq_margin: int) -> bool:
    return margin_after <= liq_margin


def approx_liquidation_price(position: Position, next_cumulative: int, liq_margin: int) -> int:
    """Price at which ``margin_after_settlement == liquidation_margin``.

    Funding and the liquidation margin are held at their values for the
    evaluation instant, so this is a point estimate rather than a fixed point
    over price-dependent fees and skew. Solving
    ``margin + funding + size * (P - L) / P = liq_margin`` for ``P`` gives
    ``P = size * L / (size + margin + funding - liq_margin)``.

    Returns 0 for an empty position, and 0 when no positive price satisfies
    the equation (the position is liquidatable at every price).
    """
    if position.additional_size == 0:
        return 0
    funding = accrued_funding(position.additional_size, position.entry_cumulative_funding, next_cumulative)
    denominator = position.additional_size + position.margin_deposited + funding - liq_margin
    if denominator <= 0:
        return 0
    return mul_div(position.additional_size, position.last_price, denominator)


def liquidation_payouts(margin_after: int, fee: int) -> tuple[int, int]:
    """``(keeper_paid, pool_credit)`` of a liquidation; `pool_credit` is negative for bad debt."""
    if margin_after > fee:
        return fee, margin_after - fee
    if margin_after > 0:
        return margin_after, 0
    return 0, margin_after


def close_payouts(margin_after: int, pnl: int, trade_fee: int, keeper_fee: int) -> tuple[int, int]:
    """``(owner_paid, stable_delta)`` of a close.

    Fees come first out of the settled margin. If it cannot cover them the
    owner gets nothing, the trade fee is forgone and the pool still pays the
    keeper. `stable_delta` is the change of ``stable_collateral_total``.
    """
    payout = max(0, margin_after - trade_fee - keeper_fee)
    return payout, margin_after - pnl - keeper_fee - payout


def close_pool_loss(margin_after: int, keeper_fee: int) -> int:
    """How far a close lowers the pool's marked value (non-zero only when margin < keeper fee)."""
    return max(0, keeper_fee - margin_after)
