"""Tests for flatmarket/core/liquidation.py: eligibility, waterfall and races."""

import pytest

from flatmarket.core import perp_math
from flatmarket.core.decimal_math import UNIT, to_wad
from flatmarket.core.errors import CannotLiquidate, InvalidBounds, InvalidFee, Paused
from flatmarket.core.invariants import check_all
from flatmarket.core.types import Event, ModuleKey
from tests.market_fixtures import (
    KEEPER,
    KEEPER_FEE,
    LP,
    OWNER,
    TRADER,
    deposit,
    make_market,
    move_price,
    open_position,
)


def _market_with_position():
    market = make_market()
    deposit(market, LP, 100 * UNIT)
    token_id = open_position(market, TRADER, UNIT, 10 * UNIT)
    return market, token_id


def _identity_holds(market) -> bool:
    vault = market.vault
    return vault.collateral_balance() == vault.stable_collateral_total + vault.global_positions.margin_deposited_total


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

class TestEligibility:
    def test_fee_and_margin(self):
        market, _ = _market_with_position()
        assert market.liquidation.get_liquidation_fee(10 * UNIT) == to_wad("0.05")
        assert market.liquidation.get_liquidation_margin(10 * UNIT) == to_wad("0.1")

    def test_healthy_position(self):
        market, token_id = _market_with_position()
        assert not market.liquidation.can_liquidate(token_id)

    def test_boundary_around_liquidation_price(self):
        market, token_id = _market_with_position()
        liq_price = market.liquidation.liquidation_price(token_id)
        # around 917.4 the fee is unclamped, so the estimate is exact
        assert 917 * UNIT < liq_price < 918 * UNIT
        assert market.liquidation.can_liquidate(token_id, price=liq_price - 10**12)
        assert not market.liquidation.can_liquidate(token_id, price=liq_price + 10**12)


# ---------------------------------------------------------------------------
# Waterfall
# ---------------------------------------------------------------------------

class TestWaterfall:
    def _liquidate_at(self, price):
        market, token_id = _market_with_position()
        move_price(market, price)
        summary = market.leverage.get_position_summary(token_id)
        fee = market.liquidation.get_liquidation_fee(10 * UNIT)
        keeper_before = market.wallet(KEEPER)
        trader_before = market.wallet(TRADER)
        stable_before = market.vault.stable_collateral_total
        result = market.liquidation.liquidate(token_id, KEEPER)
        return market, token_id, summary, fee, result, keeper_before, trader_before, stable_before

    def test_margin_above_fee(self):
        market, token_id, summary, fee, result, keeper_before, trader_before, _ = self._liquidate_at(915 * UNIT)
        assert summary.margin_after_settlement > fee
        assert result.liquidation_fee == fee
        assert result.pool_credit == summary.margin_after_settlement - fee
        assert market.wallet(KEEPER) == keeper_before + fee
        assert market.wallet(TRADER) == trader_before
        assert not market.vault.state.position_registry.exists(token_id)
        assert _identity_holds(market)
        assert check_all(market.vault) == []

    def test_margin_below_fee(self):
        market, _, summary, fee, result, keeper_before, _, _ = self._liquidate_at(912 * UNIT)
        assert 0 < summary.margin_after_settlement <= fee
        assert result.liquidation_fee == summary.margin_after_settlement
        assert result.pool_credit == 0
        assert market.wallet(KEEPER) == keeper_before + summary.margin_after_settlement
        assert _identity_holds(market)

    def test_bad_debt_absorbed_by_pool(self):
        market, _, summary, _, result, keeper_before, _, _ = self._liquidate_at(900 * UNIT)
        assert summary.margin_after_settlement < 0
        assert result.liquidation_fee == 0
        assert result.pool_credit == summary.margin_after_settlement
        assert market.wallet(KEEPER) == keeper_before
        assert market.vault.global_positions.size_opened_total == 0
        assert _identity_holds(market)

    def test_payouts_match_pure_waterfall(self):
        _, _, summary, fee, result, _, _, _ = self._liquidate_at(915 * UNIT)
        assert (result.liquidation_fee, result.pool_credit) == perp_math.liquidation_payouts(
            summary.margin_after_settlement, fee,
        )

    def test_event_emitted(self):
        market, token_id, _, _, result, _, _, _ = self._liquidate_at(915 * UNIT)
        event = market.vault.state.events[-1]
        assert event.event is Event.POSITION_LIQUIDATED
        assert event.fields["token_id"] == token_id
        assert event.fields["pool_credit"] == result.pool_credit


# ---------------------------------------------------------------------------
# Races / side effects
# ---------------------------------------------------------------------------

class TestLiquidationRaces:
    def test_healthy_position_rejected_without_side_effects(self):
        market, token_id = _market_with_position()
        events = len(market.vault.state.events)
        with pytest.raises(CannotLiquidate):
            market.liquidation.liquidate(token_id, KEEPER)
        assert market.vault.state.position_registry.exists(token_id)
        assert len(market.vault.state.events) == events

    def test_second_keeper_loses(self):
        market, token_id = _market_with_position()
        move_price(market, 900 * UNIT)
        market.liquidation.liquidate(token_id, KEEPER)
        with pytest.raises(CannotLiquidate):
            market.liquidation.liquidate(token_id, "other-keeper")

    def test_pending_orders_on_position_cancelled(self):
        market, token_id = _market_with_position()
        wallet = market.wallet(TRADER)
        market.delayed_orders.announce_leverage_adjust(TRADER, token_id, UNIT // 2, 0, 0)
        market.limit_orders.announce_limit_order(TRADER, token_id, 800 * UNIT, 1200 * UNIT)
        assert market.wallet(TRADER) == wallet - UNIT // 2 - KEEPER_FEE
        move_price(market, 900 * UNIT)
        market.liquidation.liquidate(token_id, KEEPER)
        assert market.wallet(TRADER) == wallet
        assert market.delayed_orders.get_announced_order(TRADER) is None
        assert market.limit_orders.get_limit_order(token_id) is None
        assert check_all(market.vault) == []

    def test_paused(self):
        market, token_id = _market_with_position()
        move_price(market, 900 * UNIT)
        market.vault.pause(OWNER, ModuleKey.LIQUIDATION_MODULE)
        with pytest.raises(Paused):
            market.liquidation.liquidate(token_id, KEEPER)


class TestLiquidationSetters:
    def test_fee_bounds(self):
        market = make_market()
        with pytest.raises(InvalidBounds):
            market.liquidation.set_liquidation_fee_bounds(OWNER, 0, 10 * UNIT)
        with pytest.raises(InvalidBounds):
            market.liquidation.set_liquidation_fee_bounds(OWNER, 10 * UNIT, 5 * UNIT)

    def test_ratio_cap(self):
        market = make_market()
        with pytest.raises(InvalidFee):
            market.liquidation.set_liquidation_fee_ratio(OWNER, to_wad("0.2"))
