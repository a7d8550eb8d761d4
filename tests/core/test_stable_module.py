"""Tests for flatmarket/core/stable_module.py: share issuance and redemption."""

import pytest

from flatmarket.core.decimal_math import UNIT, to_wad
from flatmarket.core.errors import (
    AmountTooSmall,
    DepositCapReached,
    HighSlippage,
    InvalidFee,
    MaxSkewReached,
    NotEnoughBalanceForWithdraw,
    PriceImpactDuringFullWithdraw,
)
from flatmarket.core.stable_module import full_exit_dust
from flatmarket.core.types import Event
from flatmarket.state.balances import ESCROW_ACCOUNT, VAULT_ACCOUNT
from tests.market_fixtures import (
    KEEPER,
    KEEPER_FEE,
    LP,
    LP2,
    OWNER,
    TRADER,
    WALLET,
    deposit,
    execute,
    make_market,
    move_price,
    open_position,
    withdraw,
)


class TestDeposit:
    def test_first_deposit_mints_one_share_per_collateral(self):
        market = make_market()
        minted = deposit(market, LP, 100 * UNIT)
        assert minted == 100 * UNIT
        assert market.stable.balance_of(LP) == 100 * UNIT
        assert market.stable.total_supply == 100 * UNIT
        assert market.stable.stable_collateral_per_share() == UNIT

    def test_collateral_flows(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        assert market.wallet(LP) == WALLET - 100 * UNIT - KEEPER_FEE
        assert market.wallet(KEEPER) == KEEPER_FEE
        assert market.vault.collateral_balance() == 100 * UNIT
        assert market.vault.stable_collateral_total == 100 * UNIT
        assert market.wallet(ESCROW_ACCOUNT) == 0

    def test_announce_escrows_amount_and_fee(self):
        market = make_market()
        order = market.delayed_orders.announce_stable_deposit(LP, 100 * UNIT, 0)
        assert order.escrowed == 100 * UNIT + KEEPER_FEE
        assert market.wallet(ESCROW_ACCOUNT) == 100 * UNIT + KEEPER_FEE

    def test_cap(self):
        market = make_market()
        with pytest.raises(DepositCapReached):
            market.delayed_orders.announce_stable_deposit(LP, 600 * UNIT, 0)

    def test_slippage_at_announcement(self):
        market = make_market()
        with pytest.raises(HighSlippage):
            market.delayed_orders.announce_stable_deposit(LP, 100 * UNIT, 101 * UNIT)

    def test_minimum_liquidity(self):
        market = make_market()
        market.delayed_orders.announce_stable_deposit(LP, 1_000, 0)
        with pytest.raises(AmountTooSmall):
            execute(market, LP)
        assert market.stable.total_supply == 0
        assert market.delayed_orders.get_announced_order(LP) is not None

    def test_minimum_deposit_amount(self):
        market = make_market()
        market.delayed_orders.set_min_deposit_amount(OWNER, UNIT)
        with pytest.raises(AmountTooSmall):
            market.delayed_orders.announce_stable_deposit(LP, UNIT // 2, 0)

    def test_second_depositor_gets_current_price(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        open_position(market, TRADER, 10 * UNIT, 50 * UNIT)
        move_price(market, to_wad("900"))
        per_share = market.stable.stable_collateral_per_share()
        assert per_share > UNIT
        assert deposit(market, LP2, 10 * UNIT) < 10 * UNIT

    def test_emits_deposit_event(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        kinds = [e.event for e in market.vault.state.events]
        assert Event.DEPOSIT in kinds
        assert kinds[-1] is Event.ORDER_EXECUTED


class TestWithdraw:
    def _two_lps(self):
        market = make_market()
        market.stable.set_stable_withdraw_fee(OWNER, to_wad("0.0025"))
        deposit(market, LP, 100 * UNIT)
        deposit(market, LP2, 100 * UNIT)
        return market

    def test_quote_includes_fee(self):
        market = self._two_lps()
        assert market.stable.stable_withdraw_quote(50 * UNIT) == (to_wad("49.875"), to_wad("0.125"))

    def test_partial_withdraw_fee_stays_in_pool(self):
        market = self._two_lps()
        wallet = market.wallet(LP)
        paid = withdraw(market, LP, 50 * UNIT)
        assert paid == to_wad("49.875") - KEEPER_FEE
        assert market.wallet(LP) == wallet + paid
        assert market.vault.stable_collateral_total == to_wad("150.125")
        assert market.stable.stable_collateral_per_share() > UNIT

    def test_final_withdraw_is_fee_free(self):
        market = make_market()
        market.stable.set_stable_withdraw_fee(OWNER, to_wad("0.0025"))
        deposit(market, LP, 100 * UNIT)
        assert market.stable.stable_withdraw_quote(100 * UNIT) == (100 * UNIT, 0)
        paid = withdraw(market, LP, 100 * UNIT)
        assert paid == 100 * UNIT - KEEPER_FEE
        assert market.stable.total_supply == 0
        assert market.vault.stable_collateral_total == 0
        assert market.stable.stable_collateral_per_share() == UNIT

    def test_full_exit_with_open_size_rejected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        open_position(market, TRADER, 10 * UNIT, 50 * UNIT)
        market.delayed_orders.announce_stable_withdraw(LP, 100 * UNIT, 0)
        with pytest.raises(MaxSkewReached):
            execute(market, LP)
        assert market.stable.total_supply == 100 * UNIT

    def test_full_exit_from_insolvent_pool_rejected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        market.delayed_orders.announce_stable_withdraw(LP, 100 * UNIT, 0)
        market.vault.state.stable_collateral_total = -UNIT
        with pytest.raises(PriceImpactDuringFullWithdraw) as exc_info:
            execute(market, LP)
        assert exc_info.value.leftover == -UNIT
        assert market.stable.total_supply == 100 * UNIT

    def test_full_exit_stranding_collateral_rejected(self, monkeypatch):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        market.delayed_orders.announce_stable_withdraw(LP, 100 * UNIT, 0)
        # valuation one unit short of the booked pool
        monkeypatch.setattr(
            market.stable, "stable_collateral_total_after_settlement", lambda max_age=0: 99 * UNIT,
        )
        with pytest.raises(PriceImpactDuringFullWithdraw) as exc_info:
            execute(market, LP)
        assert exc_info.value.leftover == UNIT
        assert market.stable.total_supply == 100 * UNIT
        assert market.vault.stable_collateral_total == 100 * UNIT

    def test_full_exit_keeps_rounding_dust(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        # one wei the per-share value cannot represent
        market.vault.state.stable_collateral_total += 1
        market.vault.state.collateral.add(VAULT_ACCOUNT, 1)
        market.delayed_orders.announce_stable_withdraw(LP, 100 * UNIT, 0)
        execute(market, LP)
        assert market.stable.total_supply == 0
        assert 0 <= market.vault.stable_collateral_total <= full_exit_dust(100 * UNIT)

    def test_leaving_dust_supply_rejected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        market.delayed_orders.announce_stable_withdraw(LP, 100 * UNIT - 5_000, 0)
        with pytest.raises(AmountTooSmall):
            execute(market, LP)

    def test_withdraw_that_breaks_skew_rejected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        deposit(market, LP2, 10 * UNIT)
        open_position(market, TRADER, 10 * UNIT, 120 * UNIT)
        with pytest.raises(MaxSkewReached):
            market.delayed_orders.announce_stable_withdraw(LP, 50 * UNIT, 0)

    def test_shares_locked_while_pending(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        market.delayed_orders.announce_stable_withdraw(LP, 60 * UNIT, 0)
        assert market.stable.get_locked_amount(LP) == 60 * UNIT
        with pytest.raises(NotEnoughBalanceForWithdraw):
            market.stable.transfer(LP, LP2, 50 * UNIT)
        market.stable.transfer(LP, LP2, 40 * UNIT)
        assert market.stable.balance_of(LP2) == 40 * UNIT

    def test_cannot_withdraw_more_than_unlocked(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        with pytest.raises(NotEnoughBalanceForWithdraw):
            market.delayed_orders.announce_stable_withdraw(LP, 101 * UNIT, 0)


class TestWithdrawFeeSetter:
    def test_bounds(self):
        market = make_market()
        with pytest.raises(InvalidFee):
            market.stable.set_stable_withdraw_fee(OWNER, to_wad("0.02"))
