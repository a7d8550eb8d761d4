"""Tests for flatmarket/core/invariants.py: static registry and transition guards."""

import logging

import pytest

from flatmarket.core.decimal_math import UNIT, to_wad
from flatmarket.core.errors import InvariantViolation
from flatmarket.core.invariants import (
    INVARIANT_REGISTRY,
    TOLERANCE,
    capture,
    check_all,
    collateral_net,
    run_order_invariant_checks,
)
from flatmarket.state.balances import VAULT_ACCOUNT
from tests.market_fixtures import LP, TRADER, deposit, make_market, open_position


class TestStaticInvariants:
    def test_fresh_market_passes(self):
        market = make_market()
        assert check_all(market.vault) == []

    def test_market_with_positions_passes(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        open_position(market, TRADER, 10 * UNIT, 50 * UNIT)
        assert check_all(market.vault) == []
        assert collateral_net(market.vault) == 0

    def test_missing_collateral_detected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        market.vault.state.stable_collateral_total += 1
        assert check_all(market.vault) == ["collateral_net_non_negative"]

    def test_orphan_position_detected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        token_id = open_position(market, TRADER, 10 * UNIT, 50 * UNIT)
        market.vault.state.position_registry.burn(token_id)
        assert "positions_owned" in check_all(market.vault)

    def test_size_mismatch_detected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        open_position(market, TRADER, 10 * UNIT, 50 * UNIT)
        market.vault.state.positions.clear()
        violations = check_all(market.vault)
        assert "sizes_sum" in violations

    def test_registry_names(self):
        assert set(INVARIANT_REGISTRY) >= {"collateral_net_non_negative", "min_liquidity", "sizes_sum"}


class TestOrderGuard:
    def test_passes_through_result(self):
        market = make_market()
        assert run_order_invariant_checks(market.vault, lambda: 42) == 42

    def test_leaking_collateral_rejected(self, caplog):
        market = make_market()
        deposit(market, LP, 100 * UNIT)

        def leak():
            market.vault.state.collateral.subtract(VAULT_ACCOUNT, UNIT)

        with caplog.at_level(logging.ERROR, logger="flatmarket.core.invariants"):
            with pytest.raises(InvariantViolation) as exc_info:
                run_order_invariant_checks(market.vault, leak, label="leak")
        assert "collateral_net_changed" in exc_info.value.violations
        assert "collateral_net_negative" in exc_info.value.violations
        assert any("leak" in r.getMessage() for r in caplog.records)

    def test_share_price_drop_rejected(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)

        def dilute():
            market.vault.state.shares.mint(TRADER, 10 * UNIT)

        with pytest.raises(InvariantViolation) as exc_info:
            run_order_invariant_checks(market.vault, dilute)
        assert exc_info.value.violations == ["collateral_per_share_decreased"]

    def test_declared_pool_loss_allows_share_price_drop(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        vault, stable = market.vault, market.stable

        def pay_from_pool():
            vault.transfer_collateral(stable, VAULT_ACCOUNT, TRADER, 2 * UNIT)
            vault.update_stable_collateral_total(stable, -2 * UNIT)

        with pytest.raises(InvariantViolation) as exc_info:
            run_order_invariant_checks(vault, pay_from_pool)
        assert exc_info.value.violations == ["collateral_per_share_decreased"]
        # the failed check does not roll back; only atomic() does
        run_order_invariant_checks(vault, pay_from_pool, pool_loss=2 * UNIT)
        assert stable.stable_collateral_per_share() == to_wad("0.96")

    def test_rounding_tolerated(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)

        def dust():
            market.vault.state.collateral.add(VAULT_ACCOUNT, TOLERANCE)

        run_order_invariant_checks(market.vault, dust)

    def test_snapshot(self):
        market = make_market()
        deposit(market, LP, 100 * UNIT)
        snap = capture(market.vault)
        assert snap.collateral_net == 0
        assert snap.collateral_per_share == UNIT
        assert snap.total_supply == 100 * UNIT
