"""Tests for the dual-source oracle."""

from __future__ import annotations

import pytest

from flatmarket.core.decimal_math import to_wad
from flatmarket.core.errors import InvalidBounds, PriceInvalid, PriceMismatch, PriceStale
from flatmarket.integration.oracle import OracleModule, PriceUpdate
from flatmarket.state.clock import BlockClock

PRICE = to_wad("1000")


def _oracle(clock: BlockClock, **overrides) -> OracleModule:
    params = dict(
        max_diff_percent=to_wad("0.005"),
        onchain_price_expiry=90_000,
        offchain_max_price_age=90_000,
    )
    params.update(overrides)
    return OracleModule(clock, **params)


# ---------------------------------------------------------------------------
# Source selection
# ---------------------------------------------------------------------------

class TestSourceSelection:
    def test_onchain_only(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        assert oracle.get_price() == (PRICE, 100)

    def test_newer_offchain_wins(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        clock.advance(10)
        oracle.update_price(PriceUpdate(price=to_wad("1002"), timestamp=110))
        assert oracle.get_price() == (to_wad("1002"), 110)

    def test_newer_onchain_wins(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.update_price(PriceUpdate(price=to_wad("1002"), timestamp=100))
        clock.advance(10)
        oracle.set_onchain_price(to_wad("1001"))
        assert oracle.get_price() == (to_wad("1001"), 110)

    def test_same_timestamp_prefers_offchain(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        oracle.update_price(PriceUpdate(price=to_wad("1001"), timestamp=100))
        assert oracle.get_price()[0] == to_wad("1001")

    def test_expired_offchain_is_ignored(self):
        clock = BlockClock(100)
        oracle = _oracle(clock, offchain_max_price_age=60)
        oracle.update_price(PriceUpdate(price=to_wad("1100"), timestamp=100))
        clock.advance(61)
        oracle.set_onchain_price(PRICE)
        assert oracle.get_price() == (PRICE, 161)


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

class TestRejections:
    def test_missing_onchain_feed(self):
        oracle = _oracle(BlockClock(100))
        oracle.update_price(PriceUpdate(price=PRICE, timestamp=100))
        with pytest.raises(PriceInvalid):
            oracle.get_price()

    def test_deviation_above_limit(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        oracle.update_price(PriceUpdate(price=to_wad("1010"), timestamp=100))
        with pytest.raises(PriceMismatch):
            oracle.get_price()

    def test_deviation_at_limit_accepted(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        oracle.update_price(PriceUpdate(price=to_wad("1005"), timestamp=100))
        assert oracle.get_price()[0] == to_wad("1005")

    def test_expired_onchain_feed(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        clock.advance(90_001)
        with pytest.raises(PriceStale):
            oracle.get_price()

    def test_max_age(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        clock.advance(100)
        assert oracle.get_price(max_age=100)[0] == PRICE
        with pytest.raises(PriceStale):
            oracle.get_price(max_age=99)

    def test_future_update_rejected(self):
        oracle = _oracle(BlockClock(100))
        with pytest.raises(PriceInvalid):
            oracle.update_price(PriceUpdate(price=PRICE, timestamp=101))

    def test_non_positive_update_rejected(self):
        oracle = _oracle(BlockClock(100))
        with pytest.raises(PriceInvalid):
            oracle.update_price(PriceUpdate(price=0, timestamp=100))

    def test_older_update_is_ignored(self):
        clock = BlockClock(100)
        oracle = _oracle(clock)
        oracle.set_onchain_price(PRICE)
        clock.advance(20)
        oracle.update_price(PriceUpdate(price=to_wad("1002"), timestamp=120))
        oracle.update_price(PriceUpdate(price=to_wad("1003"), timestamp=115))
        assert oracle.get_price() == (to_wad("1002"), 120)

    def test_invalid_deviation_limit(self):
        with pytest.raises(InvalidBounds):
            _oracle(BlockClock(), max_diff_percent=0)
