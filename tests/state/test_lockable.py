"""Tests for lockable share balances and the position registry."""

from __future__ import annotations

import pytest

from flatmarket.core.errors import (
    NotEnoughBalanceForWithdraw,
    NotTokenOwner,
    PositionNotFound,
    TokenLocked,
    ZeroAddress,
)
from flatmarket.core.types import ModuleKey
from flatmarket.state.lockable import LockablePositionRegistry, LockableShareTable


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------

class TestLockableShareTable:
    def test_mint_and_burn_track_supply(self):
        shares = LockableShareTable()
        shares.mint("a", 10)
        shares.mint("b", 5)
        shares.burn("a", 4)
        assert shares.total_supply == 11
        assert shares.balance_of("a") == 6

    def test_locked_shares_cannot_move(self):
        shares = LockableShareTable()
        shares.mint("a", 10)
        shares.lock("a", 7)
        assert shares.unlocked_of("a") == 3
        with pytest.raises(NotEnoughBalanceForWithdraw):
            shares.transfer("a", "b", 4)
        with pytest.raises(NotEnoughBalanceForWithdraw):
            shares.burn("a", 4)
        shares.transfer("a", "b", 3)
        assert shares.balance_of("b") == 3

    def test_unlock_then_burn(self):
        shares = LockableShareTable()
        shares.mint("a", 10)
        shares.lock("a", 10)
        shares.unlock("a", 10)
        shares.burn("a", 10)
        assert shares.total_supply == 0
        assert shares.get_all_balances() == {}
        assert shares.locks_within_balance()

    def test_cannot_lock_more_than_unlocked(self):
        shares = LockableShareTable()
        shares.mint("a", 5)
        shares.lock("a", 3)
        with pytest.raises(NotEnoughBalanceForWithdraw):
            shares.lock("a", 3)

    def test_over_unlock_rejected(self):
        shares = LockableShareTable()
        shares.mint("a", 5)
        shares.lock("a", 2)
        with pytest.raises(ValueError):
            shares.unlock("a", 3)

    def test_transfer_to_empty_account_rejected(self):
        shares = LockableShareTable()
        shares.mint("a", 5)
        with pytest.raises(ZeroAddress):
            shares.transfer("a", "", 1)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class TestLockablePositionRegistry:
    def test_token_ids_are_sequential_and_never_reused(self):
        registry = LockablePositionRegistry()
        first = registry.mint("a")
        second = registry.mint("b")
        registry.burn(first)
        third = registry.mint("a")
        assert (first, second, third) == (0, 1, 2)
        assert list(registry) == [1, 2]
        assert registry.next_token_id == 3

    def test_tokens_of(self):
        registry = LockablePositionRegistry()
        registry.mint("a")
        registry.mint("b")
        registry.mint("a")
        assert registry.tokens_of("a") == [0, 2]

    def test_locked_token_cannot_transfer(self):
        registry = LockablePositionRegistry()
        token_id = registry.mint("a")
        registry.lock(token_id, ModuleKey.LIMIT_ORDER)
        with pytest.raises(TokenLocked):
            registry.transfer(token_id, "a", "b")

    def test_lock_set_releases_per_module(self):
        registry = LockablePositionRegistry()
        token_id = registry.mint("a")
        registry.lock(token_id, ModuleKey.LIMIT_ORDER)
        registry.lock(token_id, ModuleKey.DELAYED_ORDER)
        registry.unlock(token_id, ModuleKey.DELAYED_ORDER)
        assert registry.is_locked(token_id)
        assert registry.is_locked_by(token_id, ModuleKey.LIMIT_ORDER)
        assert not registry.is_locked_by(token_id, ModuleKey.DELAYED_ORDER)
        registry.unlock(token_id, ModuleKey.LIMIT_ORDER)
        registry.transfer(token_id, "a", "b")
        assert registry.owner_of(token_id) == "b"

    def test_burn_clears_locks(self):
        registry = LockablePositionRegistry()
        token_id = registry.mint("a")
        registry.lock(token_id, ModuleKey.LIMIT_ORDER)
        registry.burn(token_id)
        assert not registry.exists(token_id)
        assert not registry.is_locked(token_id)
        with pytest.raises(PositionNotFound):
            registry.owner_of(token_id)

    def test_require_owner(self):
        registry = LockablePositionRegistry()
        token_id = registry.mint("a")
        registry.require_owner(token_id, "a")
        with pytest.raises(NotTokenOwner):
            registry.require_owner(token_id, "b")
        with pytest.raises(NotTokenOwner):
            registry.transfer(token_id, "b", "c")
