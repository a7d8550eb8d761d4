"""
Lockable share balances and the lockable position registry.

Shares are fungible and tracked per account; positions are non-fungible and
tracked per token id. Both carry an explicit lock that is checked at transfer
and burn time:

- a share lock is a locked *amount* per account (a pending withdraw order),
- a position lock is the set of order components currently referencing the
  token (a delayed adjust/close and/or a limit order).
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Set

from ..core.errors import (
    NotEnoughBalanceForWithdraw,
    NotTokenOwner,
    PositionNotFound,
    TokenLocked,
    ZeroAddress,
)
from ..core.types import ModuleKey
from .balances import Account, Amount

TokenId = int


class LockableShareTable:
    """
    Fungible share balances with per-account locked amounts.

    Invariant: ``locked(account) <= balance(account)`` for every account.
    """

    def __init__(self) -> None:
        self._balances: Dict[Account, Amount] = {}
        self._locked: Dict[Account, Amount] = {}
        self._total_supply: Amount = 0

    def balance_of(self, account: Account) -> Amount:
        return self._balances.get(account, 0)

    def locked_of(self, account: Account) -> Amount:
        return self._locked.get(account, 0)

    def unlocked_of(self, account: Account) -> Amount:
        return self.balance_of(account) - self.locked_of(account)

    @property
    def total_supply(self) -> Amount:
        return self._total_supply

    def _set_balance(self, account: Account, amount: Amount) -> None:
        if amount == 0:
            self._balances.pop(account, None)
        else:
            self._balances[account] = amount

    def mint(self, account: Account, amount: Amount) -> None:
        if not account:
            raise ZeroAddress("account")
        if amount < 0:
            raise ValueError(f"Mint amount must be non-negative: {amount}")
        self._set_balance(account, self.balance_of(account) + amount)
        self._total_supply += amount

    def burn(self, account: Account, amount: Amount) -> None:
        """Burn unlocked shares; callers unlock first when redeeming a locked withdraw."""
        if amount < 0:
            raise ValueError(f"Burn amount must be non-negative: {amount}")
        available = self.unlocked_of(account)
        if amount > available:
            raise NotEnoughBalanceForWithdraw(account, available, amount)
        self._set_balance(account, self.balance_of(account) - amount)
        self._total_supply -= amount

    def transfer(self, src: Account, dst: Account, amount: Amount) -> None:
        if not dst:
            raise ZeroAddress("dst")
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative: {amount}")
        available = self.unlocked_of(src)
        if amount > available:
            raise NotEnoughBalanceForWithdraw(src, available, amount)
        self._set_balance(src, self.balance_of(src) - amount)
        self._set_balance(dst, self.balance_of(dst) + amount)

    def lock(self, account: Account, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"Lock amount must be non-negative: {amount}")
        available = self.unlocked_of(account)
        if amount > available:
            raise NotEnoughBalanceForWithdraw(account, available, amount)
        self._locked[account] = self.locked_of(account) + amount

    def unlock(self, account: Account, amount: Amount) -> None:
        locked = self.locked_of(account)
        if amount < 0 or amount > locked:
            raise ValueError(f"Cannot unlock {amount} of {locked} locked shares")
        if amount == locked:
            self._locked.pop(account, None)
        else:
            self._locked[account] = locked - amount

    def get_all_balances(self) -> Dict[Account, Amount]:
        return dict(self._balances)

    def locks_within_balance(self) -> bool:
        return all(locked <= self.balance_of(acct) for acct, locked in self._locked.items())

    def __repr__(self) -> str:
        return f"LockableShareTable({len(self._balances)} holders, supply={self._total_supply})"


class LockablePositionRegistry:
    """
    Non-fungible position ownership with per-token lock sets.

    Token ids are issued sequentially starting at 0 and never reused.
    """

    def __init__(self) -> None:
        self._owners: Dict[TokenId, Account] = {}
        self._locks: Dict[TokenId, Set[ModuleKey]] = {}
        self._next_token_id: TokenId = 0

    def owner_of(self, token_id: TokenId) -> Account:
        try:
            return self._owners[token_id]
        except KeyError:
            raise PositionNotFound(token_id) from None

    def exists(self, token_id: TokenId) -> bool:
        return token_id in self._owners

    def require_owner(self, token_id: TokenId, account: Account) -> None:
        if self.owner_of(token_id) != account:
            raise NotTokenOwner(token_id, account)

    def tokens_of(self, account: Account) -> List[TokenId]:
        return sorted(t for t, owner in self._owners.items() if owner == account)

    def __iter__(self) -> Iterator[TokenId]:
        return iter(sorted(self._owners))

    def __len__(self) -> int:
        return len(self._owners)

    @property
    def next_token_id(self) -> TokenId:
        return self._next_token_id

    def mint(self, account: Account) -> TokenId:
        if not account:
            raise ZeroAddress("account")
        token_id = self._next_token_id
        self._next_token_id += 1
        self._owners[token_id] = account
        return token_id

    def burn(self, token_id: TokenId) -> None:
        """Remove the token together with any locks held on it."""
        self.owner_of(token_id)
        del self._owners[token_id]
        self._locks.pop(token_id, None)

    def transfer(self, token_id: TokenId, src: Account, dst: Account) -> None:
        if not dst:
            raise ZeroAddress("dst")
        self.require_owner(token_id, src)
        if self.is_locked(token_id):
            raise TokenLocked(token_id)
        self._owners[token_id] = dst

    def lock(self, token_id: TokenId, module_key: ModuleKey) -> None:
        self.owner_of(token_id)
        self._locks.setdefault(token_id, set()).add(module_key)

    def unlock(self, token_id: TokenId, module_key: ModuleKey) -> None:
        holders = self._locks.get(token_id)
        if not holders:
            return
        holders.discard(module_key)
        if not holders:
            del self._locks[token_id]

    def is_locked(self, token_id: TokenId) -> bool:
        return bool(self._locks.get(token_id))

    def is_locked_by(self, token_id: TokenId, module_key: ModuleKey) -> bool:
        return module_key in self._locks.get(token_id, ())

    def __repr__(self) -> str:
        return f"LockablePositionRegistry({len(self._owners)} positions)"
