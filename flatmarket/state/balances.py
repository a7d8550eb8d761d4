"""
Collateral-token balance tracking.

Implements BalanceTable[Account] -> Amount for the single collateral asset of
a market. The vault, the order escrow and every user wallet are accounts in
the same table, so a transfer between any two of them is one `transfer()`.
"""

from __future__ import annotations

from typing import Dict

from ..core.errors import InsufficientBalance, ZeroAddress


# Type aliases
Account = str
Amount = int  # Non-negative collateral amount (18 decimals)

# Well-known ledger accounts
VAULT_ACCOUNT = "flatcoinVault"
ESCROW_ACCOUNT = "delayedOrder"


class BalanceTable:
    """
    Balance table mapping account -> collateral amount.

    Notes:
    - balances are always non-negative,
    - zero balances are omitted to keep the table sparse.
    """

    def __init__(self) -> None:
        self._balances: Dict[Account, Amount] = {}

    def get(self, account: Account) -> Amount:
        """Get balance for account. Returns 0 if not found."""
        return self._balances.get(account, 0)

    def set(self, account: Account, amount: Amount) -> None:
        """
        Set balance for account.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            self._balances.pop(account, None)
        else:
            self._balances[account] = amount

    def add(self, account: Account, delta: int) -> None:
        """
        Add delta to balance (delta may be negative).

        Raises:
            InsufficientBalance: If resulting balance would be negative
        """
        if not account:
            raise ZeroAddress("account")
        current = self.get(account)
        new_balance = current + delta
        if new_balance < 0:
            raise InsufficientBalance(account, current, -delta)
        self.set(account, new_balance)

    def subtract(self, account: Account, delta: Amount) -> None:
        """Subtract a non-negative amount from a balance."""
        if delta < 0:
            raise ValueError(f"Delta must be non-negative: {delta}")
        self.add(account, -delta)

    def transfer(self, src: Account, dst: Account, amount: Amount) -> None:
        """
        Move `amount` from `src` to `dst`.

        Raises:
            ValueError: If amount is negative
            InsufficientBalance: If src holds less than amount
        """
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative: {amount}")
        if amount == 0:
            return
        self.subtract(src, amount)
        self.add(dst, amount)

    def get_all_balances(self) -> Dict[Account, Amount]:
        """Return all non-zero balances."""
        return dict(self._balances)

    def total(self) -> Amount:
        """Sum of all balances; constant under transfers."""
        return sum(self._balances.values())

    def verify_non_negative(self) -> bool:
        """Verify all balances are non-negative."""
        return all(amount >= 0 for amount in self._balances.values())

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"
