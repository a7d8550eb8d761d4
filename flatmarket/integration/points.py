"""
Incentive points.

One-way notifications from the order module credit points for deposits and
for leverage opened. The notifying side logs and swallows any failure raised
here, so a misbehaving points ledger never blocks an execution.
"""

from __future__ import annotations

import logging
from typing import Dict

from ..core.decimal_math import UNIT, multiply_decimal
from ..core.errors import ZeroAddress

logger = logging.getLogger(__name__)


class PointsModule:
    """Points balances per account."""

    def __init__(self, points_per_deposit: int = UNIT, points_per_size: int = UNIT) -> None:
        if points_per_deposit < 0 or points_per_size < 0:
            raise ValueError("points rates must be non-negative")
        self.points_per_deposit = points_per_deposit
        self.points_per_size = points_per_size
        self._balances: Dict[str, int] = {}
        self._total = 0

    def _mint(self, account: str, amount: int) -> None:
        if not account:
            raise ZeroAddress("account")
        if amount <= 0:
            return
        self._balances[account] = self._balances.get(account, 0) + amount
        self._total += amount
        logger.debug("minted %d points to %s", amount, account)

    def on_deposit(self, account: str, amount: int) -> None:
        self._mint(account, multiply_decimal(amount, self.points_per_deposit))

    def on_leverage_open(self, account: str, size: int) -> None:
        self._mint(account, multiply_decimal(size, self.points_per_size))

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    @property
    def total_points(self) -> int:
        return self._total

    def __repr__(self) -> str:
        return f"PointsModule({len(self._balances)} accounts, total={self._total})"
