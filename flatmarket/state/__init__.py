"""
Ledger state primitives for flatmarket
"""

from .balances import ESCROW_ACCOUNT, VAULT_ACCOUNT, BalanceTable
from .clock import BlockClock
from .lockable import LockablePositionRegistry, LockableShareTable

__all__ = [
    "BalanceTable",
    "BlockClock",
    "ESCROW_ACCOUNT",
    "LockablePositionRegistry",
    "LockableShareTable",
    "VAULT_ACCOUNT",
]
