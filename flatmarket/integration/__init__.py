"""
Market collaborators (oracle, keeper fee, points), configuration and wiring.
"""

from .config import MarketConfig
from .keeper_fee import KeeperFee
from .market import Market, deploy_market
from .oracle import OracleModule, PriceUpdate
from .points import PointsModule

__all__ = [
    "KeeperFee",
    "Market",
    "MarketConfig",
    "OracleModule",
    "PointsModule",
    "PriceUpdate",
    "deploy_market",
]
