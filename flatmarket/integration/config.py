"""
Market configuration.

Loaded from a YAML file with one section per component:

    vault:
      max_funding_velocity: "0.003"
      ...
    stable: {...}
    leverage: {...}
    liquidation: {...}
    oracle: {...}
    keeper_fee: {...}
    points: {...}

Fixed-point values are human decimals ("0.003", "500") and are parsed to
18-decimal ints; ages and expiries are integer seconds. Missing keys fall back
to the defaults below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Union

import yaml

from ..core.decimal_math import to_wad

logger = logging.getLogger(__name__)


def _wad(value: Any) -> int:
    """Parse a human-unit config value into wad."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"expected a decimal value, got {value!r}")
    return to_wad(str(value))


def _seconds(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer seconds, got {value!r}")
    return value


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise TypeError(f"config section '{name}' must be a mapping")
    return dict(section)


@dataclass
class VaultConfig:
    """Global ledger parameters."""

    # Funding velocity per day at full proportional skew
    max_funding_velocity: int = to_wad("0.003")

    # Skew at which the velocity saturates
    max_velocity_skew: int = to_wad("0.1")

    # Max long size / pool size
    skew_fraction_max: int = to_wad("1.2")

    stable_collateral_cap: int = to_wad("500")

    # Delayed-order execution window (seconds after announcement)
    min_executability_age: int = 5
    max_executability_age: int = 60

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VaultConfig":
        defaults = cls()
        return cls(
            max_funding_velocity=_wad(data.get("max_funding_velocity", "0.003")),
            max_velocity_skew=_wad(data.get("max_velocity_skew", "0.1")),
            skew_fraction_max=_wad(data.get("skew_fraction_max", "1.2")),
            stable_collateral_cap=_wad(data.get("stable_collateral_cap", "500")),
            min_executability_age=_seconds(data.get("min_executability_age", defaults.min_executability_age)),
            max_executability_age=_seconds(data.get("max_executability_age", defaults.max_executability_age)),
        )


@dataclass
class StableConfig:
    stable_withdraw_fee: int = 0
    min_deposit_amount: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StableConfig":
        return cls(
            stable_withdraw_fee=_wad(data.get("stable_withdraw_fee", "0")),
            min_deposit_amount=_wad(data.get("min_deposit_amount", "0")),
        )


@dataclass
class LeverageConfig:
    leverage_trading_fee: int = to_wad("0.001")
    margin_min: int = to_wad("0.05")
    leverage_min: int = to_wad("0.5")
    leverage_max: int = to_wad("24")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeverageConfig":
        return cls(
            leverage_trading_fee=_wad(data.get("leverage_trading_fee", "0.001")),
            margin_min=_wad(data.get("margin_min", "0.05")),
            leverage_min=_wad(data.get("leverage_min", "0.5")),
            leverage_max=_wad(data.get("leverage_max", "24")),
        )


@dataclass
class LiquidationConfig:
    liquidation_fee_ratio: int = to_wad("0.005")
    liquidation_buffer_ratio: int = to_wad("0.005")

    # Keeper fee clamp, in USD
    liquidation_fee_lower_bound: int = to_wad("4")
    liquidation_fee_upper_bound: int = to_wad("100")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LiquidationConfig":
        return cls(
            liquidation_fee_ratio=_wad(data.get("liquidation_fee_ratio", "0.005")),
            liquidation_buffer_ratio=_wad(data.get("liquidation_buffer_ratio", "0.005")),
            liquidation_fee_lower_bound=_wad(data.get("liquidation_fee_lower_bound", "4")),
            liquidation_fee_upper_bound=_wad(data.get("liquidation_fee_upper_bound", "100")),
        )


@dataclass
class OracleConfig:
    max_diff_percent: int = to_wad("0.005")
    onchain_price_expiry: int = 90_000
    offchain_max_price_age: int = 90_000

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            max_diff_percent=_wad(data.get("max_diff_percent", "0.005")),
            onchain_price_expiry=_seconds(data.get("onchain_price_expiry", 90_000)),
            offchain_max_price_age=_seconds(data.get("offchain_max_price_age", 90_000)),
        )


@dataclass
class KeeperFeeConfig:
    """All amounts in USD."""

    execution_cost_usd: int = to_wad("1")
    profit_margin_usd: int = to_wad("1")
    profit_margin_percentage: int = to_wad("0.3")
    keeper_fee_lower_bound: int = to_wad("2")
    keeper_fee_upper_bound: int = to_wad("30")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeeperFeeConfig":
        return cls(
            execution_cost_usd=_wad(data.get("execution_cost_usd", "1")),
            profit_margin_usd=_wad(data.get("profit_margin_usd", "1")),
            profit_margin_percentage=_wad(data.get("profit_margin_percentage", "0.3")),
            keeper_fee_lower_bound=_wad(data.get("keeper_fee_lower_bound", "2")),
            keeper_fee_upper_bound=_wad(data.get("keeper_fee_upper_bound", "30")),
        )


@dataclass
class PointsConfig:
    enabled: bool = True
    points_per_deposit: int = to_wad("1")
    points_per_size: int = to_wad("1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointsConfig":
        return cls(
            enabled=bool(data.get("enabled", True)),
            points_per_deposit=_wad(data.get("points_per_deposit", "1")),
            points_per_size=_wad(data.get("points_per_size", "1")),
        )


@dataclass
class MarketConfig:
    """Complete deployment parameters of one market."""

    vault: VaultConfig = field(default_factory=VaultConfig)
    stable: StableConfig = field(default_factory=StableConfig)
    leverage: LeverageConfig = field(default_factory=LeverageConfig)
    liquidation: LiquidationConfig = field(default_factory=LiquidationConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)
    keeper_fee: KeeperFeeConfig = field(default_factory=KeeperFeeConfig)
    points: PointsConfig = field(default_factory=PointsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketConfig":
        """Create from a parsed mapping (unknown sections are ignored)."""
        return cls(
            vault=VaultConfig.from_dict(_section(data, "vault")),
            stable=StableConfig.from_dict(_section(data, "stable")),
            leverage=LeverageConfig.from_dict(_section(data, "leverage")),
            liquidation=LiquidationConfig.from_dict(_section(data, "liquidation")),
            oracle=OracleConfig.from_dict(_section(data, "oracle")),
            keeper_fee=KeeperFeeConfig.from_dict(_section(data, "keeper_fee")),
            points=PointsConfig.from_dict(_section(data, "points")),
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MarketConfig":
        """Load from a YAML file."""
        path = Path(path)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise TypeError("market config YAML must be a mapping")
        logger.info("loaded market config from %s", path)
        return cls.from_dict(data)
