"""Tests for YAML market configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from flatmarket.core.decimal_math import UNIT, to_wad
from flatmarket.integration.config import MarketConfig, VaultConfig

ROOT = Path(__file__).resolve().parents[2]


class TestDefaults:
    def test_empty_mapping_gives_defaults(self):
        assert MarketConfig.from_dict({}) == MarketConfig()

    def test_default_values(self):
        cfg = MarketConfig()
        assert cfg.vault.stable_collateral_cap == 500 * UNIT
        assert cfg.vault.min_executability_age == 5
        assert cfg.leverage.leverage_max == 24 * UNIT
        assert cfg.liquidation.liquidation_fee_lower_bound == 4 * UNIT
        assert cfg.oracle.max_diff_percent == to_wad("0.005")
        assert cfg.points.enabled


class TestFromFile:
    def test_shipped_config(self):
        cfg = MarketConfig.from_file(ROOT / "config" / "market.yaml")
        assert cfg.vault == VaultConfig()
        assert cfg.stable.stable_withdraw_fee == to_wad("0.0025")
        assert cfg.stable.min_deposit_amount == to_wad("0.05")

    def test_partial_file(self, tmp_path):
        path = tmp_path / "market.yaml"
        path.write_text(
            "vault:\n"
            "  stable_collateral_cap: 1000\n"
            "  max_funding_velocity: 0.004\n"
            "  max_executability_age: 120\n"
            "points:\n"
            "  enabled: false\n",
            encoding="utf-8",
        )
        cfg = MarketConfig.from_file(path)
        assert cfg.vault.stable_collateral_cap == 1000 * UNIT
        assert cfg.vault.max_funding_velocity == to_wad("0.004")
        assert cfg.vault.max_executability_age == 120
        assert cfg.vault.min_executability_age == 5
        assert not cfg.points.enabled
        assert cfg.leverage == MarketConfig().leverage

    def test_empty_file(self, tmp_path):
        path = tmp_path / "market.yaml"
        path.write_text("", encoding="utf-8")
        assert MarketConfig.from_file(path) == MarketConfig()

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "market.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(TypeError):
            MarketConfig.from_file(path)


class TestValidation:
    def test_section_must_be_mapping(self):
        with pytest.raises(TypeError):
            MarketConfig.from_dict({"vault": [1, 2]})

    def test_seconds_must_be_int(self):
        with pytest.raises(TypeError):
            MarketConfig.from_dict({"vault": {"max_executability_age": "60"}})

    def test_bool_is_not_a_decimal(self):
        with pytest.raises(TypeError):
            MarketConfig.from_dict({"leverage": {"margin_min": True}})

    def test_malformed_decimal(self):
        with pytest.raises(ValueError):
            MarketConfig.from_dict({"leverage": {"margin_min": "five"}})
