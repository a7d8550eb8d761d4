"""Builders shared by the flatmarket test-suite."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from flatmarket.core.decimal_math import to_wad
from flatmarket.core.types import OrderExecuted, TokenId
from flatmarket.integration.config import MarketConfig
from flatmarket.integration.market import Market, deploy_market

PRICE = to_wad("1000")
OWNER = "owner"
LP = "lp"
LP2 = "lp2"
TRADER = "trader"
KEEPER = "keeper"

# Keeper fee at PRICE with the default config: 2 USD
KEEPER_FEE = to_wad("0.002")

WALLET = to_wad("1000")


def make_market(config: Optional[MarketConfig] = None, price: int = PRICE, **vault_overrides) -> Market:
    """Deployed market with a published price and funded wallets."""
    config = config or MarketConfig()
    if vault_overrides:
        config = replace(config, vault=replace(config.vault, **vault_overrides))
    market = deploy_market(config, owner=OWNER)
    market.clock.advance(1)
    market.set_price(price)
    for account in (LP, LP2, TRADER):
        market.fund(account, WALLET)
    return market


def current_price(market: Market) -> int:
    price, _ = market.oracle.get_price()
    return price


def execute(market: Market, account: str, price: Optional[int] = None, wait: Optional[int] = None) -> OrderExecuted:
    """Let the order become executable, publish a fresh price and execute it."""
    if wait is None:
        wait = market.vault.min_executability_age + 1
    price = current_price(market) if price is None else price
    market.clock.advance(wait)
    market.set_price(price)
    return market.delayed_orders.execute_order(account, KEEPER, market.price_update(price))


def deposit(market: Market, account: str, amount: int) -> int:
    market.delayed_orders.announce_stable_deposit(account, amount, 0)
    return execute(market, account).amount


def withdraw(market: Market, account: str, shares: int) -> int:
    market.delayed_orders.announce_stable_withdraw(account, shares, 0)
    return execute(market, account).amount


def open_position(market: Market, account: str, margin: int, size: int) -> TokenId:
    market.delayed_orders.announce_leverage_open(account, margin, size, current_price(market) * 2)
    receipt = execute(market, account)
    assert receipt.token_id is not None
    return receipt.token_id


def close_position(market: Market, account: str, token_id: TokenId, price: Optional[int] = None) -> int:
    market.delayed_orders.announce_leverage_close(account, token_id, 0)
    return execute(market, account, price).amount


def move_price(market: Market, price: int) -> None:
    market.clock.advance(1)
    market.set_price(price)
