#!/usr/bin/env python3
"""Run a scripted deposit/open/price-move/close/withdraw scenario and print the result as JSON."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from flatmarket.core.decimal_math import from_wad, multiply_decimal, to_wad
from flatmarket.core.errors import FlatcoinError
from flatmarket.integration.config import MarketConfig
from flatmarket.integration.market import Market, deploy_market

logger = logging.getLogger("market_sim")

LP = "lp"
TRADER = "trader"
KEEPER = "keeper"


def _execute(market: Market, account: str, price: int) -> None:
    market.clock.advance(market.vault.min_executability_age + 1)
    market.set_price(price)
    market.delayed_orders.execute_order(account, KEEPER, market.price_update(price))


def run_scenario(
    market: Market,
    *,
    price: int,
    deposit: int,
    margin: int,
    size: int,
    move: int,
    hold_seconds: int,
) -> dict:
    market.set_price(price)
    market.fund(LP, deposit * 2)
    market.fund(TRADER, margin * 2)

    market.delayed_orders.announce_stable_deposit(LP, deposit, 0)
    _execute(market, LP, price)
    logger.info("deposited %s, shares %s", from_wad(deposit), from_wad(market.stable.balance_of(LP)))

    market.delayed_orders.announce_leverage_open(TRADER, margin, size, price * 2)
    _execute(market, TRADER, price)
    token_id = market.leverage.tokens_of(TRADER)[0]

    market.clock.advance(hold_seconds)
    moved = price + multiply_decimal(price, move)
    market.set_price(moved)
    logger.info("price moved %s -> %s", from_wad(price), from_wad(moved))

    market.delayed_orders.announce_leverage_close(TRADER, token_id, 0)
    _execute(market, TRADER, moved)

    market.delayed_orders.announce_stable_withdraw(LP, market.stable.balance_of(LP), 0)
    _execute(market, LP, moved)

    result = market.summary()
    result["wallets"] = {
        account: from_wad(market.wallet(account)) for account in (LP, TRADER, KEEPER)
    }
    if market.points is not None:
        result["points"] = {
            account: from_wad(market.points.balance_of(account)) for account in (LP, TRADER)
        }
    return result


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Simulate one flatmarket round trip.")
    ap.add_argument("--config", type=Path, default=ROOT / "config" / "market.yaml")
    ap.add_argument("--price", default="1000", help="initial collateral price (USD)")
    ap.add_argument("--deposit", default="100", help="LP deposit (collateral)")
    ap.add_argument("--margin", default="10", help="trader margin (collateral)")
    ap.add_argument("--size", default="20", help="trader additional size (collateral)")
    ap.add_argument("--move", default="0.1", help="relative price move before the close")
    ap.add_argument("--hold", type=int, default=3600, help="seconds the position stays open")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = MarketConfig.from_file(args.config) if args.config.exists() else MarketConfig()
    market = deploy_market(config)
    try:
        result = run_scenario(
            market,
            price=to_wad(args.price),
            deposit=to_wad(args.deposit),
            margin=to_wad(args.margin),
            size=to_wad(args.size),
            move=to_wad(args.move),
            hold_seconds=args.hold,
        )
    except FlatcoinError as exc:
        print(f"[market-sim] FAIL: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
