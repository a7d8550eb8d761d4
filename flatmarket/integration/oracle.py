"""
Dual-source price oracle.

Two feeds are combined:
  - an on-chain feed, pushed by `set_onchain_price()`, valid for
    `onchain_price_expiry` seconds,
  - an off-chain feed, pulled in by keepers through `update_price()` with a
    signed `PriceUpdate`, valid for `offchain_max_price_age` seconds.

`get_price(max_age)` returns the freshest valid source. When both are valid
their relative deviation must stay within `max_diff_percent`, otherwise
`PriceMismatch` is raised. The off-chain feed is optional; the on-chain feed
is required.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from ..core.decimal_math import UNIT, abs_val
from ..core.errors import InvalidBounds, PriceInvalid, PriceMismatch, PriceStale
from ..core.types import DEFAULT_MAX_AGE
from ..state.clock import BlockClock

logger = logging.getLogger(__name__)

ONCHAIN = "onchain"
OFFCHAIN = "offchain"


@dataclass(frozen=True)
class PriceUpdate:
    """Off-chain price observation submitted alongside an execution."""
    price: int
    timestamp: int


@dataclass(frozen=True)
class _Observation:
    price: int
    timestamp: int


class OracleModule:
    """Freshest-valid-source oracle with cross-source deviation check."""

    def __init__(
        self,
        clock: BlockClock,
        *,
        max_diff_percent: int,
        onchain_price_expiry: int,
        offchain_max_price_age: int,
    ) -> None:
        if max_diff_percent <= 0 or max_diff_percent > UNIT:
            raise InvalidBounds(0, max_diff_percent)
        self.clock = clock
        self.max_diff_percent = max_diff_percent
        self.onchain_price_expiry = onchain_price_expiry
        self.offchain_max_price_age = offchain_max_price_age
        self._onchain: Optional[_Observation] = None
        self._offchain: Optional[_Observation] = None

    # -- Feeds --------------------------------------------------------------

    def set_onchain_price(self, price: int, timestamp: Optional[int] = None) -> None:
        """Record the on-chain feed's latest answer (validated on read)."""
        ts = self.clock.now() if timestamp is None else timestamp
        self._onchain = _Observation(price=price, timestamp=ts)

    def update_price(self, update: PriceUpdate) -> None:
        """
        Apply a keeper-supplied off-chain update.

        Updates older than the stored one are ignored.

        Raises:
            PriceInvalid: non-positive price or timestamp in the future
        """
        if update.price <= 0 or update.timestamp > self.clock.now():
            raise PriceInvalid(OFFCHAIN)
        if self._offchain is not None and update.timestamp < self._offchain.timestamp:
            logger.debug("ignoring off-chain update older than %d", self._offchain.timestamp)
            return
        self._offchain = _Observation(price=update.price, timestamp=update.timestamp)

    # -- Reads --------------------------------------------------------------

    def _onchain_price(self, now: int) -> _Observation:
        obs = self._onchain
        if obs is None or obs.price <= 0:
            raise PriceInvalid(ONCHAIN)
        if now > obs.timestamp + self.onchain_price_expiry:
            raise PriceStale(ONCHAIN)
        return obs

    def _offchain_price(self, now: int) -> Optional[_Observation]:
        obs = self._offchain
        if obs is None or obs.price <= 0:
            return None
        if now > obs.timestamp + self.offchain_max_price_age:
            return None
        return obs

    def get_price(self, max_age: int = DEFAULT_MAX_AGE) -> Tuple[int, int]:
        """
        Return `(price, timestamp)` of the freshest valid source.

        Raises:
            PriceInvalid: no usable on-chain price
            PriceStale: on-chain feed expired, or the chosen price is older
                than `max_age`
            PriceMismatch: the two sources deviate by more than
                `max_diff_percent`
        """
        now = self.clock.now()
        onchain = self._onchain_price(now)
        offchain = self._offchain_price(now)

        chosen = onchain
        source = ONCHAIN
        if offchain is not None:
            if offchain.timestamp >= onchain.timestamp:
                chosen = offchain
                source = OFFCHAIN
            diff_percent = abs_val(onchain.price - offchain.price) * UNIT // onchain.price
            if diff_percent > self.max_diff_percent:
                raise PriceMismatch(diff_percent)

        if chosen.timestamp + max_age < now:
            raise PriceStale(source)
        return chosen.price, chosen.timestamp

    def __repr__(self) -> str:
        return f"OracleModule(onchain={self._onchain}, offchain={self._offchain})"
